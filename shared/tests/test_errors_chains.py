import json
import logging
from decimal import Decimal
from types import SimpleNamespace

import pytest

from shared.crypto.chains import Chain, LedgerFamily
from shared.crypto.clients.base import AdapterRegistry
from shared.crypto.clients.registry import default_registry
from shared.errors import (
    BroadcastRejectedError,
    CredentialError,
    DerivationError,
    InsufficientFundsError,
    NetworkError,
    UnsupportedChainError,
    classify,
    is_retryable,
)
from shared.logger import JSONFormatter


def test_retryable_classification():
    assert is_retryable(NetworkError("timeout"))
    assert is_retryable(BroadcastRejectedError("busy", transient=True))
    assert not is_retryable(BroadcastRejectedError("bad signature"))
    assert not is_retryable(InsufficientFundsError())
    assert not is_retryable(CredentialError())
    assert not is_retryable(RuntimeError("boom"))


def test_classify():
    assert classify(NetworkError()) == "network_error"
    assert classify(DerivationError(violations=["invalid_checksum"])) == "derivation_error"
    assert classify(KeyError("x")) == "unexpected"


def test_derivation_error_message_lists_violations():
    error = DerivationError(violations=["wrong_word_count", "invalid_checksum"])
    assert str(error) == "mnemonic rejected: wrong_word_count, invalid_checksum"


def test_chain_parse():
    assert Chain.parse(" trx ") is Chain.TRX
    assert Chain.parse(Chain.SOL) is Chain.SOL
    with pytest.raises(UnsupportedChainError):
        Chain.parse("DOGE")


def test_chain_properties():
    assert Chain.BTC.family is LedgerFamily.UTXO
    assert Chain.MATIC.is_evm and not Chain.TRX.is_evm
    assert Chain.SOL.to_major(1_500_000_000) == Decimal("1.5")


def test_registry_unknown_chain():
    registry = AdapterRegistry()
    assert "ETH" not in registry
    assert "DOGE" not in registry
    with pytest.raises(UnsupportedChainError):
        registry.get(Chain.ETH)


def settings(**overrides):
    values = dict(
        tron_api_key="k", tron_network="mainnet", tron_fixed_fee_sun=100_000, tron_permission_id=2,
        btc_api_url="", btc_testnet=False, btc_tx_size_bytes=250, btc_fee_target_blocks=6,
        btc_fallback_fee_rate=10, alchemy_api_key="alchemy", evm_testnet=False,
        solana_rpc_url="", solana_network="mainnet", solana_fixed_fee_lamports=5000,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def test_default_registry_covers_every_chain():
    registry = default_registry(settings())
    assert set(registry.chains()) == set(Chain)
    assert registry.get("bnb").config.chain_id == 56


def test_default_registry_without_alchemy_key():
    registry = default_registry(settings(alchemy_api_key="", evm_testnet=True))
    assert set(registry.chains()) == {Chain.TRX, Chain.BTC, Chain.SOL}


def test_json_formatter_merges_extra():
    record = logging.LogRecord("sweeper", logging.INFO, __file__, 10, "swept %s", ("wallet",), None)
    record.extra = {"wallet_id": 7}
    payload = json.loads(JSONFormatter().format(record))
    assert payload["message"] == "swept wallet"
    assert payload["wallet_id"] == 7
    assert payload["level"] == "INFO"
