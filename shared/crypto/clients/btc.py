import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from bitcoinlib.keys import Address, Key
from bitcoinlib.transactions import Transaction

from shared.crypto.chains import Chain
from shared.crypto.clients.base import BroadcastResult, ChainAdapter, FeeContext
from shared.errors import (
    BroadcastRejectedError,
    CredentialError,
    InsufficientFundsError,
    InvalidAddressError,
    NetworkError,
)

TESTNET_NETWORK_NAMES = {"testnet", "testnet4", "signet", "regtest"}


@dataclass
class BitcoinConfig:
    """Configuration for Bitcoin client"""
    endpoint: str
    network: str = "bitcoin"
    timeout: int = 30
    tx_size_bytes: int = 250
    fee_target_blocks: int = 6
    fallback_fee_rate: int = 10

    @classmethod
    def testnet(cls, endpoint: str = "", **kwargs) -> 'BitcoinConfig':
        return cls(
            endpoint=endpoint or "https://blockstream.info/testnet/api",
            network="testnet",
            **kwargs
        )

    @classmethod
    def mainnet(cls, endpoint: str = "", **kwargs) -> 'BitcoinConfig':
        return cls(
            endpoint=endpoint or "https://blockstream.info/api",
            network="bitcoin",
            **kwargs
        )

    @property
    def is_testnet(self) -> bool:
        return self.network != "bitcoin"


class BitcoinAdapter(ChainAdapter):
    """Sweeps every UTXO of a legacy address into one output, no change."""

    chain = Chain.BTC

    def __init__(self, btc_config: BitcoinConfig, logger: logging.Logger = None):
        super().__init__(timeout=btc_config.timeout, logger=logger)
        self.btc_config = btc_config

    # ===== Esplora API Methods =====

    def make_request(self, endpoint: str, method: str = "GET", data: str = None) -> Any:
        url = f"{self.btc_config.endpoint}{endpoint}"
        if method.upper() == "POST":
            response = self._http("POST", url, data=data, headers={'Content-Type': 'text/plain'})
        else:
            response = self._http("GET", url)
        if response.status_code == 400:
            raise BroadcastRejectedError(f"BTC node rejected {endpoint}: {response.text.strip()}")
        if response.status_code >= 400:
            raise NetworkError(f"BTC API answered HTTP {response.status_code} for {endpoint}")
        if method.upper() == "POST":
            return response.text.strip()
        try:
            return response.json()
        except ValueError as e:
            raise NetworkError(f"BTC API returned a non-JSON body for {endpoint}", cause=e)

    def get_utxos(self, address: str) -> List[Dict[str, Any]]:
        return self.make_request(f"/address/{address}/utxo")

    def get_fee_rate(self) -> int:
        """sat/vbyte for the configured confirmation target, never below 1."""
        try:
            estimates = self.make_request("/fee-estimates")
        except NetworkError as e:
            self.logger.warning(f"BTC fee estimate unavailable, using fallback rate: {e}")
            return self.btc_config.fallback_fee_rate
        rate = estimates.get(str(self.btc_config.fee_target_blocks)) if estimates else None
        if rate is None:
            return self.btc_config.fallback_fee_rate
        return max(1, math.ceil(float(rate)))

    # ===== Capabilities =====

    def validate_address(self, address: str) -> bool:
        if not address:
            return False
        try:
            parsed = Address.parse(address)
        except Exception:
            return False
        network_name = parsed.network.name
        if self.btc_config.is_testnet:
            return network_name in TESTNET_NETWORK_NAMES
        return network_name == "bitcoin"

    def _require_address(self, address: str, role: str = "source") -> None:
        if not self.validate_address(address):
            raise InvalidAddressError(f"Invalid BTC {role} address for {self.btc_config.network}: {address}")

    def get_balance(self, address: str) -> int:
        self._require_address(address)
        return sum(int(utxo["value"]) for utxo in self.get_utxos(address))

    def estimate_fee(self, context: FeeContext) -> int:
        fee_rate = self.get_fee_rate()
        context.quote["fee_rate"] = fee_rate
        return self.btc_config.tx_size_bytes * fee_rate

    def build_sign_and_broadcast(self, signer: str, source_address: str, destination_address: str,
                                 amount: int, context: Optional[FeeContext] = None) -> BroadcastResult:
        self._require_address(source_address)
        self._require_address(destination_address, role="destination")
        if amount <= 0:
            raise InsufficientFundsError(f"Nothing to send from {source_address} after fees")

        try:
            key = Key(signer, network=self.btc_config.network)
        except Exception as e:
            raise CredentialError("BTC signer is not a valid private key", cause=e)
        if key.address() != source_address:
            raise CredentialError(f"BTC signer does not control {source_address}")

        utxos = self.get_utxos(source_address)
        if not utxos:
            raise InsufficientFundsError(f"No unspent outputs at {source_address}")
        total = sum(int(utxo["value"]) for utxo in utxos)
        if amount > total:
            raise InsufficientFundsError(f"BTC sweep of {amount} sat exceeds spendable {total} sat")

        transaction = Transaction(network=self.btc_config.network, witness_type='legacy')
        for utxo in utxos:
            transaction.add_input(
                prev_txid=utxo["txid"],
                output_n=int(utxo["vout"]),
                keys=key.public(),
                value=int(utxo["value"]),
                witness_type='legacy',
            )
        transaction.add_output(int(amount), destination_address)

        for index in range(len(transaction.inputs)):
            transaction.sign(keys=key, index_n=index)
        if not transaction.verify() or not all(tx_input.valid for tx_input in transaction.inputs):
            raise CredentialError("BTC signature verification failed; key does not own these outputs")

        tx_id = self.make_request("/tx", method="POST", data=transaction.raw_hex())
        self.logger.info(f"📤 BTC sweep sent: {amount} sat from {len(utxos)} inputs "
                         f"{source_address} -> {destination_address}, txid={tx_id}")
        return BroadcastResult(tx_hash=tx_id, raw={"inputs": len(utxos), "fee": total - amount})
