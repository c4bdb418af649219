import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from eth_account import Account
from eth_utils import is_address, to_checksum_address, to_hex

from shared.crypto.chains import Chain
from shared.crypto.clients.base import BroadcastResult, ChainAdapter, FeeContext
from shared.errors import (
    BroadcastRejectedError,
    CredentialError,
    InsufficientFundsError,
    InvalidAddressError,
    NetworkError,
)

# Plain value transfer
TRANSFER_GAS_LIMIT = 21000

# Node-side conditions that clear up on their own
TRANSIENT_RPC_MARKERS = ("timeout", "header not found", "request limit", "too many requests")
TRANSIENT_RPC_CODES = {-32005}


@dataclass
class EVMConfig:
    """Configuration for EVM-compatible chains"""
    api_key: str
    chain: Chain = Chain.ETH
    network: str = "mainnet"
    base_url: str = ""
    timeout: int = 30
    chain_id: int = 1

    @classmethod
    def ethereum_mainnet(cls, api_key: str) -> 'EVMConfig':
        return cls(
            api_key=api_key,
            chain=Chain.ETH,
            base_url=f"https://eth-mainnet.g.alchemy.com/v2/{api_key}",
            chain_id=1,
        )

    @classmethod
    def ethereum_sepolia(cls, api_key: str) -> 'EVMConfig':
        return cls(
            api_key=api_key,
            chain=Chain.ETH,
            network="sepolia",
            base_url=f"https://eth-sepolia.g.alchemy.com/v2/{api_key}",
            chain_id=11155111,
        )

    @classmethod
    def bnb_mainnet(cls, api_key: str) -> 'EVMConfig':
        return cls(
            api_key=api_key,
            chain=Chain.BNB,
            base_url=f"https://bnb-mainnet.g.alchemy.com/v2/{api_key}",
            chain_id=56,
        )

    @classmethod
    def bnb_testnet(cls, api_key: str) -> 'EVMConfig':
        return cls(
            api_key=api_key,
            chain=Chain.BNB,
            network="testnet",
            base_url=f"https://bnb-testnet.g.alchemy.com/v2/{api_key}",
            chain_id=97,
        )

    @classmethod
    def polygon_mainnet(cls, api_key: str) -> 'EVMConfig':
        return cls(
            api_key=api_key,
            chain=Chain.MATIC,
            base_url=f"https://polygon-mainnet.g.alchemy.com/v2/{api_key}",
            chain_id=137,
        )

    @classmethod
    def polygon_amoy(cls, api_key: str) -> 'EVMConfig':
        return cls(
            api_key=api_key,
            chain=Chain.MATIC,
            network="amoy",
            base_url=f"https://polygon-amoy.g.alchemy.com/v2/{api_key}",
            chain_id=80002,
        )

    @classmethod
    def for_chain(cls, chain, api_key: str, testnet: bool = False) -> 'EVMConfig':
        chain = Chain.parse(chain)
        factories = {
            Chain.ETH: (cls.ethereum_mainnet, cls.ethereum_sepolia),
            Chain.BNB: (cls.bnb_mainnet, cls.bnb_testnet),
            Chain.MATIC: (cls.polygon_mainnet, cls.polygon_amoy),
        }
        if chain not in factories:
            raise ValueError(f"{chain.value} is not an EVM chain")
        mainnet, testnet_factory = factories[chain]
        return (testnet_factory if testnet else mainnet)(api_key)


class EVMAdapter(ChainAdapter):
    """Native-coin sweeps on any EVM chain over JSON-RPC."""

    def __init__(self, config: EVMConfig, logger: logging.Logger = None):
        super().__init__(timeout=config.timeout, logger=logger)
        self.config = config
        self.chain = config.chain

    # ===== JSON-RPC =====

    @staticmethod
    def _is_transient(error: Dict[str, Any]) -> bool:
        message = str(error.get("message", "")).lower()
        return error.get("code") in TRANSIENT_RPC_CODES or any(m in message for m in TRANSIENT_RPC_MARKERS)

    def make_request(self, method: str, params: list = None) -> Any:
        """Make a JSON-RPC request and return its `result`."""
        payload = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": method,
            "params": params or []
        }
        response = self._http("POST", self.config.base_url, json=payload)
        try:
            body = response.json()
        except ValueError as e:
            raise NetworkError(f"{self.chain.value} node returned a non-JSON body for {method}", cause=e)

        error = body.get("error")
        if error:
            message = error.get("message", str(error))
            if "insufficient funds" in message.lower():
                raise InsufficientFundsError(f"{self.chain.value} {method}: {message}")
            if self._is_transient(error):
                raise NetworkError(f"{self.chain.value} {method}: {message}")
            raise BroadcastRejectedError(f"{self.chain.value} {method} rejected: {message}")
        if "result" not in body:
            raise NetworkError(f"{self.chain.value} {method} returned no result")
        return body["result"]

    # ===== Capabilities =====

    def validate_address(self, address: str) -> bool:
        return bool(address) and is_address(address)

    def _require_address(self, address: str, role: str = "source") -> str:
        if not self.validate_address(address):
            raise InvalidAddressError(f"Invalid {self.chain.value} {role} address: {address}")
        return to_checksum_address(address)

    def get_balance(self, address: str) -> int:
        address = self._require_address(address)
        return int(self.make_request("eth_getBalance", [address, "latest"]), 16)

    def get_gas_price(self) -> int:
        return int(self.make_request("eth_gasPrice"), 16)

    def estimate_gas(self, from_address: str, to_address: str, value: int) -> int:
        estimate = int(self.make_request("eth_estimateGas", [{
            "from": from_address,
            "to": to_address,
            "value": hex(value),
        }]), 16)
        return max(estimate, TRANSFER_GAS_LIMIT)

    def get_transaction_count(self, address: str) -> int:
        return int(self.make_request("eth_getTransactionCount", [address, "pending"]), 16)

    def estimate_fee(self, context: FeeContext) -> int:
        source = self._require_address(context.source_address)
        destination = self._require_address(context.destination_address, role="destination")
        gas_price = self.get_gas_price()
        # Estimating with the full balance would fail for lack of gas money
        gas_limit = self.estimate_gas(source, destination, 0)
        context.quote.update({"gas_price": gas_price, "gas_limit": gas_limit})
        return gas_price * gas_limit

    def build_sign_and_broadcast(self, signer: str, source_address: str, destination_address: str,
                                 amount: int, context: Optional[FeeContext] = None) -> BroadcastResult:
        source = self._require_address(source_address)
        destination = self._require_address(destination_address, role="destination")
        if amount <= 0:
            raise InsufficientFundsError(f"Nothing to send from {source} after gas")

        quote = context.quote if context else {}
        gas_price = quote.get("gas_price") or self.get_gas_price()
        gas_limit = quote.get("gas_limit") or TRANSFER_GAS_LIMIT

        transaction = {
            "nonce": self.get_transaction_count(source),
            "to": destination,
            "value": int(amount),
            "gas": int(gas_limit),
            "gasPrice": int(gas_price),
            "chainId": self.config.chain_id,
        }
        try:
            signed_txn = Account.sign_transaction(transaction, signer)
        except (ValueError, TypeError) as e:
            raise CredentialError(f"{self.chain.value} signer could not sign the transaction", cause=e)

        tx_hash = self.make_request("eth_sendRawTransaction", [to_hex(signed_txn.raw_transaction)])
        self.logger.info(f"📤 {self.chain.value} sweep sent: {amount} wei {source} -> {destination}, tx={tx_hash}")
        return BroadcastResult(tx_hash=tx_hash, raw={"nonce": transaction["nonce"], "gas_price": gas_price})
