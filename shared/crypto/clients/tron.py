import binascii
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from tronpy import keys as tron_keys
from tronpy.keys import PrivateKey

from shared.crypto.chains import Chain
from shared.crypto.clients.base import BroadcastResult, ChainAdapter, FeeContext
from shared.errors import (
    BroadcastRejectedError,
    CredentialError,
    InsufficientFundsError,
    InvalidAddressError,
    NetworkError,
)

# Broadcast return codes that mean "node is not able to take it right now"
TRANSIENT_BROADCAST_CODES = {"SERVER_BUSY", "NO_CONNECTION", "NOT_ENOUGH_EFFECTIVE_CONNECTION", "BLOCK_UNSOLIDIFIED"}


@dataclass
class TronWalletConfig:
    """Configuration for Tron client"""
    api_key: str = ""
    network: str = "mainnet"
    base_url: str = ""
    timeout: int = 30
    fixed_fee_sun: int = 100_000
    default_permission_id: int = 2

    @classmethod
    def testnet(cls, api_key: str, **kwargs) -> 'TronWalletConfig':
        return cls(
            api_key=api_key,
            network="testnet",
            base_url="https://api.shasta.trongrid.io",
            **kwargs
        )

    @classmethod
    def mainnet(cls, api_key: str, **kwargs) -> 'TronWalletConfig':
        return cls(
            api_key=api_key,
            network="mainnet",
            base_url="https://api.trongrid.io",
            **kwargs
        )


class TronAdapter(ChainAdapter):
    """TRX sweeps from accounts configured with owner and active permissions."""

    chain = Chain.TRX

    def __init__(self, tron_config: TronWalletConfig, logger: logging.Logger = None):
        super().__init__(timeout=tron_config.timeout, logger=logger)
        self.tron_config = tron_config
        if tron_config.api_key:
            self.session_request.headers.update({'TRON-PRO-API-KEY': tron_config.api_key})

    # ===== Address helpers =====

    @staticmethod
    def _to_base58_address(maybe_hex: str) -> str:
        """Convert 41-prefixed hex TRON address to base58check using tronpy.keys."""
        if not maybe_hex or maybe_hex.startswith('T'):
            return maybe_hex
        hex_str = maybe_hex.lower().replace('0x', '')
        if not hex_str.startswith('41'):
            return maybe_hex
        return tron_keys.to_base58check_address(bytes.fromhex(hex_str))

    @staticmethod
    def _decode_message(message: Optional[str]) -> str:
        """Node error messages come back hex encoded."""
        if not message:
            return ""
        try:
            return binascii.unhexlify(message).decode("utf-8", errors="replace")
        except (binascii.Error, ValueError):
            return message

    def validate_address(self, address: str) -> bool:
        try:
            return bool(address) and tron_keys.is_base58check_address(address)
        except Exception:
            return False

    def _require_address(self, address: str, role: str = "source") -> None:
        if not self.validate_address(address):
            raise InvalidAddressError(f"Invalid TRX {role} address: {address}")

    # ===== Tron API Methods =====

    def make_request(self, endpoint: str, method: str = "GET", data: dict = None) -> Dict[str, Any]:
        """Make a request to Tron API"""
        url = f"{self.tron_config.base_url}{endpoint}"
        if method.upper() == "POST":
            response = self._http("POST", url, json=data or {})
        else:
            response = self._http("GET", url)
        try:
            payload = response.json()
        except ValueError as e:
            raise NetworkError(f"Tron API returned a non-JSON body for {endpoint}", cause=e)
        if response.status_code >= 400:
            if response.status_code == 400 and "address" in str(payload).lower():
                raise InvalidAddressError(f"Tron API rejected address: {payload}")
            raise BroadcastRejectedError(f"Tron API error {response.status_code}: {payload}")
        return payload

    def get_balance(self, address: str) -> int:
        self._require_address(address)
        result = self.make_request(f"/v1/accounts/{address}")
        data = result.get("data") or []
        if not data:
            # Accounts that never received funds are not activated yet
            return 0
        return int(data[0].get("balance", 0))

    def get_account(self, address: str) -> Dict[str, Any]:
        return self.make_request("/wallet/getaccount", method="POST", data={"address": address, "visible": True})

    def estimate_fee(self, context: FeeContext) -> int:
        return self.tron_config.fixed_fee_sun

    # ===== Multi-signature =====

    def resolve_permission_id(self, account: Dict[str, Any], signer_address: str) -> int:
        """Pick the permission the signer's key belongs to.

        Raises BroadcastRejectedError when the account lacks an owner or an
        active permission set.
        """
        owner_permission = account.get("owner_permission")
        active_permissions = account.get("active_permission")
        if not owner_permission or not active_permissions:
            raise BroadcastRejectedError("Source account is not configured as a multi-signature account")

        for permission in active_permissions:
            key_addresses = {self._to_base58_address(k.get("address")) for k in permission.get("keys", [])}
            if signer_address in key_addresses:
                return int(permission.get("id", self.tron_config.default_permission_id))

        owner_keys = {self._to_base58_address(k.get("address")) for k in owner_permission.get("keys", [])}
        if signer_address in owner_keys:
            return 0
        return self.tron_config.default_permission_id

    # ===== Sweeping =====

    def build_sign_and_broadcast(self, signer: str, source_address: str, destination_address: str,
                                 amount: int, context: Optional[FeeContext] = None) -> BroadcastResult:
        self._require_address(source_address)
        self._require_address(destination_address, role="destination")
        if amount <= 0:
            raise InsufficientFundsError(f"Nothing to send from {source_address} after fees")

        try:
            private_key = PrivateKey(bytes.fromhex(signer))
        except Exception as e:
            raise CredentialError("TRX signer is not a valid private key", cause=e)
        signer_address = private_key.public_key.to_base58check_address()

        account = self.get_account(source_address)
        permission_id = self.resolve_permission_id(account, signer_address)
        self.logger.info(f"TRX sweep from {source_address} using permission id {permission_id}")

        transaction = self.make_request("/wallet/createtransaction", method="POST", data={
            "owner_address": source_address,
            "to_address": destination_address,
            "amount": int(amount),
            "Permission_id": permission_id,
            "visible": True,
        })
        if "Error" in transaction or not transaction.get("txID"):
            error = transaction.get("Error", "no transaction returned")
            if "balance is not sufficient" in error:
                raise InsufficientFundsError(f"TRX balance too low for {amount} SUN: {error}")
            raise BroadcastRejectedError(f"TRX transaction build failed: {error}")

        signature = private_key.sign_msg_hash(bytes.fromhex(transaction["txID"]))
        transaction.setdefault("signature", []).append(signature.hex())

        result = self.make_request("/wallet/broadcasttransaction", method="POST", data=transaction)
        if not result.get("result"):
            code = result.get("code", "UNKNOWN")
            message = self._decode_message(result.get("message"))
            raise BroadcastRejectedError(
                f"TRX broadcast rejected ({code}): {message}",
                transient=code in TRANSIENT_BROADCAST_CODES,
            )

        tx_id = result.get("txid") or transaction["txID"]
        self.logger.info(f"📤 TRX sweep sent: {amount} SUN {source_address} -> {destination_address}, txid={tx_id}")
        return BroadcastResult(tx_hash=tx_id, raw=result)
