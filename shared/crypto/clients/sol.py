import logging
from dataclasses import dataclass
from typing import Optional

import base58
from solana.exceptions import SolanaRpcException
from solana.rpc.api import Client
from solana.rpc.commitment import Commitment
from solana.rpc.core import RPCException
from solana.rpc.types import TxOpts
from solders.keypair import Keypair
from solders.pubkey import Pubkey as PublicKey
from solders.system_program import TransferParams, transfer
from solders.transaction import Transaction

from shared.crypto.chains import Chain
from shared.crypto.clients.base import BroadcastResult, ChainAdapter, FeeContext
from shared.errors import (
    BroadcastRejectedError,
    CredentialError,
    InsufficientFundsError,
    InvalidAddressError,
    NetworkError,
)

TRANSIENT_RPC_MARKERS = ("blockhash not found", "node is behind", "too many requests")


@dataclass
class SolanaConfig:
    """Configuration for Solana client"""
    base_url: str
    network: str = "mainnet"
    timeout: int = 30
    commitment: str = "confirmed"
    fixed_fee_lamports: int = 5000

    @classmethod
    def testnet(cls, base_url: str = "", **kwargs) -> 'SolanaConfig':
        return cls(
            base_url=base_url or "https://api.devnet.solana.com",
            network="devnet",
            **kwargs
        )

    @classmethod
    def mainnet(cls, base_url: str = "", **kwargs) -> 'SolanaConfig':
        return cls(
            base_url=base_url or "https://api.mainnet-beta.solana.com",
            network="mainnet",
            **kwargs
        )


class SolanaAdapter(ChainAdapter):
    """Single system-program transfer of everything but the fee."""

    chain = Chain.SOL

    def __init__(self, sol_config: SolanaConfig, logger: logging.Logger = None, client: Client = None):
        super().__init__(timeout=sol_config.timeout, logger=logger)
        self.sol_config = sol_config
        self.solana_client = client or Client(sol_config.base_url, timeout=sol_config.timeout)

    def _rpc_error(self, action: str, error: Exception) -> Exception:
        """Map a solana-py failure onto the sweep error taxonomy."""
        if isinstance(error, SolanaRpcException):
            return NetworkError(f"SOL {action} failed: {error}", cause=error)
        message = str(error)
        lowered = message.lower()
        if "insufficient" in lowered and ("lamports" in lowered or "funds" in lowered):
            return InsufficientFundsError(f"SOL {action}: {message}", cause=error)
        transient = any(marker in lowered for marker in TRANSIENT_RPC_MARKERS)
        return BroadcastRejectedError(f"SOL {action} rejected: {message}", transient=transient, cause=error)

    def validate_address(self, address: str) -> bool:
        if not address:
            return False
        try:
            PublicKey.from_string(address)
            return True
        except ValueError:
            return False

    def _pubkey(self, address: str, role: str = "source") -> PublicKey:
        try:
            return PublicKey.from_string(address)
        except (ValueError, TypeError) as e:
            raise InvalidAddressError(f"Invalid SOL {role} address: {address}", cause=e)

    def get_balance(self, address: str) -> int:
        pubkey = self._pubkey(address)
        try:
            return int(self.solana_client.get_balance(pubkey).value)
        except (SolanaRpcException, RPCException) as e:
            raise self._rpc_error("balance lookup", e)

    def estimate_fee(self, context: FeeContext) -> int:
        return self.sol_config.fixed_fee_lamports

    def build_sign_and_broadcast(self, signer: str, source_address: str, destination_address: str,
                                 amount: int, context: Optional[FeeContext] = None) -> BroadcastResult:
        source = self._pubkey(source_address)
        destination = self._pubkey(destination_address, role="destination")
        if amount <= 0:
            raise InsufficientFundsError(f"Nothing to send from {source_address} after fees")

        try:
            keypair = Keypair.from_bytes(base58.b58decode(signer))
        except ValueError as e:
            raise CredentialError("SOL signer is not a valid keypair", cause=e)
        if keypair.pubkey() != source:
            raise CredentialError("SOL signer does not control the source address")

        transfer_instruction = transfer(
            TransferParams(
                from_pubkey=source,
                to_pubkey=destination,
                lamports=int(amount)
            )
        )
        try:
            recent_blockhash = self.solana_client.get_latest_blockhash().value.blockhash
            transaction = Transaction.new_signed_with_payer(
                [transfer_instruction],
                keypair.pubkey(),
                [keypair],
                recent_blockhash
            )
            tx_opts = TxOpts(skip_preflight=False, preflight_commitment=Commitment(self.sol_config.commitment))
            result = self.solana_client.send_raw_transaction(bytes(transaction), opts=tx_opts)
        except (SolanaRpcException, RPCException) as e:
            raise self._rpc_error("transfer", e)

        signature = str(result.value)
        self.logger.info(f"📤 SOL sweep sent: {amount} lamports {source_address} -> {destination_address}, "
                         f"signature={signature}")
        return BroadcastResult(tx_hash=signature, raw={"recent_blockhash": str(recent_blockhash)})
