"""
Sweep Service
Runs one sweep attempt for one wallet: balance, fee, decision, signing,
broadcast, ledger record and owner notification, in that order.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

from db.ledger import Ledger
from db.models import TransactionStatus, Wallet
from shared.crypto.chains import Chain
from shared.crypto.clients.base import AdapterRegistry, FeeContext
from shared.crypto.credentials import CredentialCipher, CredentialKind, CredentialResolver
from shared.errors import CredentialError
from shared.notification_service import (
    NotificationCategory,
    NotificationService,
    reauthorize_message,
    sweep_success_message,
)
from sweeper.decision import decide, is_auto_sweepable

logger = logging.getLogger(__name__)


class OutcomeStatus:
    SKIPPED = "skipped"
    SWEPT = "swept"


@dataclass
class AttemptOutcome:
    """Result of an attempt that did not raise"""
    wallet_id: int
    status: str
    reason: str
    balance: int = 0
    fee: int = 0
    amount: int = 0
    tx_hash: Optional[str] = None

    @property
    def swept(self) -> bool:
        return self.status == OutcomeStatus.SWEPT


class SweepService:
    """Service that sweeps one wallet's balance to its receiver address"""

    def __init__(self, registry: AdapterRegistry, resolver: CredentialResolver, cipher: CredentialCipher,
                 ledger: Ledger, notifier: NotificationService):
        self.registry = registry
        self.resolver = resolver
        self.cipher = cipher
        self.ledger = ledger
        self.notifier = notifier
        # wallet id -> balance the owner was last asked to re-authorize
        self._reauthorize_sent: Dict[int, int] = {}

    def check_balance(self, wallet: Wallet) -> int:
        """Current balance in minor units. Works for every credential kind."""
        adapter = self.registry.get(wallet.chain)
        return adapter.get_balance(wallet.address)

    def attempt(self, wallet: Wallet) -> AttemptOutcome:
        """Run one attempt. Failures are raised as SweepError subclasses."""
        chain = Chain.parse(wallet.chain)
        kind = CredentialKind(wallet.credential_kind)
        adapter = self.registry.get(chain)

        balance = adapter.get_balance(wallet.address)
        fee_context = FeeContext(
            source_address=wallet.address,
            destination_address=wallet.receiver_address,
            balance=balance,
        )
        fee = adapter.estimate_fee(fee_context)
        decision = decide(balance, wallet.threshold or 0, fee)
        if not decision.should_sweep:
            logger.debug(f"Wallet {wallet.id} not swept: {decision.reason} "
                         f"(balance={balance}, threshold={wallet.threshold}, fee={fee})")
            self._reauthorize_sent.pop(wallet.id, None)
            return AttemptOutcome(wallet.id, OutcomeStatus.SKIPPED, decision.reason, balance=balance, fee=fee)

        if not is_auto_sweepable(kind):
            if self._reauthorize_sent.get(wallet.id) != balance:
                logger.warning(f"Wallet {wallet.id} reached its threshold but is delegated; asking owner to re-authorize")
                self._notify(wallet, reauthorize_message(chain, wallet.address, balance),
                             NotificationCategory.REAUTHORIZE)
                self._reauthorize_sent[wallet.id] = balance
            raise CredentialError(f"wallet {wallet.id} is delegated and cannot be swept automatically")

        signer = self._signer_for(wallet, chain, kind)

        logger.info(f"🧹 Sweeping wallet {wallet.id}: {decision.amount} of {balance} {chain.value} minor units "
                    f"(fee {fee}) {wallet.address} -> {wallet.receiver_address}")
        result = adapter.build_sign_and_broadcast(
            signer,
            wallet.address,
            wallet.receiver_address,
            decision.amount,
            context=fee_context,
        )

        try:
            self.ledger.insert_transaction(
                wallet_id=wallet.id,
                chain=chain,
                amount=decision.amount,
                status=TransactionStatus.SUCCESS,
                tx_hash=result.tx_hash,
            )
        except SQLAlchemyError as e:
            # Funds already moved; keep going so the owner still hears about it
            logger.error(
                f"Wallet {wallet.id} swept but the sweep record could not be saved: {e}",
                extra={"extra": {"wallet_id": wallet.id, "chain": chain.value,
                                 "tx_hash": result.tx_hash, "amount": decision.amount}},
            )
        self._notify(
            wallet,
            sweep_success_message(chain, decision.amount, wallet.receiver_address, result.tx_hash),
            NotificationCategory.SWEEP,
        )
        logger.info(f"✅ Wallet {wallet.id} swept, tx {result.tx_hash}")
        return AttemptOutcome(
            wallet.id, OutcomeStatus.SWEPT, decision.reason,
            balance=balance, fee=fee, amount=decision.amount, tx_hash=result.tx_hash,
        )

    def _signer_for(self, wallet: Wallet, chain: Chain, kind: CredentialKind) -> str:
        if not wallet.credential:
            raise CredentialError(f"wallet {wallet.id} has no stored credential")
        plaintext = self.cipher.decrypt(wallet.credential)
        resolved = self.resolver.resolve(plaintext, kind, chain)

        expected, actual = wallet.address, resolved.address
        if chain.is_evm:
            expected, actual = expected.lower(), actual.lower()
        if expected != actual:
            raise CredentialError(f"credential of wallet {wallet.id} resolves to {resolved.address}, "
                                  f"not {wallet.address}")
        if not resolved.signing_available:
            raise CredentialError(f"wallet {wallet.id} has no signing key")
        return resolved.signer

    def notify_owner(self, wallet: Wallet, message: str, category: str) -> bool:
        return self._notify(wallet, message, category)

    def _notify(self, wallet: Wallet, message: str, category: str) -> bool:
        recipient = wallet.owner_id
        try:
            owner = self.ledger.get_user(wallet.owner_id)
            if owner is not None:
                recipient = owner.telegram_user_id
        except SQLAlchemyError as e:
            logger.error(f"Could not look up owner {wallet.owner_id} for notification: {e}")
        return self.notifier.notify(recipient, message, category=category)
