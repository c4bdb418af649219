"""
Ledger

Persistence for users, wallets and sweep transactions. Every call opens its own
session, so one Ledger instance is safe to share between the scheduler's worker
threads. Returned rows are detached snapshots.
"""

import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from .models import SweepTransaction, TransactionStatus, User, Wallet

logger = logging.getLogger(__name__)


class Ledger:
    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    # ===== Users =====

    def get_or_create_user(self, telegram_user_id: str, telegram_username: str = None) -> User:
        telegram_user_id = str(telegram_user_id)
        with self.session_factory() as session:
            user = session.scalars(select(User).filter_by(telegram_user_id=telegram_user_id)).first()
            if user is None:
                user = User(telegram_user_id=telegram_user_id, telegram_username=telegram_username)
                session.add(user)
                session.commit()
                logger.info(f"Registered owner {telegram_user_id}")
            elif telegram_username and user.telegram_username != telegram_username:
                user.telegram_username = telegram_username
                session.commit()
            session.expunge(user)
            return user

    def get_user_by_telegram_id(self, telegram_user_id: str) -> Optional[User]:
        with self.session_factory() as session:
            user = session.scalars(select(User).filter_by(telegram_user_id=str(telegram_user_id))).first()
            if user is not None:
                session.expunge(user)
            return user

    def get_user(self, user_id: int) -> Optional[User]:
        with self.session_factory() as session:
            user = session.get(User, user_id)
            if user is not None:
                session.expunge(user)
            return user

    # ===== Wallets =====

    def list_wallets(self) -> List[Wallet]:
        with self.session_factory() as session:
            wallets = list(session.scalars(select(Wallet).order_by(Wallet.id)))
            session.expunge_all()
            return wallets

    def list_wallets_by_owner(self, owner_id: int) -> List[Wallet]:
        with self.session_factory() as session:
            wallets = list(session.scalars(select(Wallet).filter_by(owner_id=owner_id).order_by(Wallet.id)))
            session.expunge_all()
            return wallets

    def get_wallet(self, wallet_id: int) -> Optional[Wallet]:
        with self.session_factory() as session:
            wallet = session.get(Wallet, wallet_id)
            if wallet is not None:
                session.expunge(wallet)
            return wallet

    def insert_wallet(self, owner_id: int, chain, address: str, credential: Optional[str],
                      credential_kind, receiver_address: str, threshold: int = 0) -> Wallet:
        wallet = Wallet(
            owner_id=owner_id,
            chain=chain,
            address=address,
            credential=credential,
            credential_kind=credential_kind,
            receiver_address=receiver_address,
            threshold=int(threshold),
        )
        with self.session_factory() as session:
            session.add(wallet)
            session.commit()
            session.expunge(wallet)
        logger.info(f"Wallet {wallet.id} added: {wallet.chain.value} {wallet.address}")
        return wallet

    def delete_wallet(self, wallet_id: int, owner_id: int = None) -> bool:
        """Delete a wallet and its sweep history. With `owner_id`, only that owner's wallet."""
        with self.session_factory() as session:
            wallet = session.get(Wallet, wallet_id)
            if wallet is None or (owner_id is not None and wallet.owner_id != owner_id):
                return False
            for transaction in session.scalars(select(SweepTransaction).filter_by(wallet_id=wallet_id)):
                session.delete(transaction)
            session.delete(wallet)
            session.commit()
        logger.info(f"Wallet {wallet_id} deleted")
        return True

    # ===== Sweep transactions =====

    def insert_transaction(self, wallet_id: int, chain, amount: int, status=TransactionStatus.SUCCESS,
                           tx_hash: str = None) -> SweepTransaction:
        status = TransactionStatus(status)
        if status is TransactionStatus.SUCCESS and not tx_hash:
            raise ValueError("a successful sweep must carry its transaction hash")
        transaction = SweepTransaction(
            wallet_id=wallet_id,
            chain=chain,
            amount=int(amount),
            status=status,
            tx_hash=tx_hash,
        )
        with self.session_factory() as session:
            session.add(transaction)
            session.commit()
            session.expunge(transaction)
        return transaction

    def list_transactions_by_wallet(self, wallet_id: int) -> List[SweepTransaction]:
        with self.session_factory() as session:
            transactions = list(session.scalars(
                select(SweepTransaction).filter_by(wallet_id=wallet_id).order_by(SweepTransaction.id)
            ))
            session.expunge_all()
            return transactions

    def delete_transactions_by_wallet(self, wallet_id: int) -> int:
        with self.session_factory() as session:
            transactions = list(session.scalars(select(SweepTransaction).filter_by(wallet_id=wallet_id)))
            for transaction in transactions:
                session.delete(transaction)
            session.commit()
            return len(transactions)
