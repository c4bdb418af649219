import enum

from sqlalchemy import (
    CheckConstraint,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from shared.crypto.chains import Chain
from shared.crypto.credentials import CredentialKind
from .base import MinorUnits, Timestamped


def _values(enum_cls):
    return [e.value for e in enum_cls]


class TransactionStatus(enum.Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class User(Timestamped):
    __tablename__ = "users"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    telegram_user_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    telegram_username: Mapped[str | None] = mapped_column(String(255), nullable=True)

    wallets = relationship("Wallet", back_populates="owner", passive_deletes=True)

    def __repr__(self):
        return f"<User {self.id}: {self.telegram_user_id}>"


class Wallet(Timestamped):
    __tablename__ = "wallets"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_id: Mapped[int] = mapped_column(Integer, ForeignKey(
        "users.id", ondelete="CASCADE"), nullable=False, index=True)
    chain: Mapped[Chain] = mapped_column(Enum(Chain, values_callable=_values), nullable=False)
    address: Mapped[str] = mapped_column(String(128), nullable=False)
    credential: Mapped[str | None] = mapped_column(Text, nullable=True, doc="Fernet-encrypted credential")
    credential_kind: Mapped[CredentialKind] = mapped_column(
        Enum(CredentialKind, values_callable=_values), nullable=False)
    receiver_address: Mapped[str] = mapped_column(String(128), nullable=False)
    threshold = mapped_column(MinorUnits(), nullable=False, default=0,
                              doc="Minor units; zero sweeps any positive balance")

    owner = relationship("User", back_populates="wallets")
    transactions = relationship("SweepTransaction", back_populates="wallet", passive_deletes=True)

    __table_args__ = (
        Index("ix_wallets_chain_address", "chain", "address"),
        CheckConstraint(
            "credential IS NOT NULL OR credential_kind = 'delegated'",
            name="credential_present",
        ),
    )

    @property
    def is_delegated(self) -> bool:
        return self.credential_kind is CredentialKind.DELEGATED

    def __repr__(self):
        return f"<Wallet {self.id}: {self.chain.value} {self.address}>"


class SweepTransaction(Timestamped):
    __tablename__ = "sweep_transactions"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    wallet_id: Mapped[int] = mapped_column(Integer, ForeignKey(
        "wallets.id", ondelete="CASCADE"), nullable=False, index=True)
    chain: Mapped[Chain] = mapped_column(Enum(Chain, values_callable=_values), nullable=False)
    amount = mapped_column(MinorUnits(), nullable=False)
    status: Mapped[TransactionStatus] = mapped_column(
        Enum(TransactionStatus, values_callable=_values), nullable=False, default=TransactionStatus.PENDING)
    tx_hash: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)

    wallet = relationship("Wallet", back_populates="transactions")

    __table_args__ = (
        CheckConstraint("status != 'success' OR tx_hash IS NOT NULL", name="success_has_hash"),
    )

    @validates("tx_hash")
    def validate_tx_hash(self, key, tx_hash):
        if self.status is TransactionStatus.SUCCESS and not tx_hash:
            raise ValueError("a successful sweep must carry its transaction hash")
        return tx_hash

    @validates("status")
    def validate_status(self, key, status):
        status = TransactionStatus(status)
        if status is TransactionStatus.SUCCESS and self.tx_hash is None and "tx_hash" in self.__dict__:
            raise ValueError("a successful sweep must carry its transaction hash")
        return status

    def __repr__(self):
        return f"<SweepTransaction {self.id}: {self.status.value} {self.tx_hash}>"
