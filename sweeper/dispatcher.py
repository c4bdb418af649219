"""
Command dispatcher

Chat messages arrive as explicit command/message objects; `Dispatcher.dispatch`
turns each into a Reply. The chat transport itself lives elsewhere.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Union

from sqlalchemy.exc import SQLAlchemyError

from db.ledger import Ledger
from db.models import Wallet
from shared.crypto.chains import Chain
from shared.crypto.credentials import CredentialCipher, CredentialKind
from shared.errors import SweepError
from sweeper.service import SweepService
from sweeper.setup_flow import SessionStore, SetupFlow, SetupInputError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StartCommand:
    owner_id: str
    username: Optional[str] = None


@dataclass(frozen=True)
class SetWalletCommand:
    owner_id: str


@dataclass(frozen=True)
class CheckBalanceCommand:
    owner_id: str
    wallet_id: Optional[int] = None


@dataclass(frozen=True)
class ListWalletsCommand:
    owner_id: str


@dataclass(frozen=True)
class DeleteWalletCommand:
    owner_id: str
    wallet_id: Optional[int] = None


@dataclass(frozen=True)
class CancelCommand:
    owner_id: str


@dataclass(frozen=True)
class TextMessage:
    owner_id: str
    text: str


Message = Union[StartCommand, SetWalletCommand, CheckBalanceCommand, ListWalletsCommand,
                DeleteWalletCommand, CancelCommand, TextMessage]


@dataclass
class Reply:
    text: str
    options: List[str] = field(default_factory=list)


def _optional_int(argument: str) -> Optional[int]:
    argument = argument.strip()
    return int(argument) if argument.isdigit() else None


def parse_message(owner_id, text: str, username: str = None) -> Message:
    """Map raw chat text onto a message type."""
    owner_id = str(owner_id)
    text = (text or "").strip()
    command, _, argument = text.partition(" ")
    command = command.lower().split("@")[0]
    if command == "/start":
        return StartCommand(owner_id, username)
    if command == "/setwallet":
        return SetWalletCommand(owner_id)
    if command == "/checkbalance":
        return CheckBalanceCommand(owner_id, _optional_int(argument))
    if command in ("/wallets", "/listwallets"):
        return ListWalletsCommand(owner_id)
    if command == "/deletewallet":
        return DeleteWalletCommand(owner_id, _optional_int(argument))
    if command == "/cancel":
        return CancelCommand(owner_id)
    return TextMessage(owner_id, text)


class Dispatcher:
    def __init__(self, ledger: Ledger, service: SweepService, sessions: SessionStore, flow: SetupFlow,
                 cipher: CredentialCipher):
        self.ledger = ledger
        self.service = service
        self.sessions = sessions
        self.flow = flow
        self.cipher = cipher
        self._handlers = {
            StartCommand: self._start,
            SetWalletCommand: self._set_wallet,
            CheckBalanceCommand: self._check_balance,
            ListWalletsCommand: self._list_wallets,
            DeleteWalletCommand: self._delete_wallet,
            CancelCommand: self._cancel,
            TextMessage: self._text,
        }

    def dispatch(self, message: Message) -> Reply:
        handler = self._handlers.get(type(message))
        if handler is None:
            raise TypeError(f"Unsupported message type: {type(message).__name__}")
        self.sessions.purge_expired()
        try:
            return handler(message)
        except SQLAlchemyError as e:
            logger.error(f"Database error handling {type(message).__name__} from {message.owner_id}: {e}",
                         exc_info=True)
            return Reply("❌ An error occurred. Please try again.")

    # ===== Commands =====

    def _start(self, message: StartCommand) -> Reply:
        existing = self.ledger.get_user_by_telegram_id(message.owner_id)
        self.ledger.get_or_create_user(message.owner_id, message.username)
        greeting = "⚡ You are already registered." if existing else "✅ You have been registered for sweep alerts!"
        return Reply(f"{greeting}\nWelcome! Use /setwallet to configure a wallet, /wallets to list them "
                     f"and /checkbalance to monitor funds.")

    def _set_wallet(self, message: SetWalletCommand) -> Reply:
        if self.ledger.get_user_by_telegram_id(message.owner_id) is None:
            return Reply("❌ Please use /start command first to register.")
        session = self.sessions.open(message.owner_id)
        return Reply(self.flow.prompt(session), options=[chain.value for chain in Chain])

    def _cancel(self, message: CancelCommand) -> Reply:
        session = self.sessions.get_for_owner(message.owner_id)
        if session is None:
            return Reply("Nothing to cancel.")
        self.sessions.close(session.session_id)
        return Reply("Wallet setup cancelled.")

    def _text(self, message: TextMessage) -> Reply:
        session = self.sessions.get_for_owner(message.owner_id)
        if session is None:
            return Reply("Use /setwallet to configure a wallet.")
        try:
            self.flow.advance(session, message.text)
        except SetupInputError as e:
            return Reply(f"❌ {e}")
        self.sessions.touch(session)
        if not session.complete:
            return Reply(self.flow.prompt(session))
        return self._finish_setup(session)

    def _finish_setup(self, session) -> Reply:
        user = self.ledger.get_or_create_user(session.owner_id)
        credential = None
        if session.credential_kind is not CredentialKind.DELEGATED:
            credential = self.cipher.encrypt(session.credential)
        wallet = self.ledger.insert_wallet(
            owner_id=user.id,
            chain=session.chain,
            address=session.address,
            credential=credential,
            credential_kind=session.credential_kind,
            receiver_address=session.receiver_address,
            threshold=session.threshold,
        )
        self.sessions.close(session.session_id)
        note = ""
        if session.credential_kind is CredentialKind.DELEGATED:
            note = "\nThis wallet is delegated: you will be asked to approve sweeps manually."
        return Reply(f"✅ Wallet set up successfully! Blockchain: {wallet.chain.value}\n"
                     f"Address: {wallet.address}\nReceiver: {wallet.receiver_address}\n"
                     f"Threshold: {wallet.threshold}{note}")

    def _owner_wallets(self, owner_id: str) -> Optional[List[Wallet]]:
        user = self.ledger.get_user_by_telegram_id(owner_id)
        if user is None:
            return None
        return self.ledger.list_wallets_by_owner(user.id)

    def _list_wallets(self, message: ListWalletsCommand) -> Reply:
        wallets = self._owner_wallets(message.owner_id)
        if wallets is None:
            return Reply("❌ Please use /start first.")
        if not wallets:
            return Reply("❌ No wallet found. Use /setwallet first!")
        lines = [
            f"#{w.id} {w.chain.value} {w.address} -> {w.receiver_address} "
            f"(threshold {w.threshold}, {w.credential_kind.value})"
            for w in wallets
        ]
        return Reply("Your wallets:\n" + "\n".join(lines))

    def _check_balance(self, message: CheckBalanceCommand) -> Reply:
        wallets = self._owner_wallets(message.owner_id)
        if wallets is None:
            return Reply("❌ Please use /start first.")
        if message.wallet_id is not None:
            wallets = [w for w in wallets if w.id == message.wallet_id]
        if not wallets:
            return Reply("❌ No wallet found. Use /setwallet first!")

        lines = []
        for wallet in wallets:
            try:
                balance = self.service.check_balance(wallet)
            except SweepError as e:
                logger.error(f"Balance check for wallet {wallet.id} failed: {e}")
                lines.append(f"❌ #{wallet.id} {wallet.chain.value}: failed to check balance.")
                continue
            lines.append(f"💰 #{wallet.id} {wallet.chain.value} balance: "
                         f"{wallet.chain.to_major(balance)} {wallet.chain.value}")
        return Reply("\n".join(lines))

    def _delete_wallet(self, message: DeleteWalletCommand) -> Reply:
        if message.wallet_id is None:
            return Reply("Usage: /deletewallet <wallet id>")
        user = self.ledger.get_user_by_telegram_id(message.owner_id)
        if user is None:
            return Reply("❌ Please use /start first.")
        if not self.ledger.delete_wallet(message.wallet_id, owner_id=user.id):
            return Reply(f"❌ Wallet #{message.wallet_id} not found.")
        return Reply(f"🗑 Wallet #{message.wallet_id} deleted.")
