"""
Wallet setup flow

An owner configures a wallet over several chat messages. Each conversation is
an explicit SetupSession record that moves through

    choose_chain -> choose_auth_method -> collect_credential
                 -> collect_receiver -> collect_threshold -> done

and expires when left idle longer than the store's TTL.
"""

import enum
import json
import logging
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from shared.crypto.chains import Chain
from shared.crypto.credentials import CredentialKind, CredentialResolver
from shared.errors import SweepError, UnsupportedChainError

logger = logging.getLogger(__name__)

# chainId values a pairing may report, per chain (mainnet first)
PAIRING_CHAIN_IDS = {
    Chain.ETH: {1, 11155111},
    Chain.BNB: {56, 97},
    Chain.MATIC: {137, 80002},
}

AUTH_METHOD_ALIASES = {
    "1": CredentialKind.PRIVATE_KEY,
    "private_key": CredentialKind.PRIVATE_KEY,
    "private key": CredentialKind.PRIVATE_KEY,
    "key": CredentialKind.PRIVATE_KEY,
    "2": CredentialKind.MNEMONIC,
    "mnemonic": CredentialKind.MNEMONIC,
    "seed phrase": CredentialKind.MNEMONIC,
    "3": CredentialKind.DELEGATED,
    "delegated": CredentialKind.DELEGATED,
    "walletconnect": CredentialKind.DELEGATED,
}


class SetupStep(enum.Enum):
    CHOOSE_CHAIN = "choose_chain"
    CHOOSE_AUTH_METHOD = "choose_auth_method"
    COLLECT_CREDENTIAL = "collect_credential"
    COLLECT_RECEIVER = "collect_receiver"
    COLLECT_THRESHOLD = "collect_threshold"
    DONE = "done"


class SetupInputError(ValueError):
    """The owner's answer does not fit the current step; the step is unchanged."""


@dataclass
class SetupSession:
    session_id: str
    owner_id: str
    expires_at: float
    step: SetupStep = SetupStep.CHOOSE_CHAIN
    chain: Optional[Chain] = None
    credential_kind: Optional[CredentialKind] = None
    credential: Optional[str] = None
    address: Optional[str] = None
    receiver_address: Optional[str] = None
    threshold: Optional[int] = None

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    @property
    def complete(self) -> bool:
        return self.step is SetupStep.DONE

    def __repr__(self):
        # Keeps the credential out of logs
        return (f"SetupSession(session_id={self.session_id!r}, owner_id={self.owner_id!r}, "
                f"step={self.step.value}, chain={self.chain}, address={self.address!r})")


class SessionStore:
    """One SetupSession per owner, with explicit expiry."""

    def __init__(self, ttl_seconds: float = 900, clock: Callable[[], float] = time.time):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._sessions: Dict[str, SetupSession] = {}
        self._by_owner: Dict[str, str] = {}
        self._lock = threading.Lock()

    def open(self, owner_id: str) -> SetupSession:
        """Start a fresh session, replacing any the owner already had."""
        owner_id = str(owner_id)
        session = SetupSession(
            session_id=uuid.uuid4().hex,
            owner_id=owner_id,
            expires_at=self.clock() + self.ttl_seconds,
        )
        with self._lock:
            previous = self._by_owner.get(owner_id)
            if previous:
                self._sessions.pop(previous, None)
            self._sessions[session.session_id] = session
            self._by_owner[owner_id] = session.session_id
        return session

    def get(self, session_id: str) -> Optional[SetupSession]:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is not None and session.is_expired(self.clock()):
                self._remove(session)
                return None
            return session

    def get_for_owner(self, owner_id: str) -> Optional[SetupSession]:
        with self._lock:
            session_id = self._by_owner.get(str(owner_id))
        return self.get(session_id) if session_id else None

    def touch(self, session: SetupSession) -> None:
        session.expires_at = self.clock() + self.ttl_seconds

    def close(self, session_id: str) -> None:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is not None:
                self._remove(session)

    def purge_expired(self) -> int:
        now = self.clock()
        with self._lock:
            expired = [s for s in self._sessions.values() if s.is_expired(now)]
            for session in expired:
                self._remove(session)
        if expired:
            logger.info(f"Purged {len(expired)} expired setup sessions")
        return len(expired)

    def __len__(self):
        with self._lock:
            return len(self._sessions)

    def _remove(self, session: SetupSession) -> None:
        self._sessions.pop(session.session_id, None)
        if self._by_owner.get(session.owner_id) == session.session_id:
            del self._by_owner[session.owner_id]


class SetupFlow:
    """Validates each answer and moves the session to its next step."""

    def __init__(self, resolver: CredentialResolver, address_validator: Callable[[Chain, str], bool]):
        self.resolver = resolver
        self.address_validator = address_validator

    def prompt(self, session: SetupSession) -> str:
        step = session.step
        if step is SetupStep.CHOOSE_CHAIN:
            return "Which blockchain? " + ", ".join(chain.value for chain in Chain)
        if step is SetupStep.CHOOSE_AUTH_METHOD:
            return ("How will this wallet be authorized?\n"
                    "1. private key\n2. mnemonic (seed phrase)\n3. delegated (connect a browser wallet)")
        if step is SetupStep.COLLECT_CREDENTIAL:
            if session.credential_kind is CredentialKind.DELEGATED:
                return 'Connect your wallet on the pairing page; it sends {"account": ..., "chainId": ...} back here.'
            if session.credential_kind is CredentialKind.MNEMONIC:
                return "Send your 12 or 24 word seed phrase."
            return f"Send the {session.chain.value} private key."
        if step is SetupStep.COLLECT_RECEIVER:
            return f"Send the {session.chain.value} address swept funds should go to."
        if step is SetupStep.COLLECT_THRESHOLD:
            return (f"Minimum balance in {session.chain.value} minor units before sweeping "
                    f"(0 sweeps any positive balance).")
        return "Wallet setup complete."

    def advance(self, session: SetupSession, text: str) -> SetupSession:
        text = (text or "").strip()
        handler = {
            SetupStep.CHOOSE_CHAIN: self._choose_chain,
            SetupStep.CHOOSE_AUTH_METHOD: self._choose_auth_method,
            SetupStep.COLLECT_CREDENTIAL: self._collect_credential,
            SetupStep.COLLECT_RECEIVER: self._collect_receiver,
            SetupStep.COLLECT_THRESHOLD: self._collect_threshold,
        }.get(session.step)
        if handler is None:
            raise SetupInputError("This setup is already complete.")
        handler(session, text)
        return session

    def _choose_chain(self, session: SetupSession, text: str):
        try:
            session.chain = Chain.parse(text)
        except UnsupportedChainError:
            raise SetupInputError(f"Unsupported blockchain '{text}'. Choose one of: "
                                  + ", ".join(chain.value for chain in Chain))
        session.step = SetupStep.CHOOSE_AUTH_METHOD

    def _choose_auth_method(self, session: SetupSession, text: str):
        kind = AUTH_METHOD_ALIASES.get(text.lower())
        if kind is None:
            raise SetupInputError("Reply 1 (private key), 2 (mnemonic) or 3 (delegated).")
        if kind is CredentialKind.DELEGATED and session.chain not in PAIRING_CHAIN_IDS:
            raise SetupInputError(f"Delegated signing is not available for {session.chain.value}.")
        session.credential_kind = kind
        session.step = SetupStep.COLLECT_CREDENTIAL

    def _collect_credential(self, session: SetupSession, text: str):
        if session.credential_kind is CredentialKind.DELEGATED:
            session.address = self._paired_address(session.chain, text)
            session.credential = None
        else:
            try:
                resolved = self.resolver.resolve(text, session.credential_kind, session.chain)
            except SweepError as e:
                raise SetupInputError(f"That {session.credential_kind.value.replace('_', ' ')} "
                                      f"was not accepted: {e}")
            session.credential = text
            session.address = resolved.address
        session.step = SetupStep.COLLECT_RECEIVER

    def _paired_address(self, chain: Chain, text: str) -> str:
        try:
            payload = json.loads(text)
            account = str(payload["account"]).strip()
            chain_id = int(str(payload["chainId"]), 0)
        except (ValueError, KeyError, TypeError):
            raise SetupInputError('Pairing data must look like {"account": "0x...", "chainId": 1}.')
        if chain_id not in PAIRING_CHAIN_IDS.get(chain, set()):
            raise SetupInputError(f"The connected wallet is on chain {chain_id}, not {chain.value}.")
        if not self.address_validator(chain, account):
            raise SetupInputError(f"The connected account {account} is not a valid {chain.value} address.")
        return account

    def _collect_receiver(self, session: SetupSession, text: str):
        if not self.address_validator(session.chain, text):
            raise SetupInputError(f"'{text}' is not a valid {session.chain.value} address.")
        if text.lower() == (session.address or "").lower():
            raise SetupInputError("The receiver must differ from the wallet being swept.")
        session.receiver_address = text
        session.step = SetupStep.COLLECT_THRESHOLD

    def _collect_threshold(self, session: SetupSession, text: str):
        try:
            threshold = int(text.replace(",", "").replace("_", ""))
        except ValueError:
            raise SetupInputError("The threshold must be a whole number of minor units, e.g. 1000000.")
        if threshold < 0:
            raise SetupInputError("The threshold cannot be negative.")
        session.threshold = threshold
        session.step = SetupStep.DONE
