"""
Sweep error taxonomy

Every failure raised inside a wallet's sweep attempt is one of these. The
attempt boundary reads `retryable` to decide between a delayed re-attempt and
giving up until the next scheduler tick.
"""

from typing import List, Optional


class SweepError(Exception):
    """Base class for all sweep failures."""

    retryable = False
    classification = "sweep_error"

    def __init__(self, message: str = "", cause: Optional[BaseException] = None):
        super().__init__(message or self.classification)
        self.cause = cause


class NetworkError(SweepError):
    """Connectivity problem or timeout on a chain call."""

    retryable = True
    classification = "network_error"


class InsufficientFundsError(SweepError):
    """Nothing left to send once the fee is taken out."""

    classification = "insufficient_funds"


class InvalidAddressError(SweepError):
    classification = "invalid_address"


class DerivationError(SweepError):
    """Mnemonic could not be turned into a key.

    `violations` lists the constraints that failed, e.g. ``wrong_word_count``.
    """

    classification = "derivation_error"

    def __init__(self, message: str = "", violations: Optional[List[str]] = None,
                 cause: Optional[BaseException] = None):
        self.violations = list(violations or [])
        if not message and self.violations:
            message = "mnemonic rejected: " + ", ".join(self.violations)
        super().__init__(message, cause=cause)


class CredentialError(SweepError):
    """Credential is malformed, undecryptable or cannot sign automatically."""

    classification = "credential_error"


class BroadcastRejectedError(SweepError):
    """The node refused the transaction.

    Terminal unless the adapter recognised the rejection as a transient
    condition on the node side (busy, behind, stale blockhash).
    """

    classification = "broadcast_rejected"

    def __init__(self, message: str = "", transient: bool = False,
                 cause: Optional[BaseException] = None):
        super().__init__(message, cause=cause)
        self.transient = transient

    @property
    def retryable(self) -> bool:
        return self.transient


class UnsupportedChainError(SweepError):
    classification = "unsupported_chain"


class ConfigurationError(SweepError):
    """An endpoint or client setting is unusable, so a retry cannot succeed."""

    classification = "configuration_error"


def is_retryable(error: BaseException) -> bool:
    return bool(getattr(error, "retryable", False)) if isinstance(error, SweepError) else False


def classify(error: BaseException) -> str:
    if isinstance(error, SweepError):
        return error.classification
    return "unexpected"
