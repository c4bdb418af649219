"""
Sweep decision

Pure rules deciding whether a wallet should be swept and for how much.
"""

from dataclasses import dataclass

from shared.crypto.credentials import CredentialKind


class DecisionReason:
    BELOW_THRESHOLD = "below_threshold"
    EMPTY = "empty"
    AMOUNT_NOT_POSITIVE = "amount_not_positive"
    SWEEP = "sweep"


@dataclass(frozen=True)
class SweepDecision:
    should_sweep: bool
    amount: int
    reason: str


def decide(balance: int, threshold: int, estimated_fee: int) -> SweepDecision:
    """Sweep when the balance has reached the threshold and something is left after the fee.

    A zero threshold means "sweep any positive balance". All values are minor units.
    """
    balance, threshold, estimated_fee = int(balance), int(threshold), int(estimated_fee)
    if balance <= 0:
        return SweepDecision(False, 0, DecisionReason.EMPTY)
    if balance < threshold:
        return SweepDecision(False, 0, DecisionReason.BELOW_THRESHOLD)
    amount = balance - estimated_fee
    if amount <= 0:
        return SweepDecision(False, 0, DecisionReason.AMOUNT_NOT_POSITIVE)
    return SweepDecision(True, amount, DecisionReason.SWEEP)


def is_auto_sweepable(kind) -> bool:
    """Delegated wallets hold no key material, so they can only be swept by hand."""
    return CredentialKind(kind) is not CredentialKind.DELEGATED
