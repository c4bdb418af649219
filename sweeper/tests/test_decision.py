import pytest

from shared.crypto.credentials import CredentialKind
from sweeper.decision import DecisionReason, SweepDecision, decide, is_auto_sweepable


def test_sweeps_balance_minus_fee():
    assert decide(1_000_000, 0, 100_000) == SweepDecision(True, 900_000, DecisionReason.SWEEP)


def test_balance_equal_to_threshold_sweeps():
    decision = decide(500, 500, 100)
    assert decision.should_sweep
    assert decision.amount == 400


def test_below_threshold():
    decision = decide(499, 500, 100)
    assert not decision.should_sweep
    assert decision.reason == DecisionReason.BELOW_THRESHOLD


def test_fee_eats_everything():
    decision = decide(50_000, 0, 100_000)
    assert not decision.should_sweep
    assert decision.amount == 0
    assert decision.reason == DecisionReason.AMOUNT_NOT_POSITIVE


def test_fee_equal_to_balance():
    assert decide(100_000, 0, 100_000).reason == DecisionReason.AMOUNT_NOT_POSITIVE


@pytest.mark.parametrize("balance", [0, -1])
def test_empty_wallet_never_sweeps_even_with_zero_threshold(balance):
    assert decide(balance, 0, 0).reason == DecisionReason.EMPTY


def test_huge_values_keep_precision():
    balance = 10 ** 30 + 1
    assert decide(balance, 10 ** 30, 1).amount == 10 ** 30


def test_deterministic():
    assert decide(7, 3, 2) == decide(7, 3, 2)


def test_delegated_is_not_auto_sweepable():
    assert not is_auto_sweepable(CredentialKind.DELEGATED)
    assert not is_auto_sweepable("delegated")
    assert is_auto_sweepable(CredentialKind.PRIVATE_KEY)
    assert is_auto_sweepable(CredentialKind.MNEMONIC)
