import threading
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from shared.crypto.chains import Chain
from shared.errors import CredentialError, NetworkError
from shared.notification_service import NotificationCategory
from sweeper.retry import MAX_RETRIES_REACHED, RetryPolicy
from sweeper.scheduler import SweepScheduler
from sweeper.service import AttemptOutcome, OutcomeStatus


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def wallet(wallet_id=1):
    return SimpleNamespace(id=wallet_id, chain=Chain.TRX, address=f"TWallet{wallet_id}", owner_id=1)


def swept(wallet_id=1):
    return AttemptOutcome(wallet_id, OutcomeStatus.SWEPT, "sweep", balance=10, fee=1, amount=9, tx_hash="tx")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def service():
    return MagicMock()


@pytest.fixture
def ledger():
    ledger = MagicMock()
    ledger.list_wallets.return_value = [wallet(1)]
    ledger.get_wallet.side_effect = lambda wallet_id: wallet(wallet_id)
    return ledger


@pytest.fixture
def scheduler(service, ledger, clock):
    scheduler = SweepScheduler(service, ledger, interval_seconds=60, max_workers=4,
                               policy=RetryPolicy(max_retries=3, base_delay=10.0),
                               poll_interval=0.01, clock=clock)
    yield scheduler
    scheduler.stop(grace_period=5)


def test_wallet_never_has_two_attempts_in_flight(scheduler, service):
    started = threading.Event()
    release = threading.Event()

    def slow_attempt(w):
        started.set()
        release.wait(5)
        return swept(w.id)

    service.attempt.side_effect = slow_attempt

    first = scheduler.tick()
    assert started.wait(5)
    second = scheduler.tick()

    assert first.launched == 1
    assert second.launched == 0
    assert second.skipped_in_flight == 1
    assert scheduler.in_flight_wallet_ids() == [1]

    release.set()
    assert scheduler.wait_idle(5)
    assert service.attempt.call_count == 1
    assert not scheduler.has_live_context(1)
    assert scheduler.tick_results().swept == 1


def test_each_wallet_gets_its_own_attempt(scheduler, service, ledger):
    ledger.list_wallets.return_value = [wallet(1), wallet(2), wallet(3)]
    service.attempt.side_effect = lambda w: swept(w.id)
    summary = scheduler.tick()
    assert scheduler.wait_idle(5)
    assert summary.total == 3 and summary.launched == 3
    assert sorted(call.args[0].id for call in service.attempt.call_args_list) == [1, 2, 3]


def test_transient_failure_is_retried_with_growing_delay(scheduler, service, clock):
    service.attempt.side_effect = [NetworkError("timeout"), NetworkError("timeout"), swept()]

    scheduler.tick()
    assert scheduler.wait_idle(5)
    assert scheduler.has_live_context(1)

    clock.now = 9.9
    assert scheduler.run_due_retries() == 0
    clock.now = 10.0
    assert scheduler.run_due_retries() == 1
    assert scheduler.wait_idle(5)

    clock.now = 29.9
    assert scheduler.run_due_retries() == 0
    clock.now = 30.0
    assert scheduler.run_due_retries() == 1
    assert scheduler.wait_idle(5)

    stats = scheduler.tick_results()
    assert stats.retries_scheduled == 2
    assert stats.swept == 1
    assert service.attempt.call_count == 3
    assert not scheduler.has_live_context(1)


def test_tick_skips_wallet_waiting_for_retry(scheduler, service):
    service.attempt.side_effect = NetworkError("timeout")
    scheduler.tick()
    assert scheduler.wait_idle(5)
    assert scheduler.tick().skipped_in_flight == 1
    assert service.attempt.call_count == 1


def test_gives_up_after_max_retries(service, ledger, clock):
    scheduler = SweepScheduler(service, ledger, policy=RetryPolicy(max_retries=3, base_delay=10.0),
                               notify_on_give_up=True, clock=clock)
    service.attempt.side_effect = NetworkError("timeout")
    try:
        scheduler.tick()
        assert scheduler.wait_idle(5)
        for _ in range(3):
            clock.now += 100
            assert scheduler.run_due_retries() == 1
            assert scheduler.wait_idle(5)

        stats = scheduler.tick_results()
        assert service.attempt.call_count == 4
        assert stats.gave_up == 1
        assert stats.failures_by_classification == {MAX_RETRIES_REACHED: 1}
        assert not scheduler.has_live_context(1)
        service.notify_owner.assert_called_once()
        assert service.notify_owner.call_args.args[2] == NotificationCategory.GAVE_UP
    finally:
        scheduler.stop(grace_period=5)


def test_give_up_is_silent_by_default(scheduler, service, clock):
    service.attempt.side_effect = NetworkError("timeout")
    scheduler.tick()
    assert scheduler.wait_idle(5)
    for _ in range(3):
        clock.now += 100
        scheduler.run_due_retries()
        assert scheduler.wait_idle(5)
    assert scheduler.tick_results().gave_up == 1
    service.notify_owner.assert_not_called()


def test_terminal_failure_is_not_retried(scheduler, service, clock):
    service.attempt.side_effect = CredentialError("delegated")
    scheduler.tick()
    assert scheduler.wait_idle(5)
    clock.now = 1_000
    assert scheduler.run_due_retries() == 0
    stats = scheduler.tick_results()
    assert stats.failed == 1
    assert stats.failures_by_classification == {"credential_error": 1}
    assert not scheduler.has_live_context(1)


def test_unexpected_error_does_not_kill_scheduler(scheduler, service):
    service.attempt.side_effect = [KeyError("boom"), swept()]
    scheduler.tick()
    assert scheduler.wait_idle(5)
    scheduler.tick()
    assert scheduler.wait_idle(5)
    assert scheduler.tick_results().swept == 1


def test_retry_of_deleted_wallet_is_dropped(scheduler, service, ledger, clock):
    service.attempt.side_effect = NetworkError("timeout")
    scheduler.tick()
    assert scheduler.wait_idle(5)

    ledger.get_wallet.side_effect = None
    ledger.get_wallet.return_value = None
    clock.now = 10.0
    scheduler.run_due_retries()
    assert scheduler.wait_idle(5)
    assert service.attempt.call_count == 1
    assert not scheduler.has_live_context(1)


def test_wallet_load_failure_skips_tick(scheduler, ledger, service):
    ledger.list_wallets.side_effect = RuntimeError("database is down")
    assert scheduler.tick() is None
    service.attempt.assert_not_called()


def test_stop_drops_pending_retries(scheduler, service, clock):
    service.attempt.side_effect = NetworkError("timeout")
    scheduler.tick()
    assert scheduler.wait_idle(5)

    assert scheduler.stop(grace_period=5)
    assert scheduler.stopping
    assert not scheduler.has_live_context(1)
    clock.now = 1_000
    assert scheduler.run_due_retries() == 0
    assert scheduler.tick() is None


def test_stop_waits_for_running_attempt(scheduler, service):
    started = threading.Event()
    release = threading.Event()
    finished = []

    def slow_attempt(w):
        started.set()
        release.wait(5)
        finished.append(w.id)
        return swept(w.id)

    service.attempt.side_effect = slow_attempt
    scheduler.tick()
    assert started.wait(5)
    threading.Timer(0.05, release.set).start()

    assert scheduler.stop(grace_period=5)
    assert finished == [1]


def test_run_returns_after_stop(scheduler, ledger):
    ledger.list_wallets.return_value = []
    threading.Timer(0.1, scheduler.stop).start()
    scheduler.run()
    assert scheduler.stopping
    assert scheduler.tick_results().ticks >= 1
