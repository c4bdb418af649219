"""
Sweep Scheduler
Periodically loads every monitored wallet and runs one sweep attempt per
wallet on a worker pool. Transient failures are re-attempted when their
retry context falls due; a wallet never has two attempts in flight.
"""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Set

import schedule

from db.ledger import Ledger
from db.models import Wallet
from shared.errors import SweepError
from shared.notification_service import NotificationCategory, gave_up_message
from sweeper.retry import MAX_RETRIES_REACHED, AttemptState, RetryController, RetryPolicy
from sweeper.service import AttemptOutcome, SweepService

logger = logging.getLogger(__name__)


@dataclass
class TickSummary:
    total: int = 0
    launched: int = 0
    skipped_in_flight: int = 0


@dataclass
class SweepStats:
    ticks: int = 0
    swept: int = 0
    skipped: int = 0
    retries_scheduled: int = 0
    failed: int = 0
    gave_up: int = 0
    last_tick: Optional[TickSummary] = None
    failures_by_classification: Dict[str, int] = field(default_factory=dict)


class SweepScheduler:
    """Scheduler for wallet sweep attempts"""

    def __init__(self, service: SweepService, ledger: Ledger, interval_seconds: int = 60,
                 max_workers: int = 8, policy: RetryPolicy = None, notify_on_give_up: bool = False,
                 poll_interval: float = 1.0, clock: Callable[[], float] = time.monotonic):
        self.service = service
        self.ledger = ledger
        self.interval_seconds = interval_seconds
        self.policy = policy or RetryPolicy()
        self.notify_on_give_up = notify_on_give_up
        self.poll_interval = poll_interval
        self.clock = clock

        self.scheduler = schedule.Scheduler()
        self.executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="sweep")
        self._lock = threading.Lock()
        # Live retry contexts: present while an attempt runs or waits for its retry
        self._controllers: Dict[int, RetryController] = {}
        self._in_flight: Set[Future] = set()
        self._stopping = threading.Event()
        self._stats = SweepStats()

    # ===== Lifecycle =====

    def start(self, run_immediately: bool = True):
        logger.info(f"🚀 Starting sweep scheduler (every {self.interval_seconds}s)")
        self.scheduler.every(self.interval_seconds).seconds.do(self.tick)
        if run_immediately:
            self.tick()

    def run(self):
        """Block running ticks and due retries until stop() is called."""
        self.start()
        while not self._stopping.is_set():
            try:
                self.scheduler.run_pending()
                self.run_due_retries()
            except Exception as e:
                logger.error(f"Error in scheduler loop: {e}", exc_info=True)
            self._stopping.wait(self.poll_interval)

    def stop(self, grace_period: float = 30.0) -> bool:
        """Stop ticking, drop pending retries and wait for in-flight attempts.

        Returns True when every in-flight attempt finished within the grace period.
        """
        if self._stopping.is_set():
            return True
        logger.info("🛑 Stopping sweep scheduler")
        self._stopping.set()
        self.scheduler.clear()

        with self._lock:
            waiting = [wallet_id for wallet_id, controller in self._controllers.items()
                       if controller.state is AttemptState.FAILED_TRANSIENT]
            for wallet_id in waiting:
                del self._controllers[wallet_id]
            in_flight = list(self._in_flight)
        if waiting:
            logger.info(f"Cancelled {len(waiting)} pending retries")

        done, not_done = wait(in_flight, timeout=grace_period)
        if not_done:
            logger.warning(f"Abandoning {len(not_done)} sweep attempts still running after {grace_period}s")
        self.executor.shutdown(wait=False, cancel_futures=True)
        logger.info("✅ Sweep scheduler stopped")
        return not not_done

    @property
    def stopping(self) -> bool:
        return self._stopping.is_set()

    # ===== Ticks =====

    def tick(self) -> Optional[TickSummary]:
        """Launch an attempt for every wallet without a live retry context."""
        if self._stopping.is_set():
            return None
        try:
            wallets = self.ledger.list_wallets()
        except Exception as e:
            logger.error(f"Could not load wallets, skipping tick: {e}", exc_info=True)
            return None

        summary = TickSummary(total=len(wallets))
        for wallet in wallets:
            with self._lock:
                if wallet.id in self._controllers:
                    summary.skipped_in_flight += 1
                    continue
                controller = RetryController(wallet.id, self.policy)
                self._controllers[wallet.id] = controller
            if self._launch(controller, wallet.id, wallet):
                summary.launched += 1

        with self._lock:
            self._stats.ticks += 1
            self._stats.last_tick = summary
        logger.info(f"⏰ Sweep tick: {summary.launched} launched, "
                    f"{summary.skipped_in_flight} skipped (in flight), {summary.total} wallets")
        return summary

    def run_due_retries(self) -> int:
        """Launch re-attempts whose delay has elapsed. Returns how many were launched."""
        if self._stopping.is_set():
            return 0
        now = self.clock()
        with self._lock:
            due = [controller for controller in self._controllers.values() if controller.is_due(now)]
        launched = 0
        for controller in due:
            wallet_id = controller.context.wallet_id
            logger.info(f"🔁 Retrying wallet {wallet_id} (retry {controller.context.retry_count}"
                        f"/{self.policy.max_retries})")
            if self._launch(controller, wallet_id):
                launched += 1
        return launched

    def tick_results(self) -> SweepStats:
        with self._lock:
            return SweepStats(
                ticks=self._stats.ticks,
                swept=self._stats.swept,
                skipped=self._stats.skipped,
                retries_scheduled=self._stats.retries_scheduled,
                failed=self._stats.failed,
                gave_up=self._stats.gave_up,
                last_tick=self._stats.last_tick,
                failures_by_classification=dict(self._stats.failures_by_classification),
            )

    def in_flight_wallet_ids(self) -> List[int]:
        with self._lock:
            return [wallet_id for wallet_id, controller in self._controllers.items()
                    if controller.state is AttemptState.ATTEMPTING]

    def has_live_context(self, wallet_id: int) -> bool:
        with self._lock:
            return wallet_id in self._controllers

    def wait_idle(self, timeout: float = None) -> bool:
        """Wait for the attempts currently running to finish."""
        with self._lock:
            in_flight = list(self._in_flight)
        _, not_done = wait(in_flight, timeout=timeout)
        return not not_done

    # ===== Attempts =====

    def _launch(self, controller: RetryController, wallet_id: int, wallet: Wallet = None) -> bool:
        with self._lock:
            controller.begin()
        try:
            future = self.executor.submit(self._run_attempt, controller, wallet_id, wallet)
        except RuntimeError as e:
            # Executor already shut down
            logger.warning(f"Could not launch attempt for wallet {wallet_id}: {e}")
            self._discard(wallet_id)
            return False
        with self._lock:
            self._in_flight.add(future)
        future.add_done_callback(self._forget_future)
        return True

    def _forget_future(self, future: Future):
        with self._lock:
            self._in_flight.discard(future)

    def _discard(self, wallet_id: int):
        with self._lock:
            self._controllers.pop(wallet_id, None)

    def _run_attempt(self, controller: RetryController, wallet_id: int,
                     wallet: Wallet = None) -> Optional[AttemptOutcome]:
        try:
            if wallet is None:
                # Re-attempts reload the wallet so edits and deletions are seen
                wallet = self.ledger.get_wallet(wallet_id)
                if wallet is None:
                    logger.info(f"Wallet {wallet_id} was deleted, dropping its retry")
                    self._discard(wallet_id)
                    return None
            outcome = self.service.attempt(wallet)
        except Exception as e:
            self._handle_failure(controller, wallet, wallet_id, e)
            return None

        with self._lock:
            controller.record_success()
            self._controllers.pop(wallet_id, None)
            if outcome.swept:
                self._stats.swept += 1
            else:
                self._stats.skipped += 1
        logger.info(f"Wallet {wallet_id} attempt finished: {outcome.status} ({outcome.reason})",
                    extra={"extra": {"wallet_id": wallet_id, "status": outcome.status,
                                     "reason": outcome.reason, "tx_hash": outcome.tx_hash}})
        return outcome

    def _handle_failure(self, controller: RetryController, wallet: Optional[Wallet], wallet_id: int,
                        error: Exception):
        with self._lock:
            context = controller.record_failure(error, self.clock())
            if context.state is AttemptState.FAILED_TRANSIENT:
                self._stats.retries_scheduled += 1
            else:
                self._controllers.pop(wallet_id, None)
                self._stats.failed += 1
                classification = context.last_classification
                self._stats.failures_by_classification[classification] = \
                    self._stats.failures_by_classification.get(classification, 0) + 1
                if classification == MAX_RETRIES_REACHED:
                    self._stats.gave_up += 1

        log_extra = {"extra": {"wallet_id": wallet_id, "classification": context.last_classification,
                               "retry_count": context.retry_count}}
        if context.state is AttemptState.FAILED_TRANSIENT:
            delay = context.next_eligible_at - self.clock()
            logger.warning(f"⚠️ Wallet {wallet_id} transient failure ({context.last_classification}): {error}; "
                           f"retry {context.retry_count}/{self.policy.max_retries} in {delay:.0f}s",
                           extra=log_extra)
        elif context.last_classification == MAX_RETRIES_REACHED:
            logger.error(f"❌ Wallet {wallet_id} gave up after {self.policy.max_retries} retries: {error}",
                         extra=log_extra)
            if self.notify_on_give_up and wallet is not None:
                self.service.notify_owner(
                    wallet,
                    gave_up_message(wallet.chain, wallet.address, str(error)),
                    NotificationCategory.GAVE_UP,
                )
        elif isinstance(error, SweepError):
            logger.error(f"❌ Wallet {wallet_id} failed ({context.last_classification}): {error}", extra=log_extra)
        else:
            logger.error(f"❌ Wallet {wallet_id} failed unexpectedly: {error}", exc_info=error, extra=log_extra)
