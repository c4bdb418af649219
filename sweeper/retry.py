"""
Retry/backoff for sweep attempts

Each wallet's attempt lifecycle is an explicit record that the scheduler
advances with its own clock:

    IDLE -> ATTEMPTING -> SUCCEEDED
                       -> FAILED_TERMINAL
                       -> FAILED_TRANSIENT -> (due) -> ATTEMPTING ...

A transient failure is retried after ``base_delay * (retry_count + 1)``
seconds until ``max_retries`` re-attempts have been spent; the next transient
failure then ends the lifecycle as ``max_retries_reached``.
"""

import enum
from dataclasses import dataclass
from typing import Optional

from shared.errors import classify, is_retryable

MAX_RETRIES_REACHED = "max_retries_reached"


class AttemptState(enum.Enum):
    IDLE = "idle"
    ATTEMPTING = "attempting"
    SUCCEEDED = "succeeded"
    FAILED_TERMINAL = "failed_terminal"
    FAILED_TRANSIENT = "failed_transient"


FINAL_STATES = {AttemptState.SUCCEEDED, AttemptState.FAILED_TERMINAL}


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    base_delay: float = 10.0

    def delay_for(self, retry_count: int) -> float:
        return self.base_delay * (retry_count + 1)


@dataclass
class SweepAttemptContext:
    wallet_id: int
    state: AttemptState = AttemptState.IDLE
    retry_count: int = 0
    next_eligible_at: Optional[float] = None
    last_error: Optional[str] = None
    last_classification: Optional[str] = None

    @property
    def finished(self) -> bool:
        return self.state in FINAL_STATES


class InvalidTransition(Exception):
    pass


class RetryController:
    """Drives one wallet's SweepAttemptContext through its lifecycle."""

    def __init__(self, wallet_id: int, policy: RetryPolicy = None):
        self.policy = policy or RetryPolicy()
        self.context = SweepAttemptContext(wallet_id=wallet_id)

    @property
    def state(self) -> AttemptState:
        return self.context.state

    def begin(self) -> SweepAttemptContext:
        if self.context.state not in (AttemptState.IDLE, AttemptState.FAILED_TRANSIENT):
            raise InvalidTransition(f"cannot start an attempt from {self.context.state.value}")
        self.context.state = AttemptState.ATTEMPTING
        self.context.next_eligible_at = None
        return self.context

    def record_success(self) -> SweepAttemptContext:
        self._require_attempting()
        self.context.state = AttemptState.SUCCEEDED
        self.context.last_error = None
        self.context.last_classification = None
        return self.context

    def record_failure(self, error: BaseException, now: float) -> SweepAttemptContext:
        self._require_attempting()
        context = self.context
        context.last_error = str(error)
        if not is_retryable(error):
            context.state = AttemptState.FAILED_TERMINAL
            context.last_classification = classify(error)
        elif context.retry_count < self.policy.max_retries:
            context.state = AttemptState.FAILED_TRANSIENT
            context.last_classification = classify(error)
            context.next_eligible_at = now + self.policy.delay_for(context.retry_count)
            context.retry_count += 1
        else:
            context.state = AttemptState.FAILED_TERMINAL
            context.last_classification = MAX_RETRIES_REACHED
        return context

    def is_due(self, now: float) -> bool:
        return (self.context.state is AttemptState.FAILED_TRANSIENT
                and self.context.next_eligible_at is not None
                and now >= self.context.next_eligible_at)

    def _require_attempting(self):
        if self.context.state is not AttemptState.ATTEMPTING:
            raise InvalidTransition(f"no attempt in progress (state {self.context.state.value})")
