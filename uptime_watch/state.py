"""
In-memory monitoring state shared by every endpoint loop and the query path.

StatsStore and AlertStateTracker are plain containers with no locking of their
own. SharedState owns one of each and is the only object tasks touch; every
operation takes the lock for the duration of a synchronous update and never
across an await, so a slow probe or a slow Telegram send cannot block other
endpoints.

Entries are created lazily on the first recorded check and never removed.
Read operations return copies and never insert.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class EndpointStats:
    total_checks: int = 0
    failed_checks: int = 0
    last_failure_time: datetime | None = None

    @property
    def availability(self) -> float | None:
        """Success ratio in percent, or None when nothing has been checked yet."""
        if self.total_checks <= 0:
            return None
        return 100.0 * (self.total_checks - self.failed_checks) / self.total_checks


@dataclass
class EndpointAlertState:
    consecutive_failures: int = 0
    last_notification_time: datetime | None = None


class AlertPhase(str, Enum):
    NORMAL = "normal"
    ALERTING = "alerting"


class AlertTransition(str, Enum):
    NONE = "none"
    DOWN = "down"
    RECOVERED = "recovered"


@dataclass(frozen=True)
class AlertDecision:
    endpoint: str
    transition: AlertTransition
    # Failure count after applying the check (0 after a success).
    consecutive_failures: int
    # Length of the run that a success just ended; 0 on failures.
    ended_streak: int = 0
    # Previous alert time, captured before this decision stamped a new one.
    previous_notification_time: datetime | None = None

    @property
    def should_notify(self) -> bool:
        return self.transition is not AlertTransition.NONE


class StatsStore:
    """Cumulative check counters per endpoint."""

    def __init__(self) -> None:
        self._stats: dict[str, EndpointStats] = {}

    def record(self, endpoint: str, ok: bool, now: datetime) -> EndpointStats:
        stats = self._stats.get(endpoint)
        if stats is None:
            stats = self._stats[endpoint] = EndpointStats()
        stats.total_checks += 1
        if not ok:
            stats.failed_checks += 1
            stats.last_failure_time = now
        return replace(stats)

    def get(self, endpoint: str) -> EndpointStats | None:
        stats = self._stats.get(endpoint)
        return replace(stats) if stats is not None else None

    def snapshot(self) -> dict[str, EndpointStats]:
        return {endpoint: replace(stats) for endpoint, stats in self._stats.items()}

    def __contains__(self, endpoint: object) -> bool:
        return endpoint in self._stats

    def __len__(self) -> int:
        return len(self._stats)


class AlertStateTracker:
    """
    Edge-triggered alert state machine, one entry per endpoint.

    NORMAL -> ALERTING on the check where consecutive failures first reach the
    threshold (DOWN). ALERTING -> NORMAL on the first success after that
    (RECOVERED). Every other check is a self-loop with no notification.
    """

    def __init__(self) -> None:
        self._states: dict[str, EndpointAlertState] = {}

    def apply(self, endpoint: str, ok: bool, *, threshold: int, now: datetime) -> AlertDecision:
        threshold = max(1, int(threshold))
        state = self._states.get(endpoint)
        if state is None:
            state = self._states[endpoint] = EndpointAlertState()
        previous_notification_time = state.last_notification_time

        if ok:
            ended_streak = state.consecutive_failures
            was_alerting = ended_streak >= threshold
            state.consecutive_failures = 0
            transition = AlertTransition.RECOVERED if was_alerting else AlertTransition.NONE
        else:
            ended_streak = 0
            state.consecutive_failures += 1
            transition = AlertTransition.DOWN if state.consecutive_failures == threshold else AlertTransition.NONE

        if transition is not AlertTransition.NONE:
            state.last_notification_time = now

        return AlertDecision(
            endpoint=endpoint,
            transition=transition,
            consecutive_failures=state.consecutive_failures,
            ended_streak=ended_streak,
            previous_notification_time=previous_notification_time,
        )

    def get(self, endpoint: str) -> EndpointAlertState | None:
        state = self._states.get(endpoint)
        return replace(state) if state is not None else None

    def phase(self, endpoint: str, *, threshold: int) -> AlertPhase:
        state = self._states.get(endpoint)
        if state is not None and state.consecutive_failures >= max(1, int(threshold)):
            return AlertPhase.ALERTING
        return AlertPhase.NORMAL


@dataclass(frozen=True)
class EndpointReport:
    endpoint: str
    stats: EndpointStats
    consecutive_failures: int
    last_notification_time: datetime | None


@dataclass(frozen=True)
class StateSnapshot:
    uptime: timedelta
    stats: dict[str, EndpointStats]


class SharedState:
    def __init__(
        self,
        *,
        clock: Callable[[], datetime] = _utcnow,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._lock = asyncio.Lock()
        self._stats = StatsStore()
        self._alerts = AlertStateTracker()
        self._clock = clock
        self._monotonic = monotonic
        self.started_at = clock()
        self._started_monotonic = monotonic()

    def uptime(self) -> timedelta:
        return timedelta(seconds=max(0.0, self._monotonic() - self._started_monotonic))

    async def record_check(self, endpoint: str, ok: bool) -> EndpointStats:
        """Count one completed probe: total always, failures and last failure time on error."""
        async with self._lock:
            return self._stats.record(endpoint, ok, self._clock())

    async def apply_alert(self, endpoint: str, ok: bool, *, threshold: int) -> AlertDecision:
        async with self._lock:
            return self._alerts.apply(endpoint, ok, threshold=threshold, now=self._clock())

    async def snapshot(self) -> StateSnapshot:
        async with self._lock:
            return StateSnapshot(uptime=self.uptime(), stats=self._stats.snapshot())

    async def endpoint_report(self, endpoint: str) -> EndpointReport | None:
        """Stats plus alert state for a known endpoint; None (and no insert) otherwise."""
        async with self._lock:
            stats = self._stats.get(endpoint)
            if stats is None:
                return None
            alert = self._alerts.get(endpoint) or EndpointAlertState()
            return EndpointReport(
                endpoint=endpoint,
                stats=stats,
                consecutive_failures=alert.consecutive_failures,
                last_notification_time=alert.last_notification_time,
            )

    async def phase(self, endpoint: str, *, threshold: int) -> AlertPhase:
        async with self._lock:
            return self._alerts.phase(endpoint, threshold=threshold)

    async def known_endpoints(self) -> list[str]:
        async with self._lock:
            return list(self._stats.snapshot())
