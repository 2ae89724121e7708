"""
Per-endpoint monitoring loop.

One TargetMonitor runs per configured endpoint as its own asyncio task. Each
tick probes the endpoint, records the outcome in SharedState, applies the
alert state machine and, on a DOWN or RECOVERED transition, sends one message
through the NotificationDispatcher. Ticks for one endpoint never overlap;
different endpoints are not ordered relative to each other.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Awaitable, Callable

import structlog

from .dispatcher import NotificationDispatcher
from .probe import Probe, ProbeResult
from .query import format_duration
from .state import AlertDecision, AlertTransition, SharedState

logger = structlog.get_logger(__name__)


def build_down_message(endpoint: str, reason: str, decision: AlertDecision) -> str:
    return (
        f"Server {endpoint} is down! Error: {reason}\n"
        f"Failed {decision.consecutive_failures} consecutive times."
    )


def build_recovery_message(endpoint: str, decision: AlertDecision, *, now: datetime | None = None) -> str:
    lines = [f"Server {endpoint} is back online!"]
    lines.append(f"Outage: {decision.ended_streak} consecutive failed checks.")
    down_at = decision.previous_notification_time
    if down_at is not None:
        now = now or datetime.now(timezone.utc)
        lines.append(f"Down for: {format_duration(int((now - down_at).total_seconds()))}")
    return "\n".join(lines)


class TargetMonitor:
    def __init__(
        self,
        endpoint: str,
        *,
        interval_seconds: float,
        failure_threshold: int,
        state: SharedState,
        dispatcher: NotificationDispatcher,
        probe: Probe,
        clock: Callable[[], float] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        self.endpoint = endpoint
        self.interval_seconds = float(interval_seconds)
        self.failure_threshold = max(1, int(failure_threshold))
        self.state = state
        self.dispatcher = dispatcher
        self.probe = probe
        # Defaults to the running loop's monotonic clock.
        self.clock = clock
        self.sleep = sleep
        self.ticks = 0
        self.log = logger.bind(endpoint=endpoint)

    async def _run_probe(self) -> ProbeResult:
        try:
            return await self.probe(self.endpoint)
        except Exception as exc:
            err = f"{type(exc).__name__}: {exc}"
            self.log.exception("Probe crashed", error=err)
            return ProbeResult(ok=False, reason=f"probe_crashed: {err}")

    async def tick(self) -> AlertDecision:
        """Probe once, update stats and alert state, notify on a transition."""
        result = await self._run_probe()
        self.ticks += 1

        stats = await self.state.record_check(self.endpoint, result.ok)
        decision = await self.state.apply_alert(self.endpoint, result.ok, threshold=self.failure_threshold)

        if result.ok:
            self.log.debug("Check ok", total_checks=stats.total_checks, details=result.details)
        else:
            self.log.info(
                "Check failed",
                reason=result.reason,
                consecutive_failures=decision.consecutive_failures,
                threshold=self.failure_threshold,
                failed_checks=stats.failed_checks,
                total_checks=stats.total_checks,
                details=result.details,
            )

        if decision.transition is AlertTransition.DOWN:
            message = build_down_message(self.endpoint, result.reason, decision)
        elif decision.transition is AlertTransition.RECOVERED:
            message = build_recovery_message(self.endpoint, decision)
        else:
            return decision

        self.log.warning(
            "Alert transition",
            transition=decision.transition.value,
            consecutive_failures=decision.consecutive_failures,
            ended_streak=decision.ended_streak,
        )
        sent_ok = await self.dispatcher.send(message)
        if not sent_ok:
            self.log.error("Alert not delivered", transition=decision.transition.value)
        return decision

    async def run(self) -> None:
        """
        Tick forever on a fixed schedule. Deadlines advance by exactly one
        period per tick, so an overrunning tick is followed immediately by the
        next one instead of shifting every later tick.
        """
        clock = self.clock or asyncio.get_running_loop().time
        deadline = clock()
        self.log.info("Monitor started", interval_seconds=self.interval_seconds, threshold=self.failure_threshold)
        try:
            while True:
                delay = deadline - clock()
                if delay > 0:
                    await self.sleep(delay)
                deadline += self.interval_seconds
                try:
                    await self.tick()
                except Exception:
                    self.log.exception("Tick crashed")
        finally:
            self.log.info("Monitor stopped", ticks=self.ticks)
