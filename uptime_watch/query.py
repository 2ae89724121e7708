"""Read-only statistics replies for inbound bot commands."""

from __future__ import annotations

from datetime import datetime
from typing import Sequence

from .state import EndpointReport, EndpointStats, SharedState
from .telegram import TelegramCommand


COMMAND_DESCRIPTIONS: dict[str, str] = {
    "uptime": "show availability statistics",
    "stats": "show statistics for specific server",
    "help": "show this help",
}


def format_duration(secs: int) -> str:
    secs = max(0, int(secs))
    return (
        f"{secs // 86400} days, {(secs % 86400) // 3600} hours, "
        f"{(secs % 3600) // 60} minutes, {secs % 60} seconds"
    )


def format_availability(stats: EndpointStats | None) -> str:
    availability = stats.availability if stats is not None else None
    if availability is None:
        return "no data"
    return f"{availability:.2f}%"


def format_timestamp(ts: datetime | None) -> str:
    if ts is None:
        return "never"
    return ts.astimezone().strftime("%Y-%m-%d %H:%M:%S %Z")


def help_text() -> str:
    lines = ["Available commands:"]
    for name, description in COMMAND_DESCRIPTIONS.items():
        usage = f"/{name} <server>" if name == "stats" else f"/{name}"
        lines.append(f"{usage} - {description}")
    return "\n".join(lines)


class QueryService:
    """Answers Uptime and Stats queries from SharedState without mutating it.

    The endpoint universe comes from configuration, so endpoints that have not
    been checked yet are still listed (as "no data") and named in not-found
    replies.
    """

    def __init__(self, state: SharedState, endpoints: Sequence[str]):
        self.state = state
        self.endpoints = list(endpoints)

    async def uptime_report(self) -> str:
        snap = await self.state.snapshot()
        lines = [
            "Monitoring statistics:",
            f"Uptime: {format_duration(int(snap.uptime.total_seconds()))}",
            "Monitored servers:",
        ]
        ordered = self.endpoints + [e for e in snap.stats if e not in self.endpoints]
        for endpoint in ordered:
            stats = snap.stats.get(endpoint)
            lines.append(
                f"{endpoint} - availability: {format_availability(stats)}, "
                f"checks: {stats.total_checks if stats else 0}, "
                f"failures: {stats.failed_checks if stats else 0}, "
                f"last failure: {format_timestamp(stats.last_failure_time if stats else None)}"
            )
        return "\n".join(lines)

    async def lookup(self, endpoint: str) -> EndpointReport | None:
        return await self.state.endpoint_report(endpoint.strip())

    def not_found_text(self, endpoint: str) -> str:
        servers = "\n".join(self.endpoints)
        return f"Server '{endpoint}' not found in monitoring list. Available servers:\n{servers}"

    async def stats_report(self, endpoint: str) -> str:
        report = await self.lookup(endpoint)
        if report is None:
            return self.not_found_text(endpoint.strip())
        stats = report.stats
        return "\n".join(
            [
                f"Statistics for {report.endpoint}:",
                f"Availability: {format_availability(stats)}",
                f"Total checks: {stats.total_checks}",
                f"Total failures: {stats.failed_checks}",
                f"Current consecutive failures: {report.consecutive_failures}",
                f"Last failure: {format_timestamp(stats.last_failure_time)}",
            ]
        )

    async def handle(self, command: TelegramCommand) -> str:
        """Reply text for one parsed command."""
        if command.name == "uptime":
            return await self.uptime_report()
        if command.name == "stats":
            if not command.args:
                servers = "\n".join(self.endpoints)
                return f"Usage: /stats <server>\nAvailable servers:\n{servers}"
            return await self.stats_report(command.arg_text)
        if command.name in ("help", "start"):
            return help_text()
        return f"Unknown command: /{command.name}\nType /help for available commands"
