from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import sys

import httpx
import structlog

from uptime_watch.bot import CommandListener
from uptime_watch.config import ConfigError, MonitorConfig, load_config
from uptime_watch.dispatcher import NotificationDispatcher
from uptime_watch.monitor import TargetMonitor
from uptime_watch.probe import make_http_probe
from uptime_watch.query import QueryService
from uptime_watch.state import SharedState
from uptime_watch.telegram import TelegramConfig


logger = structlog.get_logger("uptime-watch")


def configure_logging(level_name: str) -> None:
    level = getattr(logging, str(level_name).upper(), logging.INFO)
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )
    # Telegram token is embedded in Bot API URLs; keep request logs out.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def build_monitors(
    config: MonitorConfig, state: SharedState, dispatcher: NotificationDispatcher, client: httpx.AsyncClient
) -> list[TargetMonitor]:
    probe = make_http_probe(client, timeout_seconds=config.probe_timeout_seconds)
    return [
        TargetMonitor(
            url,
            interval_seconds=config.check_interval_seconds,
            failure_threshold=config.failure_threshold,
            state=state,
            dispatcher=dispatcher,
            probe=probe,
        )
        for url in config.servers
    ]


async def run_once(config: MonitorConfig) -> int:
    state = SharedState()
    telegram_cfg = TelegramConfig(bot_token=config.telegram_token, chat_id=config.telegram_chat_id)
    async with httpx.AsyncClient() as client:
        dispatcher = NotificationDispatcher(client, telegram_cfg)
        monitors = build_monitors(config, state, dispatcher, client)
        await asyncio.gather(*(m.tick() for m in monitors))
        print(await QueryService(state, config.servers).uptime_report())
    return 0


async def run_service(config: MonitorConfig) -> int:
    state = SharedState()
    telegram_cfg = TelegramConfig(bot_token=config.telegram_token, chat_id=config.telegram_chat_id)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows event loops; KeyboardInterrupt still ends asyncio.run.
            pass

    async with httpx.AsyncClient() as client:
        dispatcher = NotificationDispatcher(client, telegram_cfg)
        monitors = build_monitors(config, state, dispatcher, client)
        listener = CommandListener(
            client,
            telegram_cfg,
            QueryService(state, config.servers),
            poll_timeout_seconds=config.poll_timeout_seconds,
        )

        tasks = [asyncio.create_task(m.run(), name=f"monitor:{m.endpoint}") for m in monitors]
        tasks.append(asyncio.create_task(listener.run(), name="command-listener"))
        logger.info(
            "Monitoring started",
            servers=len(config.servers),
            interval_seconds=config.check_interval_seconds,
            failure_threshold=config.failure_threshold,
        )

        try:
            await stop.wait()
            logger.info("Shutdown requested")
        finally:
            for task in tasks:
                task.cancel()
            results = await asyncio.gather(*tasks, return_exceptions=True)
            for task, result in zip(tasks, results):
                if isinstance(result, Exception):
                    logger.error("Task ended with error", task=task.get_name(), error=repr(result))
    logger.info("Monitoring stopped")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Endpoint uptime monitor with Telegram alerts")
    parser.add_argument(
        "--config",
        default=os.getenv("UPTIME_WATCH_CONFIG", "config.yaml"),
        help="Path to YAML config",
    )
    parser.add_argument("--once", action="store_true", help="Check every server once, print the report and exit")
    parser.add_argument("--log-level", default=None, help="Logging level (INFO, WARNING, ...)")
    args = parser.parse_args(argv)

    configure_logging(args.log_level or os.getenv("LOG_LEVEL", "INFO"))
    try:
        config = load_config(args.config)
    except ConfigError as exc:
        logger.error("Configuration error", error=str(exc))
        return 2
    if args.log_level is None:
        configure_logging(config.log_level)

    logger.info("Loaded configuration", servers=len(config.servers), config=str(args.config))
    if args.once:
        return asyncio.run(run_once(config))
    try:
        return asyncio.run(run_service(config))
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    sys.exit(main())
