# src/costinel/main.py
import asyncio
import logging
import signal
import sys
from typing import Optional, Sequence

import structlog
from dotenv import load_dotenv
from redis.exceptions import RedisError

from costinel.alerts.dedup import CooldownDeduper
from costinel.config import MonitorConfig, Settings, load_config, settings_from_env
from costinel.data.cooldown_redis import RedisCooldownStore
from costinel.ingest.browser import BrowserConfig, PlaywrightExtractor
from costinel.ingest.products import ProductProbe
from costinel.ingest.quotes import TencentQuoteSource
from costinel.ingest.retry import RetryConfig, RetryingFetcher
from costinel.notify.console import ConsoleChannel
from costinel.notify.fanout import MessageChannel, NotificationFanout
from costinel.notify.telegram import TelegramChannel, config_from_env
from costinel.orchestrator import CheckOrchestrator
from costinel.utils.errors import ConfigurationError
from costinel.utils.market_calendar import HolidayCnCalendar, MarketGate
from costinel.utils.time import utc_now_s
from costinel.utils.types import PassSummary, Subject

log = structlog.get_logger()


# ---------------------------
# Utilities
# ---------------------------

def configure_logging(level: str = "info") -> None:
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S", utc=False),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level.upper(), logging.INFO)),
        cache_logger_on_first_use=False,
    )


def build_channels(settings: Settings) -> list[MessageChannel]:
    channels: list[MessageChannel] = []
    try:
        channels.append(TelegramChannel(config_from_env()))
        log.info("telegram_enabled")
    except ConfigurationError:
        log.warning("telegram_disabled_missing_env")
    if settings.console_alerts or not channels:
        channels.append(ConsoleChannel())
    return channels


async def run_all(passes: Sequence[tuple[CheckOrchestrator, list[Subject]]]) -> PassSummary:
    """Run every configured pass (stocks, products) and merge the summaries."""
    summaries = [await orch.run_pass(subjects) for orch, subjects in passes]
    summary = summaries[0]
    for s in summaries[1:]:
        summary = summary.merge(s)
    return summary


def log_summary(summary: PassSummary) -> None:
    if summary.skipped:
        log.info("pass_skipped", reason=summary.reason)
        return
    log.info(
        "monitor_done",
        total=summary.total,
        succeeded=summary.succeeded,
        failed=summary.failed,
        fetch_failures=summary.fetch_failures,
        config_errors=summary.config_errors,
        alerted=summary.alerted,
        note=summary.reason,
    )
    for sid, o in summary.outcomes.items():
        if not o.succeeded:
            log.warning("subject_failed", subject=sid, status=o.status, err=o.error)


def _install_stop_handlers(stop: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            # Windows / non-main thread: Ctrl-C still raises KeyboardInterrupt
            pass


# ---------------------------
# Main
# ---------------------------

async def main(settings: Optional[Settings] = None, cfg: Optional[MonitorConfig] = None) -> int:
    settings = settings or settings_from_env()
    if cfg is None:
        try:
            cfg = load_config(settings.config_path)
        except ConfigurationError as e:
            log.error("config_invalid", err=str(e))
            return 1
    if cfg.empty:
        log.error("no_subjects_configured", path=str(settings.config_path))
        return 1

    deduper = CooldownDeduper(default_cooldown_s=settings.default_cooldown_s)
    channels = build_channels(settings)
    fanout = NotificationFanout(channels)
    fetcher = RetryingFetcher(RetryConfig(
        max_attempts=settings.fetch_max_attempts,
        delay_s=settings.fetch_retry_delay_s,
        timeout_s=settings.fetch_timeout_s,
    ))
    store = RedisCooldownStore(settings.cooldown_redis_url) if settings.cooldown_redis_url else None

    quotes: Optional[TencentQuoteSource] = None
    extractor: Optional[PlaywrightExtractor] = None
    passes: list[tuple[CheckOrchestrator, list[Subject]]] = []

    if cfg.stocks:
        quotes = TencentQuoteSource()

        async def fetch_quote(subject: Subject):
            return await quotes.quote(subject.id)

        passes.append((CheckOrchestrator(
            fetch_sample=fetch_quote,
            deduper=deduper,
            fanout=fanout,
            fetcher=fetcher,
            gate=MarketGate(HolidayCnCalendar()),
            name="stocks",
        ), cfg.stocks))

    if cfg.products:
        extractor = PlaywrightExtractor(BrowserConfig(executable_path=settings.chrome_path))
        probe = ProductProbe(extractor, cfg.sites)
        passes.append((CheckOrchestrator(
            fetch_sample=probe.sample,
            deduper=deduper,
            fanout=fanout,
            fetcher=fetcher,
            name="products",
        ), cfg.products))

    stop = asyncio.Event()
    _install_stop_handlers(stop)
    log.info("monitor_started", stocks=len(cfg.stocks), products=len(cfg.products),
             channels=fanout.names, interval_s=settings.check_interval_s)

    try:
        if store is not None:
            try:
                await store.load_into(deduper, now=utc_now_s())
            except RedisError as e:
                log.warning("cooldown_store_unavailable", err=str(e))
                store = None

        while True:
            summary = await run_all(passes)
            await fanout.drain()
            if store is not None:
                try:
                    await store.save_from(deduper)
                except RedisError as e:
                    log.warning("cooldown_store_save_failed", err=str(e))
            log_summary(summary)

            if settings.check_interval_s <= 0:
                return summary.exit_code()
            try:
                await asyncio.wait_for(stop.wait(), timeout=settings.check_interval_s)
                log.info("monitor_stopping")
                return summary.exit_code()
            except asyncio.TimeoutError:
                continue
    finally:
        # graceful shutdown to avoid unclosed sessions
        for ch in channels:
            if isinstance(ch, TelegramChannel):
                await ch.stop()
        if quotes is not None:
            await quotes.stop()
        if extractor is not None:
            await extractor.stop()
        if store is not None:
            await store.stop()


def run() -> None:
    load_dotenv()
    try:
        settings = settings_from_env()
    except ConfigurationError as e:
        configure_logging()
        log.error("settings_invalid", err=str(e))
        sys.exit(1)
    configure_logging(settings.log_level)
    try:
        code = asyncio.run(main(settings))
    except KeyboardInterrupt:
        code = 130
    sys.exit(code)


if __name__ == "__main__":
    run()
