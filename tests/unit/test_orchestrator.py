import asyncio
from datetime import datetime

import pytest

from costinel.alerts.dedup import CooldownDeduper
from costinel.alerts.rules import Below, ChangeUp, Range
from costinel.ingest.retry import RetryConfig, RetryingFetcher
from costinel.notify.fanout import NotificationFanout
from costinel.orchestrator import CheckOrchestrator
from costinel.utils.errors import ConfigurationError
from costinel.utils.market_calendar import MarketGate
from costinel.utils.time import SHANGHAI
from costinel.utils.types import PassSummary, Subject
from tests.helpers.fakes import FakeCalendar, FakeChannel, FakeClock, ScriptedSource, no_sleep, stock_sample

A = Subject(id="SH600519", name="Moutai", kind="stock", conditions=(Below(1500),))
B = Subject(id="SZ002261", name="Talkweb", kind="stock", conditions=(Below(10), Range(9.5, 10.5)), cooldown_s=60)


def _orch(source, channels=None, gate=None, clock=None, attempts=2):
    channel_list = channels if channels is not None else [FakeChannel("tg")]
    return CheckOrchestrator(
        fetch_sample=source,
        deduper=CooldownDeduper(default_cooldown_s=3600, clock=clock or FakeClock()),
        fanout=NotificationFanout(channel_list),
        fetcher=RetryingFetcher(RetryConfig(max_attempts=attempts, delay_s=0, timeout_s=1.0), sleep=no_sleep),
        gate=gate,
    )


@pytest.mark.asyncio
async def test_partial_failure_isolation():
    ch = FakeChannel("tg")
    src = ScriptedSource({
        "SH600519": [ConnectionError("reset by peer")],
        "SZ002261": [stock_sample("SZ002261", value=9.8)],
    })
    summary = await _orch(src, [ch]).run_pass([A, B])

    assert (summary.total, summary.succeeded, summary.failed, summary.alerted) == (2, 1, 1, 1)
    assert summary.outcomes["SH600519"].status == "fetch_failed"
    assert "reset by peer" in summary.outcomes["SH600519"].error
    assert summary.outcomes["SZ002261"].alerted is True
    assert summary.outcomes["SZ002261"].signature == "below:10,range:9.5-10.5"
    assert len(ch.sent) == 1
    assert "Talkweb" in ch.sent[0]
    assert src.calls["SH600519"] == 2  # retried up to the budget
    assert summary.exit_code() == 1


@pytest.mark.asyncio
async def test_outcomes_keyed_in_input_order():
    src = ScriptedSource({
        "SH600519": [stock_sample("SH600519", value=1700.0)],
        "SZ002261": [stock_sample("SZ002261", value=12.0)],
    })
    summary = await _orch(src).run_pass([B, A])
    assert list(summary.outcomes) == ["SZ002261", "SH600519"]


@pytest.mark.asyncio
async def test_no_trigger_no_alert_no_dedup_key():
    orch = _orch(ScriptedSource({"SZ002261": [stock_sample(value=12.0)]}))
    summary = await orch.run_pass([B])
    o = summary.outcomes["SZ002261"]
    assert o.succeeded and not o.triggered and not o.alerted
    assert len(orch.deduper) == 0
    assert summary.exit_code() == 0


@pytest.mark.asyncio
async def test_cooldown_suppresses_repeat_until_expired():
    clock = FakeClock()
    ch = FakeChannel("tg")
    orch = _orch(ScriptedSource({"SZ002261": [stock_sample(value=9.8)]}), [ch], clock=clock)

    first = await orch.run_pass([B])
    second = await orch.run_pass([B])
    assert first.alerted == 1
    assert second.alerted == 0
    assert second.outcomes["SZ002261"].cooldown is True
    assert second.outcomes["SZ002261"].succeeded

    clock.advance(61)  # B's own cooldown is 60s
    third = await orch.run_pass([B])
    assert third.alerted == 1
    assert len(ch.sent) == 2


@pytest.mark.asyncio
async def test_different_combination_alerts_despite_cooldown():
    ch = FakeChannel("tg")
    subject = Subject(id="SZ002261", name="Talkweb", kind="stock",
                      conditions=(Below(10), ChangeUp(5)))
    src = ScriptedSource({"SZ002261": [stock_sample(value=9.8, pct=0.5), stock_sample(value=9.8, pct=6.0)]})
    orch = _orch(src, [ch])
    assert (await orch.run_pass([subject])).alerted == 1
    assert (await orch.run_pass([subject])).alerted == 1
    assert len(ch.sent) == 2


@pytest.mark.asyncio
async def test_delivery_failure_keeps_subject_successful():
    orch = _orch(ScriptedSource({"SZ002261": [stock_sample(value=9.8)]}), [FakeChannel("tg", ok=False)])
    summary = await orch.run_pass([B])
    o = summary.outcomes["SZ002261"]
    assert o.succeeded and o.triggered and not o.alerted
    assert summary.failed == 0 and summary.alerted == 0


@pytest.mark.asyncio
async def test_config_error_distinct_from_fetch_failure():
    broken = Subject(id="SZ000001", name="Ping An", kind="stock", config_error="unknown condition kind 'sideways'")
    src = ScriptedSource({
        "SZ002261": [ConfigurationError("no site configuration for 'x'")],
    })
    summary = await _orch(src).run_pass([broken, B])
    assert summary.outcomes["SZ000001"].status == "config_error"
    assert summary.outcomes["SZ002261"].status == "config_error"
    assert src.calls["SZ002261"] == 1  # never retried
    assert summary.config_errors == 2 and summary.fetch_failures == 0


@pytest.mark.asyncio
async def test_closed_market_skips_without_fetching():
    src = ScriptedSource({"SZ002261": [stock_sample(value=9.8)]})
    saturday = datetime(2025, 10, 18, 10, 0, tzinfo=SHANGHAI)
    gate = MarketGate(FakeCalendar(), clock=lambda: saturday)
    summary = await _orch(src, gate=gate).run_pass([B])
    assert summary.skipped is True
    assert summary.reason == "weekend"
    assert summary.total == 0
    assert src.calls == {}
    assert summary.exit_code() == 0


@pytest.mark.asyncio
async def test_open_market_runs():
    monday = datetime(2025, 10, 20, 10, 0, tzinfo=SHANGHAI)
    gate = MarketGate(FakeCalendar(), clock=lambda: monday)
    src = ScriptedSource({"SZ002261": [stock_sample(value=12.0)]})
    summary = await _orch(src, gate=gate).run_pass([B])
    assert not summary.skipped and summary.succeeded == 1


@pytest.mark.asyncio
async def test_stalled_subject_does_not_block_siblings():
    async def source(subject):
        if subject.id == "SH600519":
            await asyncio.sleep(5)
        return stock_sample(subject.id, value=9.8)

    orch = CheckOrchestrator(
        fetch_sample=source,
        deduper=CooldownDeduper(clock=FakeClock()),
        fanout=NotificationFanout([FakeChannel()]),
        fetcher=RetryingFetcher(RetryConfig(max_attempts=1, timeout_s=0.1)),
    )
    summary = await asyncio.wait_for(orch.run_pass([A, B]), timeout=2.0)
    assert summary.outcomes["SH600519"].status == "fetch_failed"
    assert summary.outcomes["SZ002261"].alerted is True


@pytest.mark.asyncio
async def test_unexpected_crash_is_contained():
    def bad_format(subject, sample, triggered):
        raise RuntimeError("template broke")

    orch = _orch(ScriptedSource({
        "SZ002261": [stock_sample(value=9.8)],
        "SH600519": [stock_sample("SH600519", value=1700.0)],
    }))
    orch.format_fn = bad_format
    summary = await orch.run_pass([B, A])
    assert summary.outcomes["SZ002261"].status == "error"
    assert summary.outcomes["SH600519"].succeeded


def test_summary_merge_and_exit_code():
    skipped = PassSummary.skipped_because("weekend")
    ran = PassSummary()
    merged = skipped.merge(ran)
    assert merged.skipped is False
    assert merged.reason == "weekend"
    assert merged.exit_code() == 0


@pytest.mark.asyncio
async def test_config_error_alone_exits_zero():
    broken = Subject(id="SZ000001", name="Ping An", kind="stock", config_error="stock SZ000001: at least one condition is required")
    src = ScriptedSource({"SZ002261": [stock_sample(value=12.0)]})
    summary = await _orch(src).run_pass([broken, B])
    assert summary.config_errors == 1 and summary.fetch_failures == 0
    assert summary.failed == 1
    assert summary.exit_code() == 0


@pytest.mark.asyncio
async def test_crashed_subject_exits_zero():
    def bad_format(subject, sample, triggered):
        raise RuntimeError("template broke")

    orch = _orch(ScriptedSource({"SZ002261": [stock_sample(value=9.8)]}))
    orch.format_fn = bad_format
    summary = await orch.run_pass([B])
    assert summary.outcomes["SZ002261"].status == "error"
    assert summary.exit_code() == 0
