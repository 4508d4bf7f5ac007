from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional, Sequence

import structlog

from costinel.alerts.dedup import CooldownDeduper
from costinel.alerts.evaluator import evaluate
from costinel.alerts.formatting import format_alert, format_summary_line
from costinel.ingest.retry import RetryingFetcher
from costinel.notify.fanout import NotificationFanout
from costinel.utils.errors import ConfigurationError, FetchError
from costinel.utils.market_calendar import MarketGate
from costinel.utils.types import PassOutcome, PassSummary, Sample, Subject, TriggeredSet

SampleFn = Callable[[Subject], Awaitable[Sample]]
FormatFn = Callable[[Subject, Sample, TriggeredSet], str]


class CheckOrchestrator:
    """
    One monitoring pass over a set of subjects.

    Per subject, strictly in order: fetch (with retry) -> evaluate ->
    cooldown check -> notify. Subjects run concurrently and never abort each
    other; every subject ends as a PassOutcome in the returned PassSummary.

    When a MarketGate is given and reports closed, the pass is skipped before
    anything is fetched.
    """
    def __init__(
        self,
        *,
        fetch_sample: SampleFn,
        deduper: CooldownDeduper,
        fanout: NotificationFanout,
        fetcher: Optional[RetryingFetcher] = None,
        gate: Optional[MarketGate] = None,
        format_fn: FormatFn = format_alert,
        name: str = "checks",
    ):
        self.fetch_sample = fetch_sample
        self.deduper = deduper
        self.fanout = fanout
        self.fetcher = fetcher or RetryingFetcher()
        self.gate = gate
        self.format_fn = format_fn
        self.name = name
        self._log = structlog.get_logger("orchestrator").bind(pass_name=name)

    async def run_pass(self, subjects: Sequence[Subject]) -> PassSummary:
        if self.gate is not None:
            decision = await self.gate.check()
            if not decision.open:
                self._log.info("pass_skipped", reason=decision.reason)
                return PassSummary.skipped_because(decision.reason or "market closed")

        self._log.info("pass_start", subjects=len(subjects))
        results = await asyncio.gather(
            *(self._run_subject(s) for s in subjects), return_exceptions=True
        )

        outcomes: list[PassOutcome] = []
        for subject, res in zip(subjects, results):
            if isinstance(res, BaseException):
                if isinstance(res, asyncio.CancelledError):
                    raise res
                self._log.error("subject_crashed", subject=subject.id, err=repr(res))
                res = PassOutcome(subject.id, status="error", error=repr(res))
            outcomes.append(res)

        summary = PassSummary.from_outcomes(outcomes)
        self._log.info(
            "pass_complete",
            total=summary.total,
            succeeded=summary.succeeded,
            failed=summary.failed,
            alerted=summary.alerted,
        )
        return summary

    async def _run_subject(self, subject: Subject) -> PassOutcome:
        log = self._log.bind(subject=subject.id)
        if subject.config_error:
            return PassOutcome(subject.id, status="config_error", error=subject.config_error)

        try:
            sample = await self.fetcher.fetch(lambda: self.fetch_sample(subject), label=subject.id)
            triggered = evaluate(sample, subject.conditions)
        except ConfigurationError as e:
            log.error("subject_config_error", err=str(e))
            return PassOutcome(subject.id, status="config_error", error=str(e))
        except FetchError as e:
            return PassOutcome(subject.id, status="fetch_failed", error=str(e.cause) or type(e.cause).__name__)

        log.info("sample", line=format_summary_line(subject, sample))
        outcome = PassOutcome(subject.id, sample=sample)
        if not triggered:
            return outcome

        outcome.triggered = True
        outcome.signature = triggered.signature
        if not self.deduper.should_notify(subject.id, triggered.signature, subject.cooldown_s):
            log.info("alert_suppressed_cooldown", signature=triggered.signature)
            outcome.cooldown = True
            return outcome

        text = self.format_fn(subject, sample, triggered)
        outcome.alerted = await self.fanout.send(text)
        if outcome.alerted:
            log.info("alert_sent", conditions=len(triggered), signature=triggered.signature)
        else:
            log.warning("alert_not_delivered", signature=triggered.signature)
        return outcome
