from __future__ import annotations

from datetime import datetime
from html import escape
from typing import Optional

from costinel.alerts.evaluator import display_percent
from costinel.utils.time import SHANGHAI
from costinel.utils.types import Sample, Subject, TriggeredSet


def _fmt_ts(ts_s: Optional[float]) -> str:
    dt = datetime.fromtimestamp(ts_s, SHANGHAI) if ts_s is not None else datetime.now(SHANGHAI)
    return dt.strftime("%Y-%m-%d %H:%M:%S")


def _amount(v: float) -> str:
    return format(v, ".12g")


def _px(v: Optional[float]) -> str:
    return "-" if v is None else f"¥{_amount(v)}"


def format_stock_alert(subject: Subject, sample: Sample, triggered: TriggeredSet) -> str:
    pct = display_percent(sample.percent_change) + 0.0  # -0.0 -> 0.0
    sign = "+" if pct > 0 else ""
    alerts = "\n".join(f"⚠️ {escape(c.message or c.default_message())}" for c in triggered.conditions)
    return (
        f"🔔 <b>Stock alert</b>\n\n"
        f"📈 <b>{escape(sample.name or subject.name)}</b> ({escape(sample.code.lower())})\n"
        f"━━━━━━━━━━━━━━━━━━━━━━\n\n"
        f"💰 Price: <b>{_px(sample.value)}</b>\n"
        f"📊 Change: <b>{sign}{pct:.2f}%</b>\n\n"
        f"Prev close: {_px(sample.previous_close)}\n"
        f"Open: {_px(sample.open)}\n"
        f"High: {_px(sample.high)}\n"
        f"Low: {_px(sample.low)}\n\n"
        f"<b>Triggered:</b>\n"
        f"{alerts}\n\n"
        f"⏰ {_fmt_ts(sample.observed_at)}"
    )


def format_restock_alert(subject: Subject, sample: Sample, triggered: TriggeredSet) -> str:
    notes = "\n".join(
        f"• {escape(c.message)}" for c in triggered.conditions if c.message
    )
    body = (
        f"🎉 <b>{escape(subject.site or '')}</b> is back in stock!\n\n"
        f"📦 Plan: {escape(subject.name)}\n"
        f"🔗 Link: {escape(sample.url or subject.url or subject.id)}\n"
        f"⏰ Checked: {_fmt_ts(sample.observed_at)}"
    )
    return f"{body}\n{notes}" if notes else body


def format_alert(subject: Subject, sample: Sample, triggered: TriggeredSet) -> str:
    if subject.kind == "product":
        return format_restock_alert(subject, sample, triggered)
    return format_stock_alert(subject, sample, triggered)


def format_summary_line(subject: Subject, sample: Sample) -> str:
    """Short one-liner for logs/console, e.g. 'Tuowei (SZ002261): ¥10.5 (+2.94%)'."""
    if subject.kind == "product":
        state = "in stock" if sample.in_stock else "out of stock"
        return f"{subject.name}: {state}"
    pct = display_percent(sample.percent_change) + 0.0
    return f"{sample.name} ({sample.code}): {_px(sample.value)} ({pct:+.2f}%)"
