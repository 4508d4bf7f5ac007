from __future__ import annotations

from typing import Iterable

from costinel.alerts.rules import Above, Below, ChangeDown, ChangeUp, Condition, Range
from costinel.utils.errors import ConfigurationError
from costinel.utils.types import Sample, TriggeredSet


def display_percent(pct: float) -> float:
    """
    Percent change at the precision the alert text shows it.
    Thresholds compare against this value, not the raw float, so a
    displayed "-5.00%" and a change_down:5 rule always agree.
    """
    return float(f"{pct:.2f}")


def matches(sample: Sample, cond: Condition) -> bool:
    match cond:
        case Below(value=v):
            return sample.value < v
        case Above(value=v):
            return sample.value > v
        case ChangeUp(value=v):
            return display_percent(sample.percent_change) >= v
        case ChangeDown(value=v):
            return display_percent(sample.percent_change) <= -v
        case Range(min=lo, max=hi):
            return lo <= sample.value <= hi
    raise ConfigurationError(f"unsupported condition {cond!r}")


def evaluate(sample: Sample, conditions: Iterable[Condition]) -> TriggeredSet:
    """
    Return the conditions that fire for `sample`, in configured order.
    A condition listed twice is reported once.
    """
    hit: list[Condition] = []
    for cond in conditions:
        if cond in hit:
            continue
        if matches(sample, cond):
            hit.append(cond)
    return TriggeredSet(tuple(hit))
