# src/costinel/alerts/rules.py
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, ClassVar, Literal, Mapping, Union

from costinel.utils.errors import ConfigurationError

Kind = Literal["below", "above", "change_up", "change_down", "range"]


def _num(v: float) -> str:
    # 10.0 -> "10", 9.5 -> "9.5", 10.0000001 stays distinct from 10.0000002
    return format(v, ".12g")


@dataclass(frozen=True, slots=True)
class Below:
    """Fire when the current value is strictly below `value`."""
    value: float
    message: str | None = None
    kind: ClassVar[Kind] = "below"

    def signature(self) -> str:
        return f"below:{_num(self.value)}"

    def default_message(self) -> str:
        return f"Price below ¥{_num(self.value)}"


@dataclass(frozen=True, slots=True)
class Above:
    """Fire when the current value is strictly above `value`."""
    value: float
    message: str | None = None
    kind: ClassVar[Kind] = "above"

    def signature(self) -> str:
        return f"above:{_num(self.value)}"

    def default_message(self) -> str:
        return f"Price broke above ¥{_num(self.value)}"


@dataclass(frozen=True, slots=True)
class ChangeUp:
    """Fire when the day's percent change is >= `value` (percent, positive)."""
    value: float
    message: str | None = None
    kind: ClassVar[Kind] = "change_up"

    def signature(self) -> str:
        return f"change_up:{_num(self.value)}"

    def default_message(self) -> str:
        return f"Up more than {_num(self.value)}%"


@dataclass(frozen=True, slots=True)
class ChangeDown:
    """
    Fire when the day's percent change is <= -`value`.
    `value` is configured positive; the evaluator applies the sign.
    """
    value: float
    message: str | None = None
    kind: ClassVar[Kind] = "change_down"

    def signature(self) -> str:
        return f"change_down:{_num(self.value)}"

    def default_message(self) -> str:
        return f"Down more than {_num(self.value)}%"


@dataclass(frozen=True, slots=True)
class Range:
    """Fire when min <= value <= max (both ends inclusive)."""
    min: float
    max: float
    message: str | None = None
    kind: ClassVar[Kind] = "range"

    def __post_init__(self):
        if self.min > self.max:
            raise ConfigurationError(f"range min {self.min} is greater than max {self.max}")

    def signature(self) -> str:
        return f"range:{_num(self.min)}-{_num(self.max)}"

    def default_message(self) -> str:
        return f"Price inside ¥{_num(self.min)} - ¥{_num(self.max)}"


Condition = Union[Below, Above, ChangeUp, ChangeDown, Range]

_SINGLE_VALUE: dict[str, type] = {
    "below": Below,
    "above": Above,
    "change_up": ChangeUp,
    "change_down": ChangeDown,
}


def _required_number(raw: Mapping[str, Any], field: str, kind: str) -> float:
    if field not in raw or raw[field] is None:
        raise ConfigurationError(f"condition '{kind}' requires field '{field}'")
    v = raw[field]
    # bools are ints in Python; a threshold of True is a config typo
    if isinstance(v, bool) or not isinstance(v, (int, float)) or not math.isfinite(v):
        raise ConfigurationError(f"condition '{kind}' field '{field}' must be a finite number, got {v!r}")
    return float(v)


def parse_condition(raw: Mapping[str, Any]) -> Condition:
    """
    Build a Condition from a config mapping such as
    {"type": "range", "min": 9.5, "max": 10.5, "message": "..."}.
    "kind" is accepted as an alias for "type".
    """
    if not isinstance(raw, Mapping):
        raise ConfigurationError(f"condition must be a mapping, got {type(raw).__name__}")
    kind = raw.get("type", raw.get("kind"))
    message = raw.get("message")
    if message is not None:
        message = str(message)

    if kind in _SINGLE_VALUE:
        return _SINGLE_VALUE[kind](value=_required_number(raw, "value", kind), message=message)
    if kind == "range":
        return Range(
            min=_required_number(raw, "min", kind),
            max=_required_number(raw, "max", kind),
            message=message,
        )
    raise ConfigurationError(f"unknown condition kind {kind!r}")


def parse_conditions(raws) -> tuple[Condition, ...]:
    if raws is None:
        return ()
    if not isinstance(raws, (list, tuple)):
        raise ConfigurationError("conditions must be a list")
    return tuple(parse_condition(r) for r in raws)
