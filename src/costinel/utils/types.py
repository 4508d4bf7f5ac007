from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Optional

from costinel.alerts.rules import Condition

SubjectClass = Literal["stock", "product"]
OutcomeStatus = Literal["ok", "fetch_failed", "config_error", "error"]

# ---- configuration-owned inputs ----

@dataclass(frozen=True, slots=True)
class Subject:
    """
    A monitored entity. `id` is the instrument code for stocks and the
    product URL for products.
    """
    id: str
    name: str
    kind: SubjectClass
    conditions: tuple[Condition, ...] = ()
    cooldown_s: Optional[float] = None
    url: Optional[str] = None
    site: Optional[str] = None
    config_error: Optional[str] = None  # set when the entry could not be parsed


@dataclass(frozen=True, slots=True)
class Sample:
    """One fetched snapshot of a subject's observable state."""
    code: str
    name: str
    value: float
    percent_change: float = 0.0     # percent units: 2.94 means +2.94%
    previous_close: Optional[float] = None
    open: Optional[float] = None
    high: Optional[float] = None
    low: Optional[float] = None
    url: Optional[str] = None
    in_stock: Optional[bool] = None
    observed_at: Optional[float] = None  # epoch seconds

# ---- evaluation results ----

@dataclass(frozen=True, slots=True)
class TriggeredSet:
    conditions: tuple[Condition, ...] = ()

    @property
    def signature(self) -> str:
        """Dedup key component, e.g. 'below:10,change_down:5'."""
        return ",".join(c.signature() for c in self.conditions)

    def __bool__(self) -> bool:
        return bool(self.conditions)

    def __len__(self) -> int:
        return len(self.conditions)


@dataclass(slots=True)
class PassOutcome:
    subject_id: str
    status: OutcomeStatus = "ok"
    error: Optional[str] = None
    alerted: bool = False           # a notification was delivered
    triggered: bool = False
    cooldown: bool = False          # triggered but suppressed by cooldown
    signature: str = ""
    sample: Optional[Sample] = None

    @property
    def succeeded(self) -> bool:
        return self.status == "ok"


@dataclass(slots=True)
class PassSummary:
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    alerted: int = 0
    skipped: bool = False
    reason: Optional[str] = None
    outcomes: dict[str, PassOutcome] = field(default_factory=dict)

    @classmethod
    def skipped_because(cls, reason: str) -> "PassSummary":
        return cls(skipped=True, reason=reason)

    @classmethod
    def from_outcomes(cls, outcomes: list[PassOutcome]) -> "PassSummary":
        s = cls()
        for o in outcomes:
            s.add(o)
        return s

    def add(self, o: PassOutcome) -> None:
        self.outcomes[o.subject_id] = o
        self.total += 1
        if o.succeeded:
            self.succeeded += 1
        else:
            self.failed += 1
        if o.alerted:
            self.alerted += 1

    def merge(self, other: "PassSummary") -> "PassSummary":
        """Combine two summaries (e.g. the stock pass and the product pass)."""
        out = PassSummary()
        for part in (self, other):
            for o in part.outcomes.values():
                out.add(o)
        out.skipped = self.skipped and other.skipped
        reasons = [r for r in (self.reason, other.reason) if r]
        out.reason = "; ".join(reasons) or None
        return out

    @property
    def fetch_failures(self) -> int:
        return sum(1 for o in self.outcomes.values() if o.status == "fetch_failed")

    @property
    def config_errors(self) -> int:
        return sum(1 for o in self.outcomes.values() if o.status == "config_error")

    def exit_code(self) -> int:
        """Non-zero only when a subject ran out of fetch attempts."""
        return 1 if self.fetch_failures else 0
