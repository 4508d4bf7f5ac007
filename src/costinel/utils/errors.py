from __future__ import annotations


class CostinelError(Exception):
    """Base for every error raised by the monitoring engine."""


class ConfigurationError(CostinelError):
    """A subject, condition or site mapping is missing or malformed."""


class FetchError(CostinelError):
    """Request still failing after the retry budget was spent."""

    def __init__(self, cause: BaseException, attempts: int = 1):
        super().__init__(f"fetch failed after {attempts} attempt(s): {cause}")
        self.cause = cause
        self.attempts = attempts


class ElementNotFound(CostinelError):
    """Selector matched nothing on the page; retried like any transport error."""


class NotificationError(CostinelError):
    """A channel rejected or failed to deliver a message."""


class CalendarUnavailable(CostinelError):
    """Trading calendar could not be fetched or parsed."""
