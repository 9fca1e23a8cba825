"""Exception hierarchy for analytics engine failures."""

from __future__ import annotations

from typing import Any, Dict, Mapping


class AnalyticsError(Exception):
    """Base class for all domain-level errors in the analytics engine."""

    default_message = "Analytics error occurred"
    status_code = 500
    retryable = False

    def __init__(
        self, message: str | None = None, *, context: Mapping[str, Any] | None = None
    ):
        self.message = message or self.default_message
        self.context: Mapping[str, Any] = dict(context or {})
        formatted = self._format_message()
        super().__init__(formatted)

    def to_payload(self) -> Dict[str, Any]:
        """Serializable body a web layer can hand back to the dashboard."""

        payload: Dict[str, Any] = {
            "error": self.default_message,
            "message": self.message,
        }
        if self.retryable:
            payload["retryable"] = True
        return payload

    def _format_message(self) -> str:
        if self.context:
            return f"{self.message} | context={self.context}"
        return self.message


class StoreNotConfiguredError(AnalyticsError):
    """The analytics store has no connection settings yet."""

    default_message = "Analytics not yet configured"
    status_code = 501

    def to_payload(self) -> Dict[str, Any]:
        payload = super().to_payload()
        payload["not_implemented"] = True
        return payload


class UpstreamQueryError(AnalyticsError):
    """A query against an upstream store failed; callers may retry."""

    default_message = "Analytics query failed"
    status_code = 503
    retryable = True


class DirectoryLookupError(AnalyticsError):
    """The user directory could not answer a name lookup."""

    default_message = "Directory lookup failed"
    status_code = 503
    retryable = True


class ValidationError(AnalyticsError):
    """Raised when caller-supplied arguments are invalid."""

    default_message = "Invalid analytics request"
    status_code = 400
