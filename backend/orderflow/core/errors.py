"""Error taxonomy shared by resolvers, the transaction builder and the clients."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from orderflow.schemas.transaction import Violation


class OrderflowError(Exception):
    pass


class ConfigurationError(OrderflowError):
    """A required table or configuration identifier is missing. Not retryable."""

    def __init__(self, setting: str, message: Optional[str] = None) -> None:
        self.setting = setting
        super().__init__(message or f"{setting} is not configured")


class TransientSearchError(OrderflowError):
    """Search/network failure. The caller may retry; selections are kept."""

    def __init__(self, kind: str, query: str, cause: Optional[BaseException] = None) -> None:
        self.kind = kind
        self.query = query
        self.cause = cause
        detail = f": {cause}" if cause else ""
        super().__init__(f"Search for {kind} {query!r} failed{detail}")


class ValidationError(OrderflowError):
    """Structured field/reason list produced by the transaction builder."""

    def __init__(self, violations: list["Violation"]) -> None:
        self.violations = list(violations)
        summary = ", ".join(f"{v.field}:{v.reason}" for v in self.violations) or "no details"
        super().__init__(f"Document is invalid ({summary})")


class StockInsufficientError(ValidationError):
    def __init__(self, violations: list["Violation"], *, line: str, required: float, available: float) -> None:
        self.line = line
        self.required = required
        self.available = available
        super().__init__(violations)


class PersistenceError(OrderflowError):
    """The persistence collaborator rejected the submission."""

    def __init__(self, detail: str, *, status_code: Optional[int] = None, body: Any = None) -> None:
        self.detail = detail
        self.status_code = status_code
        self.body = body
        super().__init__(detail if status_code is None else f"{status_code}: {detail}")


class ExtractionUnclearError(OrderflowError):
    pass


class CaptureStateError(OrderflowError):
    pass
