from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable


class ErrorType(str, Enum):
    AUTHENTICATION_FAILED = "authentication_failed"
    AUTHORIZATION_FAILED = "authorization_failed"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    SERVER_ERROR = "server_error"
    HTTP_ERROR = "http_error"
    EXCEPTION = "exception"
    CONFIGURATION_ERROR = "configuration_error"
    VALIDATION_ERROR = "validation_error"
    UNSUPPORTED_OPERATION = "unsupported_operation"


RECOMMENDATIONS: dict[ErrorType, str] = {
    ErrorType.AUTHENTICATION_FAILED: "Check your API credentials and ensure they are valid",
    ErrorType.AUTHORIZATION_FAILED: "Insufficient permissions for this operation",
    ErrorType.RATE_LIMIT_EXCEEDED: "Reduce request frequency or implement exponential backoff",
    ErrorType.SERVER_ERROR: "Marketplace API is experiencing issues, try again later",
    ErrorType.EXCEPTION: "Check network connectivity to the marketplace API",
    ErrorType.CONFIGURATION_ERROR: "Complete the account credentials before connecting",
}


def classify_status(status: int) -> ErrorType:
    if status == 401:
        return ErrorType.AUTHENTICATION_FAILED
    if status == 403:
        return ErrorType.AUTHORIZATION_FAILED
    if status == 429:
        return ErrorType.RATE_LIMIT_EXCEEDED
    if 500 <= status < 600:
        return ErrorType.SERVER_ERROR
    return ErrorType.HTTP_ERROR


class UnsupportedMarketplaceError(ValueError):
    """Raised for a marketplace name the registry does not know."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unsupported marketplace: {name!r}")


@dataclass(frozen=True)
class AdapterResult:
    """
    Outcome of one adapter/executor call.

    success=True carries `data`; success=False carries `error` + `error_type`
    and, where the failure is classifiable, a `recommendation`.
    """
    success: bool
    data: Any = None

    error: str | None = None
    error_type: ErrorType | None = None
    recommendation: str | None = None
    error_details: Any = None

    status: int | None = None
    duration_ms: int | None = None
    # rel="next" target of a paginated response (RFC 8288 Link header)
    next_link: str | None = None

    @classmethod
    def ok(
        cls,
        data: Any = None,
        *,
        status: int | None = None,
        duration_ms: int | None = None,
        next_link: str | None = None,
    ) -> AdapterResult:
        return cls(success=True, data=data, status=status, duration_ms=duration_ms, next_link=next_link)

    @classmethod
    def fail(
        cls,
        error: str,
        *,
        error_type: ErrorType,
        recommendation: str | None = None,
        error_details: Any = None,
        status: int | None = None,
        duration_ms: int | None = None,
    ) -> AdapterResult:
        if recommendation is None:
            recommendation = RECOMMENDATIONS.get(error_type)
        return cls(
            success=False,
            error=error,
            error_type=error_type,
            recommendation=recommendation,
            error_details=error_details,
            status=status,
            duration_ms=duration_ms,
        )

    @classmethod
    def configuration_error(cls, missing: list[str] | None = None, *, errors: list[str] | None = None) -> AdapterResult:
        parts = []
        if missing:
            parts.append("Missing required credentials: " + ", ".join(missing))
        parts.extend(errors or [])
        return cls.fail(
            "; ".join(parts) or "Invalid configuration",
            error_type=ErrorType.CONFIGURATION_ERROR,
            error_details={"missing": list(missing or []), "errors": list(errors or [])},
        )

    @classmethod
    def unsupported(cls, marketplace: str, operation: str) -> AdapterResult:
        return cls.fail(
            f"{marketplace} does not support {operation}",
            error_type=ErrorType.UNSUPPORTED_OPERATION,
        )

    def map(self, fn: Callable[[Any], Any]) -> AdapterResult:
        """Transform `data` of a successful result, pass failures through untouched."""
        if not self.success:
            return self
        return replace(self, data=fn(self.data))

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        out["error_type"] = self.error_type.value if self.error_type else None
        return out


@dataclass(frozen=True)
class ConnectionTestResult:
    success: bool
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    recommendations: list[str] = field(default_factory=list)

    response_time_ms: int | None = None
    status_code: int | None = None
    endpoint: str | None = None
    error_type: ErrorType | None = None
    tested_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_result(cls, result: AdapterResult, *, endpoint: str, ok_message: str, details: dict[str, Any] | None = None) -> ConnectionTestResult:
        if result.success:
            return cls(
                success=True,
                message=ok_message,
                details=details or {},
                response_time_ms=result.duration_ms,
                status_code=result.status,
                endpoint=endpoint,
            )
        return cls(
            success=False,
            message=result.error or "Connection failed",
            details={"error_details": result.error_details} if result.error_details is not None else {},
            recommendations=[result.recommendation] if result.recommendation else [],
            response_time_ms=result.duration_ms,
            status_code=result.status,
            endpoint=endpoint,
            error_type=result.error_type,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "details": self.details,
            "recommendations": list(self.recommendations),
            "response_time_ms": self.response_time_ms,
            "status_code": self.status_code,
            "endpoint": self.endpoint,
            "error_type": self.error_type.value if self.error_type else None,
            "tested_at": self.tested_at.isoformat(),
        }
