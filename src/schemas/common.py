"""Response schemas shared across routes: health reports and error bodies."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class HealthResponse(BaseModel):
    """Liveness report, with the pricing settings the storefront displays."""

    status: HealthStatus = Field(description="Current health status")
    timestamp: datetime = Field(default_factory=_utcnow, description="Check timestamp")
    version: str = Field(default="0.1.0", description="API version")
    currency: str | None = Field(default=None, description="Currency orders are charged in")
    home_delivery_cost_cents: int | None = Field(default=None, description="Flat home delivery fee in cents")


class CheckResult(BaseModel):
    """One dependency probed by the readiness check."""

    name: str = Field(description="Dependency name: ledger, catalog or stripe")
    healthy: bool = Field(description="Whether the dependency is usable")
    latency_ms: float | None = Field(default=None, description="Probe duration in milliseconds")
    error: str | None = Field(default=None, description="Failure reason when unhealthy")


class ReadinessResponse(BaseModel):
    status: HealthStatus = Field(description="Overall readiness status")
    timestamp: datetime = Field(default_factory=_utcnow, description="Check timestamp")
    checks: list[CheckResult] = Field(default_factory=list, description="Individual check results")


class ErrorDetail(BaseModel):
    loc: list[str] | None = Field(default=None, description="Location of error (e.g., field path)")
    msg: str = Field(description="Human-readable error message")
    type: str = Field(description="Error type identifier")


class ErrorResponse(BaseModel):
    """Body of every error the middleware produces."""

    error: str = Field(description="Error type or category")
    message: str = Field(description="Human-readable error description")
    details: list[ErrorDetail] | None = Field(default=None, description="Additional error details")
    request_id: str | None = Field(default=None, description="Request ID for tracing")
    timestamp: datetime = Field(default_factory=_utcnow, description="Error timestamp")

    @classmethod
    def from_exception(
        cls,
        error_type: str,
        message: str,
        details: list[dict[str, Any]] | None = None,
        request_id: str | None = None,
    ) -> "ErrorResponse":
        """Build an error body from an exception's type, message and details."""
        return cls(
            error=error_type,
            message=message,
            details=[
                ErrorDetail(loc=d.get("loc"), msg=d.get("msg", str(d)), type=d.get("type", "error"))
                for d in details
            ]
            if details
            else None,
            request_id=request_id,
        )
