"""Liveness and readiness probes."""

import time

from fastapi import APIRouter, Response, status

from src.core.catalog import get_catalog
from src.core.config import get_settings
from src.core.ledger import check_ledger_connection
from src.schemas.common import CheckResult, HealthResponse, HealthStatus, ReadinessResponse

router = APIRouter(tags=["health"])


async def _check_ledger() -> CheckResult:
    started = time.perf_counter()
    result = await check_ledger_connection()
    return CheckResult(
        name="ledger",
        healthy=result["healthy"],
        latency_ms=round((time.perf_counter() - started) * 1000, 2),
        error=result.get("error"),
    )


def _check_catalog() -> CheckResult:
    try:
        count = len(get_catalog())
    except Exception as e:
        return CheckResult(name="catalog", healthy=False, error=str(e))
    if count == 0:
        return CheckResult(name="catalog", healthy=False, error="Catalog is empty")
    return CheckResult(name="catalog", healthy=True)


def _check_stripe() -> CheckResult:
    settings = get_settings()
    missing = [
        name
        for name, value in (
            ("STRIPE_SECRET_KEY", settings.stripe_secret_key),
            ("STRIPE_WEBHOOK_SECRET", settings.stripe_webhook_secret),
        )
        if not value
    ]
    if missing:
        return CheckResult(name="stripe", healthy=False, error=f"Not configured: {', '.join(missing)}")
    return CheckResult(name="stripe", healthy=True)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Liveness check",
    description="Always 200 while the process is serving. Touches no dependency.",
)
async def health_check() -> HealthResponse:
    settings = get_settings()
    return HealthResponse(
        status=HealthStatus.HEALTHY,
        currency=settings.currency,
        home_delivery_cost_cents=settings.home_delivery_cost_cents,
    )


@router.get(
    "/health/ready",
    response_model=ReadinessResponse,
    responses={
        200: {"description": "Ledger, catalog and Stripe are usable"},
        503: {"description": "At least one dependency is not usable"},
    },
    summary="Readiness check",
    description="Probes the ledger, the product catalog and the Stripe configuration.",
)
async def readiness_check(response: Response) -> ReadinessResponse:
    """Report whether orders can be taken right now.

    Args:
        response: Used to set 503 when any check fails.

    Returns:
        ReadinessResponse: One entry per dependency.
    """
    checks = [await _check_ledger(), _check_catalog(), _check_stripe()]

    ready = all(check.healthy for check in checks)
    if not ready:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return ReadinessResponse(status=HealthStatus.HEALTHY if ready else HealthStatus.UNHEALTHY, checks=checks)
