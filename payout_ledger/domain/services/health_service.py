"""
Health checks - dependency probes for the readiness endpoint.

- liveness: the process answers (no dependency checks)
- readiness: database, Redis, Celery broker and the payment gateway circuit
"""
from typing import Any

import redis.asyncio as aioredis
from sqlalchemy import text

from payout_ledger.core.circuit_breaker import CircuitBreaker, CircuitState
from payout_ledger.core.config import settings
from payout_ledger.core.logging import get_logger
from payout_ledger.core.redis_client import get_redis
from payout_ledger.db.database import AsyncSessionLocal

logger = get_logger(__name__)

_STATUS_HEALTHY = "healthy"
_STATUS_DEGRADED = "degraded"

_CHECK_OK = "ok"

# no infrastructure details in responses
_ERROR_DB = "error: db_unavailable"
_ERROR_REDIS = "error: redis_unavailable"
_ERROR_CELERY = "error: celery_unavailable"
_ERROR_GATEWAY_OPEN = "error: payment_gateway_circuit_open"


async def _check_db() -> str:
    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
        return _CHECK_OK
    except Exception as e:
        logger.warning("Database health check failed", extra_data={"error": str(e)})
        return _ERROR_DB


async def _check_redis() -> str:
    try:
        client = await get_redis()
        await client.ping()
        return _CHECK_OK
    except Exception as e:
        logger.warning("Redis health check failed", extra_data={"error": str(e)})
        return _ERROR_REDIS


async def _check_celery() -> str:
    """Ping the Celery broker"""
    try:
        client = aioredis.from_url(settings.CELERY_BROKER_URL, decode_responses=True)
        try:
            await client.ping()
            return _CHECK_OK
        finally:
            await client.aclose()
    except Exception as e:
        logger.warning("Celery broker health check failed", extra_data={"error": str(e)})
        return _ERROR_CELERY


def _check_payment_gateway() -> str:
    """Reads breaker state only; never calls the processor"""
    breaker = CircuitBreaker.all_instances().get("payment_gateway")
    if breaker is not None and breaker.state == CircuitState.OPEN:
        return _ERROR_GATEWAY_OPEN
    return _CHECK_OK


async def check_readiness() -> dict[str, Any]:
    """
    Returns {"status": "healthy" | "degraded", "db": ..., "redis": ..., ...}
    with "ok" or an "error: ..." string per dependency.
    """
    checks = {
        "db": await _check_db(),
        "redis": await _check_redis(),
        "celery": await _check_celery(),
        "payment_gateway": _check_payment_gateway(),
    }

    all_ok = all(v == _CHECK_OK for v in checks.values())
    overall_status = _STATUS_HEALTHY if all_ok else _STATUS_DEGRADED

    if not all_ok:
        logger.warning("Readiness check degraded", extra_data=checks)

    return {"status": overall_status, **checks}
