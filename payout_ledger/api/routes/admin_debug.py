"""
Admin Debug Endpoints - diagnostics without direct DB access.
"""
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from payout_ledger.api.dependencies.admin_auth import require_admin_api_key
from payout_ledger.core.circuit_breaker import CircuitBreaker, get_payment_gateway_circuit_breaker

router = APIRouter(dependencies=[Depends(require_admin_api_key)])


class CircuitBreakerStatusResponse(BaseModel):
    service: str
    state: str = Field(description="closed | open | half_open")
    failure_count: int
    retry_after_seconds: float = Field(description="Seconds until a probe is allowed (0 unless open)")


@router.get(
    "/circuit-breakers",
    response_model=list[CircuitBreakerStatusResponse],
    summary="Circuit breaker status",
)
async def get_circuit_breakers():
    # make sure the payment gateway breaker is listed even before its first call
    get_payment_gateway_circuit_breaker()
    breakers = CircuitBreaker.all_instances()
    return [breakers[name].snapshot() for name in sorted(breakers)]
