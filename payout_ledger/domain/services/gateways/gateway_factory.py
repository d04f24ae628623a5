"""
Gateway Factory - picks the payment processor backend from settings.

- get_payment_gateway() - process-wide singleton (sandbox or stripe)
- reset_gateways() - tests only
"""
from __future__ import annotations

import threading

from payout_ledger.core.circuit_breaker import get_payment_gateway_circuit_breaker
from payout_ledger.core.config import settings
from payout_ledger.core.logging import get_logger
from payout_ledger.domain.services.gateways.base_gateway import BasePaymentGateway

logger = get_logger(__name__)

_gateway: BasePaymentGateway | None = None
_lock = threading.Lock()


def _create_gateway(gateway_type: str) -> BasePaymentGateway:
    if gateway_type == "sandbox":
        from payout_ledger.domain.services.gateways.sandbox_gateway import SandboxPaymentGateway

        return SandboxPaymentGateway()

    if gateway_type == "stripe":
        from payout_ledger.domain.services.gateways.stripe_gateway import StripePaymentGateway

        return StripePaymentGateway(circuit_breaker=get_payment_gateway_circuit_breaker())

    raise ValueError(f"Unknown payment gateway: {gateway_type}")


def get_payment_gateway() -> BasePaymentGateway:
    global _gateway
    if _gateway is None:
        with _lock:
            if _gateway is None:
                _gateway = _create_gateway(settings.PAYMENT_GATEWAY)
                logger.info(
                    "Payment gateway initialised",
                    extra_data={"provider": _gateway.provider_name},
                )
    return _gateway


def reset_gateways() -> None:
    """Drop the cached gateway - tests only."""
    global _gateway
    with _lock:
        _gateway = None
