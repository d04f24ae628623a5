"""
Stripe gateway - live Connect API through the stripe SDK.

The SDK is synchronous, so every call runs in a worker thread. The secret key is
passed per call rather than set on the module, and each mutation carries the
caller's idempotency key through every retry attempt.
"""
from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional

import stripe

from payout_ledger.core.circuit_breaker import CircuitBreaker
from payout_ledger.core.config import settings
from payout_ledger.core.exceptions import PaymentGatewayError
from payout_ledger.core.logging import get_logger
from payout_ledger.domain.services.gateways.base_gateway import (
    BalanceData,
    BasePaymentGateway,
    ConnectedAccountData,
    PaymentIntentData,
    TransferData,
)

logger = get_logger(__name__)

# network / throttling / 5xx - safe to resend with the same idempotency key
_TRANSIENT_STRIPE_ERRORS = (
    stripe.APIConnectionError,
    stripe.RateLimitError,
    stripe.APIError,
)


def _is_transient(exc: Exception) -> bool:
    return isinstance(exc, PaymentGatewayError) and exc.transient


def _field(obj: Any, name: str, default: Any = None) -> Any:
    """Read a field from a StripeObject or a plain dict"""
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


class StripePaymentGateway(BasePaymentGateway):

    def __init__(
        self,
        circuit_breaker: CircuitBreaker,
        *,
        api_key: Optional[str] = None,
        max_retries: Optional[int] = None,
    ) -> None:
        self._circuit_breaker = circuit_breaker
        self._api_key = api_key if api_key is not None else settings.STRIPE_SECRET_KEY
        self._max_retries = max_retries or settings.STRIPE_MAX_RETRIES

    @property
    def provider_name(self) -> str:
        return "stripe"

    # ── retry helper ──

    async def _call(self, operation: str, func: Callable[..., Any], **params: Any) -> Any:
        """Run one SDK call with retry, exponential backoff and the circuit breaker.

        Raises PaymentGatewayError immediately for non-transient Stripe errors
        (declines, invalid requests), after the last attempt for transient ones.
        """
        params["api_key"] = self._api_key

        def invoke() -> Any:
            try:
                return func(**params)
            except _TRANSIENT_STRIPE_ERRORS as exc:
                raise PaymentGatewayError.from_stripe_error(operation, exc, transient=True) from exc
            except stripe.StripeError as exc:
                raise PaymentGatewayError.from_stripe_error(operation, exc) from exc

        last_error: PaymentGatewayError | None = None
        for attempt in range(self._max_retries):
            try:
                return await self._circuit_breaker.execute(
                    asyncio.to_thread, invoke, counts_as_failure=_is_transient
                )
            except PaymentGatewayError as exc:
                if not exc.transient:
                    raise
                last_error = exc
                if attempt < self._max_retries - 1:
                    backoff = 2 ** attempt
                    logger.warning(
                        f"Stripe {operation} failed, retrying",
                        extra_data={
                            "operation": operation,
                            "error": exc.message,
                            "attempt": attempt + 1,
                            "max_retries": self._max_retries,
                            "backoff_seconds": backoff,
                            "idempotency_key": params.get("idempotency_key"),
                        },
                    )
                    await asyncio.sleep(backoff)

        raise PaymentGatewayError(
            f"Stripe {operation} failed after {self._max_retries} attempts: "
            f"{last_error.message if last_error else 'unknown error'}",
            provider=self.provider_name,
            transient=True,
            details={"operation": operation, "attempts": self._max_retries},
        )

    # ── BasePaymentGateway ──

    async def create_payment_intent(
        self,
        *,
        amount_minor: int,
        currency: str,
        on_behalf_of: Optional[str],
        metadata: dict[str, str],
        customer_id: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> PaymentIntentData:
        params: dict[str, Any] = {
            "amount": amount_minor,
            "currency": currency.lower(),
            "metadata": metadata,
            "automatic_payment_methods": {"enabled": True},
        }
        if on_behalf_of:
            # gross lands on the platform's connected account; the creator share is settled later
            params["on_behalf_of"] = on_behalf_of
            params["transfer_data"] = {"destination": on_behalf_of}
        if customer_id:
            params["customer"] = customer_id
        if idempotency_key:
            params["idempotency_key"] = idempotency_key

        intent = await self._call("payment_intent", stripe.PaymentIntent.create, **params)
        return PaymentIntentData(
            id=_field(intent, "id"),
            client_secret=_field(intent, "client_secret"),
            status=_field(intent, "status", ""),
            amount_minor=int(_field(intent, "amount", amount_minor)),
            currency=_field(intent, "currency", currency.lower()),
        )

    async def transfer(
        self,
        *,
        amount_minor: int,
        currency: str,
        destination: str,
        idempotency_key: str,
        description: Optional[str] = None,
        metadata: Optional[dict[str, str]] = None,
    ) -> TransferData:
        params: dict[str, Any] = {
            "amount": amount_minor,
            "currency": currency.lower(),
            "destination": destination,
            "metadata": metadata or {},
            "idempotency_key": idempotency_key,
        }
        if description:
            params["description"] = description

        transfer = await self._call("transfer", stripe.Transfer.create, **params)
        return TransferData(
            id=_field(transfer, "id"),
            amount_minor=int(_field(transfer, "amount", amount_minor)),
            currency=_field(transfer, "currency", currency.lower()),
            destination=_field(transfer, "destination", destination),
        )

    async def get_balance(self, account_id: Optional[str] = None) -> BalanceData:
        params: dict[str, Any] = {}
        if account_id:
            params["stripe_account"] = account_id
        balance = await self._call("balance", stripe.Balance.retrieve, **params)

        available = _field(balance, "available") or []
        pending = _field(balance, "pending") or []
        currency = (_field(available[0], "currency") if available else settings.DEFAULT_CURRENCY).lower()

        def total(funds: list) -> int:
            return sum(int(_field(f, "amount", 0)) for f in funds if _field(f, "currency") == currency)

        return BalanceData(
            available_minor=total(available),
            pending_minor=total(pending),
            currency=currency,
        )

    async def create_connected_account(
        self,
        *,
        email: str,
        country: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> ConnectedAccountData:
        account = await self._call(
            "account",
            stripe.Account.create,
            type="express",
            country=country,
            email=email,
            capabilities={"transfers": {"requested": True}},
            metadata=metadata or {},
        )
        return self._account_data(account)

    async def create_onboarding_link(self, *, account_id: str, return_url: str, refresh_url: str) -> str:
        link = await self._call(
            "account_link",
            stripe.AccountLink.create,
            account=account_id,
            return_url=return_url,
            refresh_url=refresh_url,
            type="account_onboarding",
        )
        return _field(link, "url")

    async def retrieve_account(self, account_id: str) -> ConnectedAccountData:
        account = await self._call("account", stripe.Account.retrieve, id=account_id)
        return self._account_data(account)

    @staticmethod
    def _account_data(account: Any) -> ConnectedAccountData:
        requirements = _field(account, "requirements")
        return ConnectedAccountData(
            id=_field(account, "id"),
            charges_enabled=bool(_field(account, "charges_enabled")),
            payouts_enabled=bool(_field(account, "payouts_enabled")),
            details_submitted=bool(_field(account, "details_submitted")),
            requirements_due=list(_field(requirements, "currently_due") or []),
        )
