"""
Sandbox gateway - deterministic in-memory processor for development and tests.

Transfers succeed unless told otherwise, ids are derived from a counter and every
idempotency key maps to exactly one result. Like Stripe, a key whose request was
declined keeps returning that error; transient failures are not stored.
"""
from __future__ import annotations

import itertools
import threading
from typing import Any, Optional

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


class SandboxPaymentGateway(BasePaymentGateway):

    def __init__(self, *, available_minor: int = 10_000_000, currency: str = "usd") -> None:
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self.currency = currency.lower()
        self.available_minor = available_minor
        self.pending_minor = 0
        self.transfers: dict[str, TransferData] = {}
        self.failed_transfers: dict[str, PaymentGatewayError] = {}
        self.payment_intents: dict[str, PaymentIntentData] = {}
        self.accounts: dict[str, ConnectedAccountData] = {}
        self.failing_destinations: set[str] = set()
        self._fail_next: Optional[tuple[str, bool]] = None
        self.transfer_calls = 0

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}_sandbox_{next(self._ids):06d}"

    # ── test hooks ──

    def fail_next_call(self, message: str = "Sandbox processor failure", *, transient: bool = False) -> None:
        """Fail the next call; ``transient`` simulates a timeout with an unknown outcome"""
        with self._lock:
            self._fail_next = (message, transient)

    def fail_transfers_to(self, destination: str) -> None:
        with self._lock:
            self.failing_destinations.add(destination)

    def _raise_if_failing(self, operation: str, destination: Optional[str] = None) -> None:
        if self._fail_next is not None:
            (message, transient), self._fail_next = self._fail_next, None
            raise PaymentGatewayError(
                message, provider=self.provider_name, transient=transient, details={"operation": operation}
            )
        if destination is not None and destination in self.failing_destinations:
            raise PaymentGatewayError(
                f"Transfers to {destination} are disabled",
                provider=self.provider_name,
                details={"operation": operation, "destination": destination},
            )

    # ── BasePaymentGateway ──

    @property
    def provider_name(self) -> str:
        return "sandbox"

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
        with self._lock:
            if idempotency_key and idempotency_key in self.payment_intents:
                return self.payment_intents[idempotency_key]
            self._raise_if_failing("payment_intent")
            intent_id = self._next_id("pi")
            intent = PaymentIntentData(
                id=intent_id,
                client_secret=f"{intent_id}_secret",
                status="requires_payment_method",
                amount_minor=amount_minor,
                currency=currency.lower(),
            )
            self.payment_intents[idempotency_key or intent_id] = intent
            return intent

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
        with self._lock:
            self.transfer_calls += 1
            if idempotency_key in self.transfers:
                logger.info(
                    "Sandbox transfer replayed",
                    extra_data={"idempotency_key": idempotency_key},
                )
                return self.transfers[idempotency_key]
            declined = self.failed_transfers.get(idempotency_key)
            if declined is not None:
                logger.info(
                    "Sandbox transfer failure replayed",
                    extra_data={"idempotency_key": idempotency_key, "error": declined.message},
                )
                raise PaymentGatewayError(declined.message, provider=self.provider_name, details=dict(declined.details))
            try:
                transfer = self._create_transfer(amount_minor, currency, destination)
            except PaymentGatewayError as exc:
                if not exc.transient:
                    self.failed_transfers[idempotency_key] = exc
                raise
            self.transfers[idempotency_key] = transfer
            return transfer

    def _create_transfer(self, amount_minor: int, currency: str, destination: str) -> TransferData:
        self._raise_if_failing("transfer", destination)
        if amount_minor <= 0:
            raise PaymentGatewayError("Transfer amount must be positive", provider=self.provider_name)
        if amount_minor > self.available_minor:
            raise PaymentGatewayError("Insufficient platform balance", provider=self.provider_name)
        self.available_minor -= amount_minor
        return TransferData(
            id=self._next_id("tr"),
            amount_minor=amount_minor,
            currency=currency.lower(),
            destination=destination,
        )

    async def get_balance(self, account_id: Optional[str] = None) -> BalanceData:
        with self._lock:
            self._raise_if_failing("balance")
            if account_id is not None:
                received = sum(
                    t.amount_minor for t in self.transfers.values() if t.destination == account_id
                )
                return BalanceData(available_minor=received, pending_minor=0, currency=self.currency)
            return BalanceData(
                available_minor=self.available_minor,
                pending_minor=self.pending_minor,
                currency=self.currency,
            )

    async def create_connected_account(
        self,
        *,
        email: str,
        country: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> ConnectedAccountData:
        with self._lock:
            self._raise_if_failing("account")
            account = ConnectedAccountData(
                id=self._next_id("acct"),
                requirements_due=["external_account", "tos_acceptance.date"],
            )
            self.accounts[account.id] = account
            return account

    async def create_onboarding_link(self, *, account_id: str, return_url: str, refresh_url: str) -> str:
        with self._lock:
            self._raise_if_failing("account_link")
            return f"https://connect.sandbox.invalid/setup/{account_id}?return_url={return_url}"

    async def retrieve_account(self, account_id: str) -> ConnectedAccountData:
        with self._lock:
            self._raise_if_failing("account")
            account = self.accounts.get(account_id)
            if account is None:
                raise PaymentGatewayError(
                    f"No such account: {account_id}",
                    provider=self.provider_name,
                    details={"account_id": account_id},
                )
            return account

    def activate_account(self, account_id: str) -> None:
        """Simulate the creator finishing hosted onboarding"""
        with self._lock:
            self.accounts[account_id] = ConnectedAccountData(
                id=account_id,
                charges_enabled=True,
                payouts_enabled=True,
                details_submitted=True,
            )
