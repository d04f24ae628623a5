"""
Payment gateway interface.

Every implementation works in integer minor units and must honour idempotency keys:
a repeated mutation with the same key returns the original result and moves no
money a second time.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass(frozen=True)
class PaymentIntentData:
    id: str
    client_secret: Optional[str]
    status: str
    amount_minor: int
    currency: str


@dataclass(frozen=True)
class TransferData:
    id: str
    amount_minor: int
    currency: str
    destination: str


@dataclass(frozen=True)
class BalanceData:
    available_minor: int
    pending_minor: int
    currency: str


@dataclass(frozen=True)
class ConnectedAccountData:
    id: str
    charges_enabled: bool = False
    payouts_enabled: bool = False
    details_submitted: bool = False
    requirements_due: list[str] = field(default_factory=list)


class BasePaymentGateway(ABC):
    """
    Connected-accounts split-payment API (Stripe Connect semantics).

    Implementations are responsible for:
    - the transport (SDK / in-memory)
    - retry + circuit breaker where there is a network
    - mapping processor errors to PaymentGatewayError
    """

    @abstractmethod
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
        """Gross charge routed to the platform's connected account"""

    @abstractmethod
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
        """
        Move funds from the platform balance to a connected account.

        Raises:
            PaymentGatewayError: rejected or failed transfer.
        """

    @abstractmethod
    async def get_balance(self, account_id: Optional[str] = None) -> BalanceData:
        """Platform balance, or a connected account's balance when account_id is given"""

    @abstractmethod
    async def create_connected_account(
        self,
        *,
        email: str,
        country: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> ConnectedAccountData:
        """Create an Express account with the transfers capability"""

    @abstractmethod
    async def create_onboarding_link(
        self,
        *,
        account_id: str,
        return_url: str,
        refresh_url: str,
    ) -> str:
        """Hosted onboarding URL for the account"""

    @abstractmethod
    async def retrieve_account(self, account_id: str) -> ConnectedAccountData:
        """Current capability flags of a connected account"""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Name used in logs and platform transaction metadata"""
