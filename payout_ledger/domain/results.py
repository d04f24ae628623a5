"""
Result objects returned by the ledger services.

Public service methods never raise for business or processor failures; callers branch
on ``success`` and render ``error`` as-is.
"""
from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")


class _AsDict:
    def to_dict(self) -> dict[str, Any]:
        return asdict(self)  # type: ignore[call-overload]


@dataclass
class ServiceResult(_AsDict, Generic[T]):
    success: bool
    data: Optional[T] = None
    error: Optional[str] = None


# ── WalletService ──

@dataclass
class PaymentProcessingResult(_AsDict):
    success: bool
    payment_id: Optional[int] = None
    transaction_id: Optional[int] = None
    wallet_id: Optional[int] = None
    gross_amount: Optional[Decimal] = None
    platform_fee: Optional[Decimal] = None
    creator_amount: Optional[Decimal] = None
    duplicate: bool = False
    error: Optional[str] = None


@dataclass
class PayoutRequestResult(_AsDict):
    success: bool
    payout_id: Optional[int] = None
    amount: Optional[Decimal] = None
    status: Optional[str] = None
    error: Optional[str] = None


@dataclass
class WalletStats(_AsDict):
    wallet_id: int
    current_balance: Decimal
    pending_balance: Decimal
    total_earnings: Decimal
    total_payouts: Decimal
    this_month_earnings: Decimal
    last_month_earnings: Decimal
    pending_payout_amount: Decimal
    transaction_count: int


@dataclass
class WalletSummary(_AsDict):
    wallet_id: int
    creator_id: str
    currency: str
    available_balance: Decimal
    pending_balance: Decimal
    lifetime_earnings: Decimal
    total_withdrawn: Decimal
    minimum_payout_amount: Decimal
    can_request_payout: bool
    payout_method_configured: bool
    next_payout_date: Optional[date] = None
    last_payout_at: Optional[datetime] = None


@dataclass
class EarningsBreakdown(_AsDict):
    wallet_id: int
    start_date: datetime
    end_date: datetime
    gross_amount: Decimal
    platform_fees: Decimal
    net_earnings: Decimal
    payment_count: int
    by_payment_method: dict[str, Decimal] = field(default_factory=dict)
    daily: list[dict[str, Any]] = field(default_factory=list)


# ── PlatformAccountService ──

@dataclass
class PlatformDashboardStats(_AsDict):
    available_balance: Decimal
    pending_balance: Decimal
    total_fees_collected: Decimal
    total_payouts_made: Decimal
    net_revenue: Decimal
    this_month_fees: Decimal
    last_month_fees: Decimal
    growth_percentage: float
    pending_payouts: int
    active_creators: int
    currency: str
    recent_transactions: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class ConnectOnboardingResult(_AsDict):
    success: bool
    account_id: Optional[str] = None
    onboarding_url: Optional[str] = None
    platform_account_id: Optional[int] = None
    error: Optional[str] = None


@dataclass
class StripeConnectInfo(_AsDict):
    account_id: str
    charges_enabled: bool
    payouts_enabled: bool
    details_submitted: bool
    status: str
    requirements_due: list[str] = field(default_factory=list)


# ── PlatformStripeService ──

@dataclass
class PlatformPaymentResult(_AsDict):
    success: bool
    payment_id: Optional[str] = None
    client_secret: Optional[str] = None
    platform_fee: Optional[Decimal] = None
    creator_amount: Optional[Decimal] = None
    error: Optional[str] = None


@dataclass
class TransferResult(_AsDict):
    success: bool
    transfer_id: Optional[str] = None
    error: Optional[str] = None
    # processor outcome unknown (timeout, 5xx); retry with the same idempotency key
    in_doubt: bool = False


@dataclass
class BatchPayoutItem(_AsDict):
    creator_id: str
    amount: Decimal
    stripe_account_id: str
    currency: str = "USD"
    description: Optional[str] = None


@dataclass
class BatchPayoutResult(_AsDict):
    success: bool
    batch_id: str
    total_amount: Decimal
    successful_payouts: int
    failed_payouts: int
    transfers: list[dict[str, Any]] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class GatewayBalanceResult(_AsDict):
    success: bool
    available: Decimal = Decimal("0.00")
    pending: Decimal = Decimal("0.00")
    currency: str = "USD"
    error: Optional[str] = None


# ── PayoutAutomationService ──

@dataclass
class CreatorPayoutEligibility(_AsDict):
    creator_id: str
    wallet_id: int
    balance: Decimal
    payout_method: Optional[dict[str, Any]]
    stripe_account_id: Optional[str]
    is_eligible: bool
    reason: Optional[str] = None


@dataclass
class ScheduleJobResult(_AsDict):
    success: bool
    job_id: Optional[int] = None
    total_creators: int = 0
    total_amount: Decimal = Decimal("0.00")
    error: Optional[str] = None


@dataclass
class CreatorPayoutResult(_AsDict):
    success: bool
    payout_id: Optional[int] = None
    transfer_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class PayoutJobResult(_AsDict):
    success: bool
    job_id: Optional[int] = None
    status: Optional[str] = None
    successful_payouts: int = 0
    failed_payouts: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class AutomatedPayoutCheckResult(_AsDict):
    success: bool
    jobs_created: int = 0
    job_id: Optional[int] = None
    payout_result: Optional[PayoutJobResult] = None
    error: Optional[str] = None
