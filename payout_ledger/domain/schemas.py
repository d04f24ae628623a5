"""
Input models for platform account configuration.
"""
from decimal import Decimal
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, model_validator

AccountType = Literal["stripe_connect", "bank_account", "paypal"]
ScheduleName = Literal["daily", "weekly", "monthly"]


def validate_payout_day(schedule: Optional[str], payout_day: Optional[int]) -> None:
    """weekly: 0=Sunday..6=Saturday; monthly: 1..28 so that every month has the day"""
    if schedule == "weekly" and (payout_day is None or not 0 <= payout_day <= 6):
        raise ValueError("Weekly payout_day must be between 0 (Sunday) and 6 (Saturday)")
    if schedule == "monthly" and (payout_day is None or not 1 <= payout_day <= 28):
        raise ValueError("Monthly payout_day must be between 1 and 28")


class PlatformAccountCreate(BaseModel):
    account_type: AccountType
    account_name: Optional[str] = Field(default=None, max_length=200)

    stripe_account_id: Optional[str] = Field(default=None, max_length=255)
    stripe_account_status: Optional[str] = Field(default=None, max_length=30)

    bank_name: Optional[str] = Field(default=None, max_length=200)
    bank_account_holder_name: Optional[str] = Field(default=None, max_length=200)
    bank_routing_number: Optional[str] = Field(default=None, max_length=50)
    bank_account_number: Optional[str] = Field(default=None, max_length=34)
    bank_account_type: Optional[Literal["checking", "savings"]] = None
    bank_country: Optional[str] = Field(default=None, min_length=2, max_length=2)

    paypal_email: Optional[str] = Field(default=None, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$", max_length=255)
    paypal_account_id: Optional[str] = Field(default=None, max_length=255)

    is_active: bool = True
    is_primary: bool = False
    currency: str = Field(default="USD", min_length=3, max_length=3)

    auto_payout_enabled: bool = False
    payout_schedule: ScheduleName = "weekly"
    payout_day: Optional[int] = 5
    minimum_payout_amount: Decimal = Field(default=Decimal("25.00"), ge=0)

    details: Optional[dict[str, Any]] = None

    @model_validator(mode="after")
    def check_rail_fields(self) -> "PlatformAccountCreate":
        if self.account_type == "stripe_connect" and not self.stripe_account_id:
            raise ValueError("stripe_account_id is required for stripe_connect accounts")
        if self.account_type == "bank_account" and not (
            self.bank_routing_number and self.bank_account_number and self.bank_account_holder_name
        ):
            raise ValueError("bank_routing_number, bank_account_number and bank_account_holder_name are required")
        if self.account_type == "paypal" and not self.paypal_email:
            raise ValueError("paypal_email is required for paypal accounts")
        validate_payout_day(self.payout_schedule, self.payout_day)
        return self

    @property
    def bank_account_last4(self) -> Optional[str]:
        if not self.bank_account_number:
            return None
        digits = "".join(ch for ch in self.bank_account_number if ch.isdigit())
        return digits[-4:] or None


class PlatformAccountUpdate(BaseModel):
    account_name: Optional[str] = Field(default=None, max_length=200)
    stripe_account_status: Optional[str] = Field(default=None, max_length=30)
    bank_name: Optional[str] = Field(default=None, max_length=200)
    bank_account_holder_name: Optional[str] = Field(default=None, max_length=200)
    paypal_email: Optional[str] = Field(default=None, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$", max_length=255)
    is_active: Optional[bool] = None
    is_primary: Optional[bool] = None
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    auto_payout_enabled: Optional[bool] = None
    payout_schedule: Optional[ScheduleName] = None
    payout_day: Optional[int] = None
    minimum_payout_amount: Optional[Decimal] = Field(default=None, ge=0)
    details: Optional[dict[str, Any]] = None


class StripeConnectSetupRequest(BaseModel):
    email: str = Field(pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$", max_length=255)
    business_name: Optional[str] = Field(default=None, max_length=200)
    country: Optional[str] = Field(default=None, min_length=2, max_length=2)
    return_url: Optional[str] = None
    refresh_url: Optional[str] = None
