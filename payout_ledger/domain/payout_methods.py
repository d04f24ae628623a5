"""
Creator payout methods.

A payout method is a tagged variant stored as JSON on the wallet and copied into
every payout request and job snapshot:

    {"type": "stripe_connect", ...}
    {"type": "bank_transfer", "account_holder_name": ..., "routing_number": ..., ...}
    {"type": "paypal", "email": ...}
"""
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError, model_validator

from payout_ledger.core.exceptions import ErrorCode, ValidationException

STRIPE_CONNECT = "stripe_connect"
BANK_TRANSFER = "bank_transfer"
PAYPAL = "paypal"

SUPPORTED_PAYOUT_METHODS = (STRIPE_CONNECT, BANK_TRANSFER, PAYPAL)


class StripeConnectMethod(BaseModel):
    type: Literal["stripe_connect"] = STRIPE_CONNECT
    # the wallet's stripe_account_id is authoritative; this copy is informational
    stripe_account_id: Optional[str] = None


class BankTransferMethod(BaseModel):
    type: Literal["bank_transfer"] = BANK_TRANSFER
    account_holder_name: str = Field(min_length=1, max_length=200)
    bank_name: Optional[str] = Field(default=None, max_length=200)
    routing_number: str = Field(min_length=4, max_length=50)
    account_number_last4: str = Field(pattern=r"^\d{4}$")
    account_type: Literal["checking", "savings"] = "checking"
    country: str = Field(default="US", min_length=2, max_length=2)

    @model_validator(mode="before")
    @classmethod
    def keep_last_four_digits(cls, data: Any) -> Any:
        """Full account numbers are accepted on input but never stored"""
        if isinstance(data, dict) and "account_number" in data:
            data = dict(data)
            digits = "".join(ch for ch in str(data.pop("account_number")) if ch.isdigit())
            data.setdefault("account_number_last4", digits[-4:])
        return data


class PayPalMethod(BaseModel):
    type: Literal["paypal"] = PAYPAL
    email: str = Field(pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$", max_length=255)


PayoutMethod = Annotated[
    Union[StripeConnectMethod, BankTransferMethod, PayPalMethod],
    Field(discriminator="type"),
]

_payout_method_adapter = TypeAdapter(PayoutMethod)


def payout_method_type(raw: Any) -> Optional[str]:
    """The tag of a stored payout method, without validating the rest"""
    if isinstance(raw, dict):
        value = raw.get("type")
        return str(value) if value is not None else None
    return getattr(raw, "type", None)


def parse_payout_method(raw: Any) -> PayoutMethod:
    """
    Validate a payout method.

    Raises:
        ValidationException: missing, unknown type, or rail fields missing
    """
    if raw is None or raw == {}:
        raise ValidationException(
            "No payout method configured",
            field="payout_method",
            error_code=ErrorCode.PAYOUT_METHOD_MISSING,
        )
    method_type = payout_method_type(raw)
    if method_type not in SUPPORTED_PAYOUT_METHODS:
        raise ValidationException(
            f"Unsupported payout method: {method_type}",
            field="payout_method.type",
            error_code=ErrorCode.UNSUPPORTED_PAYOUT_METHOD,
        )
    try:
        return _payout_method_adapter.validate_python(raw)
    except ValidationError as exc:
        raise ValidationException(
            f"Invalid {method_type} payout method",
            field="payout_method",
            details={"errors": exc.errors(include_url=False, include_context=False)},
        ) from exc


def dump_payout_method(method: PayoutMethod) -> dict[str, Any]:
    return method.model_dump(exclude_none=True)
