"""
Payment processor gateways.

Business services depend only on BasePaymentGateway; get_payment_gateway() picks the
implementation from settings.PAYMENT_GATEWAY.
"""
from payout_ledger.domain.services.gateways.base_gateway import (
    BasePaymentGateway,
    BalanceData,
    ConnectedAccountData,
    PaymentIntentData,
    TransferData,
)
from payout_ledger.domain.services.gateways.gateway_factory import (
    get_payment_gateway,
    reset_gateways,
)

__all__ = [
    "BasePaymentGateway",
    "BalanceData",
    "ConnectedAccountData",
    "PaymentIntentData",
    "TransferData",
    "get_payment_gateway",
    "reset_gateways",
]
