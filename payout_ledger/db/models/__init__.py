"""
Database Models
"""
from payout_ledger.db.models.creator_wallet import CreatorWallet
from payout_ledger.db.models.wallet_transaction import (
    WalletTransaction,
    WalletTransactionType,
    TransactionStatus,
)
from payout_ledger.db.models.subscription_payment import SubscriptionPayment
from payout_ledger.db.models.creator_subscription import CreatorSubscription
from payout_ledger.db.models.platform_fee_config import PlatformFeeConfig
from payout_ledger.db.models.payout_request import PayoutRequest, PayoutRequestStatus
from payout_ledger.db.models.payout_job import PayoutJob, PayoutJobStatus
from payout_ledger.db.models.platform_account import (
    PlatformAccount,
    PlatformAccountType,
    PayoutSchedule,
)
from payout_ledger.db.models.platform_balance import PlatformBalance
from payout_ledger.db.models.platform_transaction import (
    PlatformTransaction,
    PlatformTransactionType,
)

__all__ = [
    "CreatorWallet",
    "WalletTransaction",
    "WalletTransactionType",
    "TransactionStatus",
    "SubscriptionPayment",
    "CreatorSubscription",
    "PlatformFeeConfig",
    "PayoutRequest",
    "PayoutRequestStatus",
    "PayoutJob",
    "PayoutJobStatus",
    "PlatformAccount",
    "PlatformAccountType",
    "PayoutSchedule",
    "PlatformBalance",
    "PlatformTransaction",
    "PlatformTransactionType",
]
