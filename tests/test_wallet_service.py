"""
Unit tests for WalletService.

These tests use the in-memory SQLite async session fixture (db_session)
to validate fee splitting, payout reservation/settlement and ledger reporting.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal
from unittest.mock import patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from payout_ledger.core.clock import utcnow
from payout_ledger.db.models import (
    CreatorWallet,
    PayoutRequestStatus,
    PlatformTransaction,
    PlatformTransactionType,
    SubscriptionPayment,
    WalletTransaction,
    WalletTransactionType,
)
from payout_ledger.domain.services.wallet_service import WalletService

PAYPAL = {"type": "paypal", "email": "creator@example.com"}


async def _ledger_total(db_session, wallet_id: int) -> Decimal:
    result = await db_session.execute(
        select(func.coalesce(func.sum(WalletTransaction.amount), 0)).where(WalletTransaction.wallet_id == wallet_id)
    )
    return Decimal(str(result.scalar_one())).quantize(Decimal("0.01"))


# ============================================================================
# Wallet lifecycle
# ============================================================================

@pytest.mark.unit
async def test_get_or_create_wallet_creates_new(db_session):
    service = WalletService(db_session)

    wallet = await service.get_or_create_wallet("creator-new")

    assert wallet.creator_id == "creator-new"
    assert wallet.balance == Decimal("0.00")
    assert wallet.pending_balance == Decimal("0.00")
    assert wallet.is_active is True

    again = await service.get_or_create_wallet("creator-new")
    assert again.id == wallet.id


@pytest.mark.unit
async def test_get_or_create_wallet_loses_race_to_other_session(async_engine, db_session):
    """Another session creates the wallet between our lookup and our INSERT"""
    other_sessions = async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)
    real_execute = db_session.execute
    winners: list[CreatorWallet] = []

    async def lookup_then_lose_race(statement, *args, **kwargs):
        result = await real_execute(statement, *args, **kwargs)
        if not winners:
            async with other_sessions() as other:
                winners.append(await WalletService(other).get_or_create_wallet("creator-race"))
        return result

    with patch.object(db_session, "execute", lookup_then_lose_race):
        wallet = await WalletService(db_session).get_or_create_wallet("creator-race")

    assert wallet.id == winners[0].id
    count = await db_session.execute(
        select(func.count(CreatorWallet.id)).where(CreatorWallet.creator_id == "creator-race")
    )
    assert count.scalar_one() == 1


@pytest.mark.unit
async def test_update_payout_method_validates(wallet_factory, db_session):
    wallet = await wallet_factory()
    service = WalletService(db_session)

    bad = await service.update_payout_method(wallet.id, {"type": "crypto"})
    assert bad.success is False
    assert bad.error == "Unsupported payout method: crypto"

    good = await service.update_payout_method(wallet.id, {"type": "stripe_connect", "stripe_account_id": "acct_9"})
    assert good.success is True
    assert good.data.payout_method == {"type": "stripe_connect", "stripe_account_id": "acct_9"}
    assert good.data.stripe_account_id == "acct_9"


@pytest.mark.unit
async def test_update_payout_method_unknown_wallet(db_session):
    result = await WalletService(db_session).update_payout_method(999, PAYPAL)

    assert result.success is False
    assert result.error == "Wallet not found"


@pytest.mark.unit
async def test_deactivate_wallet_twice(wallet_factory, db_session):
    wallet = await wallet_factory()
    service = WalletService(db_session)

    first = await service.deactivate_wallet(wallet.id)
    second = await service.deactivate_wallet(wallet.id)

    assert first.success is True
    assert first.data.is_active is False
    assert second.success is False
    assert second.error == "Wallet is already inactive"


# ============================================================================
# Incoming payments
# ============================================================================

@pytest.mark.unit
async def test_process_subscription_payment_splits_fee(subscription_factory, db_session):
    await subscription_factory(creator_id="creator-1", subscription_id="sub-1")
    service = WalletService(db_session)

    result = await service.process_subscription_payment("sub-1", "100.00")

    assert result.success is True
    assert result.platform_fee == Decimal("20.00")
    assert result.creator_amount == Decimal("80.00")

    wallet = await service.get_wallet_by_id(result.wallet_id, refresh=True)
    assert wallet.balance == Decimal("80.00")
    assert wallet.total_earned == Decimal("80.00")
    assert await _ledger_total(db_session, wallet.id) == Decimal("80.00")

    payment = (await db_session.execute(select(SubscriptionPayment))).scalar_one()
    assert payment.gross_amount == Decimal("100.00")
    assert payment.platform_fee + payment.creator_amount == payment.gross_amount

    fee_txn = (await db_session.execute(select(PlatformTransaction))).scalar_one()
    assert fee_txn.transaction_type == PlatformTransactionType.FEE_COLLECTION
    assert fee_txn.amount == Decimal("20.00")
    # no platform account configured yet
    assert fee_txn.platform_account_id is None


@pytest.mark.unit
async def test_process_subscription_payment_uses_active_fee_config(
    subscription_factory, fee_config_factory, db_session
):
    await subscription_factory(subscription_id="sub-1")
    await fee_config_factory(fee_percentage="10.00")

    result = await WalletService(db_session).process_subscription_payment("sub-1", "50.00")

    assert result.platform_fee == Decimal("5.00")
    assert result.creator_amount == Decimal("45.00")


@pytest.mark.unit
async def test_process_subscription_payment_updates_primary_platform_balance(
    subscription_factory, platform_account_factory, db_session
):
    from payout_ledger.domain.services.platform_account_service import PlatformAccountService

    account = await platform_account_factory()
    await subscription_factory(subscription_id="sub-1")

    await WalletService(db_session).process_subscription_payment("sub-1", "100.00")

    balance = (await PlatformAccountService(db_session).get_platform_balance()).data
    assert balance.platform_account_id == account.id
    assert balance.total_fees_collected == Decimal("20.00")
    assert balance.available_balance == Decimal("20.00")


@pytest.mark.unit
async def test_duplicate_external_payment_is_not_credited_twice(subscription_factory, db_session):
    await subscription_factory(subscription_id="sub-1")
    service = WalletService(db_session)

    first = await service.process_subscription_payment("sub-1", "10.00", external_payment_id="pi_1")
    second = await service.process_subscription_payment("sub-1", "10.00", external_payment_id="pi_1")

    assert first.success and second.success
    assert second.duplicate is True
    assert second.payment_id == first.payment_id
    wallet = await service.get_wallet_by_id(first.wallet_id, refresh=True)
    assert wallet.balance == Decimal("8.00")


@pytest.mark.unit
async def test_unknown_subscription(db_session):
    result = await WalletService(db_session).process_subscription_payment("missing", "10.00")

    assert result.success is False
    assert result.error == "Subscription not found: missing"


@pytest.mark.unit
async def test_non_positive_payment_rejected_without_writes(subscription_factory, db_session):
    await subscription_factory(subscription_id="sub-1")

    result = await WalletService(db_session).process_subscription_payment("sub-1", "0")

    assert result.success is False
    assert result.error == "Gross amount must be positive"
    count = await db_session.execute(select(func.count(WalletTransaction.id)))
    assert count.scalar_one() == 0


@pytest.mark.unit
async def test_payment_to_inactive_wallet_rejected(subscription_factory, wallet_factory, db_session):
    await wallet_factory(creator_id="creator-1", is_active=False)
    await subscription_factory(creator_id="creator-1", subscription_id="sub-1")

    result = await WalletService(db_session).process_subscription_payment("sub-1", "10.00")

    assert result.success is False
    assert result.error == "Wallet is inactive"


# ============================================================================
# Payout requests
# ============================================================================

@pytest.mark.unit
async def test_request_payout_moves_balance_to_pending(wallet_factory, db_session):
    wallet = await wallet_factory(balance="100.00", payout_method=PAYPAL)
    service = WalletService(db_session)

    result = await service.request_payout(wallet.id, "40.00")

    assert result.success is True
    assert result.status == "pending"
    wallet = await service.get_wallet_by_id(wallet.id, refresh=True)
    assert wallet.balance == Decimal("60.00")
    assert wallet.pending_balance == Decimal("40.00")

    entries = await service.get_wallet_transactions(wallet.id)
    assert entries[0].transaction_type == WalletTransactionType.PAYOUT
    assert entries[0].amount == Decimal("-40.00")
    assert entries[0].balance_after == Decimal("60.00")


@pytest.mark.unit
async def test_request_payout_insufficient_balance_changes_nothing(wallet_factory, db_session):
    wallet = await wallet_factory(balance="10.00", payout_method=PAYPAL)
    wallet_id = wallet.id
    service = WalletService(db_session)

    result = await service.request_payout(wallet_id, "10.01")

    assert result.success is False
    assert result.error == "Insufficient balance"
    wallet = await service.get_wallet_by_id(wallet_id, refresh=True)
    assert wallet.balance == Decimal("10.00")
    assert wallet.pending_balance == Decimal("0.00")
    assert await service.get_payout_requests(wallet_id) == []


@pytest.mark.unit
async def test_request_payout_without_method(wallet_factory, db_session):
    wallet = await wallet_factory(balance="100.00")

    result = await WalletService(db_session).request_payout(wallet.id, "10.00")

    assert result.success is False
    assert result.error == "No payout method configured"


@pytest.mark.unit
@pytest.mark.parametrize("amount", ["0", "-1.00"])
async def test_request_payout_non_positive(wallet_factory, db_session, amount):
    wallet = await wallet_factory(balance="100.00", payout_method=PAYPAL)

    result = await WalletService(db_session).request_payout(wallet.id, amount)

    assert result.success is False
    assert result.error == "Payout amount must be positive"


@pytest.mark.unit
async def test_request_payout_unknown_wallet(db_session):
    result = await WalletService(db_session).request_payout(404, "1.00", PAYPAL)

    assert result.success is False
    assert result.error == "Wallet not found: 404"


@pytest.mark.unit
async def test_complete_payout_settles_and_records_platform_payout(wallet_factory, db_session):
    wallet = await wallet_factory(balance="100.00", payout_method=PAYPAL)
    service = WalletService(db_session)
    requested = await service.request_payout(wallet.id, "40.00")

    result = await service.complete_payout(requested.payout_id, "paypal-batch-1")

    assert result.success is True
    assert result.status == "completed"
    wallet = await service.get_wallet_by_id(wallet.id, refresh=True)
    assert wallet.balance == Decimal("60.00")
    assert wallet.pending_balance == Decimal("0.00")
    assert wallet.total_withdrawn == Decimal("40.00")

    request = await service.get_payout_request(requested.payout_id, refresh=True)
    assert request.external_payout_id == "paypal-batch-1"
    assert request.completed_at is not None

    txn = (await db_session.execute(select(PlatformTransaction))).scalar_one()
    assert txn.transaction_type == PlatformTransactionType.CREATOR_PAYOUT
    assert txn.reference_id == str(requested.payout_id)


@pytest.mark.unit
async def test_fail_payout_returns_funds(wallet_factory, db_session):
    wallet = await wallet_factory(balance="100.00", payout_method=PAYPAL)
    service = WalletService(db_session)
    requested = await service.request_payout(wallet.id, "40.00")

    result = await service.fail_payout(requested.payout_id, "Account closed")

    assert result.success is True
    wallet = await service.get_wallet_by_id(wallet.id, refresh=True)
    assert wallet.balance == Decimal("100.00")
    assert wallet.pending_balance == Decimal("0.00")
    assert await _ledger_total(db_session, wallet.id) == Decimal("100.00")

    request = await service.get_payout_request(requested.payout_id, refresh=True)
    assert request.status == PayoutRequestStatus.FAILED
    assert request.failure_reason == "Account closed"


@pytest.mark.unit
async def test_payout_status_never_moves_backwards(wallet_factory, db_session):
    wallet = await wallet_factory(balance="100.00", payout_method=PAYPAL)
    wallet_id = wallet.id
    service = WalletService(db_session)
    requested = await service.request_payout(wallet_id, "40.00")
    await service.complete_payout(requested.payout_id)

    failed = await service.fail_payout(requested.payout_id, "too late")
    again = await service.complete_payout(requested.payout_id)

    assert failed.success is False
    assert "cannot move from 'completed' to 'failed'" in failed.error
    assert again.success is False
    wallet = await service.get_wallet_by_id(wallet_id, refresh=True)
    assert wallet.total_withdrawn == Decimal("40.00")
    assert wallet.balance == Decimal("60.00")


@pytest.mark.unit
async def test_mark_processing_then_complete(wallet_factory, db_session):
    wallet = await wallet_factory(balance="50.00", payout_method=PAYPAL)
    service = WalletService(db_session)
    requested = await service.request_payout(wallet.id, "50.00")

    processing = await service.mark_payout_processing(requested.payout_id)
    second = await service.mark_payout_processing(requested.payout_id)
    completed = await service.complete_payout(requested.payout_id)

    assert processing.status == "processing"
    assert second.success is False
    assert completed.success is True


@pytest.mark.unit
async def test_unknown_payout_request(db_session):
    result = await WalletService(db_session).complete_payout(12345)

    assert result.success is False
    assert result.error == "Payout request not found"


@pytest.mark.unit
async def test_get_payout_requests_filters_by_status(wallet_factory, db_session):
    wallet = await wallet_factory(balance="100.00", payout_method=PAYPAL)
    service = WalletService(db_session)
    first = await service.request_payout(wallet.id, "10.00")
    await service.request_payout(wallet.id, "20.00")
    await service.complete_payout(first.payout_id)

    pending = await service.get_payout_requests(wallet.id, status="pending")
    completed = await service.get_payout_requests(wallet.id, status="completed")

    assert [r.amount for r in pending] == [Decimal("20.00")]
    assert [r.id for r in completed] == [first.payout_id]


# ============================================================================
# Reporting
# ============================================================================

@pytest.mark.unit
async def test_wallet_stats_come_from_ledger(subscription_factory, db_session):
    await subscription_factory(subscription_id="sub-1")
    service = WalletService(db_session)
    paid = await service.process_subscription_payment("sub-1", "100.00")
    await service.update_payout_method(paid.wallet_id, PAYPAL)
    first = await service.request_payout(paid.wallet_id, "30.00")
    second = await service.request_payout(paid.wallet_id, "20.00")
    await service.fail_payout(second.payout_id, "bounced")

    stats = await service.get_wallet_stats(paid.wallet_id)

    assert stats.current_balance == Decimal("50.00")
    assert stats.total_earnings == Decimal("80.00")
    assert stats.total_payouts == Decimal("30.00")
    assert stats.pending_payout_amount == Decimal("30.00")
    assert stats.this_month_earnings == Decimal("80.00")
    assert stats.last_month_earnings == Decimal("0.00")
    assert stats.transaction_count == 4
    assert first.success


@pytest.mark.unit
async def test_wallet_stats_unknown_wallet(db_session):
    assert await WalletService(db_session).get_wallet_stats(1) is None


@pytest.mark.unit
async def test_wallet_summary_without_platform_account(wallet_factory, db_session):
    wallet = await wallet_factory(balance="30.00", payout_method=PAYPAL)

    summary = await WalletService(db_session).get_wallet_summary(wallet.id)

    assert summary.minimum_payout_amount == Decimal("25.00")
    assert summary.can_request_payout is True
    assert summary.payout_method_configured is True
    assert summary.next_payout_date is None


@pytest.mark.unit
async def test_wallet_summary_uses_primary_account_schedule(
    wallet_factory, platform_account_factory, db_session
):
    from payout_ledger.db.models import PayoutSchedule

    await platform_account_factory(
        payout_schedule=PayoutSchedule.WEEKLY, payout_day=5, minimum_payout_amount="50.00"
    )
    wallet = await wallet_factory(balance="30.00", payout_method=PAYPAL)

    # Wednesday 2024-06-05 -> next Friday
    summary = await WalletService(db_session).get_wallet_summary(wallet.id, now=datetime(2024, 6, 5, 12, 0))

    assert summary.minimum_payout_amount == Decimal("50.00")
    assert summary.can_request_payout is False
    assert summary.next_payout_date.isoformat() == "2024-06-07"


@pytest.mark.unit
async def test_earnings_breakdown(subscription_factory, db_session):
    await subscription_factory(subscription_id="sub-1")
    service = WalletService(db_session)
    card = await service.process_subscription_payment("sub-1", "10.00", payment_method="card")
    await service.process_subscription_payment("sub-1", "20.00", payment_method="paypal")

    now = utcnow()
    breakdown = await service.get_earnings_breakdown(card.wallet_id, now - timedelta(days=1), now + timedelta(days=1))

    assert breakdown.payment_count == 2
    assert breakdown.gross_amount == Decimal("30.00")
    assert breakdown.platform_fees == Decimal("6.00")
    assert breakdown.net_earnings == Decimal("24.00")
    assert breakdown.by_payment_method == {"card": Decimal("8.00"), "paypal": Decimal("16.00")}
    assert len(breakdown.daily) == 1
    assert breakdown.daily[0]["count"] == 2


@pytest.mark.unit
async def test_wallet_transactions_filter_by_type(subscription_factory, db_session):
    await subscription_factory(subscription_id="sub-1")
    service = WalletService(db_session)
    paid = await service.process_subscription_payment("sub-1", "100.00")
    await service.update_payout_method(paid.wallet_id, PAYPAL)
    await service.request_payout(paid.wallet_id, "10.00")

    payouts = await service.get_wallet_transactions(paid.wallet_id, transaction_type="payout")
    everything = await service.get_wallet_transactions(paid.wallet_id)

    assert len(payouts) == 1
    assert len(everything) == 2
    wallets = await db_session.execute(select(func.count(CreatorWallet.id)))
    assert wallets.scalar_one() == 1
