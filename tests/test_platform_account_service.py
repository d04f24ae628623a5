"""
Unit tests for PlatformAccountService: primary account handling, platform
bookkeeping, dashboard statistics and Stripe Connect onboarding.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from payout_ledger.db.models import (
    PayoutSchedule,
    PlatformAccount,
    PlatformAccountType,
    PlatformBalance,
    PlatformTransaction,
    PlatformTransactionType,
)
from payout_ledger.domain.schemas import (
    PlatformAccountCreate,
    PlatformAccountUpdate,
    StripeConnectSetupRequest,
)
from payout_ledger.domain.services.platform_account_service import PlatformAccountService
from payout_ledger.domain.services.wallet_service import WalletService


def _paypal(email: str = "platform@example.com", **kwargs) -> PlatformAccountCreate:
    return PlatformAccountCreate(account_type="paypal", paypal_email=email, **kwargs)


async def _primary_count(db_session) -> int:
    result = await db_session.execute(
        select(func.count(PlatformAccount.id)).where(PlatformAccount.is_primary.is_(True))
    )
    return result.scalar_one()


# ============================================================================
# Accounts
# ============================================================================

@pytest.mark.unit
async def test_no_primary_account_is_not_an_error(db_session):
    result = await PlatformAccountService(db_session).get_primary_account()

    assert result.success is True
    assert result.data is None


@pytest.mark.unit
async def test_upsert_creates_then_updates_same_identity(db_session):
    service = PlatformAccountService(db_session)

    created = await service.upsert_platform_account(_paypal(account_name="Main"))
    updated = await service.upsert_platform_account(_paypal(account_name="Renamed"))

    assert created.success and updated.success
    assert updated.data.id == created.data.id
    assert updated.data.account_name == "Renamed"
    accounts = (await service.get_platform_accounts()).data
    assert len(accounts) == 1


@pytest.mark.unit
async def test_bank_account_stores_only_last_four(db_session):
    result = await PlatformAccountService(db_session).upsert_platform_account(
        PlatformAccountCreate(
            account_type="bank_account",
            bank_account_holder_name="Platform Ltd",
            bank_routing_number="021000021",
            bank_account_number="000111222333",
        )
    )

    assert result.success is True
    assert result.data.bank_account_last4 == "2333"
    assert not hasattr(result.data, "bank_account_number")


@pytest.mark.unit
async def test_setting_primary_clears_previous_primary(db_session):
    service = PlatformAccountService(db_session)
    first = await service.upsert_platform_account(_paypal("a@example.com", is_primary=True))
    second = await service.upsert_platform_account(_paypal("b@example.com", is_primary=True))

    primary = await service.get_primary_account()

    assert primary.data.id == second.data.id
    assert await _primary_count(db_session) == 1
    old = await service._reload(first.data.id)
    assert old.is_primary is False


@pytest.mark.unit
async def test_update_makes_account_primary(db_session):
    service = PlatformAccountService(db_session)
    first = await service.upsert_platform_account(_paypal("a@example.com", is_primary=True))
    second = await service.upsert_platform_account(_paypal("b@example.com"))

    result = await service.update_platform_account(second.data.id, PlatformAccountUpdate(is_primary=True))

    assert result.success is True
    assert result.data.is_primary is True
    assert (await service._reload(first.data.id)).is_primary is False
    assert await _primary_count(db_session) == 1


@pytest.mark.unit
async def test_update_cannot_unset_primary_directly(db_session):
    service = PlatformAccountService(db_session)
    account = await service.upsert_platform_account(_paypal(is_primary=True))

    result = await service.update_platform_account(account.data.id, PlatformAccountUpdate(is_primary=False))

    assert result.success is False
    assert result.error == "Set another account as primary instead"


@pytest.mark.unit
async def test_update_rejects_inactive_primary(db_session):
    service = PlatformAccountService(db_session)
    account = await service.upsert_platform_account(_paypal())

    result = await service.update_platform_account(
        account.data.id, PlatformAccountUpdate(is_primary=True, is_active=False)
    )

    assert result.success is False
    assert result.error == "An inactive account cannot be primary"


@pytest.mark.unit
async def test_update_cannot_promote_inactive_account(platform_account_factory, db_session):
    primary = await platform_account_factory()
    retired = await platform_account_factory(
        account_type=PlatformAccountType.PAYPAL, paypal_email="old@example.com", is_primary=False, is_active=False
    )
    service = PlatformAccountService(db_session)

    result = await service.update_platform_account(retired.id, PlatformAccountUpdate(is_primary=True))
    revived = await service.update_platform_account(
        retired.id, PlatformAccountUpdate(is_primary=True, is_active=True)
    )

    assert result.success is False
    assert result.error == "An inactive account cannot be primary"
    assert revived.success is True
    assert revived.data.is_primary is True
    assert (await service._reload(primary.id)).is_primary is False


@pytest.mark.unit
async def test_update_cannot_deactivate_primary(platform_account_factory, db_session):
    primary = await platform_account_factory()
    service = PlatformAccountService(db_session)

    result = await service.update_platform_account(primary.id, PlatformAccountUpdate(is_active=False))

    assert result.success is False
    assert result.error == "Cannot deactivate the primary platform account"
    stored = await service._reload(primary.id)
    assert stored.is_active is True
    assert stored.is_primary is True


@pytest.mark.unit
async def test_upsert_cannot_deactivate_primary(db_session):
    service = PlatformAccountService(db_session)
    await service.upsert_platform_account(_paypal(is_primary=True))

    deactivated = await service.upsert_platform_account(_paypal(is_active=False))
    inactive_primary = await service.upsert_platform_account(
        _paypal("new@example.com", is_primary=True, is_active=False)
    )

    assert deactivated.error == "Cannot deactivate the primary platform account"
    assert inactive_primary.error == "An inactive account cannot be primary"
    primary = (await service.get_primary_account()).data
    assert primary.paypal_email == "platform@example.com"
    assert primary.is_active is True


@pytest.mark.unit
async def test_update_validates_payout_day_against_schedule(db_session):
    service = PlatformAccountService(db_session)
    account = await service.upsert_platform_account(_paypal())

    result = await service.update_platform_account(
        account.data.id, PlatformAccountUpdate(payout_schedule="monthly", payout_day=30)
    )
    ok = await service.update_platform_account(
        account.data.id, PlatformAccountUpdate(payout_schedule="monthly", payout_day=15, auto_payout_enabled=True)
    )

    assert result.success is False
    assert result.error == "Monthly payout_day must be between 1 and 28"
    assert ok.success is True
    assert ok.data.payout_schedule == PayoutSchedule.MONTHLY
    assert ok.data.auto_payout_enabled is True


@pytest.mark.unit
async def test_update_unknown_account(db_session):
    result = await PlatformAccountService(db_session).update_platform_account(
        99, PlatformAccountUpdate(account_name="x")
    )

    assert result.success is False
    assert result.error == "Platform account not found"


@pytest.mark.unit
async def test_delete_refuses_primary(platform_account_factory, db_session):
    account = await platform_account_factory()

    result = await PlatformAccountService(db_session).delete_platform_account(account.id)

    assert result.success is False
    assert result.error == "Cannot delete the primary platform account"


@pytest.mark.unit
async def test_delete_without_history_removes_row(platform_account_factory, db_session):
    account = await platform_account_factory(is_primary=False)
    account_id = account.id

    result = await PlatformAccountService(db_session).delete_platform_account(account_id)

    assert result.success is True
    remaining = await db_session.execute(select(func.count(PlatformAccount.id)))
    assert remaining.scalar_one() == 0


@pytest.mark.unit
async def test_delete_with_history_deactivates(platform_account_factory, db_session):
    account = await platform_account_factory(is_primary=False)
    account_id = account.id
    service = PlatformAccountService(db_session)
    await service.record_platform_transaction(
        PlatformTransactionType.ADJUSTMENT, "5.00", platform_account_id=account_id
    )
    await db_session.commit()

    result = await service.delete_platform_account(account_id)

    assert result.success is True
    kept = await service._reload(account_id)
    assert kept is not None
    assert kept.is_active is False


# ============================================================================
# Balance and transactions
# ============================================================================

@pytest.mark.unit
async def test_record_transactions_move_cached_balance(platform_account_factory, db_session):
    account = await platform_account_factory()
    service = PlatformAccountService(db_session)

    await service.record_platform_transaction(PlatformTransactionType.FEE_COLLECTION, "30.00")
    await service.record_platform_transaction(PlatformTransactionType.CREATOR_PAYOUT, "12.50")
    await service.record_platform_transaction(PlatformTransactionType.REFUND, "5.00")
    await db_session.commit()

    balance = (await service.get_platform_balance(account.id)).data
    assert balance.total_fees_collected == Decimal("30.00")
    assert balance.total_payouts_made == Decimal("12.50")
    assert balance.available_balance == Decimal("25.00")


@pytest.mark.unit
async def test_record_transaction_rolls_back_with_caller(platform_account_factory, db_session):
    await platform_account_factory()
    service = PlatformAccountService(db_session)

    await service.record_platform_transaction(PlatformTransactionType.FEE_COLLECTION, "30.00")
    await db_session.rollback()

    count = await db_session.execute(select(func.count(PlatformTransaction.id)))
    assert count.scalar_one() == 0
    balances = await db_session.execute(select(func.count(PlatformBalance.id)))
    assert balances.scalar_one() == 0


@pytest.mark.unit
async def test_get_platform_balance_without_primary(db_session):
    result = await PlatformAccountService(db_session).get_platform_balance()

    assert result.success is True
    assert result.data is None


@pytest.mark.unit
async def test_get_platform_transactions_filters(platform_account_factory, db_session):
    await platform_account_factory()
    service = PlatformAccountService(db_session)
    await service.record_platform_transaction(PlatformTransactionType.FEE_COLLECTION, "1.00")
    await service.record_platform_transaction(PlatformTransactionType.CREATOR_PAYOUT, "2.00")
    await db_session.commit()

    fees = await service.get_platform_transactions(transaction_type="fee_collection")
    bad = await service.get_platform_transactions(transaction_type="bonus")

    assert [t.amount for t in fees.data] == [Decimal("1.00")]
    assert bad.success is False
    assert bad.error == "Unknown transaction type: bonus"


# ============================================================================
# Dashboard
# ============================================================================

@pytest.mark.unit
async def test_dashboard_stats(platform_account_factory, subscription_factory, wallet_factory, db_session):
    await platform_account_factory()
    await subscription_factory(creator_id="creator-1", subscription_id="sub-1")
    wallets = WalletService(db_session)
    paid = await wallets.process_subscription_payment("sub-1", "100.00")
    await wallets.update_payout_method(paid.wallet_id, {"type": "paypal", "email": "c@example.com"})
    requested = await wallets.request_payout(paid.wallet_id, "30.00")
    await wallets.request_payout(paid.wallet_id, "10.00")
    await wallets.complete_payout(requested.payout_id)
    # never earned anything: not an active creator
    await wallet_factory(creator_id="creator-idle")

    result = await PlatformAccountService(db_session).get_platform_dashboard_stats()

    stats = result.data
    assert result.success is True
    assert stats.total_fees_collected == Decimal("20.00")
    assert stats.total_payouts_made == Decimal("30.00")
    assert stats.net_revenue == Decimal("-10.00")
    assert stats.this_month_fees == Decimal("20.00")
    assert stats.last_month_fees == Decimal("0.00")
    assert stats.growth_percentage == 100.0
    assert stats.pending_payouts == 1
    assert stats.active_creators == 1
    assert len(stats.recent_transactions) == 2
    assert stats.recent_transactions[0]["transaction_type"] == "creator_payout"


@pytest.mark.unit
async def test_dashboard_growth_month_over_month(platform_account_factory, db_session):
    await platform_account_factory()
    db_session.add_all([
        PlatformTransaction(
            transaction_type=PlatformTransactionType.FEE_COLLECTION,
            amount=Decimal("100.00"),
            created_at=datetime(2024, 5, 10),
        ),
        PlatformTransaction(
            transaction_type=PlatformTransactionType.FEE_COLLECTION,
            amount=Decimal("150.00"),
            created_at=datetime(2024, 6, 3),
        ),
    ])
    await db_session.commit()

    result = await PlatformAccountService(db_session).get_platform_dashboard_stats(now=datetime(2024, 6, 20))

    assert result.data.this_month_fees == Decimal("150.00")
    assert result.data.last_month_fees == Decimal("100.00")
    assert result.data.growth_percentage == 50.0


# ============================================================================
# Stripe Connect
# ============================================================================

@pytest.mark.unit
async def test_setup_stripe_connect_stores_primary_account(sandbox_gateway, db_session):
    service = PlatformAccountService(db_session, sandbox_gateway)

    result = await service.setup_stripe_connect(
        StripeConnectSetupRequest(email="finance@example.com", business_name="Creators Inc")
    )

    assert result.success is True
    assert result.account_id.startswith("acct_sandbox_")
    assert "return_url=http://localhost:3000/admin/platform/stripe/return" in result.onboarding_url
    primary = (await service.get_primary_account()).data
    assert primary.id == result.platform_account_id
    assert primary.account_type == PlatformAccountType.STRIPE_CONNECT
    assert primary.stripe_account_id == result.account_id
    assert primary.stripe_account_status == "pending"


@pytest.mark.unit
async def test_setup_stripe_connect_gateway_failure(sandbox_gateway, db_session):
    sandbox_gateway.fail_next_call("Connect is not enabled")

    result = await PlatformAccountService(db_session, sandbox_gateway).setup_stripe_connect(
        StripeConnectSetupRequest(email="finance@example.com")
    )

    assert result.success is False
    assert result.error == "Connect is not enabled"
    count = await db_session.execute(select(func.count(PlatformAccount.id)))
    assert count.scalar_one() == 0


@pytest.mark.unit
async def test_get_stripe_connect_info_syncs_flags(sandbox_gateway, db_session):
    service = PlatformAccountService(db_session, sandbox_gateway)
    setup = await service.setup_stripe_connect(StripeConnectSetupRequest(email="finance@example.com"))
    sandbox_gateway.activate_account(setup.account_id)

    info = await service.get_stripe_connect_info(setup.account_id)

    assert info.success is True
    assert info.data.status == "active"
    assert info.data.payouts_enabled is True
    stored = await service._reload(setup.platform_account_id)
    assert stored.stripe_account_status == "active"
    assert stored.stripe_payouts_enabled is True


@pytest.mark.unit
async def test_get_stripe_connect_info_unknown_account(sandbox_gateway, db_session):
    info = await PlatformAccountService(db_session, sandbox_gateway).get_stripe_connect_info("acct_missing")

    assert info.success is False
    assert info.error == "No such account: acct_missing"
