"""
Property-based tests with hypothesis for the money invariants.

1. Fee split: platform_fee + creator_amount == gross for any amount and fee config
2. Wallet ledger: after any sequence of payments and payout transitions the ledger
   sums to the balance and no money is created or lost
3. Payout schedules: the next payout date is a day the schedule actually fires on
"""
import itertools
from datetime import date, timedelta
from decimal import Decimal

import pytest
from hypothesis import given, settings as h_settings, HealthCheck
from hypothesis.strategies import (
    composite,
    decimals,
    dates,
    integers,
    just,
    lists,
    none,
    one_of,
    sampled_from,
    tuples,
)

from payout_ledger.db.models import CreatorSubscription
from payout_ledger.domain.money import compute_fee_split
from payout_ledger.domain.payout_schedule import next_payout_date, should_run_payout
from payout_ledger.domain.services.wallet_service import WalletService

# unique ids across hypothesis examples sharing one database
_prop_counter = itertools.count(700000)

PAYPAL = {"type": "paypal", "email": "creator@example.com"}


# ============================================================================
# Strategies
# ============================================================================

GROSS_AMOUNTS = decimals(min_value=Decimal("0.01"), max_value=Decimal("100000"), places=2)
FEE_PERCENTAGES = decimals(min_value=Decimal("0"), max_value=Decimal("100"), places=2)
FEE_BOUNDS = one_of(none(), decimals(min_value=Decimal("0"), max_value=Decimal("500"), places=2))

CENTS = integers(min_value=1, max_value=50_000)

WALLET_OPERATIONS = lists(
    one_of(
        tuples(just("pay"), CENTS),
        tuples(just("payout"), CENTS),
        tuples(just("complete"), just(0)),
        tuples(just("fail"), just(0)),
    ),
    min_size=1,
    max_size=12,
)


@composite
def schedules(draw):
    schedule = draw(sampled_from(["daily", "weekly", "monthly"]))
    if schedule == "weekly":
        return schedule, draw(integers(min_value=0, max_value=6))
    if schedule == "monthly":
        return schedule, draw(integers(min_value=1, max_value=28))
    return schedule, None


# ============================================================================
# Fee split
# ============================================================================

class TestFeeSplitProperties:

    @pytest.mark.unit
    @given(gross=GROSS_AMOUNTS, pct=FEE_PERCENTAGES, minimum=FEE_BOUNDS, maximum=FEE_BOUNDS)
    @h_settings(max_examples=200, deadline=None)
    def test_split_is_exact_and_bounded(self, gross, pct, minimum, maximum):
        split = compute_fee_split(gross, pct, minimum_fee=minimum, maximum_fee=maximum)

        assert split.platform_fee + split.creator_amount == split.gross_amount
        assert Decimal("0") <= split.platform_fee <= split.gross_amount
        assert split.creator_amount >= 0
        assert split.platform_fee == split.platform_fee.quantize(Decimal("0.01"))

    @pytest.mark.unit
    @given(gross=GROSS_AMOUNTS, pct=FEE_PERCENTAGES, maximum=decimals(
        min_value=Decimal("0"), max_value=Decimal("500"), places=2
    ))
    @h_settings(max_examples=100, deadline=None)
    def test_maximum_fee_is_a_cap(self, gross, pct, maximum):
        split = compute_fee_split(gross, pct, maximum_fee=maximum)

        assert split.platform_fee <= maximum


# ============================================================================
# Wallet ledger
# ============================================================================

class TestWalletLedgerProperties:

    @pytest.mark.asyncio
    @given(operations=WALLET_OPERATIONS)
    @h_settings(
        max_examples=30,
        suppress_health_check=[HealthCheck.function_scoped_fixture],
        deadline=None,
    )
    async def test_ledger_matches_balance(self, operations, db_session):
        """
        Invariants after every step:
        - sum of ledger entries == balance
        - balance + pending + withdrawn == earned
        - no balance goes negative
        """
        uid = next(_prop_counter)
        creator_id = f"prop-creator-{uid}"
        subscription_id = f"prop-sub-{uid}"
        db_session.add(CreatorSubscription(
            subscription_id=subscription_id, creator_id=creator_id, subscriber_id="prop-subscriber"
        ))
        await db_session.commit()

        service = WalletService(db_session)
        wallet = await service.get_or_create_wallet(creator_id)
        wallet_id = wallet.id
        open_payouts: list[int] = []

        for step, (action, cents) in enumerate(operations):
            amount = Decimal(cents) / 100
            if action == "pay":
                result = await service.process_subscription_payment(
                    subscription_id, amount, external_payment_id=f"prop-{uid}-{step}"
                )
                assert result.success
            elif action == "payout":
                current = await service.get_wallet_by_id(wallet_id, refresh=True)
                available = current.balance
                result = await service.request_payout(wallet_id, amount, PAYPAL)
                assert result.success == (amount <= available)
                if result.success:
                    open_payouts.append(result.payout_id)
            elif open_payouts:
                payout_id = open_payouts.pop(0)
                if action == "complete":
                    result = await service.complete_payout(payout_id, f"manual-{payout_id}")
                else:
                    result = await service.fail_payout(payout_id, "Bank rejected")
                assert result.success

            wallet = await service.get_wallet_by_id(wallet_id, refresh=True)
            stats = await service.get_wallet_stats(wallet_id)

            assert stats.current_balance == wallet.balance
            assert wallet.balance >= 0
            assert wallet.pending_balance >= 0
            assert wallet.balance + wallet.pending_balance + wallet.total_withdrawn == wallet.total_earned


# ============================================================================
# Payout schedules
# ============================================================================

class TestPayoutScheduleProperties:

    @pytest.mark.unit
    @given(today=dates(min_value=date(2020, 1, 1), max_value=date(2030, 12, 31)), schedule=schedules())
    @h_settings(max_examples=200, deadline=None)
    def test_next_payout_date_fires(self, today, schedule):
        name, payout_day = schedule

        upcoming = next_payout_date(today, name, payout_day)

        assert upcoming is not None
        assert upcoming > today
        assert should_run_payout(upcoming, name, payout_day)
        # nothing in between fires
        day = today + timedelta(days=1)
        while day < upcoming:
            assert not should_run_payout(day, name, payout_day)
            day += timedelta(days=1)
