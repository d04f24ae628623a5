"""
Helpers for end-to-end payout scenarios.

Every step goes through the HTTP API the way the admin dashboard and the
billing webhook drive the system; the database is only read for assertions.
"""
from decimal import Decimal
from typing import Any, Optional

import httpx
import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from payout_ledger.db.models import PlatformTransaction, WalletTransaction

_payment_counter = 0


def _next_payment_id() -> str:
    """Unique external payment id per webhook delivery"""
    global _payment_counter
    _payment_counter += 1
    return f"ch_scenario_{_payment_counter}"


async def pay_subscription(
    client: httpx.AsyncClient,
    subscription_id: str,
    amount: str,
    *,
    external_payment_id: Optional[str] = None,
) -> dict[str, Any]:
    response = await client.post(
        "/api/payments/subscription-payments",
        json={
            "subscription_id": subscription_id,
            "gross_amount": amount,
            "external_payment_id": external_payment_id or _next_payment_id(),
        },
    )
    assert response.status_code == 200, response.text
    return response.json()


async def get_wallet(client: httpx.AsyncClient, creator_id: str) -> dict[str, Any]:
    response = await client.get(f"/api/wallets/creators/{creator_id}")
    assert response.status_code == 200, response.text
    return response.json()


async def schedule_and_process(
    client: httpx.AsyncClient,
    headers: dict[str, str],
    *,
    scheduled_date: str = "2024-06-07",
    minimum_amount: str = "25.00",
) -> tuple[int, dict[str, Any]]:
    scheduled = await client.post(
        "/api/admin/payouts/jobs",
        json={"scheduled_date": scheduled_date, "minimum_amount": minimum_amount},
        headers=headers,
    )
    assert scheduled.status_code == 201, scheduled.text
    job_id = scheduled.json()["job_id"]
    processed = await client.post(f"/api/admin/payouts/jobs/{job_id}/process", headers=headers)
    assert processed.status_code == 200, processed.text
    return job_id, processed.json()


def money(value: Any) -> Decimal:
    """JSON amounts arrive as floats or strings depending on the endpoint"""
    return Decimal(str(value)).quantize(Decimal("0.01"))


async def assert_ledger_matches_wallet(db: AsyncSession, wallet_id: int, balance: Decimal) -> None:
    result = await db.execute(
        select(func.coalesce(func.sum(WalletTransaction.amount), 0)).where(
            WalletTransaction.wallet_id == wallet_id
        )
    )
    assert money(result.scalar_one()) == balance


async def count_platform_transactions(db: AsyncSession, transaction_type) -> int:
    result = await db.execute(
        select(func.count(PlatformTransaction.id)).where(
            PlatformTransaction.transaction_type == transaction_type
        )
    )
    return int(result.scalar_one())


@pytest.fixture
async def primary_stripe_account(test_client: httpx.AsyncClient, admin_headers: dict[str, str]) -> dict[str, Any]:
    """Primary platform account created through the admin API"""
    response = await test_client.post(
        "/api/admin/platform/accounts",
        json={
            "account_type": "stripe_connect",
            "account_name": "Platform",
            "stripe_account_id": "acct_platform",
            "is_primary": True,
            "auto_payout_enabled": True,
            "payout_schedule": "daily",
            "payout_day": None,
            "minimum_payout_amount": "25.00",
        },
        headers=admin_headers,
    )
    assert response.status_code == 200, response.text
    return response.json()
