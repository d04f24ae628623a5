"""
Pytest Configuration and Fixtures

Provides fixtures for:
- Database sessions (async, in-memory SQLite)
- The sandbox payment gateway, installed as the process-wide gateway
- Test data factories (subscriptions, wallets, platform accounts, fee configs)
"""
import os
os.environ.setdefault("PAYMENT_GATEWAY", "sandbox")
os.environ.setdefault("DEBUG", "false")

import pytest
from decimal import Decimal
from typing import Any, AsyncGenerator, Optional
from unittest.mock import patch

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

import payout_ledger.db.models  # noqa: F401  registers every table
from payout_ledger.core.config import settings
from payout_ledger.db.database import Base, get_db
from payout_ledger.db.models import (
    CreatorSubscription,
    CreatorWallet,
    PayoutSchedule,
    PlatformAccount,
    PlatformAccountType,
    PlatformFeeConfig,
)
from payout_ledger.domain.services.gateways import gateway_factory
from payout_ledger.domain.services.gateways.sandbox_gateway import SandboxPaymentGateway
from payout_ledger.main import app


# Test database URL (SQLite in memory for fast tests)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

TEST_ADMIN_API_KEY = "test-admin-api-key"


@pytest.fixture(scope="function")
async def async_engine():
    """Create async test database engine"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
async def db_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests"""
    async_session_maker = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )

    async with async_session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture(scope="function")
async def test_client(db_session: AsyncSession, sandbox_gateway):
    """Create test client with database override"""
    from httpx import AsyncClient, ASGITransport

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"X-Admin-API-Key": TEST_ADMIN_API_KEY}


@pytest.fixture(autouse=True)
def set_admin_api_key():
    with patch.object(settings, "ADMIN_API_KEY", TEST_ADMIN_API_KEY):
        yield


# ============================================================================
# Payment gateway
# ============================================================================

@pytest.fixture
def sandbox_gateway() -> SandboxPaymentGateway:
    """A fresh sandbox processor, also returned by get_payment_gateway()"""
    gateway = SandboxPaymentGateway()
    gateway_factory._gateway = gateway
    yield gateway
    gateway_factory.reset_gateways()


@pytest.fixture(autouse=True)
def reset_gateways():
    gateway_factory.reset_gateways()
    yield
    gateway_factory.reset_gateways()


# ============================================================================
# Test Data Factories
# ============================================================================

@pytest.fixture
def subscription_factory(db_session: AsyncSession):
    """Factory for subscriptions that route payments to a creator"""
    async def _create_subscription(
        creator_id: str = "creator-1",
        subscription_id: Optional[str] = None,
        subscriber_id: str = "subscriber-1",
    ) -> CreatorSubscription:
        subscription = CreatorSubscription(
            subscription_id=subscription_id or f"sub-{creator_id}",
            creator_id=creator_id,
            subscriber_id=subscriber_id,
        )
        db_session.add(subscription)
        await db_session.commit()
        await db_session.refresh(subscription)
        return subscription

    return _create_subscription


@pytest.fixture
def wallet_factory(db_session: AsyncSession):
    """Factory for creating creator wallets with a given balance and payout method"""
    async def _create_wallet(
        creator_id: str = "creator-1",
        balance: str | Decimal = "0.00",
        payout_method: Optional[dict[str, Any]] = None,
        stripe_account_id: Optional[str] = None,
        is_active: bool = True,
        pending_balance: str | Decimal = "0.00",
    ) -> CreatorWallet:
        balance = Decimal(str(balance))
        wallet = CreatorWallet(
            creator_id=creator_id,
            balance=balance,
            pending_balance=Decimal(str(pending_balance)),
            total_earned=balance,
            total_withdrawn=Decimal("0.00"),
            currency="USD",
            payout_method=payout_method,
            stripe_account_id=stripe_account_id,
            is_active=is_active,
        )
        db_session.add(wallet)
        await db_session.commit()
        await db_session.refresh(wallet)
        return wallet

    return _create_wallet


@pytest.fixture
def stripe_wallet_factory(wallet_factory):
    """Wallet paid out over Stripe Connect"""
    async def _create(creator_id: str, balance: str | Decimal, stripe_account_id: Optional[str] = None):
        account_id = stripe_account_id or f"acct_{creator_id.replace('-', '')}"
        return await wallet_factory(
            creator_id=creator_id,
            balance=balance,
            payout_method={"type": "stripe_connect"},
            stripe_account_id=account_id,
        )

    return _create


@pytest.fixture
def platform_account_factory(db_session: AsyncSession):
    """Factory for platform accounts (primary stripe_connect by default)"""
    async def _create_account(
        account_type: PlatformAccountType = PlatformAccountType.STRIPE_CONNECT,
        stripe_account_id: Optional[str] = "acct_platform",
        is_primary: bool = True,
        is_active: bool = True,
        auto_payout_enabled: bool = True,
        payout_schedule: PayoutSchedule = PayoutSchedule.DAILY,
        payout_day: Optional[int] = None,
        minimum_payout_amount: str | Decimal = "25.00",
        paypal_email: Optional[str] = None,
    ) -> PlatformAccount:
        account = PlatformAccount(
            account_type=account_type,
            account_name="Platform",
            stripe_account_id=stripe_account_id if account_type == PlatformAccountType.STRIPE_CONNECT else None,
            paypal_email=paypal_email,
            is_primary=is_primary,
            is_active=is_active,
            auto_payout_enabled=auto_payout_enabled,
            payout_schedule=payout_schedule,
            payout_day=payout_day,
            minimum_payout_amount=Decimal(str(minimum_payout_amount)),
        )
        db_session.add(account)
        await db_session.commit()
        await db_session.refresh(account)
        return account

    return _create_account


@pytest.fixture
def fee_config_factory(db_session: AsyncSession):
    async def _create_fee_config(
        fee_percentage: str | Decimal = "20.00",
        minimum_fee: str | Decimal = "0.00",
        maximum_fee: Optional[str | Decimal] = None,
        is_active: bool = True,
    ) -> PlatformFeeConfig:
        config = PlatformFeeConfig(
            fee_percentage=Decimal(str(fee_percentage)),
            minimum_fee=Decimal(str(minimum_fee)),
            maximum_fee=Decimal(str(maximum_fee)) if maximum_fee is not None else None,
            is_active=is_active,
        )
        db_session.add(config)
        await db_session.commit()
        await db_session.refresh(config)
        return config

    return _create_fee_config


# ============================================================================
# Circuit Breaker Reset
# ============================================================================

@pytest.fixture(autouse=True)
def reset_circuit_breakers():
    """Reset circuit breakers between tests"""
    from payout_ledger.core.circuit_breaker import CircuitBreaker
    CircuitBreaker.reset_all()
    yield
    CircuitBreaker.reset_all()


class FakeRedis:
    """In-memory stand-in for Redis with the commands the app uses and TTL tracking."""

    def __init__(self) -> None:
        self._store: dict[str, str] = {}
        self._ttls: dict[str, int] = {}

    async def ping(self) -> bool:
        return True

    async def get(self, key: str) -> str | None:
        return self._store.get(key)

    async def set(self, key: str, value: str, nx: bool = False, ex: int | None = None) -> bool | None:
        """SET with NX (only if absent) and EX (expiry in seconds)"""
        if nx and key in self._store:
            return None
        self._store[key] = value
        if ex is not None:
            self._ttls[key] = ex
        return True

    async def delete(self, *keys: str) -> None:
        for key in keys:
            self._store.pop(key, None)
            self._ttls.pop(key, None)

    async def aclose(self) -> None:
        self._store.clear()
        self._ttls.clear()


@pytest.fixture(autouse=True)
def fake_redis():
    """Replace get_redis with FakeRedis in every test."""
    _fake = FakeRedis()

    async def _get_fake_redis():
        return _fake

    with patch("payout_ledger.core.redis_client.get_redis", _get_fake_redis), \
         patch("payout_ledger.domain.services.health_service.get_redis", _get_fake_redis):
        yield _fake
