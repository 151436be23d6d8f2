"""
Pytest configuration for the services backend.

Environment is set before any bhavan import: a throwaway SQLite file, the
mock payment gateway from environment settings, and no email transport.
"""

import os
import tempfile

_test_data_dir = tempfile.mkdtemp(prefix="bhavan_test_")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_test_data_dir}/test.db"
os.environ["DEBUG"] = "false"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["PAYMENT_GATEWAY_PROVIDER"] = "mock"
os.environ["PAYMENT_GATEWAY_API_KEY"] = "mock_key_test"
os.environ["PAYMENT_GATEWAY_API_SECRET"] = "mock_secret_test"
os.environ["PAYMENT_GATEWAY_WEBHOOK_SECRET"] = "whsec_test"
os.environ["SMTP_USER"] = ""
os.environ["SMTP_PASSWORD"] = ""

import json
import uuid
from decimal import Decimal

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from bhavan import models  # noqa: F401
from bhavan.core.security import create_access_token
from bhavan.database import Base, get_db
from bhavan.models.affiliate import Affiliate, AffiliateStatus, NO_AFFILIATE_ID
from bhavan.models.commission import CommissionConfig, CommissionType
from bhavan.models.service import Service, ServiceTier
from bhavan.models.user import User, UserRole
from bhavan.services.payment_gateway.mock_adapter import generate_mock_webhook_signature

WEBHOOK_SECRET = "whsec_test"
WEBHOOK_PATH = "/api/v1/services/payment/webhook"


@pytest_asyncio.fixture
async def engine():
    test_engine = create_async_engine(os.environ["DATABASE_URL"], poolclass=NullPool)
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def client(session_factory, monkeypatch):
    from bhavan import main

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    main.app.dependency_overrides[get_db] = override_get_db
    monkeypatch.setattr(main, "async_session_factory", session_factory)

    transport = ASGITransport(app=main.app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    main.app.dependency_overrides.clear()


# ==================== SEED DATA ====================

@pytest_asyncio.fixture
async def catalogue(db_session):
    """Affiliates, commission rules, one service with a tier, and staff users."""
    db_session.add_all([
        Affiliate(id=NO_AFFILIATE_ID, name="No Affiliate", status=AffiliateStatus.ACTIVE.value),
        Affiliate(id="partner-1", name="Partner One", status=AffiliateStatus.ACTIVE.value),
        Affiliate(id="dormant", name="Dormant Partner", status=AffiliateStatus.INACTIVE.value),
        CommissionConfig(
            service_category="default",
            commission_type=CommissionType.PERCENTAGE.value,
            commission_value=Decimal("10"),
        ),
        CommissionConfig(
            service_category="ca",
            commission_type=CommissionType.PERCENTAGE.value,
            commission_value=Decimal("15"),
        ),
        CommissionConfig(
            service_category="legal",
            commission_type=CommissionType.FIXED.value,
            commission_value=Decimal("250000"),
        ),
    ])

    service = Service(
        id=uuid.uuid4(),
        name="Property Valuation",
        description="Certified valuation report",
        category="other",
        base_price=5000000,
        currency="INR",
    )
    tier = ServiceTier(
        id=uuid.uuid4(),
        service_id=service.id,
        name="Premium",
        price=7500000,
        currency="INR",
        sort_order=1,
    )
    other_service = Service(
        id=uuid.uuid4(),
        name="Title Search",
        category="legal",
        base_price=2000000,
        currency="INR",
    )
    admin = User(id=uuid.uuid4(), email="admin@bhavan.ai", full_name="Asha Admin", role=UserRole.ADMIN.value)
    broker = User(id=uuid.uuid4(), email="broker@bhavan.ai", full_name="Bala Broker", role=UserRole.BROKER.value)
    ca = User(id=uuid.uuid4(), email="ca@bhavan.ai", full_name="Chitra CA", role=UserRole.CA.value)
    db_session.add_all([service, tier, other_service, admin, broker, ca])
    await db_session.commit()

    return {
        "service": service,
        "tier": tier,
        "other_service": other_service,
        "admin": admin,
        "broker": broker,
        "ca": ca,
    }


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


def signed_webhook(payload: dict, secret: str = WEBHOOK_SECRET) -> tuple[bytes, dict]:
    """Raw body and headers for a mock gateway webhook."""
    body = json.dumps(payload).encode()
    return body, {
        "Content-Type": "application/json",
        "X-Webhook-Signature": generate_mock_webhook_signature(body, secret),
    }


def purchase_body(service_id, affiliate_code=None, tier_id=None) -> dict:
    body = {
        "serviceId": str(service_id),
        "customer": {
            "fullName": "Ravi Kumar",
            "email": "Ravi.Kumar@Example.com",
            "phone": "+91 98765 43210",
            "requirements": "Valuation of a 3BHK flat in Pune",
        },
    }
    if tier_id is not None:
        body["serviceTierId"] = str(tier_id)
    if affiliate_code is not None:
        body["affiliateCode"] = affiliate_code
    return body
