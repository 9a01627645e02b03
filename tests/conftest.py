"""Pytest fixtures for settlement engine tests."""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal
from typing import AsyncGenerator
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from settlement_engine.calculators.types import (
    DeductionCategory,
    ObligationStatus,
    Payee,
    PayeeClassification,
    PayType,
)
from settlement_engine.config import Settings
from settlement_engine.models import Base
from settlement_engine.models import Job as JobRow
from settlement_engine.models import Obligation as ObligationRow
from settlement_engine.models import Payee as PayeeRow

from .factories import BASE_TIME, TEST_DATABASE_URL, make_payee, make_settings


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def contractor() -> Payee:
    """Per-mile contractor at $2.00/mile."""
    return make_payee()


@pytest.fixture
def statutory_employee() -> Payee:
    """Percentage-paid statutory employee at 70% of linehaul."""
    return make_payee(
        pay_type=PayType.PERCENTAGE,
        rate=Decimal("70"),
        classification=PayeeClassification.STATUTORY_EMPLOYEE,
    )


# ============================================================================
# Database fixtures
# ============================================================================


@pytest_asyncio.fixture
async def engine():
    """Create test database engine with a fresh schema."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


class Seeder:
    """Inserts payees, jobs and obligations and commits them."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def payee(
        self,
        pay_type: PayType | None = PayType.PER_DISTANCE,
        rate: Decimal | None = Decimal("2.00"),
        classification: PayeeClassification = PayeeClassification.CONTRACTOR,
    ) -> UUID:
        row = PayeeRow(
            payee_id=uuid4(),
            name="Seeded Driver",
            classification=classification.value,
            pay_type=pay_type.value if pay_type else None,
            pay_rate=rate,
        )
        self.session.add(row)
        await self.session.commit()
        return row.payee_id

    async def job(
        self,
        payee_id: UUID,
        distance: Decimal = Decimal("0"),
        linehaul_rate: Decimal = Decimal("0.00"),
        days: int = 0,
        detention: Decimal | None = None,
    ) -> UUID:
        row = JobRow(
            job_id=uuid4(),
            payee_id=payee_id,
            reference=f"LD-{uuid4().hex[:6]}",
            linehaul_rate=linehaul_rate,
            distance=distance,
            detention_pay=detention,
            completed_at=BASE_TIME + timedelta(days=days),
            settlement_id=None,
        )
        self.session.add(row)
        await self.session.commit()
        return row.job_id

    async def obligation(
        self,
        payee_id: UUID,
        total: Decimal,
        days: int = 0,
        category: DeductionCategory = DeductionCategory.FUEL,
    ) -> UUID:
        row = ObligationRow(
            obligation_id=uuid4(),
            payee_id=payee_id,
            total_amount=total,
            amount_recovered=Decimal("0.00"),
            status=ObligationStatus.ACTIVE.value,
            category=category.value,
            employer_paid=True,
            originated_at=BASE_TIME - timedelta(days=30) + timedelta(days=days),
            settlement_id=None,
            version=1,
        )
        self.session.add(row)
        await self.session.commit()
        return row.obligation_id


@pytest.fixture
def seed(session: AsyncSession) -> Seeder:
    return Seeder(session)
