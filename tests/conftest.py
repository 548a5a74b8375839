"""
Фикстуры тестов: in-memory SQLite (aiosqlite) вместо Postgres,
схема создается из метаданных SQLAlchemy Core.
"""
import uuid
from datetime import datetime, timezone

import pytest
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from meatbox.domain.models import (
    Box, BoxStatus, Purchase, OrderStatus, PaymentType, PaymentStatus
)
from meatbox.infrastructure.db_schema import metadata
from meatbox.infrastructure.unit_of_work import UnitOfWork
from meatbox.application.status_engine import StatusEngine
from meatbox.application.closure import ClosureEvaluator


@pytest.fixture
async def db_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def uow(db_engine):
    return UnitOfWork(async_sessionmaker(db_engine, expire_on_commit=False))


@pytest.fixture
def engine(uow):
    return StatusEngine(uow, retry_backoff=0)


@pytest.fixture
def closure(uow, engine):
    return ClosureEvaluator(uow, engine)


@pytest.fixture
def make_box(uow):
    async def _make_box(
        status=BoxStatus.WAITING_PURCHASES,
        total_kg=10.0,
        remaining_kg=None,
        payment_type=PaymentType.PREPAID,
        min_kg_per_person=0.0,
        price_per_kg=50.0,
    ) -> Box:
        now = datetime.now(timezone.utc)
        box = Box(
            id=str(uuid.uuid4()),
            name="Picanha",
            brand="Friboi",
            price_per_kg=price_per_kg,
            total_kg=total_kg,
            remaining_kg=total_kg if remaining_kg is None else remaining_kg,
            min_kg_per_person=min_kg_per_person,
            payment_type=payment_type,
            status=status,
            created_at=now,
            updated_at=now
        )
        async with uow() as u:
            await u.boxes.create(box)
            await u.commit()
        return box

    return _make_box


@pytest.fixture
def make_purchase(uow):
    counter = {"n": 0}

    async def _make_purchase(
        box: Box,
        kg=5.0,
        status=OrderStatus.WAITING_PAYMENT,
        payment_status=PaymentStatus.PENDING,
    ) -> Purchase:
        counter["n"] += 1
        now = datetime.now(timezone.utc)
        purchase = Purchase(
            id=str(uuid.uuid4()),
            order_number=f"GM{counter['n']:08d}",
            box_id=box.id,
            user_id=f"user-{counter['n']}",
            kg_purchased=kg,
            total_amount=kg * box.price_per_kg,
            status=status,
            payment_status=payment_status,
            created_at=now,
            updated_at=now
        )
        async with uow() as u:
            await u.purchases.create(purchase)
            await u.commit()
        return purchase

    return _make_purchase


@pytest.fixture
def load_box(uow):
    async def _load_box(box_id: str) -> Box:
        async with uow() as u:
            return await u.boxes.get_by_id(box_id)

    return _load_box


@pytest.fixture
def load_purchase(uow):
    async def _load_purchase(purchase_id: str) -> Purchase:
        async with uow() as u:
            return await u.purchases.get_by_id(purchase_id)

    return _load_purchase
