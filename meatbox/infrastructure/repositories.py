import uuid
from enum import Enum
from typing import Optional, List
from datetime import datetime, timezone
from sqlalchemy import select, insert, update
from sqlalchemy.ext.asyncio import AsyncSession

from meatbox.domain.models import (
    Box, BoxStatus, Purchase, OrderStatus, PaymentType, PaymentStatus,
    DispatchSteps, StatusLogEntry, EntityType
)
from meatbox.domain.status import normalize_box_status, normalize_order_status
from meatbox.domain.exceptions import ConcurrentModificationError
from meatbox.infrastructure.db_schema import boxes_tbl, purchases_tbl, status_logs_tbl
from meatbox.application.interfaces import BoxRepository, PurchaseRepository, StatusLogRepository


def _to_row(fields: dict) -> dict:
    """Domain → DB: enum в строковый код, value objects в JSON"""
    row = {}
    for key, value in fields.items():
        # stored_status не колонка: это прочитанное из базы значение status
        if key == "stored_status":
            continue
        if isinstance(value, Enum):
            value = value.value
        elif isinstance(value, DispatchSteps):
            value = value.model_dump(mode="json")
        row[key] = value
    return row


def _raw_status(value) -> str:
    return value.value if isinstance(value, Enum) else value


class SQLAlchemyBoxRepository(BoxRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_id(self, box_id: str) -> Optional[Box]:
        result = await self._session.execute(
            select(boxes_tbl).where(boxes_tbl.c.id == box_id)
        )
        row = result.fetchone()
        return self._to_domain(row) if row else None

    async def get_for_update(self, box_id: str) -> Optional[Box]:
        result = await self._session.execute(
            select(boxes_tbl).where(boxes_tbl.c.id == box_id).with_for_update()
        )
        row = result.fetchone()
        return self._to_domain(row) if row else None

    async def list_all(self) -> List[Box]:
        result = await self._session.execute(
            select(boxes_tbl).order_by(boxes_tbl.c.created_at.desc())
        )
        return [self._to_domain(row) for row in result.fetchall()]

    async def create(self, box: Box) -> None:
        stmt = insert(boxes_tbl).values(**_to_row(dict(box)))
        await self._session.execute(stmt)

    async def update_fields(self, box_id: str, **fields) -> None:
        stmt = (
            update(boxes_tbl)
            .where(boxes_tbl.c.id == box_id)
            .values(**_to_row(fields), updated_at=datetime.now(timezone.utc))
        )
        await self._session.execute(stmt)

    async def update_status(self, box_id: str, expected: str, status: BoxStatus) -> None:
        stmt = (
            update(boxes_tbl)
            .where(
                boxes_tbl.c.id == box_id,
                boxes_tbl.c.status == _raw_status(expected)
            )
            .values(status=status.value, updated_at=datetime.now(timezone.utc))
        )
        result = await self._session.execute(stmt)
        if result.rowcount == 0:
            raise ConcurrentModificationError(EntityType.BOX.value, box_id)

    def _to_domain(self, row) -> Box:
        """Трансформация DB → Domain"""
        return Box(
            id=row.id,
            name=row.name,
            brand=row.brand or "",
            price_per_kg=row.price_per_kg,
            cost_per_kg=row.cost_per_kg or 0.0,
            total_kg=row.total_kg,
            remaining_kg=row.remaining_kg,
            min_kg_per_person=row.min_kg_per_person or 0.0,
            payment_type=PaymentType(row.payment_type),
            status=normalize_box_status(row.status),
            stored_status=row.status,
            created_at=row.created_at,
            updated_at=row.updated_at,
            deleted_at=row.deleted_at
        )


class SQLAlchemyPurchaseRepository(PurchaseRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_id(self, purchase_id: str) -> Optional[Purchase]:
        result = await self._session.execute(
            select(purchases_tbl).where(purchases_tbl.c.id == purchase_id)
        )
        row = result.fetchone()
        return self._to_domain(row) if row else None

    async def get_for_update(self, purchase_id: str) -> Optional[Purchase]:
        result = await self._session.execute(
            select(purchases_tbl).where(purchases_tbl.c.id == purchase_id).with_for_update()
        )
        row = result.fetchone()
        return self._to_domain(row) if row else None

    async def list_by_box(self, box_id: str) -> List[Purchase]:
        result = await self._session.execute(
            select(purchases_tbl)
            .where(purchases_tbl.c.box_id == box_id)
            .order_by(purchases_tbl.c.created_at.asc())
        )
        return [self._to_domain(row) for row in result.fetchall()]

    async def list_all(self) -> List[Purchase]:
        result = await self._session.execute(select(purchases_tbl))
        return [self._to_domain(row) for row in result.fetchall()]

    async def create(self, purchase: Purchase) -> None:
        stmt = insert(purchases_tbl).values(**_to_row(dict(purchase)))
        await self._session.execute(stmt)

    async def update_fields(self, purchase_id: str, **fields) -> None:
        stmt = (
            update(purchases_tbl)
            .where(purchases_tbl.c.id == purchase_id)
            .values(**_to_row(fields), updated_at=datetime.now(timezone.utc))
        )
        await self._session.execute(stmt)

    async def update_status(self, purchase_id: str, expected: str, status: OrderStatus) -> None:
        stmt = (
            update(purchases_tbl)
            .where(
                purchases_tbl.c.id == purchase_id,
                purchases_tbl.c.status == _raw_status(expected)
            )
            .values(status=status.value, updated_at=datetime.now(timezone.utc))
        )
        result = await self._session.execute(stmt)
        if result.rowcount == 0:
            raise ConcurrentModificationError(EntityType.ORDER.value, purchase_id)

    def _to_domain(self, row) -> Purchase:
        return Purchase(
            id=row.id,
            order_number=row.order_number,
            box_id=row.box_id,
            user_id=row.user_id,
            kg_purchased=row.kg_purchased,
            total_amount=row.total_amount,
            status=normalize_order_status(row.status),
            stored_status=row.status,
            payment_status=PaymentStatus(row.payment_status),
            payment_link=row.payment_link,
            payment_expires_at=row.payment_expires_at,
            dispatch_steps=DispatchSteps.model_validate(row.dispatch_steps or {}),
            created_at=row.created_at,
            updated_at=row.updated_at
        )


class SQLAlchemyStatusLogRepository(StatusLogRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def create(self, entry: StatusLogEntry) -> str:
        entry_id = str(uuid.uuid4())
        values = _to_row(entry.model_dump(exclude={"id"}, exclude_none=True))
        stmt = insert(status_logs_tbl).values(id=entry_id, **values)
        await self._session.execute(stmt)
        return entry_id

    async def list_by_entity_id(self, entity_id: str) -> List[StatusLogEntry]:
        result = await self._session.execute(
            select(status_logs_tbl).where(status_logs_tbl.c.entity_id == entity_id)
        )
        return [self._to_domain(row) for row in result.fetchall()]

    def _to_domain(self, row) -> StatusLogEntry:
        # reason не передаем вовсе, если его нет в записи
        data = {
            "id": row.id,
            "entity_type": EntityType(row.entity_type),
            "entity_id": row.entity_id,
            "previous_status": row.previous_status,
            "next_status": row.next_status,
            "forced": bool(row.forced),
            "performed_by": row.performed_by,
            "performed_at": row.performed_at,
        }
        if row.reason:
            data["reason"] = row.reason
        return StatusLogEntry(**data)
