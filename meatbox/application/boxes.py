import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional
from pydantic import BaseModel, Field

from meatbox.domain.models import Box, BoxStatus, PaymentType, EntityType
from meatbox.domain.exceptions import EntityNotFoundError

logger = logging.getLogger(__name__)


def calculate_remaining_kg(box: Box, purchases) -> float:
    """remaining_kg = max(0, total_kg − Σ kg по неотмененным заказам)"""
    reserved = sum(p.kg_purchased for p in purchases if not p.is_cancelled)
    return max(0.0, box.total_kg - reserved)


async def sync_remaining_kg(uow, box_id: str) -> Optional[float]:
    """Пересчитывает остаток коробки внутри открытого uow (без commit)"""
    box = await uow.boxes.get_by_id(box_id)
    if not box:
        return None
    purchases = await uow.purchases.list_by_box(box_id)
    remaining = calculate_remaining_kg(box, purchases)
    if remaining != box.remaining_kg:
        await uow.boxes.update_fields(box_id, remaining_kg=remaining)
        logger.info(f"Остаток коробки {box_id}: {box.remaining_kg}kg → {remaining}kg")
    return remaining


class CreateBoxDTO(BaseModel):
    name: str
    brand: str = ""
    price_per_kg: float = Field(gt=0)
    cost_per_kg: float = Field(default=0.0, ge=0)
    total_kg: float = Field(gt=0)
    min_kg_per_person: float = Field(default=0.0, ge=0)
    payment_type: PaymentType = PaymentType.PREPAID


class CreateBoxUseCase:
    def __init__(self, unit_of_work):
        self._uow = unit_of_work

    async def __call__(self, data: CreateBoxDTO) -> Box:
        now = datetime.now(timezone.utc)
        box = Box(
            id=str(uuid.uuid4()),
            name=data.name,
            brand=data.brand,
            price_per_kg=data.price_per_kg,
            cost_per_kg=data.cost_per_kg,
            total_kg=data.total_kg,
            remaining_kg=data.total_kg,
            min_kg_per_person=data.min_kg_per_person,
            payment_type=data.payment_type,
            status=BoxStatus.WAITING_PURCHASES,
            created_at=now,
            updated_at=now
        )
        async with self._uow() as uow:
            await uow.boxes.create(box)
            await uow.commit()
        logger.info(f"Коробка создана: {box.id} ({box.name}, {box.total_kg}kg, {box.payment_type.value})")
        return box


class GetBoxUseCase:
    def __init__(self, unit_of_work):
        self._uow = unit_of_work

    async def __call__(self, box_id: str) -> Box:
        async with self._uow() as uow:
            box = await uow.boxes.get_by_id(box_id)
            if not box:
                raise EntityNotFoundError(EntityType.BOX.value, box_id)
            return box


class ListBoxesUseCase:
    def __init__(self, unit_of_work):
        self._uow = unit_of_work

    async def __call__(self, include_deleted: bool = False, available_only: bool = False) -> List[Box]:
        """Коробки, новые первыми. available_only: витрина, открытые и не распроданные"""
        async with self._uow() as uow:
            boxes = await uow.boxes.list_all()

        if available_only:
            return [b for b in boxes if b.is_open_for_purchases() and b.remaining_kg > 0]
        if include_deleted:
            return boxes
        return [b for b in boxes if not b.is_deleted]


class SoftDeleteBoxUseCase:
    def __init__(self, unit_of_work):
        self._uow = unit_of_work

    async def __call__(self, box_id: str) -> None:
        async with self._uow() as uow:
            if not await uow.boxes.get_by_id(box_id):
                raise EntityNotFoundError(EntityType.BOX.value, box_id)
            await uow.boxes.update_fields(box_id, deleted_at=datetime.now(timezone.utc))
            await uow.commit()
        logger.info(f"Коробка {box_id} удалена (soft delete)")


class RestoreBoxUseCase:
    def __init__(self, unit_of_work):
        self._uow = unit_of_work

    async def __call__(self, box_id: str) -> None:
        async with self._uow() as uow:
            if not await uow.boxes.get_by_id(box_id):
                raise EntityNotFoundError(EntityType.BOX.value, box_id)
            await uow.boxes.update_fields(box_id, deleted_at=None)
            await uow.commit()
        logger.info(f"Коробка {box_id} восстановлена")


class FindOrphanPurchasesUseCase:
    """Заказы, ссылающиеся на несуществующую коробку"""

    def __init__(self, unit_of_work):
        self._uow = unit_of_work

    async def __call__(self) -> List[dict]:
        orphans = []
        async with self._uow() as uow:
            purchases = await uow.purchases.list_all()
            known = {}
            for purchase in purchases:
                if not purchase.box_id:
                    orphans.append({"purchase_id": purchase.id, "box_id": None, "reason": "missing box_id"})
                    continue
                if purchase.box_id not in known:
                    known[purchase.box_id] = await uow.boxes.get_by_id(purchase.box_id) is not None
                if not known[purchase.box_id]:
                    orphans.append({"purchase_id": purchase.id, "box_id": purchase.box_id, "reason": "box not found"})
        logger.info(f"Найдено {len(orphans)} заказов без коробки")
        return orphans
