import logging
from typing import Optional

from meatbox.config import settings
from meatbox.domain.models import BoxStatus, PaymentType, EntityType
from meatbox.domain.exceptions import EntityNotFoundError
from meatbox.application.status_engine import StatusEngine, TransitionResult

logger = logging.getLogger(__name__)


class ClosureEvaluator:
    """Автозакрытие предоплатной коробки.

    Коробка уходит из WAITING_PURCHASES в WAITING_SUPPLIER_ORDER, когда
    неотмененные заказы выбрали весь объем и все они оплачены. Повторный
    запуск на уже закрытой коробке ничего не делает.
    """

    def __init__(self, unit_of_work, status_engine: StatusEngine, actor_id: Optional[str] = None):
        self._uow = unit_of_work
        self._engine = status_engine
        self._actor_id = actor_id or settings.SYSTEM_ACTOR_ID

    async def __call__(self, box_id: str) -> Optional[TransitionResult]:
        async with self._uow() as uow:
            box = await uow.boxes.get_by_id(box_id)
            if not box:
                raise EntityNotFoundError(EntityType.BOX.value, box_id)
            purchases = await uow.purchases.list_by_box(box_id)

        if box.payment_type != PaymentType.PREPAID or box.status != BoxStatus.WAITING_PURCHASES:
            return None

        active = [p for p in purchases if not p.is_cancelled]
        reserved_kg = sum(p.kg_purchased for p in active)
        fully_reserved = box.total_kg > 0 and reserved_kg >= box.total_kg
        all_paid = all(p.is_paid for p in active)

        if not (fully_reserved and all_paid):
            return None

        logger.info(f"Коробка {box_id} собрана: {reserved_kg}kg из {box.total_kg}kg, заказов {len(active)}")
        return await self._engine.change_box_status(
            box_id,
            BoxStatus.WAITING_SUPPLIER_ORDER,
            actor_id=self._actor_id,
            reason=f"Автозакрытие: зарезервировано {reserved_kg}kg из {box.total_kg}kg, оплачено заказов: {len(active)}"
        )
