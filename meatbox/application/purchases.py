import logging
import time
import uuid
from datetime import datetime, timezone
from pydantic import BaseModel

from meatbox.config import settings
from meatbox.domain.models import Purchase, OrderStatus, PaymentType, PaymentStatus, EntityType
from meatbox.domain.exceptions import EntityNotFoundError, InvalidPurchaseError
from meatbox.application.boxes import sync_remaining_kg
from meatbox.application.closure import ClosureEvaluator
from meatbox.application.status_engine import StatusEngine


logger = logging.getLogger(__name__)


def generate_order_number(prefix: str = None) -> str:
    """Номер заказа: префикс + последние 8 цифр timestamp в миллисекундах"""
    prefix = settings.ORDER_NUMBER_PREFIX if prefix is None else prefix
    return f"{prefix}{str(int(time.time() * 1000))[-8:]}"


class PlacePurchaseDTO(BaseModel):
    box_id: str
    user_id: str
    kg: int


class PlacePurchaseUseCase:
    def __init__(self, unit_of_work, closure_evaluator: ClosureEvaluator):
        self._uow = unit_of_work
        self._closure = closure_evaluator

    async def __call__(self, data: PlacePurchaseDTO) -> Purchase:
        logger.info(f"Заказ {data.kg}kg в коробке {data.box_id} от пользователя {data.user_id}")

        async with self._uow() as uow:
            box = await uow.boxes.get_for_update(data.box_id)
            if not box:
                raise EntityNotFoundError(EntityType.BOX.value, data.box_id)
            if not box.is_open_for_purchases():
                raise InvalidPurchaseError(f"Коробка {box.id} не принимает заказы (status: {box.status.value})")

            available = round(box.remaining_kg)
            if data.kg <= 0:
                raise InvalidPurchaseError("Некорректное количество")
            if data.kg > available:
                raise InvalidPurchaseError(f"Максимум доступно: {available}kg")
            # Минимум действует, пока остаток сам не меньше минимума
            enforce_minimum = box.min_kg_per_person > 0 and available >= box.min_kg_per_person
            if enforce_minimum and data.kg < box.min_kg_per_person:
                raise InvalidPurchaseError(f"Минимум: {box.min_kg_per_person}kg")

            prepaid = box.payment_type == PaymentType.PREPAID
            now = datetime.now(timezone.utc)
            purchase = Purchase(
                id=str(uuid.uuid4()),
                order_number=generate_order_number(),
                box_id=box.id,
                user_id=data.user_id,
                kg_purchased=data.kg,
                total_amount=data.kg * box.price_per_kg,
                status=OrderStatus.WAITING_PAYMENT if prepaid else OrderStatus.WAITING_BOX_CLOSURE,
                payment_status=PaymentStatus.PENDING if prepaid else PaymentStatus.PAID,
                created_at=now,
                updated_at=now
            )
            await uow.purchases.create(purchase)
            await sync_remaining_kg(uow, box.id)
            await uow.commit()
        logger.info(f"Заказ создан: {purchase.id} ({purchase.order_number})")

        try:
            await self._closure(purchase.box_id)
        except Exception as e:
            logger.error(f"Ошибка автозакрытия коробки {purchase.box_id}: {e}")
            # Не блокируем создание заказа

        return purchase


class ConfirmPaymentUseCase:
    """Подтверждение оплаты заказа: WAITING_PAYMENT → WAITING_BOX_CLOSURE и проверка закрытия коробки"""

    def __init__(self, unit_of_work, status_engine: StatusEngine, closure_evaluator: ClosureEvaluator, actor_id: str = None):
        self._uow = unit_of_work
        self._engine = status_engine
        self._closure = closure_evaluator
        self._actor_id = actor_id or settings.SYSTEM_ACTOR_ID

    async def __call__(self, order_id: str) -> Purchase:
        async with self._uow() as uow:
            purchase = await uow.purchases.get_by_id(order_id)
            if not purchase:
                raise EntityNotFoundError(EntityType.ORDER.value, order_id)
            if purchase.is_paid:
                logger.info(f"Заказ {order_id} уже оплачен")
            else:
                await uow.purchases.update_fields(order_id, payment_status=PaymentStatus.PAID)
                await uow.commit()
                logger.info(f"Заказ {order_id} отмечен как оплаченный")

        if purchase.status == OrderStatus.WAITING_PAYMENT:
            await self._engine.change_order_status(
                order_id,
                OrderStatus.WAITING_BOX_CLOSURE,
                actor_id=self._actor_id,
                reason="Оплата подтверждена"
            )

        try:
            await self._closure(purchase.box_id)
        except Exception as e:
            logger.error(f"Ошибка автозакрытия коробки {purchase.box_id}: {e}")

        async with self._uow() as uow:
            return await uow.purchases.get_by_id(order_id)
