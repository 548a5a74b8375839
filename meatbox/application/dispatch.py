import logging
from datetime import datetime, timezone

from meatbox.domain.models import Purchase, OrderStatus, EntityType
from meatbox.domain.exceptions import EntityNotFoundError, DispatchStepError
from meatbox.application.status_engine import StatusEngine, TransitionResult

logger = logging.getLogger(__name__)


class DispatchChecklist:
    """Ручная отгрузка заказа: отделить → передать курьеру → подтвердить доставку.

    Только этот путь переводит заказ в DISPATCHING_TO_CLIENT; массовое
    выравнивание по коробке этого не делает.
    """

    def __init__(self, unit_of_work, status_engine: StatusEngine):
        self._uow = unit_of_work
        self._engine = status_engine

    async def mark_separated(self, order_id: str, actor_id: str) -> TransitionResult:
        purchase = await self._get(order_id)
        if not purchase.can_be_separated():
            raise DispatchStepError(
                f"Заказ {purchase.order_number} нельзя отделить (status: {purchase.status.value})"
            )

        steps = purchase.dispatch_steps.model_copy(update={
            "order_separated": True,
            "separated_at": purchase.dispatch_steps.separated_at or datetime.now(timezone.utc)
        })
        async with self._uow() as uow:
            await uow.purchases.update_fields(order_id, dispatch_steps=steps)
            await uow.commit()
        logger.info(f"Заказ {purchase.order_number} отделен для отгрузки")

        if purchase.status == OrderStatus.DISPATCHING_TO_CLIENT:
            return TransitionResult(
                entity_type=EntityType.ORDER, entity_id=order_id, box_id=purchase.box_id,
                previous_status=purchase.status.value, next_status=purchase.status.value, skipped=True
            )
        return await self._engine.change_order_status(
            order_id,
            OrderStatus.DISPATCHING_TO_CLIENT,
            actor_id=actor_id,
            reason="Заказ отделен для отгрузки"
        )

    async def set_picked_up(self, order_id: str, picked_up: bool) -> Purchase:
        purchase = await self._get(order_id)
        if not purchase.dispatch_steps.order_separated:
            raise DispatchStepError(f"Заказ {purchase.order_number} еще не отделен")

        steps = purchase.dispatch_steps.model_copy(update={
            "picked_up_by_courier": picked_up,
            "picked_up_at": datetime.now(timezone.utc) if picked_up else None
        })
        async with self._uow() as uow:
            await uow.purchases.update_fields(order_id, dispatch_steps=steps)
            await uow.commit()
            logger.info(f"Заказ {purchase.order_number}: передан курьеру = {picked_up}")
            return await uow.purchases.get_by_id(order_id)

    async def confirm_delivery(self, order_id: str, actor_id: str) -> TransitionResult:
        purchase = await self._get(order_id)
        if purchase.status != OrderStatus.DISPATCHING_TO_CLIENT:
            raise DispatchStepError(
                f"Заказ {purchase.order_number} не в отгрузке (status: {purchase.status.value})"
            )
        return await self._engine.change_order_status(
            order_id,
            OrderStatus.DELIVERED_TO_CLIENT,
            actor_id=actor_id,
            reason="Доставка подтверждена администратором"
        )

    async def _get(self, order_id: str) -> Purchase:
        async with self._uow() as uow:
            purchase = await uow.purchases.get_by_id(order_id)
        if not purchase:
            raise EntityNotFoundError(EntityType.ORDER.value, order_id)
        return purchase
