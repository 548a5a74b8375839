"""Движок смены статусов коробок и заказов.

Каждый переход выполняется отдельной транзакцией над одним документом: чтение текущего
статуса, проверка перехода, compare-and-set статуса и запись в журнал.
Распространение статуса между коробкой и ее заказами выполняется уже после
коммита, отдельными последовательными транзакциями; сбой распространения не
откатывает исходный переход.
"""
import logging
from datetime import datetime, timezone
from typing import List, Optional
from pydantic import BaseModel, Field

from meatbox.config import settings
from meatbox.domain.models import BoxStatus, OrderStatus, EntityType, StatusLogEntry
from meatbox.domain.status import is_valid_transition, valid_next_statuses, expected_order_status
from meatbox.domain.exceptions import (
    EntityNotFoundError, InvalidTransitionError, PropagationFailureError, ErrorKind
)
from meatbox.application.boxes import sync_remaining_kg
from meatbox.application.concurrency import run_with_retry
from meatbox.application.status_logs import AuditLog

logger = logging.getLogger(__name__)


# В эти статусы коробка попадает только через распространение от заказов
PROPAGATION_ONLY_BOX_STATUSES = frozenset({BoxStatus.DISPATCHING, BoxStatus.COMPLETED})


class TransitionResult(BaseModel):
    entity_type: EntityType
    entity_id: str
    next_status: str
    previous_status: Optional[str] = None
    box_id: Optional[str] = None
    committed: bool = False
    skipped: bool = False
    skipped_kind: Optional[ErrorKind] = None
    forced: bool = False
    box_was_updated: bool = False
    awaiting_manual_dispatch: List[str] = Field(default_factory=list)
    propagation_errors: List[str] = Field(default_factory=list)


class StatusEngine:
    """Единственная точка записи поля status у коробок и заказов.

    Защита от повторного входа привязана к экземпляру: ключ
    (тип сущности, id, целевой статус) занят, пока переход выполняется, и
    повторный вызов с тем же ключом ничего не делает.
    """

    def __init__(
        self,
        unit_of_work,
        audit_log: Optional[AuditLog] = None,
        retry_attempts: Optional[int] = None,
        retry_backoff: Optional[float] = None
    ):
        self._uow = unit_of_work
        self._audit_log = audit_log or AuditLog(unit_of_work)
        self._retry_attempts = settings.TRANSACTION_RETRY_ATTEMPTS if retry_attempts is None else retry_attempts
        self._retry_backoff = settings.TRANSACTION_RETRY_BACKOFF if retry_backoff is None else retry_backoff
        self._active_transitions: set = set()

    @property
    def audit_log(self) -> AuditLog:
        return self._audit_log

    async def change_box_status(
        self,
        box_id: str,
        next_status: BoxStatus,
        *,
        actor_id: str,
        reason: Optional[str] = None,
        force: bool = False,
        propagate: bool = True
    ) -> TransitionResult:
        next_status = BoxStatus(next_status)
        key = (EntityType.BOX, box_id, next_status)
        if key in self._active_transitions:
            logger.warning(f"Переход уже выполняется, пропуск: box-{box_id}-{next_status.value}")
            return self._skipped(EntityType.BOX, box_id, next_status)

        self._active_transitions.add(key)
        try:
            async def operation():
                return await self._apply_box_transition(box_id, next_status, actor_id, reason, force)

            result = await run_with_retry(
                operation, attempts=self._retry_attempts, backoff_base=self._retry_backoff
            )
            if result.committed and propagate:
                await self._propagate_box_to_orders(result, actor_id, reason)
            return result
        finally:
            self._active_transitions.discard(key)

    async def change_order_status(
        self,
        order_id: str,
        next_status: OrderStatus,
        *,
        actor_id: str,
        reason: Optional[str] = None,
        force: bool = False,
        propagate: bool = True
    ) -> TransitionResult:
        next_status = OrderStatus(next_status)
        key = (EntityType.ORDER, order_id, next_status)
        if key in self._active_transitions:
            logger.warning(f"Переход уже выполняется, пропуск: order-{order_id}-{next_status.value}")
            return self._skipped(EntityType.ORDER, order_id, next_status)

        self._active_transitions.add(key)
        try:
            async def operation():
                return await self._apply_order_transition(order_id, next_status, actor_id, reason, force)

            result = await run_with_retry(
                operation, attempts=self._retry_attempts, backoff_base=self._retry_backoff
            )
            if not result.committed:
                return result

            if OrderStatus.CANCELLED in (result.previous_status, next_status):
                await self._sync_box_remaining(result)
            if propagate:
                await self._propagate_order_to_box(result, actor_id, reason)
            return result
        finally:
            self._active_transitions.discard(key)

    async def _apply_box_transition(self, box_id, next_status, actor_id, reason, force) -> TransitionResult:
        async with self._uow() as uow:
            box = await uow.boxes.get_for_update(box_id)
            if not box:
                raise EntityNotFoundError(EntityType.BOX.value, box_id)

            current = box.status
            if current == next_status and force:
                logger.info(f"Коробка {box_id} уже в статусе {current.value}")
                return TransitionResult(
                    entity_type=EntityType.BOX, entity_id=box_id, box_id=box_id,
                    previous_status=current.value, next_status=next_status.value, skipped=True
                )

            self._validate_box_transition(box_id, current, next_status, force)

            await uow.boxes.update_status(box_id, expected=box.stored_status or current.value, status=next_status)
            forced = not is_valid_transition(current, next_status, EntityType.BOX)
            await self._audit_log.record(
                self._log_entry(EntityType.BOX, box_id, current, next_status, forced, reason, actor_id),
                uow=uow
            )
            await uow.commit()

        logger.info(
            f"Коробка {box_id}: {current.value} → {next_status.value}"
            f"{' (принудительно)' if forced else ''}, by {actor_id}"
        )
        return TransitionResult(
            entity_type=EntityType.BOX, entity_id=box_id, box_id=box_id,
            previous_status=current.value, next_status=next_status.value,
            committed=True, forced=forced
        )

    async def _apply_order_transition(self, order_id, next_status, actor_id, reason, force) -> TransitionResult:
        async with self._uow() as uow:
            purchase = await uow.purchases.get_for_update(order_id)
            if not purchase:
                raise EntityNotFoundError(EntityType.ORDER.value, order_id)

            current = purchase.status
            if current == next_status and force:
                logger.info(f"Заказ {order_id} уже в статусе {current.value}")
                return TransitionResult(
                    entity_type=EntityType.ORDER, entity_id=order_id, box_id=purchase.box_id,
                    previous_status=current.value, next_status=next_status.value, skipped=True
                )

            valid = is_valid_transition(current, next_status, EntityType.ORDER)
            if not valid and not force:
                raise InvalidTransitionError(
                    EntityType.ORDER.value, order_id, current, next_status,
                    valid_next_statuses(current, EntityType.ORDER)
                )

            await uow.purchases.update_status(
                order_id, expected=purchase.stored_status or current.value, status=next_status
            )
            await self._audit_log.record(
                self._log_entry(EntityType.ORDER, order_id, current, next_status, not valid, reason, actor_id),
                uow=uow
            )
            await uow.commit()

        logger.info(
            f"Заказ {order_id}: {current.value} → {next_status.value}"
            f"{' (принудительно)' if not valid else ''}, by {actor_id}"
        )
        return TransitionResult(
            entity_type=EntityType.ORDER, entity_id=order_id, box_id=purchase.box_id,
            previous_status=current.value, next_status=next_status.value,
            committed=True, forced=not valid
        )

    def _validate_box_transition(self, box_id: str, current: BoxStatus, next_status: BoxStatus, force: bool) -> None:
        # DISPATCHING и COMPLETED только принудительно (распространением от
        # заказов), даже если ребро есть в графе
        if not force and (
            next_status in PROPAGATION_ONLY_BOX_STATUSES
            or not is_valid_transition(current, next_status, EntityType.BOX)
        ):
            raise InvalidTransitionError(
                EntityType.BOX.value, box_id, current, next_status,
                valid_next_statuses(current, EntityType.BOX) - PROPAGATION_ONLY_BOX_STATUSES
            )

    async def _propagate_box_to_orders(self, result: TransitionResult, actor_id: str, reason: Optional[str]) -> None:
        box_id = result.entity_id
        box_status = BoxStatus(result.next_status)
        async with self._uow() as uow:
            purchases = await uow.purchases.list_by_box(box_id)

        for purchase in purchases:
            if purchase.is_cancelled:
                continue

            # DISPATCHING_TO_CLIENT выставляется только вручную, через чек-лист отгрузки
            if box_status == BoxStatus.DISPATCHING:
                if purchase.status not in (OrderStatus.DISPATCHING_TO_CLIENT, OrderStatus.DELIVERED_TO_CLIENT):
                    result.awaiting_manual_dispatch.append(purchase.id)
                continue

            target = expected_order_status(box_status, purchase.status)
            if target is None or target == purchase.status:
                continue

            try:
                await self.change_order_status(
                    purchase.id,
                    target,
                    actor_id=actor_id,
                    reason=reason or f"Авто: коробка переведена в {box_status.value}",
                    force=True,
                    propagate=False
                )
            except Exception as e:
                error = PropagationFailureError(EntityType.ORDER.value, purchase.id, e)
                logger.error(str(error))
                result.propagation_errors.append(str(error))

        if result.awaiting_manual_dispatch:
            logger.info(
                f"Коробка {box_id}: {len(result.awaiting_manual_dispatch)} заказов ожидают ручной отгрузки"
            )

    async def _propagate_order_to_box(self, result: TransitionResult, actor_id: str, reason: Optional[str]) -> None:
        box_id = result.box_id
        next_status = OrderStatus(result.next_status)

        try:
            if next_status == OrderStatus.DISPATCHING_TO_CLIENT:
                target = BoxStatus.DISPATCHING
                auto_reason = "Авто: заказ передан в отгрузку"
            elif next_status == OrderStatus.DELIVERED_TO_CLIENT:
                async with self._uow() as uow:
                    purchases = await uow.purchases.list_by_box(box_id)
                active = [p for p in purchases if not p.is_cancelled]
                if not active or any(p.status != OrderStatus.DELIVERED_TO_CLIENT for p in active):
                    return
                target = BoxStatus.COMPLETED
                auto_reason = f"Авто: все активные заказы доставлены ({len(active)}/{len(purchases)})"
            else:
                return

            box_result = await self.change_box_status(
                box_id,
                target,
                actor_id=actor_id,
                reason=reason or auto_reason,
                force=True,
                propagate=False
            )
            result.box_was_updated = box_result.committed
        except Exception as e:
            error = PropagationFailureError(EntityType.BOX.value, box_id, e)
            logger.error(str(error))
            result.propagation_errors.append(str(error))

    async def _sync_box_remaining(self, result: TransitionResult) -> None:
        try:
            async with self._uow() as uow:
                await sync_remaining_kg(uow, result.box_id)
                await uow.commit()
        except Exception as e:
            error = PropagationFailureError(EntityType.BOX.value, result.box_id, e)
            logger.error(str(error))
            result.propagation_errors.append(str(error))

    def _skipped(self, entity_type: EntityType, entity_id: str, next_status) -> TransitionResult:
        return TransitionResult(
            entity_type=entity_type,
            entity_id=entity_id,
            next_status=next_status.value,
            skipped=True,
            skipped_kind=ErrorKind.TRANSITION_IN_PROGRESS
        )

    @staticmethod
    def _log_entry(entity_type, entity_id, current, next_status, forced, reason, actor_id) -> StatusLogEntry:
        return StatusLogEntry(
            entity_type=entity_type,
            entity_id=entity_id,
            previous_status=current.value,
            next_status=next_status.value,
            forced=forced,
            reason=reason,
            performed_by=actor_id,
            performed_at=datetime.now(timezone.utc)
        )
