"""Сверка коробки с ее заказами: диагностика и batch-ремонт.

Ремонт запускается вручную, идемпотентен и никогда не откатывает заказ назад
по последовательности. Каждый шаг изолирован: ошибка попадает в errors и не
прерывает остальные шаги.
"""
import logging
from typing import List, Optional
from pydantic import BaseModel, Field

from meatbox.config import settings
from meatbox.domain.models import Box, BoxStatus, OrderStatus, PaymentStatus, EntityType
from meatbox.domain.status import (
    DISPATCH_ORDER_STATUSES, expected_order_status, is_order_consistent, alignment_target
)
from meatbox.domain.exceptions import EntityNotFoundError
from meatbox.application.boxes import calculate_remaining_kg
from meatbox.application.closure import ClosureEvaluator
from meatbox.application.status_engine import StatusEngine

logger = logging.getLogger(__name__)


class ConsistencyIssue(BaseModel):
    order_id: str
    order_number: str
    current: OrderStatus
    expected: List[OrderStatus]

    def describe(self) -> str:
        expected = " | ".join(s.value for s in self.expected)
        return f"Заказ {self.order_number}: статус {self.current.value}, ожидается {expected}"


class SuggestedFix(BaseModel):
    action: str
    params: dict = Field(default_factory=dict)


class DiagnosticReport(BaseModel):
    box_id: str
    box_status: Optional[BoxStatus] = None
    issues: List[str] = Field(default_factory=list)
    fixes: List[SuggestedFix] = Field(default_factory=list)
    awaiting_manual_dispatch: List[str] = Field(default_factory=list)


class BatchRepairReport(BaseModel):
    box_id: str
    success: bool = True
    actions: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    issues: List[str] = Field(default_factory=list)
    awaiting_manual_dispatch: List[str] = Field(default_factory=list)


def find_consistency_issues(box: Box, purchases) -> List[ConsistencyIssue]:
    issues = []
    for purchase in purchases:
        if is_order_consistent(box.status, purchase.status):
            continue
        if box.status == BoxStatus.DISPATCHING:
            expected = sorted(DISPATCH_ORDER_STATUSES, key=lambda s: s.value)
        else:
            expected = [expected_order_status(box.status, purchase.status)]
        issues.append(ConsistencyIssue(
            order_id=purchase.id,
            order_number=purchase.order_number,
            current=purchase.status,
            expected=expected
        ))
    return issues


def find_awaiting_manual_dispatch(box: Box, purchases) -> List[str]:
    if box.status != BoxStatus.DISPATCHING:
        return []
    return [p.id for p in purchases if p.status == OrderStatus.WAITING_CLIENT_SHIPMENT]


def _paid_but_waiting_payment(purchases) -> list:
    return [
        p for p in purchases
        if p.payment_status == PaymentStatus.PAID and p.status == OrderStatus.WAITING_PAYMENT
    ]


def _should_complete(box: Box, purchases) -> bool:
    """Все активные заказы доставлены, а коробка еще не в терминальном статусе"""
    active = [p for p in purchases if not p.is_cancelled]
    return (
        box.status not in (BoxStatus.COMPLETED, BoxStatus.CANCELLED)
        and bool(active)
        and all(p.status == OrderStatus.DELIVERED_TO_CLIENT for p in active)
    )


class DiagnoseInconsistenciesUseCase:
    """Только чтение: список проблем и предлагаемых исправлений для оператора"""

    def __init__(self, unit_of_work):
        self._uow = unit_of_work

    async def __call__(self, box_id: str) -> DiagnosticReport:
        async with self._uow() as uow:
            box = await uow.boxes.get_by_id(box_id)
            if not box:
                raise EntityNotFoundError(EntityType.BOX.value, box_id)
            purchases = await uow.purchases.list_by_box(box_id)

        report = DiagnosticReport(box_id=box_id, box_status=box.status)

        remaining = calculate_remaining_kg(box, purchases)
        if remaining != box.remaining_kg:
            report.issues.append(f"Остаток {box.remaining_kg}kg, по заказам должно быть {remaining}kg")
            report.fixes.append(SuggestedFix(
                action="recalculate_remaining_kg", params={"box_id": box_id, "remaining_kg": remaining}
            ))

        paid_waiting = _paid_but_waiting_payment(purchases)
        if paid_waiting:
            report.issues.append(f"{len(paid_waiting)} оплаченных заказов все еще ожидают оплаты")
            report.fixes.append(SuggestedFix(
                action="advance_paid_orders", params={"order_ids": [p.id for p in paid_waiting]}
            ))

        inconsistent = find_consistency_issues(box, purchases)
        for issue in inconsistent:
            report.issues.append(issue.describe())
        alignable = [p.id for p in purchases if alignment_target(box.status, p.status) is not None]
        if alignable:
            report.fixes.append(SuggestedFix(
                action="align_orders", params={"box_id": box_id, "box_status": box.status.value, "order_ids": alignable}
            ))

        if _should_complete(box, purchases):
            report.issues.append("Коробка должна быть завершена: все активные заказы доставлены")
            report.fixes.append(SuggestedFix(
                action="complete_box", params={"box_id": box_id, "status": BoxStatus.COMPLETED.value}
            ))

        report.awaiting_manual_dispatch = find_awaiting_manual_dispatch(box, purchases)
        return report


class BatchRepairUseCase:
    def __init__(
        self,
        unit_of_work,
        status_engine: StatusEngine,
        closure_evaluator: Optional[ClosureEvaluator] = None,
        actor_id: Optional[str] = None
    ):
        self._uow = unit_of_work
        self._engine = status_engine
        self._actor_id = actor_id or settings.SYSTEM_ACTOR_ID
        self._closure = closure_evaluator or ClosureEvaluator(unit_of_work, status_engine, self._actor_id)

    async def __call__(self, box_id: str) -> BatchRepairReport:
        logger.info(f"Batch-ремонт коробки {box_id}")
        box, purchases = await self._load(box_id)
        if not box:
            raise EntityNotFoundError(EntityType.BOX.value, box_id)

        report = BatchRepairReport(box_id=box_id)

        # 0. Остаток по неотмененным заказам
        try:
            remaining = calculate_remaining_kg(box, purchases)
            if remaining != box.remaining_kg:
                async with self._uow() as uow:
                    await uow.boxes.update_fields(box_id, remaining_kg=remaining)
                    await uow.commit()
                report.actions.append(f"Остаток пересчитан: {box.remaining_kg}kg → {remaining}kg")
        except Exception as e:
            self._fail(report, f"Ошибка пересчета остатка: {e}")

        # 1. Оплаченные заказы, застрявшие в ожидании оплаты
        for purchase in _paid_but_waiting_payment(purchases):
            try:
                result = await self._engine.change_order_status(
                    purchase.id,
                    OrderStatus.WAITING_BOX_CLOSURE,
                    actor_id=self._actor_id,
                    reason="Batch: оплата подтверждена"
                )
                if result.committed:
                    report.actions.append(
                        f"Заказ {purchase.order_number}: {purchase.status.value} → {OrderStatus.WAITING_BOX_CLOSURE.value}"
                    )
            except Exception as e:
                self._fail(report, f"Заказ {purchase.order_number}: {e}")

        # 2. Автозакрытие
        try:
            closure = await self._closure(box_id)
            if closure and closure.committed:
                report.actions.append(
                    f"Коробка закрыта: {closure.previous_status} → {closure.next_status}"
                )
                report.errors.extend(closure.propagation_errors)
        except Exception as e:
            self._fail(report, f"Ошибка автозакрытия: {e}")

        # 3. Проверка соответствия заказов статусу коробки
        loaded = await self._reload(report)
        if loaded is None:
            return self._finish(report)
        box, purchases = loaded
        report.issues = [issue.describe() for issue in find_consistency_issues(box, purchases)]

        # 4. Дотягиваем отстающие заказы (только вперед)
        for purchase in purchases:
            target = alignment_target(box.status, purchase.status)
            if target is None:
                continue
            try:
                result = await self._engine.change_order_status(
                    purchase.id,
                    target,
                    actor_id=self._actor_id,
                    reason=f"Batch: выравнивание по коробке ({box.status.value})",
                    force=True,
                    propagate=False
                )
                if result.committed:
                    report.actions.append(
                        f"Заказ {purchase.order_number}: {purchase.status.value} → {target.value}"
                    )
            except Exception as e:
                self._fail(report, f"Заказ {purchase.order_number}: {e}")

        # 4b. Все активные заказы доставлены, а коробка еще не завершена
        loaded = await self._reload(report)
        if loaded is None:
            return self._finish(report)
        box, purchases = loaded
        if _should_complete(box, purchases):
            try:
                result = await self._engine.change_box_status(
                    box_id,
                    BoxStatus.COMPLETED,
                    actor_id=self._actor_id,
                    reason="Batch: все активные заказы доставлены",
                    force=True,
                    propagate=False
                )
                if result.committed:
                    report.actions.append(f"Коробка: {box.status.value} → {BoxStatus.COMPLETED.value}")
            except Exception as e:
                self._fail(report, f"Ошибка завершения коробки: {e}")

        # 5. Повторная проверка
        loaded = await self._reload(report)
        if loaded is None:
            return self._finish(report)
        box, purchases = loaded
        for issue in find_consistency_issues(box, purchases):
            self._fail(report, f"Несоответствие после выравнивания: {issue.describe()}")

        report.awaiting_manual_dispatch = find_awaiting_manual_dispatch(box, purchases)
        return self._finish(report)

    async def _load(self, box_id: str):
        async with self._uow() as uow:
            box = await uow.boxes.get_by_id(box_id)
            purchases = await uow.purchases.list_by_box(box_id) if box else []
        return box, purchases

    async def _reload(self, report: BatchRepairReport):
        """Перечитывает коробку между шагами; None, если продолжать нельзя"""
        try:
            box, purchases = await self._load(report.box_id)
        except Exception as e:
            self._fail(report, f"Ошибка чтения коробки: {e}")
            return None
        if not box:
            self._fail(report, f"Коробка {report.box_id} исчезла во время ремонта")
            return None
        return box, purchases

    @staticmethod
    def _finish(report: BatchRepairReport) -> BatchRepairReport:
        report.success = not report.errors
        logger.info(
            f"Batch-ремонт коробки {report.box_id} завершен: "
            f"действий {len(report.actions)}, ошибок {len(report.errors)}"
        )
        return report

    @staticmethod
    def _fail(report: BatchRepairReport, message: str) -> None:
        logger.error(f"Batch-ремонт коробки {report.box_id}: {message}")
        report.errors.append(message)
