from functools import lru_cache
from typing import List
from fastapi import APIRouter, Depends, HTTPException, status

from meatbox.database import get_session_factory
from meatbox.presentation.schemas import (
    CreateBoxRequest, BoxResponse, PlacePurchaseRequest, PurchaseResponse,
    ChangeStatusRequest, DispatchActionRequest, PickupRequest, NextStatusesResponse,
    ErrorResponse, TransitionErrorResponse, OrphanPurchaseResponse
)
from meatbox.domain.models import BoxStatus, OrderStatus, EntityType, StatusLogEntry
from meatbox.domain.status import valid_next_statuses
from meatbox.domain.exceptions import (
    DomainException, StatusTransitionError, EntityNotFoundError, InvalidTransitionError,
    InvalidPurchaseError, DispatchStepError
)
from meatbox.application.boxes import (
    CreateBoxUseCase, CreateBoxDTO, GetBoxUseCase, ListBoxesUseCase, SoftDeleteBoxUseCase, RestoreBoxUseCase,
    FindOrphanPurchasesUseCase
)
from meatbox.application.purchases import PlacePurchaseUseCase, PlacePurchaseDTO, ConfirmPaymentUseCase
from meatbox.application.closure import ClosureEvaluator
from meatbox.application.dispatch import DispatchChecklist
from meatbox.application.reconciliation import (
    BatchRepairUseCase, BatchRepairReport, DiagnoseInconsistenciesUseCase, DiagnosticReport
)
from meatbox.application.status_engine import StatusEngine, TransitionResult
from meatbox.infrastructure.unit_of_work import UnitOfWork

router = APIRouter()


@lru_cache
def get_unit_of_work() -> UnitOfWork:
    return UnitOfWork(get_session_factory())


@lru_cache
def _engine_for(uow) -> StatusEngine:
    # Один движок на unit of work: защита от повторного входа общая для всех запросов
    return StatusEngine(uow)


def get_status_engine(uow: UnitOfWork = Depends(get_unit_of_work)) -> StatusEngine:
    return _engine_for(uow)


def get_closure_evaluator(
    uow: UnitOfWork = Depends(get_unit_of_work),
    engine: StatusEngine = Depends(get_status_engine)
):
    return ClosureEvaluator(uow, engine)


def _http_error(e: DomainException) -> HTTPException:
    if isinstance(e, EntityNotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, InvalidTransitionError):
        body = TransitionErrorResponse(
            kind=e.kind.value, message=str(e), valid_next=[s.value for s in e.valid_next]
        )
        return HTTPException(status_code=409, detail=body.model_dump())
    if isinstance(e, (InvalidPurchaseError, DispatchStepError)):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, StatusTransitionError):
        return HTTPException(status_code=409, detail={"kind": e.kind.value, "message": str(e)})
    return HTTPException(status_code=500, detail=str(e))


@router.post("/boxes", response_model=BoxResponse, status_code=status.HTTP_201_CREATED)
async def create_box(request: CreateBoxRequest, uow: UnitOfWork = Depends(get_unit_of_work)):
    """Создать коробку"""
    box = await CreateBoxUseCase(uow)(CreateBoxDTO(**request.model_dump()))
    return BoxResponse.from_domain(box)


@router.get("/boxes", response_model=List[BoxResponse])
async def list_boxes(
    include_deleted: bool = False,
    available_only: bool = False,
    uow: UnitOfWork = Depends(get_unit_of_work)
):
    boxes = await ListBoxesUseCase(uow)(include_deleted=include_deleted, available_only=available_only)
    return [BoxResponse.from_domain(box) for box in boxes]


@router.get("/boxes/{box_id}", response_model=BoxResponse, responses={404: {"model": ErrorResponse}})
async def get_box(box_id: str, uow: UnitOfWork = Depends(get_unit_of_work)):
    try:
        return BoxResponse.from_domain(await GetBoxUseCase(uow)(box_id))
    except DomainException as e:
        raise _http_error(e)


@router.delete("/boxes/{box_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_box(box_id: str, uow: UnitOfWork = Depends(get_unit_of_work)):
    """Мягкое удаление: коробку можно восстановить"""
    try:
        await SoftDeleteBoxUseCase(uow)(box_id)
    except DomainException as e:
        raise _http_error(e)


@router.post("/boxes/{box_id}/restore", response_model=BoxResponse)
async def restore_box(box_id: str, uow: UnitOfWork = Depends(get_unit_of_work)):
    try:
        await RestoreBoxUseCase(uow)(box_id)
        return BoxResponse.from_domain(await GetBoxUseCase(uow)(box_id))
    except DomainException as e:
        raise _http_error(e)


@router.post(
    "/boxes/{box_id}/status",
    response_model=TransitionResult,
    responses={404: {"model": ErrorResponse}, 409: {"model": TransitionErrorResponse}}
)
async def change_box_status(
    box_id: str,
    request: ChangeStatusRequest,
    engine: StatusEngine = Depends(get_status_engine)
):
    """Сменить статус коробки (force с указанием причины)"""
    try:
        next_status = BoxStatus(request.next_status)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Неизвестный статус: {request.next_status}")
    try:
        return await engine.change_box_status(
            box_id, next_status, actor_id=request.actor_id, reason=request.reason, force=request.force
        )
    except DomainException as e:
        raise _http_error(e)


@router.post(
    "/orders/{order_id}/status",
    response_model=TransitionResult,
    responses={404: {"model": ErrorResponse}, 409: {"model": TransitionErrorResponse}}
)
async def change_order_status(
    order_id: str,
    request: ChangeStatusRequest,
    engine: StatusEngine = Depends(get_status_engine)
):
    try:
        next_status = OrderStatus(request.next_status)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Неизвестный статус: {request.next_status}")
    try:
        return await engine.change_order_status(
            order_id, next_status, actor_id=request.actor_id, reason=request.reason, force=request.force
        )
    except DomainException as e:
        raise _http_error(e)


@router.post(
    "/boxes/{box_id}/purchases",
    response_model=PurchaseResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}}
)
async def place_purchase(
    box_id: str,
    request: PlacePurchaseRequest,
    uow: UnitOfWork = Depends(get_unit_of_work),
    closure: ClosureEvaluator = Depends(get_closure_evaluator)
):
    """Оформить заказ в коробке"""
    try:
        dto = PlacePurchaseDTO(box_id=box_id, user_id=request.user_id, kg=request.kg)
        purchase = await PlacePurchaseUseCase(uow, closure)(dto)
        return PurchaseResponse.from_domain(purchase)
    except DomainException as e:
        raise _http_error(e)


@router.post("/orders/{order_id}/payment", response_model=PurchaseResponse, responses={404: {"model": ErrorResponse}})
async def confirm_payment(
    order_id: str,
    uow: UnitOfWork = Depends(get_unit_of_work),
    engine: StatusEngine = Depends(get_status_engine),
    closure: ClosureEvaluator = Depends(get_closure_evaluator)
):
    """Подтверждение оплаты заказа"""
    try:
        purchase = await ConfirmPaymentUseCase(uow, engine, closure)(order_id)
        return PurchaseResponse.from_domain(purchase)
    except DomainException as e:
        raise _http_error(e)


@router.post("/orders/{order_id}/dispatch/separate", response_model=TransitionResult)
async def separate_order(
    order_id: str,
    request: DispatchActionRequest,
    uow: UnitOfWork = Depends(get_unit_of_work),
    engine: StatusEngine = Depends(get_status_engine)
):
    try:
        return await DispatchChecklist(uow, engine).mark_separated(order_id, request.actor_id)
    except DomainException as e:
        raise _http_error(e)


@router.post("/orders/{order_id}/dispatch/pickup", response_model=PurchaseResponse)
async def pickup_order(
    order_id: str,
    request: PickupRequest,
    uow: UnitOfWork = Depends(get_unit_of_work),
    engine: StatusEngine = Depends(get_status_engine)
):
    try:
        purchase = await DispatchChecklist(uow, engine).set_picked_up(order_id, request.picked_up)
        return PurchaseResponse.from_domain(purchase)
    except DomainException as e:
        raise _http_error(e)


@router.post("/orders/{order_id}/dispatch/deliver", response_model=TransitionResult)
async def deliver_order(
    order_id: str,
    request: DispatchActionRequest,
    uow: UnitOfWork = Depends(get_unit_of_work),
    engine: StatusEngine = Depends(get_status_engine)
):
    try:
        return await DispatchChecklist(uow, engine).confirm_delivery(order_id, request.actor_id)
    except DomainException as e:
        raise _http_error(e)


@router.post("/boxes/{box_id}/batch-repair", response_model=BatchRepairReport)
async def batch_repair(
    box_id: str,
    uow: UnitOfWork = Depends(get_unit_of_work),
    engine: StatusEngine = Depends(get_status_engine),
    closure: ClosureEvaluator = Depends(get_closure_evaluator)
):
    """Сверка и ремонт статусов коробки и ее заказов"""
    try:
        return await BatchRepairUseCase(uow, engine, closure)(box_id)
    except DomainException as e:
        raise _http_error(e)


@router.get("/boxes/{box_id}/diagnostics", response_model=DiagnosticReport)
async def diagnose_box(box_id: str, uow: UnitOfWork = Depends(get_unit_of_work)):
    try:
        return await DiagnoseInconsistenciesUseCase(uow)(box_id)
    except DomainException as e:
        raise _http_error(e)


@router.get("/purchases/orphans", response_model=List[OrphanPurchaseResponse])
async def find_orphan_purchases(uow: UnitOfWork = Depends(get_unit_of_work)):
    """Заказы, чья коробка отсутствует или не указана"""
    orphans = await FindOrphanPurchasesUseCase(uow)()
    return [OrphanPurchaseResponse(**orphan) for orphan in orphans]


@router.get(
    "/status-logs/{entity_type}/{entity_id}",
    response_model=List[StatusLogEntry],
    response_model_exclude_none=True
)
async def fetch_status_logs(
    entity_type: EntityType,
    entity_id: str,
    engine: StatusEngine = Depends(get_status_engine)
):
    """Журнал смены статусов, новые записи первыми"""
    return await engine.audit_log.fetch(entity_type, entity_id)


@router.get("/statuses/{kind}/{current}/next", response_model=NextStatusesResponse)
async def next_statuses(kind: EntityType, current: str):
    enum_cls = BoxStatus if kind == EntityType.BOX else OrderStatus
    try:
        current_status = enum_cls(current)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Неизвестный статус: {current}")
    valid = valid_next_statuses(current_status, kind)
    return NextStatusesResponse(
        kind=kind.value,
        current=current_status.value,
        valid_next=sorted(s.value for s in valid)
    )
