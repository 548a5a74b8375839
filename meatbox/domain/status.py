"""Таксономия статусов коробок и заказов.

Граф переходов линейный: у каждого нетерминального статуса ровно один
следующий статус. Дополнительно коробку можно отменить на первых двух этапах,
а заказ на любом нетерминальном этапе.
"""
from typing import Optional, Union

from meatbox.domain.models import BoxStatus, OrderStatus, EntityType


Status = Union[BoxStatus, OrderStatus]


BOX_SEQUENCE = (
    BoxStatus.WAITING_PURCHASES,
    BoxStatus.WAITING_SUPPLIER_ORDER,
    BoxStatus.WAITING_SUPPLIER_DELIVERY,
    BoxStatus.SUPPLIER_DELIVERY_RECEIVED,
    BoxStatus.DISPATCHING,
    BoxStatus.COMPLETED,
)

ORDER_SEQUENCE = (
    OrderStatus.WAITING_PAYMENT,
    OrderStatus.WAITING_BOX_CLOSURE,
    OrderStatus.IN_PURCHASE_PROCESS,
    OrderStatus.WAITING_SUPPLIER,
    OrderStatus.WAITING_CLIENT_SHIPMENT,
    OrderStatus.DISPATCHING_TO_CLIENT,
    OrderStatus.DELIVERED_TO_CLIENT,
)

CANCELLABLE_BOX_STATUSES = frozenset({
    BoxStatus.WAITING_PURCHASES,
    BoxStatus.WAITING_SUPPLIER_ORDER,
})


def _build_transitions(sequence, cancelled, cancellable):
    transitions = {}
    for index, status in enumerate(sequence):
        allowed = set()
        if index + 1 < len(sequence):
            allowed.add(sequence[index + 1])
        if status in cancellable:
            allowed.add(cancelled)
        transitions[status] = frozenset(allowed)
    transitions[cancelled] = frozenset()
    return transitions


BOX_STATUS_TRANSITIONS = _build_transitions(
    BOX_SEQUENCE, BoxStatus.CANCELLED, CANCELLABLE_BOX_STATUSES
)

ORDER_STATUS_TRANSITIONS = _build_transitions(
    ORDER_SEQUENCE, OrderStatus.CANCELLED, frozenset(ORDER_SEQUENCE[:-1])
)

# Подстатусы отгрузки: пока коробка в DISPATCHING, заказ может быть в любом из них
DISPATCH_ORDER_STATUSES = frozenset({
    OrderStatus.WAITING_CLIENT_SHIPMENT,
    OrderStatus.DISPATCHING_TO_CLIENT,
    OrderStatus.DELIVERED_TO_CLIENT,
})


BOX_STATUS_LABELS = {
    BoxStatus.WAITING_PURCHASES: "Aguardando compras",
    BoxStatus.WAITING_SUPPLIER_ORDER: "Aguardando pedido ao fornecedor",
    BoxStatus.WAITING_SUPPLIER_DELIVERY: "Aguardando entrega fornecedor",
    BoxStatus.SUPPLIER_DELIVERY_RECEIVED: "Entrega do fornecedor recebida",
    BoxStatus.DISPATCHING: "Despachando",
    BoxStatus.COMPLETED: "Finalizada",
    BoxStatus.CANCELLED: "Cancelada",
}

ORDER_STATUS_LABELS = {
    OrderStatus.WAITING_PAYMENT: "Aguardando pagamento cliente",
    OrderStatus.WAITING_BOX_CLOSURE: "Aguardando fechamento da caixa",
    OrderStatus.IN_PURCHASE_PROCESS: "Em processo de compra",
    OrderStatus.WAITING_SUPPLIER: "Aguardando fornecedor - frigorífico",
    OrderStatus.WAITING_CLIENT_SHIPMENT: "Aguardando envio para o cliente",
    OrderStatus.DISPATCHING_TO_CLIENT: "Despachando para o cliente",
    OrderStatus.DELIVERED_TO_CLIENT: "Entregue ao cliente",
    OrderStatus.CANCELLED: "Cancelado",
}


# Старые значения из ранних версий данных: snake_case-коды и подписи,
# которые когда-то хранились прямо в поле status
LEGACY_BOX_STATUS_MAP = {
    "awaiting_customer_purchases": BoxStatus.WAITING_PURCHASES,
    "awaiting_supplier_purchase": BoxStatus.WAITING_SUPPLIER_ORDER,
    "awaiting_supplier_delivery": BoxStatus.WAITING_SUPPLIER_DELIVERY,
    "received_at_warehouse": BoxStatus.SUPPLIER_DELIVERY_RECEIVED,
    "dispatching_to_customers": BoxStatus.DISPATCHING,
    "completed": BoxStatus.COMPLETED,
    "cancelled": BoxStatus.CANCELLED,
    **{label: status for status, label in BOX_STATUS_LABELS.items()},
}

LEGACY_ORDER_STATUS_MAP = {
    "awaiting_box_closure": OrderStatus.WAITING_BOX_CLOSURE,
    "awaiting_payment": OrderStatus.WAITING_PAYMENT,
    "awaiting_supplier": OrderStatus.WAITING_SUPPLIER,
    "dispatching": OrderStatus.DISPATCHING_TO_CLIENT,
    "delivered": OrderStatus.DELIVERED_TO_CLIENT,
    "cancelled": OrderStatus.CANCELLED,
    **{label: status for status, label in ORDER_STATUS_LABELS.items()},
}


def _transitions_for(kind: EntityType):
    if EntityType(kind) == EntityType.BOX:
        return BOX_STATUS_TRANSITIONS
    return ORDER_STATUS_TRANSITIONS


def _coerce(status, kind: EntityType) -> Optional[Status]:
    enum_cls = BoxStatus if EntityType(kind) == EntityType.BOX else OrderStatus
    try:
        return enum_cls(status)
    except ValueError:
        return None


def valid_next_statuses(current, kind: EntityType) -> frozenset:
    """Допустимые следующие статусы (для отображения в админке)"""
    current = _coerce(current, kind)
    if current is None:
        return frozenset()
    return _transitions_for(kind)[current]


def is_valid_transition(current, next_status, kind: EntityType) -> bool:
    next_status = _coerce(next_status, kind)
    if next_status is None:
        return False
    return next_status in valid_next_statuses(current, kind)


def normalize_box_status(value: str) -> BoxStatus:
    """Приводит значение из хранилища (в т.ч. устаревшее) к BoxStatus"""
    status = _coerce(value, EntityType.BOX)
    if status is not None:
        return status
    return LEGACY_BOX_STATUS_MAP.get(value, BoxStatus.WAITING_PURCHASES)


def normalize_order_status(value: str) -> OrderStatus:
    """Приводит значение из хранилища (в т.ч. устаревшее) к OrderStatus"""
    status = _coerce(value, EntityType.ORDER)
    if status is not None:
        return status
    return LEGACY_ORDER_STATUS_MAP.get(value, OrderStatus.WAITING_PAYMENT)


def status_label(status: Status) -> str:
    if isinstance(status, BoxStatus):
        return BOX_STATUS_LABELS[status]
    return ORDER_STATUS_LABELS[status]


def order_position(status: OrderStatus) -> Optional[int]:
    """Позиция заказа в линейной последовательности; None для CANCELLED"""
    if status == OrderStatus.CANCELLED:
        return None
    return ORDER_SEQUENCE.index(status)


def expected_order_status(box_status: BoxStatus, order_status: OrderStatus) -> Optional[OrderStatus]:
    """Статус, в котором должен находиться заказ при данном статусе коробки.

    None: коробка не накладывает ограничений на заказ (сбор заказов,
    отмена коробки, неоплаченный заказ при заказе у поставщика).
    """
    if box_status == BoxStatus.WAITING_SUPPLIER_ORDER:
        if order_status == OrderStatus.WAITING_BOX_CLOSURE:
            return OrderStatus.IN_PURCHASE_PROCESS
        if order_status == OrderStatus.IN_PURCHASE_PROCESS:
            return OrderStatus.IN_PURCHASE_PROCESS
        return None
    return {
        BoxStatus.WAITING_SUPPLIER_DELIVERY: OrderStatus.WAITING_SUPPLIER,
        BoxStatus.SUPPLIER_DELIVERY_RECEIVED: OrderStatus.WAITING_CLIENT_SHIPMENT,
        BoxStatus.DISPATCHING: OrderStatus.DISPATCHING_TO_CLIENT,
        BoxStatus.COMPLETED: OrderStatus.DELIVERED_TO_CLIENT,
    }.get(box_status)


def is_order_consistent(box_status: BoxStatus, order_status: OrderStatus) -> bool:
    if order_status == OrderStatus.CANCELLED:
        return True
    if box_status == BoxStatus.DISPATCHING:
        return order_status in DISPATCH_ORDER_STATUSES
    expected = expected_order_status(box_status, order_status)
    return expected is None or expected == order_status


def alignment_target(box_status: BoxStatus, order_status: OrderStatus) -> Optional[OrderStatus]:
    """Статус, до которого можно автоматически дотянуть отстающий заказ.

    DISPATCHING_TO_CLIENT никогда не выставляется автоматически, только
    через ручной чек-лист отгрузки. Заказ никогда не откатывается назад и не
    выводится из CANCELLED.
    """
    position = order_position(order_status)
    if position is None:
        return None
    if box_status == BoxStatus.DISPATCHING:
        target = OrderStatus.WAITING_CLIENT_SHIPMENT
    else:
        target = expected_order_status(box_status, order_status)
    if target is None or target == OrderStatus.DISPATCHING_TO_CLIENT:
        return None
    if order_position(target) <= position:
        return None
    return target
