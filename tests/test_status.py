import pytest

from meatbox.domain.models import BoxStatus, OrderStatus, EntityType
from meatbox.domain.status import (
    BOX_SEQUENCE, ORDER_SEQUENCE, CANCELLABLE_BOX_STATUSES,
    is_valid_transition, valid_next_statuses, normalize_box_status, normalize_order_status,
    status_label, order_position, expected_order_status, is_order_consistent, alignment_target
)


def _successor(sequence, status):
    if status not in sequence:
        return None
    index = sequence.index(status)
    return sequence[index + 1] if index + 1 < len(sequence) else None


@pytest.mark.parametrize("current", list(BoxStatus))
@pytest.mark.parametrize("next_status", list(BoxStatus))
def test_box_transition_is_successor_or_cancellation(current, next_status):
    expected = (
        next_status == _successor(BOX_SEQUENCE, current)
        or (next_status == BoxStatus.CANCELLED and current in CANCELLABLE_BOX_STATUSES)
    )
    assert is_valid_transition(current, next_status, EntityType.BOX) is expected


@pytest.mark.parametrize("current", list(OrderStatus))
@pytest.mark.parametrize("next_status", list(OrderStatus))
def test_order_transition_is_successor_or_cancellation(current, next_status):
    cancellable = current in ORDER_SEQUENCE and current != OrderStatus.DELIVERED_TO_CLIENT
    expected = (
        next_status == _successor(ORDER_SEQUENCE, current)
        or (next_status == OrderStatus.CANCELLED and cancellable)
    )
    assert is_valid_transition(current, next_status, EntityType.ORDER) is expected


def test_terminal_statuses_have_no_next():
    assert valid_next_statuses(BoxStatus.COMPLETED, EntityType.BOX) == frozenset()
    assert valid_next_statuses(BoxStatus.CANCELLED, EntityType.BOX) == frozenset()
    assert valid_next_statuses(OrderStatus.DELIVERED_TO_CLIENT, EntityType.ORDER) == frozenset()
    assert valid_next_statuses(OrderStatus.CANCELLED, EntityType.ORDER) == frozenset()


def test_valid_next_statuses_for_display():
    assert valid_next_statuses(BoxStatus.WAITING_PURCHASES, EntityType.BOX) == {
        BoxStatus.WAITING_SUPPLIER_ORDER, BoxStatus.CANCELLED
    }
    assert valid_next_statuses(BoxStatus.WAITING_SUPPLIER_DELIVERY, EntityType.BOX) == {
        BoxStatus.SUPPLIER_DELIVERY_RECEIVED
    }
    assert valid_next_statuses("waiting_payment", "order") == {
        OrderStatus.WAITING_BOX_CLOSURE, OrderStatus.CANCELLED
    }


def test_unknown_status_is_never_valid():
    assert not is_valid_transition("nope", BoxStatus.CANCELLED, EntityType.BOX)
    assert not is_valid_transition(BoxStatus.WAITING_PURCHASES, "nope", EntityType.BOX)
    assert valid_next_statuses("nope", EntityType.ORDER) == frozenset()


@pytest.mark.parametrize("raw, expected", [
    ("awaiting_customer_purchases", BoxStatus.WAITING_PURCHASES),
    ("received_at_warehouse", BoxStatus.SUPPLIER_DELIVERY_RECEIVED),
    ("dispatching_to_customers", BoxStatus.DISPATCHING),
    ("Finalizada", BoxStatus.COMPLETED),
    ("dispatching", BoxStatus.DISPATCHING),
    ("something else", BoxStatus.WAITING_PURCHASES),
])
def test_normalize_box_status(raw, expected):
    assert normalize_box_status(raw) == expected


@pytest.mark.parametrize("raw, expected", [
    ("awaiting_box_closure", OrderStatus.WAITING_BOX_CLOSURE),
    ("dispatching", OrderStatus.DISPATCHING_TO_CLIENT),
    ("delivered", OrderStatus.DELIVERED_TO_CLIENT),
    ("Em processo de compra", OrderStatus.IN_PURCHASE_PROCESS),
    ("waiting_supplier", OrderStatus.WAITING_SUPPLIER),
    ("", OrderStatus.WAITING_PAYMENT),
])
def test_normalize_order_status(raw, expected):
    assert normalize_order_status(raw) == expected


def test_labels_are_separate_from_codes():
    assert BoxStatus.DISPATCHING.value == "dispatching"
    assert status_label(BoxStatus.DISPATCHING) == "Despachando"
    assert status_label(OrderStatus.DISPATCHING_TO_CLIENT) == "Despachando para o cliente"


def test_order_position():
    assert order_position(OrderStatus.WAITING_PAYMENT) == 0
    assert order_position(OrderStatus.DELIVERED_TO_CLIENT) == 6
    assert order_position(OrderStatus.CANCELLED) is None


def test_expected_status_for_supplier_order_only_applies_to_closed_orders():
    assert expected_order_status(
        BoxStatus.WAITING_SUPPLIER_ORDER, OrderStatus.WAITING_BOX_CLOSURE
    ) == OrderStatus.IN_PURCHASE_PROCESS
    assert expected_order_status(BoxStatus.WAITING_SUPPLIER_ORDER, OrderStatus.WAITING_PAYMENT) is None
    assert expected_order_status(BoxStatus.WAITING_PURCHASES, OrderStatus.WAITING_PAYMENT) is None


def test_dispatching_box_accepts_three_dispatch_substates():
    for order_status in (
        OrderStatus.WAITING_CLIENT_SHIPMENT,
        OrderStatus.DISPATCHING_TO_CLIENT,
        OrderStatus.DELIVERED_TO_CLIENT,
    ):
        assert is_order_consistent(BoxStatus.DISPATCHING, order_status)
    assert not is_order_consistent(BoxStatus.DISPATCHING, OrderStatus.WAITING_SUPPLIER)


def test_cancelled_order_is_always_consistent():
    for box_status in BoxStatus:
        assert is_order_consistent(box_status, OrderStatus.CANCELLED)


def test_alignment_never_targets_manual_dispatch_or_moves_backwards():
    assert alignment_target(BoxStatus.DISPATCHING, OrderStatus.WAITING_SUPPLIER) == OrderStatus.WAITING_CLIENT_SHIPMENT
    assert alignment_target(BoxStatus.DISPATCHING, OrderStatus.WAITING_CLIENT_SHIPMENT) is None
    assert alignment_target(BoxStatus.WAITING_SUPPLIER_DELIVERY, OrderStatus.WAITING_CLIENT_SHIPMENT) is None
    assert alignment_target(BoxStatus.COMPLETED, OrderStatus.CANCELLED) is None
    assert alignment_target(BoxStatus.COMPLETED, OrderStatus.DISPATCHING_TO_CLIENT) == OrderStatus.DELIVERED_TO_CLIENT


@pytest.mark.parametrize("box_status", list(BoxStatus))
@pytest.mark.parametrize("order_status", list(OrderStatus))
def test_alignment_target_is_always_forward(box_status, order_status):
    target = alignment_target(box_status, order_status)
    if target is None:
        return
    assert target != OrderStatus.DISPATCHING_TO_CLIENT
    assert order_position(target) > order_position(order_status)
