import pytest

from meatbox.domain.models import BoxStatus, OrderStatus, PaymentStatus, EntityType
from meatbox.domain.exceptions import EntityNotFoundError
from meatbox.application.reconciliation import BatchRepairUseCase, DiagnoseInconsistenciesUseCase


@pytest.fixture
def repair(uow, engine, closure):
    return BatchRepairUseCase(uow, engine, closure)


async def test_lagging_orders_are_aligned_forward(repair, make_box, make_purchase, load_purchase):
    box = await make_box(status=BoxStatus.SUPPLIER_DELIVERY_RECEIVED, remaining_kg=0.0)
    lagging = await make_purchase(box, status=OrderStatus.IN_PURCHASE_PROCESS, payment_status=PaymentStatus.PAID)
    cancelled = await make_purchase(box, status=OrderStatus.CANCELLED)

    report = await repair(box.id)

    assert report.success
    assert report.errors == []
    assert (await load_purchase(lagging.id)).status == OrderStatus.WAITING_CLIENT_SHIPMENT
    assert (await load_purchase(cancelled.id)).status == OrderStatus.CANCELLED


async def test_repair_is_idempotent(repair, engine, make_box, make_purchase):
    box = await make_box(status=BoxStatus.WAITING_SUPPLIER_DELIVERY, remaining_kg=0.0)
    purchase = await make_purchase(box, status=OrderStatus.IN_PURCHASE_PROCESS, payment_status=PaymentStatus.PAID)

    first = await repair(box.id)
    second = await repair(box.id)

    assert first.actions
    assert second.actions == []
    entries = await engine.audit_log.fetch(EntityType.ORDER, purchase.id)
    assert len(entries) == 1
    assert entries[0].forced is False


async def test_orders_ahead_of_box_are_never_moved_back(repair, make_box, make_purchase, load_purchase):
    box = await make_box(status=BoxStatus.WAITING_SUPPLIER_DELIVERY, remaining_kg=0.0)
    ahead = await make_purchase(box, status=OrderStatus.WAITING_CLIENT_SHIPMENT, payment_status=PaymentStatus.PAID)

    report = await repair(box.id)

    assert (await load_purchase(ahead.id)).status == OrderStatus.WAITING_CLIENT_SHIPMENT
    assert not report.success
    assert any(ahead.order_number in error for error in report.errors)


async def test_dispatching_box_reports_orders_awaiting_manual_dispatch(repair, make_box, make_purchase, load_purchase):
    box = await make_box(status=BoxStatus.DISPATCHING, remaining_kg=0.0)
    waiting = await make_purchase(box, status=OrderStatus.WAITING_CLIENT_SHIPMENT, payment_status=PaymentStatus.PAID)
    lagging = await make_purchase(box, status=OrderStatus.WAITING_SUPPLIER, payment_status=PaymentStatus.PAID)

    report = await repair(box.id)

    assert report.success
    assert report.issues == [
        f"Заказ {lagging.order_number}: статус waiting_supplier, ожидается "
        "delivered_to_client | dispatching_to_client | waiting_client_shipment"
    ]
    assert (await load_purchase(lagging.id)).status == OrderStatus.WAITING_CLIENT_SHIPMENT
    assert (await load_purchase(waiting.id)).status == OrderStatus.WAITING_CLIENT_SHIPMENT
    assert sorted(report.awaiting_manual_dispatch) == sorted([waiting.id, lagging.id])


async def test_box_with_all_orders_delivered_is_completed(repair, make_box, make_purchase, load_box):
    box = await make_box(status=BoxStatus.DISPATCHING, remaining_kg=5.0)
    await make_purchase(box, status=OrderStatus.DELIVERED_TO_CLIENT, payment_status=PaymentStatus.PAID)
    await make_purchase(box, status=OrderStatus.CANCELLED)

    report = await repair(box.id)

    assert report.success
    assert (await load_box(box.id)).status == BoxStatus.COMPLETED


async def test_paid_orders_waiting_payment_are_advanced_and_box_closed(repair, make_box, make_purchase, load_box, load_purchase):
    box = await make_box(total_kg=10.0, remaining_kg=0.0)
    first = await make_purchase(box, kg=6.0, payment_status=PaymentStatus.PAID)
    second = await make_purchase(box, kg=4.0, payment_status=PaymentStatus.PAID)

    report = await repair(box.id)

    assert report.success
    assert (await load_box(box.id)).status == BoxStatus.WAITING_SUPPLIER_ORDER
    for purchase in (first, second):
        assert (await load_purchase(purchase.id)).status == OrderStatus.IN_PURCHASE_PROCESS


async def test_remaining_kg_is_recalculated(repair, make_box, make_purchase, load_box):
    box = await make_box(total_kg=10.0, remaining_kg=10.0)
    await make_purchase(box, kg=3.0)
    await make_purchase(box, kg=2.0, status=OrderStatus.CANCELLED)

    report = await repair(box.id)

    assert (await load_box(box.id)).remaining_kg == 7.0
    assert any("7.0kg" in action for action in report.actions)


async def test_repair_unknown_box(repair):
    with pytest.raises(EntityNotFoundError):
        await repair("missing")


async def test_diagnostics_do_not_write(uow, make_box, make_purchase, load_box, load_purchase):
    box = await make_box(status=BoxStatus.WAITING_SUPPLIER_DELIVERY, total_kg=10.0, remaining_kg=10.0)
    lagging = await make_purchase(box, kg=4.0, status=OrderStatus.IN_PURCHASE_PROCESS, payment_status=PaymentStatus.PAID)

    report = await DiagnoseInconsistenciesUseCase(uow)(box.id)

    actions = {fix.action for fix in report.fixes}
    assert actions == {"recalculate_remaining_kg", "align_orders"}
    assert len(report.issues) == 2
    assert (await load_box(box.id)).remaining_kg == 10.0
    assert (await load_purchase(lagging.id)).status == OrderStatus.IN_PURCHASE_PROCESS


async def test_diagnostics_suggest_box_completion(uow, make_box, make_purchase):
    box = await make_box(status=BoxStatus.DISPATCHING, remaining_kg=5.0)
    await make_purchase(box, status=OrderStatus.DELIVERED_TO_CLIENT, payment_status=PaymentStatus.PAID)

    report = await DiagnoseInconsistenciesUseCase(uow)(box.id)

    assert [fix.action for fix in report.fixes] == ["complete_box"]
    assert report.awaiting_manual_dispatch == []


async def test_legacy_stored_statuses_are_repaired(uow, repair, make_box, make_purchase, load_purchase):
    box = await make_box(status=BoxStatus.SUPPLIER_DELIVERY_RECEIVED, remaining_kg=5.0)
    purchase = await make_purchase(box, status=OrderStatus.IN_PURCHASE_PROCESS, payment_status=PaymentStatus.PAID)
    async with uow() as u:
        await u.boxes.update_fields(box.id, status="received_at_warehouse")
        await u.purchases.update_fields(purchase.id, status="Em processo de compra")
        await u.commit()

    report = await repair(box.id)

    assert report.success
    stored = await load_purchase(purchase.id)
    assert stored.status == OrderStatus.WAITING_CLIENT_SHIPMENT
    assert stored.stored_status == OrderStatus.WAITING_CLIENT_SHIPMENT.value


async def test_box_behind_delivered_orders_is_completed(uow, repair, engine, make_box, make_purchase, load_box):
    box = await make_box(status=BoxStatus.SUPPLIER_DELIVERY_RECEIVED, remaining_kg=5.0)
    await make_purchase(box, status=OrderStatus.DELIVERED_TO_CLIENT, payment_status=PaymentStatus.PAID)

    diagnostics = await DiagnoseInconsistenciesUseCase(uow)(box.id)
    assert [fix.action for fix in diagnostics.fixes] == ["complete_box"]

    report = await repair(box.id)

    assert report.success
    assert (await load_box(box.id)).status == BoxStatus.COMPLETED
    entry = (await engine.audit_log.fetch(EntityType.BOX, box.id))[0]
    assert entry.forced is True

    second = await repair(box.id)
    assert second.success
    assert second.actions == []


async def test_box_vanishing_mid_repair_is_reported(repair, make_box, make_purchase, monkeypatch):
    box = await make_box(status=BoxStatus.WAITING_SUPPLIER_DELIVERY, remaining_kg=5.0)
    await make_purchase(box, status=OrderStatus.IN_PURCHASE_PROCESS, payment_status=PaymentStatus.PAID)
    original = repair._load
    calls = {"n": 0}

    async def load_then_vanish(box_id):
        calls["n"] += 1
        if calls["n"] == 1:
            return await original(box_id)
        return None, []

    monkeypatch.setattr(repair, "_load", load_then_vanish)

    report = await repair(box.id)

    assert not report.success
    assert any("исчезла" in error for error in report.errors)
