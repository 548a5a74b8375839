from datetime import datetime, timedelta, timezone

from meatbox.domain.models import EntityType, StatusLogEntry
from meatbox.application.status_logs import AuditLog


def _entry(entity_type, entity_id, previous, next_status, minutes, reason=None):
    return StatusLogEntry(
        entity_type=entity_type,
        entity_id=entity_id,
        previous_status=previous,
        next_status=next_status,
        forced=False,
        reason=reason,
        performed_by="admin-1",
        performed_at=datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc) + timedelta(minutes=minutes)
    )


async def test_fetch_returns_entries_newest_first(uow):
    audit_log = AuditLog(uow)
    await audit_log.record(_entry(EntityType.BOX, "box-1", "a", "b", minutes=1))
    await audit_log.record(_entry(EntityType.BOX, "box-1", "b", "c", minutes=5))
    await audit_log.record(_entry(EntityType.BOX, "box-1", "c", "d", minutes=3))

    entries = await audit_log.fetch(EntityType.BOX, "box-1")

    assert [e.next_status for e in entries] == ["c", "d", "b"]
    assert all(e.id for e in entries)


async def test_fetch_filters_by_entity_type_in_code(uow):
    audit_log = AuditLog(uow)
    await audit_log.record(_entry(EntityType.BOX, "shared-id", "a", "b", minutes=1))
    await audit_log.record(_entry(EntityType.ORDER, "shared-id", "x", "y", minutes=2))
    await audit_log.record(_entry(EntityType.ORDER, "other-id", "x", "y", minutes=3))

    box_entries = await audit_log.fetch(EntityType.BOX, "shared-id")
    order_entries = await audit_log.fetch("order", "shared-id")

    assert [e.next_status for e in box_entries] == ["b"]
    assert [e.next_status for e in order_entries] == ["y"]


async def test_missing_reason_is_omitted_not_empty(uow):
    audit_log = AuditLog(uow)
    await audit_log.record(_entry(EntityType.ORDER, "order-1", "a", "b", minutes=1))
    await audit_log.record(_entry(EntityType.ORDER, "order-1", "b", "c", minutes=2, reason="   "))
    await audit_log.record(_entry(EntityType.ORDER, "order-1", "c", "d", minutes=3, reason="ajuste manual"))

    entries = await audit_log.fetch(EntityType.ORDER, "order-1")

    assert [e.reason for e in entries] == ["ajuste manual", None, None]
    assert "reason" not in entries[-1].model_dump(exclude_none=True)


async def test_record_inside_open_unit_of_work_commits_with_it(uow):
    audit_log = AuditLog(uow)

    async with uow() as u:
        await audit_log.record(_entry(EntityType.BOX, "box-2", "a", "b", minutes=1), uow=u)
        # без commit запись откатывается

    assert await audit_log.fetch(EntityType.BOX, "box-2") == []

    async with uow() as u:
        await audit_log.record(_entry(EntityType.BOX, "box-2", "a", "b", minutes=1), uow=u)
        await u.commit()

    assert len(await audit_log.fetch(EntityType.BOX, "box-2")) == 1
