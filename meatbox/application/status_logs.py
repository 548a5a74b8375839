import logging
from typing import List

from meatbox.domain.models import StatusLogEntry, EntityType

logger = logging.getLogger(__name__)


class AuditLog:
    """Журнал смены статусов: только добавление, записи не меняются и не удаляются"""

    def __init__(self, unit_of_work):
        self._uow = unit_of_work

    async def record(self, entry: StatusLogEntry, uow=None) -> str:
        """Добавляет запись.

        Если передан открытый uow, запись попадает в ту же транзакцию, что и
        смена статуса, и коммитится вместе с ней. Пустая причина не
        сохраняется вовсе.
        """
        if entry.reason is not None and not entry.reason.strip():
            entry = entry.model_copy(update={"reason": None})

        if uow is not None:
            return await uow.status_logs.create(entry)

        async with self._uow() as own_uow:
            entry_id = await own_uow.status_logs.create(entry)
            await own_uow.commit()
        return entry_id

    async def fetch(self, entity_type: EntityType, entity_id: str) -> List[StatusLogEntry]:
        """Все записи сущности, новые первыми.

        Запрос к хранилищу: только равенство по entity_id; фильтр по типу и
        сортировка выполняются здесь.
        """
        entity_type = EntityType(entity_type)
        async with self._uow() as uow:
            entries = await uow.status_logs.list_by_entity_id(entity_id)

        filtered = [entry for entry in entries if entry.entity_type == entity_type]
        filtered.sort(key=lambda entry: entry.performed_at, reverse=True)
        return filtered
