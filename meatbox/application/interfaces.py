from abc import ABC, abstractmethod
from typing import Optional, List
from meatbox.domain.models import Box, BoxStatus, Purchase, OrderStatus, StatusLogEntry


class BoxRepository(ABC):
    @abstractmethod
    async def get_by_id(self, box_id: str) -> Optional[Box]:
        pass

    @abstractmethod
    async def get_for_update(self, box_id: str) -> Optional[Box]:
        pass

    @abstractmethod
    async def list_all(self) -> List[Box]:
        pass

    @abstractmethod
    async def create(self, box: Box) -> None:
        pass

    @abstractmethod
    async def update_fields(self, box_id: str, **fields) -> None:
        pass

    @abstractmethod
    async def update_status(self, box_id: str, expected: str, status: BoxStatus) -> None:
        """Compare-and-set: пишет status, только если в базе все еще лежит сырое значение expected"""
        pass


class PurchaseRepository(ABC):
    @abstractmethod
    async def get_by_id(self, purchase_id: str) -> Optional[Purchase]:
        pass

    @abstractmethod
    async def get_for_update(self, purchase_id: str) -> Optional[Purchase]:
        pass

    @abstractmethod
    async def list_by_box(self, box_id: str) -> List[Purchase]:
        pass

    @abstractmethod
    async def list_all(self) -> List[Purchase]:
        pass

    @abstractmethod
    async def create(self, purchase: Purchase) -> None:
        pass

    @abstractmethod
    async def update_fields(self, purchase_id: str, **fields) -> None:
        pass

    @abstractmethod
    async def update_status(self, purchase_id: str, expected: str, status: OrderStatus) -> None:
        pass


class StatusLogRepository(ABC):
    @abstractmethod
    async def create(self, entry: StatusLogEntry) -> str:
        pass

    @abstractmethod
    async def list_by_entity_id(self, entity_id: str) -> List[StatusLogEntry]:
        pass


class UnitOfWork(ABC):
    @property
    @abstractmethod
    def boxes(self) -> BoxRepository:
        pass

    @property
    @abstractmethod
    def purchases(self) -> PurchaseRepository:
        pass

    @property
    @abstractmethod
    def status_logs(self) -> StatusLogRepository:
        pass

    @abstractmethod
    async def __call__(self):
        pass

    @abstractmethod
    async def commit(self):
        pass

    @abstractmethod
    async def rollback(self):
        pass
