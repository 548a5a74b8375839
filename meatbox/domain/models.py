from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


class EntityType(str, Enum):
    BOX = "box"
    ORDER = "order"


class BoxStatus(str, Enum):
    WAITING_PURCHASES = "waiting_purchases"
    WAITING_SUPPLIER_ORDER = "waiting_supplier_order"
    WAITING_SUPPLIER_DELIVERY = "waiting_supplier_delivery"
    SUPPLIER_DELIVERY_RECEIVED = "supplier_delivery_received"
    DISPATCHING = "dispatching"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class OrderStatus(str, Enum):
    WAITING_PAYMENT = "waiting_payment"
    WAITING_BOX_CLOSURE = "waiting_box_closure"
    IN_PURCHASE_PROCESS = "in_purchase_process"
    WAITING_SUPPLIER = "waiting_supplier"
    WAITING_CLIENT_SHIPMENT = "waiting_client_shipment"
    DISPATCHING_TO_CLIENT = "dispatching_to_client"
    DELIVERED_TO_CLIENT = "delivered_to_client"
    CANCELLED = "cancelled"


class PaymentType(str, Enum):
    PREPAID = "prepaid"
    POSTPAID = "postpaid"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"


class Box(BaseModel):
    """Domain Entity — коробка (групповая закупка одной партии мяса)"""
    id: str
    name: str
    brand: str = ""
    price_per_kg: float
    cost_per_kg: float = 0.0
    total_kg: float
    remaining_kg: float
    min_kg_per_person: float = 0.0
    payment_type: PaymentType
    status: BoxStatus
    created_at: datetime
    updated_at: datetime
    deleted_at: Optional[datetime] = None
    # Значение status как оно лежит в базе (может быть устаревшим)
    stored_status: Optional[str] = Field(default=None, exclude=True)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def is_open_for_purchases(self) -> bool:
        """Бизнес-правило: покупать можно только в активной коробке на этапе сбора"""
        return not self.is_deleted and self.status == BoxStatus.WAITING_PURCHASES


class DispatchSteps(BaseModel):
    """Value Object — чек-лист ручной отгрузки заказа"""
    order_separated: bool = False
    separated_at: Optional[datetime] = None
    picked_up_by_courier: bool = False
    picked_up_at: Optional[datetime] = None


class Purchase(BaseModel):
    """Domain Entity — заказ покупателя внутри коробки"""
    id: str
    order_number: str
    box_id: str
    user_id: str
    kg_purchased: float
    total_amount: float
    status: OrderStatus
    payment_status: PaymentStatus
    payment_link: str | None = None
    payment_expires_at: datetime | None = None
    dispatch_steps: DispatchSteps = Field(default_factory=DispatchSteps)
    created_at: datetime
    updated_at: datetime
    stored_status: Optional[str] = Field(default=None, exclude=True)

    @property
    def is_cancelled(self) -> bool:
        return self.status == OrderStatus.CANCELLED

    @property
    def is_paid(self) -> bool:
        return self.payment_status == PaymentStatus.PAID

    def can_be_separated(self) -> bool:
        """Бизнес-правило: отделить можно только заказ, ожидающий отправки клиенту"""
        return self.status in (OrderStatus.WAITING_CLIENT_SHIPMENT, OrderStatus.DISPATCHING_TO_CLIENT)


class StatusLogEntry(BaseModel):
    """Неизменяемая запись журнала смены статусов"""
    id: Optional[str] = None
    entity_type: EntityType
    entity_id: str
    previous_status: str
    next_status: str
    forced: bool
    reason: Optional[str] = None
    performed_by: str
    performed_at: datetime

    model_config = {"frozen": True}
