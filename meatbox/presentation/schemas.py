from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List

from meatbox.domain.models import BoxStatus, OrderStatus, PaymentType, PaymentStatus, DispatchSteps
from meatbox.domain.status import status_label


class CreateBoxRequest(BaseModel):
    name: str
    brand: str = ""
    price_per_kg: float = Field(gt=0)
    cost_per_kg: float = Field(default=0.0, ge=0)
    total_kg: float = Field(gt=0)
    min_kg_per_person: float = Field(default=0.0, ge=0)
    payment_type: PaymentType = PaymentType.PREPAID


class BoxResponse(BaseModel):
    id: str
    name: str
    brand: str
    price_per_kg: float
    total_kg: float
    remaining_kg: float
    min_kg_per_person: float
    payment_type: PaymentType
    status: BoxStatus
    status_label: str
    created_at: datetime
    updated_at: datetime
    deleted_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, box):
        return cls(
            id=box.id,
            name=box.name,
            brand=box.brand,
            price_per_kg=box.price_per_kg,
            total_kg=box.total_kg,
            remaining_kg=box.remaining_kg,
            min_kg_per_person=box.min_kg_per_person,
            payment_type=box.payment_type,
            status=box.status,
            status_label=status_label(box.status),
            created_at=box.created_at,
            updated_at=box.updated_at,
            deleted_at=box.deleted_at
        )


class PlacePurchaseRequest(BaseModel):
    user_id: str
    kg: int


class PurchaseResponse(BaseModel):
    id: str
    order_number: str
    box_id: str
    user_id: str
    kg_purchased: float
    total_amount: float
    status: OrderStatus
    status_label: str
    payment_status: PaymentStatus
    dispatch_steps: DispatchSteps
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_domain(cls, purchase):
        return cls(
            id=purchase.id,
            order_number=purchase.order_number,
            box_id=purchase.box_id,
            user_id=purchase.user_id,
            kg_purchased=purchase.kg_purchased,
            total_amount=purchase.total_amount,
            status=purchase.status,
            status_label=status_label(purchase.status),
            payment_status=purchase.payment_status,
            dispatch_steps=purchase.dispatch_steps,
            created_at=purchase.created_at,
            updated_at=purchase.updated_at
        )


class ChangeStatusRequest(BaseModel):
    next_status: str
    actor_id: str
    reason: Optional[str] = None
    force: bool = False


class DispatchActionRequest(BaseModel):
    actor_id: str


class PickupRequest(BaseModel):
    picked_up: bool = True


class NextStatusesResponse(BaseModel):
    kind: str
    current: str
    valid_next: List[str]


class ErrorResponse(BaseModel):
    detail: str


class TransitionErrorResponse(BaseModel):
    kind: str
    message: str
    valid_next: List[str] = Field(default_factory=list)


class OrphanPurchaseResponse(BaseModel):
    purchase_id: str
    box_id: Optional[str] = None
    reason: str
