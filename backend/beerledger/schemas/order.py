from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from .game import new_id, utcnow
from .roles import Party, Role, is_valid_flow


class OrderStatus(str, Enum):
    PENDING = "Pending"
    SHIPPED = "Shipped"
    DELIVERED = "Delivered"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]


_STATUS_RANK = {
    OrderStatus.PENDING: 0,
    OrderStatus.SHIPPED: 1,
    OrderStatus.DELIVERED: 2,
}


class LedgerMetadata(BaseModel):
    external_id: Optional[str] = None
    confirmed: bool = False
    # Failed submissions only; a successful one leaves it unchanged
    sync_attempts: int = Field(default=0, ge=0)
    submitted_at: Optional[datetime] = None
    last_attempt_at: Optional[datetime] = None
    last_error: Optional[str] = None
    confirmed_status: Optional[OrderStatus] = None


class Order(BaseModel):
    # The id is generated before anything is sent to the ledger and travels
    # with the submission as its correlation id.
    id: str = Field(default_factory=lambda: new_id("order"))
    game_id: str
    week: int = Field(..., ge=1)
    sender: Party
    recipient: Role
    quantity: int = Field(..., ge=0)
    delivery_week: int = Field(..., ge=1)
    status: OrderStatus = OrderStatus.PENDING
    shipped_quantity: int = Field(default=0, ge=0)
    shipped_week: Optional[int] = None
    arrival_week: Optional[int] = None
    ledger: Optional[LedgerMetadata] = None
    created_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def check_flow(self) -> "Order":
        if not is_valid_flow(self.sender, self.recipient):
            raise ValueError(
                f"Invalid order flow {self.sender.value} -> {self.recipient.value}; "
                "orders must go exactly one tier upstream"
            )
        if self.delivery_week < self.week:
            raise ValueError("delivery_week cannot precede the week the order was placed")
        return self

    @property
    def correlation_id(self) -> str:
        return self.id

    @property
    def outstanding(self) -> int:
        return max(0, self.quantity - self.shipped_quantity)

    def advance_status(self, target: OrderStatus) -> bool:
        """Move forward in the lifecycle; regressions and repeats are no-ops."""
        if target.rank <= self.status.rank:
            return False
        self.status = target
        return True
