"""Domain events published by the core and ledger events consumed by it."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from .game import new_id, utcnow
from .roles import Party, Role


class DomainEventType(str, Enum):
    GAME_CREATED = "GameCreated"
    ROLE_ASSIGNED = "RoleAssigned"
    GAME_STARTED = "GameStarted"
    ORDER_PLACED = "OrderPlaced"
    WEEK_ADVANCED = "WeekAdvanced"
    GAME_COMPLETED = "GameCompleted"
    RECONCILIATION_DIVERGENCE = "ReconciliationDivergence"


class DomainEvent(BaseModel):
    type: DomainEventType
    game_id: str
    week: Optional[int] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=utcnow)

    def to_message(self) -> Dict[str, Any]:
        """JSON-ready form pushed to connected clients."""
        return {
            "type": self.type.value,
            "game_id": self.game_id,
            "week": self.week,
            "payload": self.payload,
            "timestamp": self.occurred_at.isoformat(),
        }


class LedgerEventType(str, Enum):
    ORDER_PLACED = "OrderPlaced"
    ORDER_SHIPPED = "OrderShipped"
    ORDER_DELIVERED = "OrderDelivered"
    WEEK_ADVANCED = "WeekAdvanced"
    INVENTORY_UPDATED = "InventoryUpdated"


class LedgerEvent(BaseModel):
    """A notification pushed by the ledger collaborator.

    ``event_id`` identifies the delivery so duplicates can be dropped.
    ``correlation_id`` is the local order id sent with the submission; events
    without it are matched on their shape instead.
    """

    event_id: str = Field(default_factory=lambda: new_id("evt"))
    type: LedgerEventType
    game_id: str
    week: int = Field(..., ge=0)
    sender: Optional[Party] = None
    recipient: Optional[Role] = None
    role: Optional[Role] = None
    quantity: Optional[int] = Field(default=None, ge=0)
    correlation_id: Optional[str] = None
    external_id: Optional[str] = None
    received_at: datetime = Field(default_factory=utcnow)
