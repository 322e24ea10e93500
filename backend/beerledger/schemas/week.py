from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from .game import utcnow
from .roles import ROLE_SEQUENCE, Role


class RoleState(BaseModel):
    """Per-role ledger of a single week."""

    inventory: int = 0
    backlog: int = Field(default=0, ge=0)
    incoming_orders: int = Field(default=0, ge=0)
    outgoing_orders: int = Field(default=0, ge=0)
    current_cost: float = Field(default=0.0, ge=0, description="Cumulative cost since week 1")
    received: int = Field(default=0, ge=0, description="Units that arrived this week")
    shipped: int = Field(default=0, ge=0, description="Units shipped downstream this week")
    produced: int = Field(default=0, ge=0, description="Factory production started this week")
    cost_added: float = Field(default=0.0, ge=0)


class PipelineSet(BaseModel):
    orders: List[int] = Field(default_factory=list)
    shipments: List[int] = Field(default_factory=list)
    production: List[int] = Field(default_factory=list)


class PendingAction(BaseModel):
    participant_id: str
    role: Role
    action_type: str = "PlaceOrder"
    completed: bool = False


def _require_all_roles(value: Dict[Role, object], label: str) -> Dict[Role, object]:
    missing = [role.value for role in ROLE_SEQUENCE if role not in value]
    if missing:
        raise ValueError(f"{label} missing roles: {', '.join(missing)}")
    return value


class WeekState(BaseModel):
    game_id: str
    week: int = Field(..., ge=1)
    customer_demand: int = Field(default=0, ge=0)
    roles: Dict[Role, RoleState]
    pipelines: Dict[Role, PipelineSet]
    pending_actions: List[PendingAction] = Field(default_factory=list)
    submitted_orders: Dict[Role, int] = Field(default_factory=dict)
    closed: bool = False
    ledger_confirmed: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    closed_at: Optional[datetime] = None

    @field_validator("roles")
    @classmethod
    def roles_complete(cls, v):
        return _require_all_roles(v, "roles")

    @field_validator("pipelines")
    @classmethod
    def pipelines_complete(cls, v):
        return _require_all_roles(v, "pipelines")

    @field_validator("submitted_orders")
    @classmethod
    def submitted_non_negative(cls, v):
        for role, qty in v.items():
            if qty < 0:
                raise ValueError(f"Submitted order for {role.value} must be non-negative")
        return v

    @property
    def incomplete_actions(self) -> List[PendingAction]:
        return [action for action in self.pending_actions if not action.completed]
