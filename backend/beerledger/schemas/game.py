from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..core.demand_patterns import DemandPatternType
from .roles import ROLE_SEQUENCE, Role


def new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def utcnow() -> datetime:
    return datetime.utcnow()


class GameStatus(str, Enum):
    SETUP = "Setup"
    ACTIVE = "Active"
    COMPLETED = "Completed"


class VisibilityMode(str, Enum):
    TRADITIONAL = "traditional"
    LEDGER = "ledger"

    @classmethod
    def _missing_(cls, value):
        # Games configured before the rename used "blockchain"
        if isinstance(value, str) and value.lower() in ("blockchain", "shared", "enhanced"):
            return cls.LEDGER
        return None


class DemandPattern(BaseModel):
    type: DemandPatternType = Field(default=DemandPatternType.CONSTANT, description="Type of demand pattern")
    params: Dict[str, Any] = Field(
        default_factory=lambda: {"demand": 4},
        description="Parameters for the demand pattern",
    )

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "type": "step",
                "params": {"initial_demand": 4, "change_week": 5, "final_demand": 8},
            }
        }
    )


class BaseStockConfig(BaseModel):
    """Parameters of the order-up-to rule used by computer-controlled roles."""

    forecast_horizon: float = Field(default=4, ge=0)
    safety_factor: float = Field(default=0.5, ge=0)
    visibility_mode: VisibilityMode = VisibilityMode.TRADITIONAL
    history_window: Optional[int] = Field(
        default=None,
        ge=1,
        description="Number of most recent weeks averaged; None averages the whole history",
    )
    default_demand: float = Field(default=4, ge=0, description="Forecast used before any demand is observed")


class AgentConfig(BaseModel):
    enabled: bool = False
    autoplay: bool = False
    fill_empty_roles: bool = False
    roles: List[Role] = Field(default_factory=list)
    algorithm: BaseStockConfig = Field(default_factory=BaseStockConfig)

    @field_validator("roles", mode="before")
    @classmethod
    def parse_roles(cls, v):
        if isinstance(v, dict):
            # {"retailer": true, "factory": false} style
            return [Role.parse(key) for key, enabled in v.items() if enabled]
        return [Role.parse(item) for item in (v or [])]


class GameConfig(BaseModel):
    order_delay: int = Field(default=2, ge=0, le=52)
    shipping_delay: int = Field(default=2, ge=0, le=52)
    demand_pattern: DemandPattern = Field(default_factory=DemandPattern)
    initial_inventory: int = Field(default=12, ge=0)
    max_weeks: int = Field(default=20, ge=1, le=1000)
    holding_cost: float = Field(default=1.0, ge=0)
    backorder_cost: float = Field(default=2.0, ge=0)
    ledger_enabled: bool = False
    agents: AgentConfig = Field(default_factory=AgentConfig)


class RosterEntry(BaseModel):
    participant_id: str
    role: Role
    is_agent: bool = False
    joined_at: datetime = Field(default_factory=utcnow)


class Game(BaseModel):
    id: str = Field(default_factory=lambda: new_id("game"))
    status: GameStatus = GameStatus.SETUP
    config: GameConfig = Field(default_factory=GameConfig)
    created_by: Optional[str] = None
    current_week: int = 0
    roster: List[RosterEntry] = Field(default_factory=list)
    customer_demand: List[int] = Field(default_factory=list)
    contract_ref: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    last_synced_at: Optional[datetime] = None

    @model_validator(mode="after")
    def roles_assigned_once(self) -> "Game":
        seen = set()
        for entry in self.roster:
            if entry.role in seen:
                raise ValueError(f"Role {entry.role.value} assigned more than once")
            seen.add(entry.role)
        return self

    def entry_for_role(self, role: Role) -> Optional[RosterEntry]:
        for entry in self.roster:
            if entry.role == role:
                return entry
        return None

    def entry_for_participant(self, participant_id: str) -> Optional[RosterEntry]:
        for entry in self.roster:
            if entry.participant_id == participant_id:
                return entry
        return None

    @property
    def open_roles(self) -> List[Role]:
        taken = {entry.role for entry in self.roster}
        return [role for role in ROLE_SEQUENCE if role not in taken]

    @property
    def human_entries(self) -> List[RosterEntry]:
        return [entry for entry in self.roster if not entry.is_agent]

    def demand_for_week(self, week: int) -> int:
        """Customer demand for a 1-based week, 0 outside the precomputed horizon."""
        if 1 <= week <= len(self.customer_demand):
            return int(self.customer_demand[week - 1])
        return 0

    @property
    def ledger_active(self) -> bool:
        return self.config.ledger_enabled


class AdvanceResult(BaseModel):
    """Outcome of a week-advance request; failures are normal, retryable answers."""

    success: bool
    game_id: str
    week: Optional[int] = None
    next_week: Optional[int] = None
    reason: Optional[str] = None
    pending_participants: List[str] = Field(default_factory=list)
    completed: bool = False
