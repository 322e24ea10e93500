from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from .game import utcnow
from .roles import Role


class RolePerformance(BaseModel):
    role: Role
    total_cost: float = 0.0
    average_inventory: float = 0.0
    average_backlog: float = 0.0
    order_std: float = 0.0
    order_variance: float = 0.0
    weeks: int = 0


class BullwhipMetrics(BaseModel):
    customer_demand_variance: float = 0.0
    order_variance: Dict[Role, float] = Field(default_factory=dict)
    # Each tier's order variance over the variance of the tier below it,
    # the Retailer being compared with customer demand.
    tier_ratios: Dict[Role, float] = Field(default_factory=dict)
    demand_amplification: float = 0.0
    order_variance_ratio: float = 0.0


class LedgerMetrics(BaseModel):
    orders_total: int = 0
    orders_submitted: int = 0
    orders_confirmed: int = 0
    sync_failures: int = 0
    confirmation_rate: float = 0.0


class GameAnalytics(BaseModel):
    game_id: str
    weeks_played: int = 0
    total_cost: float = 0.0
    roles: Dict[Role, RolePerformance] = Field(default_factory=dict)
    bullwhip: BullwhipMetrics = Field(default_factory=BullwhipMetrics)
    ledger: Optional[LedgerMetrics] = None
    computed_at: datetime = Field(default_factory=utcnow)


class AggregateAnalytics(BaseModel):
    games: int = 0
    game_ids: List[str] = Field(default_factory=list)
    average_total_cost: float = 0.0
    average_cost_by_role: Dict[Role, float] = Field(default_factory=dict)
    average_demand_amplification: float = 0.0
    average_order_variance_ratio: float = 0.0
