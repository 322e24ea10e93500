from .analytics import AggregateAnalytics, BullwhipMetrics, GameAnalytics, LedgerMetrics, RolePerformance
from .events import DomainEvent, DomainEventType, LedgerEvent, LedgerEventType
from .game import (
    AdvanceResult,
    AgentConfig,
    BaseStockConfig,
    DemandPattern,
    Game,
    GameConfig,
    GameStatus,
    RosterEntry,
    VisibilityMode,
)
from .order import LedgerMetadata, Order, OrderStatus
from .roles import ROLE_SEQUENCE, Party, Role
from .week import PendingAction, PipelineSet, RoleState, WeekState

__all__ = [
    "AdvanceResult",
    "AgentConfig",
    "AggregateAnalytics",
    "BaseStockConfig",
    "BullwhipMetrics",
    "DemandPattern",
    "DomainEvent",
    "DomainEventType",
    "Game",
    "GameAnalytics",
    "GameConfig",
    "GameStatus",
    "LedgerEvent",
    "LedgerEventType",
    "LedgerMetadata",
    "LedgerMetrics",
    "Order",
    "OrderStatus",
    "Party",
    "PendingAction",
    "PipelineSet",
    "ROLE_SEQUENCE",
    "Role",
    "RoleState",
    "RolePerformance",
    "RosterEntry",
    "VisibilityMode",
    "WeekState",
]
