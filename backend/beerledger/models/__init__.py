from .base import Base
from .game import GameArchiveRecord, GameRecord, OrderRecord, WeekStateRecord, AnalyticsRecord

__all__ = [
    "AnalyticsRecord",
    "Base",
    "GameArchiveRecord",
    "GameRecord",
    "OrderRecord",
    "WeekStateRecord",
]
