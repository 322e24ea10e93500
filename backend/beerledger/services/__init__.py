from .analytics import AnalyticsService
from .engine import WeeklyCycleEngine, WeekOutcome
from .game_service import GameService
from .ledger_client import JsonRpcLedgerClient, LedgerAction, LedgerClient, LedgerReceipt
from .notifications import EventBus
from .pipeline import Pipeline
from .policies import BaseStockPolicy, NaiveEchoPolicy, compute_base_stock_order
from .retention import DataRetentionService
from .scheduler import JobScheduler, PeriodicJob, build_scheduler
from .synchronization import LedgerSyncService, ReconciliationReport

__all__ = [
    "AnalyticsService",
    "BaseStockPolicy",
    "DataRetentionService",
    "EventBus",
    "GameService",
    "JobScheduler",
    "JsonRpcLedgerClient",
    "LedgerAction",
    "LedgerClient",
    "LedgerReceipt",
    "LedgerSyncService",
    "NaiveEchoPolicy",
    "PeriodicJob",
    "Pipeline",
    "ReconciliationReport",
    "WeekOutcome",
    "WeeklyCycleEngine",
    "build_scheduler",
    "compute_base_stock_order",
]
