"""Wires the services together from configuration."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .core.config import Settings, get_settings
from .core.logging import setup_logging
from .db.session import build_engine, build_session_factory, init_db
from .repositories import GameRepository, InMemoryGameRepository, SqlAlchemyGameRepository
from .services.analytics import AnalyticsService
from .services.game_service import GameService
from .services.ledger_client import JsonRpcLedgerClient, LedgerClient
from .services.notifications import EventBus
from .services.retention import DataRetentionService
from .services.scheduler import JobScheduler, build_scheduler
from .services.synchronization import LedgerSyncService
from .websockets import ConnectionManager

logger = logging.getLogger(__name__)


@dataclass
class Container:
    settings: Settings
    repository: GameRepository
    bus: EventBus
    ledger: Optional[LedgerClient]
    sync: LedgerSyncService
    analytics: AnalyticsService
    games: GameService
    retention: DataRetentionService
    scheduler: JobScheduler
    connections: ConnectionManager


def build_container(
    settings: Optional[Settings] = None,
    *,
    repository: Optional[GameRepository] = None,
    ledger: Optional[LedgerClient] = None,
    in_memory: bool = False,
    configure_logging: bool = True,
) -> Container:
    settings = settings or get_settings()
    if configure_logging:
        setup_logging("beerledger", settings.LOG_LEVEL)

    if repository is None:
        if in_memory:
            repository = InMemoryGameRepository()
        else:
            engine = build_engine(settings.DATABASE_URL)
            init_db(engine)
            repository = SqlAlchemyGameRepository(build_session_factory(engine))

    if ledger is None:
        ledger = JsonRpcLedgerClient.from_settings(settings)
    if ledger is None:
        logger.info("No ledger configured; games run without mirroring")

    bus = EventBus()
    connections = ConnectionManager()
    connections.attach(bus)

    sync = LedgerSyncService(repository, ledger, bus, settings)
    analytics = AnalyticsService(repository)
    games = GameService(repository, sync=sync, publisher=bus, analytics=analytics, settings=settings)
    retention = DataRetentionService(repository, analytics, settings, sync=sync)
    scheduler = build_scheduler(sync=sync, game_service=games, retention=retention, settings=settings)

    return Container(
        settings=settings,
        repository=repository,
        bus=bus,
        ledger=ledger,
        sync=sync,
        analytics=analytics,
        games=games,
        retention=retention,
        scheduler=scheduler,
        connections=connections,
    )
