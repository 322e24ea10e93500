import pytest
from sqlalchemy.pool import StaticPool

from beerledger.core.config import Settings
from beerledger.db.session import build_engine, build_session_factory, init_db
from beerledger.repositories import InMemoryGameRepository, SqlAlchemyGameRepository
from beerledger.services.game_service import GameService
from beerledger.services.synchronization import LedgerSyncService

from .fakes import FakeClock, FakeLedger, RecordingBus


@pytest.fixture
def settings(tmp_path):
    return Settings(
        LOG_DIR=str(tmp_path / "logs"),
        STRICT_INVARIANTS=True,
        LEDGER_MAX_RETRIES=2,
        LEDGER_BACKOFF_SECONDS=0.5,
        LEDGER_BACKOFF_MAX_SECONDS=8.0,
        RECONCILE_STALE_SECONDS=60,
    )


@pytest.fixture
def repo():
    return InMemoryGameRepository()


@pytest.fixture
def bus():
    return RecordingBus()


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def sync(repo, ledger, bus, settings, clock, sleeps):
    return LedgerSyncService(
        repo,
        ledger,
        bus,
        settings,
        clock=clock,
        sleep=sleeps.append,
        jitter=lambda: 0.0,
    )


@pytest.fixture
def service(repo, sync, bus, settings):
    return GameService(repo, sync=sync, publisher=bus, settings=settings)


@pytest.fixture
def sql_repo():
    engine = build_engine("sqlite://", poolclass=StaticPool)
    init_db(engine)
    yield SqlAlchemyGameRepository(build_session_factory(engine))
    engine.dispose()
