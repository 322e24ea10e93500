from datetime import timedelta

from beerledger.schemas.game import Game, GameConfig, GameStatus
from beerledger.schemas.roles import ROLE_SEQUENCE
from beerledger.schemas.week import PipelineSet, RoleState, WeekState
from beerledger.services.retention import DataRetentionService
from beerledger.services.synchronization import LedgerSyncService

from .fakes import FakeClock


def days_ago(clock, days):
    return clock.now - timedelta(days=days)


def test_old_games_are_archived(repo, settings):
    clock = FakeClock()
    finished_long_ago = Game(status=GameStatus.COMPLETED, completed_at=days_ago(clock, 40))
    finished_recently = Game(status=GameStatus.COMPLETED, completed_at=days_ago(clock, 3))
    abandoned = Game(created_at=days_ago(clock, 10))
    for game in (finished_long_ago, finished_recently, abandoned):
        repo.save_game(game)

    report = DataRetentionService(repo, settings=settings, clock=clock).run()

    assert report.archived_completed == [finished_long_ago.id]
    assert report.archived_incomplete == [abandoned.id]
    assert repo.get_game(finished_recently.id) is not None
    archive = repo.get_archive(finished_long_ago.id)
    assert archive["analytics"]["game_id"] == finished_long_ago.id


def test_recent_week_activity_keeps_a_game(repo, settings):
    clock = FakeClock()
    game = Game(status=GameStatus.ACTIVE, current_week=2, created_at=days_ago(clock, 30), started_at=days_ago(clock, 30))
    repo.save_game(game)
    repo.save_week_state(
        WeekState(
            game_id=game.id,
            week=1,
            roles={role: RoleState(inventory=12) for role in ROLE_SEQUENCE},
            pipelines={role: PipelineSet() for role in ROLE_SEQUENCE},
            closed=True,
            closed_at=days_ago(clock, 1),
        )
    )

    report = DataRetentionService(repo, settings=settings, clock=clock).run()

    assert report.total == 0
    assert repo.get_game(game.id) is not None

    clock.advance(timedelta(days=10).total_seconds())
    assert DataRetentionService(repo, settings=settings, clock=clock).run().archived_incomplete == [game.id]


def test_archiving_drops_queued_ledger_work(repo, settings, ledger):
    clock = FakeClock()
    sync = LedgerSyncService(repo, ledger, settings=settings)
    game = Game(config=GameConfig(ledger_enabled=True), status=GameStatus.COMPLETED, completed_at=days_ago(clock, 40))
    repo.save_game(game)
    sync.mirror(game, "advanceWeek", {"gameId": game.id, "week": 1}, week=1)
    assert sync.outbox_size(game.id) == 1

    DataRetentionService(repo, settings=settings, clock=clock, sync=sync).run()

    assert sync.outbox_size(game.id) == 0
    assert sync.flush() == 0
    assert ledger.calls == []
