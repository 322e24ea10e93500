import pytest

from beerledger.core.errors import GameNotFoundError, GameValidationError
from beerledger.schemas.game import GameStatus, utcnow
from beerledger.schemas.order import OrderStatus
from beerledger.schemas.roles import Party, Role
from beerledger.services.game_service import GameService

from .fakes import start_agent_game


@pytest.fixture
def sql_service(sql_repo, settings, bus):
    return GameService(sql_repo, publisher=bus, settings=settings)


def test_game_round_trip(sql_service, sql_repo):
    game = start_agent_game(sql_service)

    loaded = sql_repo.get_game(game.id)

    assert loaded.status == GameStatus.ACTIVE
    assert {entry.role for entry in loaded.roster} == set(Role)
    assert [g.id for g in sql_repo.list_games(GameStatus.ACTIVE)] == [game.id]
    assert sql_repo.list_games(GameStatus.COMPLETED) == []


def test_weeks_and_orders_are_committed_together(sql_service, sql_repo):
    game = start_agent_game(sql_service)
    sql_service.advance_week(game.id)
    sql_service.advance_week(game.id)

    states = sql_repo.list_week_states(game.id)
    assert [(s.week, s.closed) for s in states] == [(1, True), (2, True), (3, False)]
    assert states[0].roles[Role.RETAILER].inventory == 8

    orders = sql_repo.list_orders(game.id)
    assert len(orders) == 8
    delivered = sql_repo.list_orders(game.id, OrderStatus.DELIVERED)
    assert len(delivered) == 2


def test_closed_history_cannot_be_rewritten(sql_service, sql_repo):
    game = start_agent_game(sql_service)
    sql_service.advance_week(game.id)
    sql_service.advance_week(game.id)

    old = sql_repo.get_week_state(game.id, 1)
    old.roles[Role.RETAILER].inventory = 99
    with pytest.raises(GameValidationError):
        sql_repo.save_week_state(old)

    assert sql_repo.get_week_state(game.id, 1).roles[Role.RETAILER].inventory == 8


def test_contract_reference_and_week_confirmation(sql_service, sql_repo):
    game = start_agent_game(sql_service)
    sql_service.advance_week(game.id)

    sql_repo.set_contract_ref(game.id, "contract-9", utcnow())
    sql_repo.mark_week_confirmed(game.id, 1)

    assert sql_repo.get_game(game.id).contract_ref == "contract-9"
    assert sql_repo.get_week_state(game.id, 1).ledger_confirmed


def test_archive_removes_the_live_rows(sql_service, sql_repo):
    game = start_agent_game(sql_service, max_weeks=2)
    sql_service.advance_week(game.id)
    sql_service.advance_week(game.id)
    assert sql_repo.get_analytics(game.id) is not None

    sql_repo.archive_game(game.id)

    assert sql_repo.get_game(game.id) is None
    assert sql_repo.list_week_states(game.id) == []
    assert sql_repo.list_orders(game.id) == []
    archive = sql_repo.get_archive(game.id)
    assert archive["game"]["id"] == game.id
    assert archive["analytics"]["weeks_played"] == 2

    with pytest.raises(GameNotFoundError):
        sql_repo.archive_game(game.id)


def test_ledger_updates_touch_only_the_ledger(sql_service, sql_repo):
    game = start_agent_game(sql_service)
    sql_service.advance_week(game.id)
    order = next(o for o in sql_repo.list_orders(game.id) if o.sender == Party.RETAILER)
    stale = order.model_copy(deep=True)

    def submitted(meta):
        meta.external_id = "tx-9"
        return True

    updated = sql_repo.update_ledger_metadata(order.id, submitted)
    assert updated.ledger.external_id == "tx-9"
    assert updated.status == order.status
    assert sql_repo.update_ledger_metadata(order.id, lambda meta: False) is None
    assert sql_repo.update_ledger_metadata("order-missing", submitted) is None

    # A week commit carrying an older copy of the order keeps the stored ledger data
    closing = sql_repo.get_week_state(game.id, 2)
    closing.closed = True
    sql_repo.commit_week(sql_repo.get_game(game.id), closing, None, [stale])

    assert sql_repo.get_order(order.id).ledger.external_id == "tx-9"
