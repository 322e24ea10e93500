import threading

import pytest

from beerledger.core.errors import GameNotFoundError, GameValidationError
from beerledger.repositories import InMemoryGameRepository
from beerledger.schemas.events import DomainEventType
from beerledger.schemas.game import GameConfig, GameStatus
from beerledger.schemas.order import OrderStatus
from beerledger.schemas.roles import Party, Role
from beerledger.services.game_service import GameService

from .fakes import agent_config, start_agent_game, start_human_game


def test_create_game_precomputes_demand_and_seeds_week_one(service, repo, bus):
    game = service.create_game(
        GameConfig(max_weeks=8, demand_pattern={"type": "step", "params": {}}), creator_id="host"
    )

    assert game.status == GameStatus.SETUP
    assert game.customer_demand == [4, 4, 4, 4, 8, 8, 8, 8]
    seed = repo.get_week_state(game.id, 1)
    assert seed is not None and not seed.closed
    assert seed.roles[Role.RETAILER].inventory == 12
    assert bus.of_type(DomainEventType.GAME_CREATED)


def test_roles_are_assigned_at_most_once(service):
    game = service.create_game(GameConfig())
    service.assign_role(game.id, "alice", Role.RETAILER)

    with pytest.raises(GameValidationError):
        service.assign_role(game.id, "bob", "Retailer")
    with pytest.raises(GameValidationError):
        service.assign_role(game.id, "alice", Role.FACTORY)
    with pytest.raises(GameValidationError):
        service.assign_role(game.id, "carol", "brewer")


def test_start_requires_every_role(service):
    game = service.create_game(GameConfig())
    service.assign_role(game.id, "alice", Role.RETAILER)

    with pytest.raises(GameValidationError):
        service.start_game(game.id)
    assert service.get_game(game.id).status == GameStatus.SETUP


def test_start_fills_empty_roles_with_agents(service):
    game = start_human_game(service)

    assert game.status == GameStatus.ACTIVE
    assert game.current_week == 1
    agents = [entry for entry in game.roster if entry.is_agent]
    assert {entry.role for entry in agents} == {Role.WHOLESALER, Role.DISTRIBUTOR, Role.FACTORY}
    with pytest.raises(GameValidationError):
        service.assign_role(game.id, "late", Role.RETAILER)


def test_advance_waits_for_pending_participants(service, repo):
    game = start_human_game(service)

    result = service.advance_week(game.id)

    assert not result.success
    assert result.pending_participants == ["alice"]
    assert service.get_game(game.id).current_week == 1
    assert service.get_history(game.id) == []
    assert repo.list_orders(game.id) == []


def test_submitted_order_is_used_and_may_be_revised(service):
    game = start_human_game(service)
    service.submit_order(game.id, "alice", 5)
    service.submit_order(game.id, "alice", 7)

    result = service.advance_week(game.id)

    assert result.success and result.week == 1 and result.next_week == 2
    closing = service.get_history(game.id)[0]
    assert closing.roles[Role.RETAILER].outgoing_orders == 7
    assert closing.submitted_orders == {Role.RETAILER: 7}
    # A fresh pending action is waiting for week 2
    assert [a.participant_id for a in service.get_week_state(game.id).incomplete_actions] == ["alice"]


def test_invalid_submissions_are_rejected(service):
    game = start_human_game(service)
    with pytest.raises(GameValidationError):
        service.submit_order(game.id, "alice", -1)
    with pytest.raises(GameValidationError):
        service.submit_order(game.id, "mallory", 4)
    with pytest.raises(GameNotFoundError):
        service.submit_order("game-missing", "alice", 4)


def test_advance_requires_an_active_game(service):
    game = service.create_game(GameConfig())
    result = service.advance_week(game.id)

    assert not result.success
    assert "Setup" in result.reason


def test_orders_follow_their_lifecycle(service):
    game = start_agent_game(service)
    service.advance_week(game.id)

    orders = service.list_orders(game.id)
    customer = [o for o in orders if o.sender == Party.CUSTOMER]
    retailer = [o for o in orders if o.sender == Party.RETAILER]

    assert customer[0].status == OrderStatus.DELIVERED
    assert customer[0].shipped_quantity == 4
    assert retailer[0].status == OrderStatus.PENDING
    assert retailer[0].delivery_week == 3
    assert not any(o.sender == Party.FACTORY for o in orders)


def test_game_completes_after_max_weeks(service, repo, bus):
    game = start_agent_game(service, max_weeks=3)

    results = [service.advance_week(game.id) for _ in range(3)]

    assert [r.week for r in results] == [1, 2, 3]
    assert results[-1].completed and results[-1].next_week is None
    finished = service.get_game(game.id)
    assert finished.status == GameStatus.COMPLETED
    assert [s.week for s in service.get_history(game.id)] == [1, 2, 3]

    analytics = repo.get_analytics(game.id)
    assert analytics is not None and analytics.weeks_played == 3
    assert bus.of_type(DomainEventType.GAME_COMPLETED)
    assert len(bus.of_type(DomainEventType.WEEK_ADVANCED)) == 3

    again = service.advance_week(game.id)
    assert not again.success


def test_concurrent_advances_are_serialised(service):
    game = start_agent_game(service)
    results = []

    def advance():
        results.append(service.advance_week(game.id))

    threads = [threading.Thread(target=advance) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(r.week for r in results) == [1, 2, 3, 4]
    assert [s.week for s in service.get_history(game.id)] == [1, 2, 3, 4]


def test_independent_games_advance_in_parallel(service, settings):
    inventories = (12, 50)
    games = [start_agent_game(service, initial_inventory=inventory) for inventory in inventories]
    barrier = threading.Barrier(len(games))

    def play(game_id):
        barrier.wait(timeout=5)
        for _ in range(3):
            service.advance_week(game_id)

    threads = [threading.Thread(target=play, args=(game.id,)) for game in games]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    serial = GameService(InMemoryGameRepository(), settings=settings)
    for game, inventory in zip(games, inventories):
        reference = start_agent_game(serial, initial_inventory=inventory)
        for _ in range(3):
            serial.advance_week(reference.id)
        history = service.get_history(game.id)
        expected = serial.get_history(reference.id)
        assert [s.week for s in history] == [1, 2, 3]
        assert [s.roles for s in history] == [s.roles for s in expected]
        assert [s.pipelines for s in history] == [s.pipelines for s in expected]


def test_autoplay_only_advances_games_without_pending_humans(service):
    agents_only = start_agent_game(service)
    with_human = start_human_game(service)

    results = service.autoplay_all()

    assert [r.game_id for r in results] == [agents_only.id]
    assert service.autoplay_turn(with_human.id) is None
    assert service.get_game(agents_only.id).current_week == 2


def test_agents_use_the_base_stock_policy(service):
    game = service.create_game(agent_config(order_delay=2))
    service.fill_empty_roles(game.id)
    service.start_game(game.id)
    service.advance_week(game.id)

    closing = service.get_history(game.id)[0]
    # avg demand 4 (default), target 18, inventory 8 after serving the customer
    assert closing.roles[Role.RETAILER].outgoing_orders == 10
