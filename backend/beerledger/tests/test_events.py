import asyncio

from fastapi.websockets import WebSocketState

from beerledger.bootstrap import build_container
from beerledger.schemas.events import DomainEvent, DomainEventType
from beerledger.services.notifications import EventBus
from beerledger.websockets import ConnectionManager

from .fakes import FakeLedger, agent_config


class FakeWebSocket:
    def __init__(self, fail=False):
        self.client_state = WebSocketState.CONNECTING
        self.sent = []
        self.fail = fail

    async def accept(self):
        self.client_state = WebSocketState.CONNECTED

    async def send_json(self, message):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(message)


def test_bus_isolates_failing_subscribers():
    bus = EventBus()
    received = []

    def broken(event):
        raise RuntimeError("boom")

    bus.subscribe(broken)
    unsubscribe = bus.subscribe(received.append)
    event = DomainEvent(type=DomainEventType.GAME_CREATED, game_id="game-1")

    bus.publish(event)
    unsubscribe()
    bus.publish(event)

    assert received == [event]


def test_events_reach_connected_clients():
    manager = ConnectionManager()
    healthy, broken = FakeWebSocket(), FakeWebSocket(fail=True)
    event = DomainEvent(type=DomainEventType.WEEK_ADVANCED, game_id="game-1", week=3, payload={"x": 1})

    async def scenario():
        await manager.connect(healthy, "game-1", "a")
        await manager.connect(broken, "game-1", "b")
        manager.forward(event)
        manager.forward(DomainEvent(type=DomainEventType.WEEK_ADVANCED, game_id="game-2"))
        await asyncio.sleep(0.01)

    asyncio.run(scenario())

    assert healthy.sent == [event.to_message()]
    assert healthy.sent[0]["type"] == "WeekAdvanced"
    # Clients that fail to receive are dropped
    assert manager.connection_count("game-1") == 1


def test_forward_without_a_loop_is_a_no_op():
    manager = ConnectionManager()
    manager.active_connections["game-1"] = {"a": FakeWebSocket()}

    manager.forward(DomainEvent(type=DomainEventType.GAME_STARTED, game_id="game-1"))

    assert manager.active_connections["game-1"]["a"].sent == []


def test_container_wires_a_playable_game(settings):
    ledger = FakeLedger()
    container = build_container(settings, ledger=ledger, in_memory=True, configure_logging=False)

    game = container.games.create_game(agent_config(ledger_enabled=True, max_weeks=2))
    container.games.start_game(game.id)
    container.games.autoplay_all()
    container.games.autoplay_all()
    container.sync.flush()

    assert container.games.get_game(game.id).status.value == "Completed"
    assert container.analytics.get_game_analytics(game.id).weeks_played == 2
    assert "advanceWeek" in ledger.actions()
    assert sorted(container.scheduler.jobs) == ["autoplay", "ledger-dispatch", "reconciliation", "retention"]
