from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from beerledger.core.errors import LedgerUnavailableError
from beerledger.schemas.game import GameConfig, utcnow
from beerledger.services.game_service import GameService
from beerledger.services.ledger_client import LedgerReceipt
from beerledger.services.notifications import EventBus


class FakeLedger:
    """In-process ledger recording every call it receives."""

    def __init__(self, failures: int = 0, always_fail: bool = False):
        self.calls: List[tuple] = []
        self.failures = failures
        self.always_fail = always_fail
        self.current_week = 0
        self.orders: Dict[str, Dict[str, Any]] = {}
        self.on_get_current_week = None
        self._counter = 0

    def submit(self, action: str, params: Dict[str, Any]) -> LedgerReceipt:
        self.calls.append((action, dict(params)))
        if self.always_fail or self.failures > 0:
            self.failures -= 1
            raise LedgerUnavailableError("ledger timed out")
        self._counter += 1
        if action == "createGame":
            return LedgerReceipt(success=True, external_ref=f"contract-{self._counter}")
        if action == "advanceWeek":
            self.current_week = params["week"]
        ref = f"tx-{self._counter}"
        if action == "placeOrder":
            self.orders[ref] = {"status": "Pending", **params}
        return LedgerReceipt(success=True, external_ref=ref)

    def get_current_week(self, contract_ref: str) -> int:
        self.calls.append(("getCurrentWeek", {"contract": contract_ref}))
        if self.on_get_current_week is not None:
            self.on_get_current_week()
        return self.current_week

    def get_order(self, contract_ref: str, external_id: str) -> Optional[Dict[str, Any]]:
        self.calls.append(("getOrder", {"contract": contract_ref, "orderId": external_id}))
        return self.orders.get(external_id)

    def actions(self) -> List[str]:
        return [name for name, _ in self.calls]


class RecordingBus(EventBus):
    def __init__(self):
        super().__init__()
        self.events = []
        self.subscribe(self.events.append)

    def of_type(self, event_type):
        return [event for event in self.events if event.type == event_type]


class FakeClock:
    def __init__(self, start: Optional[datetime] = None):
        self.now = start or utcnow()

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


def agent_config(**overrides) -> GameConfig:
    """Config whose empty roles are filled with agents at start."""
    data = {"agents": {"enabled": True, "fill_empty_roles": True, "autoplay": True}}
    data.update(overrides)
    return GameConfig(**data)


def start_agent_game(service: GameService, **overrides):
    game = service.create_game(agent_config(**overrides), creator_id="tester")
    return service.start_game(game.id)


def start_human_game(service: GameService, **overrides):
    """Alice plays the Retailer, agents play everything else."""
    game = service.create_game(agent_config(**overrides), creator_id="tester")
    service.assign_role(game.id, "alice", "retailer")
    return service.start_game(game.id)
