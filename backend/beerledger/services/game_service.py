"""Game coordinator: setup, roster, order submission and week advancement."""

from __future__ import annotations

import logging
import threading
from typing import Dict, List, Optional

from ..core.config import Settings, settings as default_settings
from ..core.demand_patterns import get_demand_pattern
from ..core.errors import GameNotFoundError, GameValidationError
from ..repositories.base import GameRepository
from ..schemas.analytics import GameAnalytics
from ..schemas.events import DomainEvent, DomainEventType
from ..schemas.game import (
    AdvanceResult,
    AgentConfig,
    BaseStockConfig,
    Game,
    GameConfig,
    GameStatus,
    RosterEntry,
    utcnow,
)
from ..schemas.order import Order, OrderStatus
from ..schemas.roles import ROLE_SEQUENCE, Role
from ..schemas.week import WeekState
from .analytics import AnalyticsService
from .engine import WeeklyCycleEngine, opening_week_state
from .ledger_client import LedgerAction
from .notifications import EventPublisher, NullPublisher
from .orders import OrderBook, orders_from_placements
from .policies import BaseStockPolicy, FixedOrderPolicy, OrderPolicy, default_policy
from .synchronization import LedgerSyncService

logger = logging.getLogger(__name__)

AGENT_PREFIX = "agent"


class GameService:
    """Owns every state change of a game.

    Week advances for the same game are serialised with a per-game lock;
    different games advance independently.  The engine works on copies, and
    the closed week, the next week's seed and the order records are committed
    together, so a failed advance leaves nothing behind.
    """

    def __init__(
        self,
        repository: GameRepository,
        *,
        engine: Optional[WeeklyCycleEngine] = None,
        sync: Optional[LedgerSyncService] = None,
        publisher: Optional[EventPublisher] = None,
        analytics: Optional[AnalyticsService] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.repository = repository
        self.settings = settings or default_settings
        self.engine = engine or WeeklyCycleEngine(self.settings)
        self.publisher = publisher or NullPublisher()
        self.sync = sync or LedgerSyncService(repository, None, self.publisher, self.settings)
        self.analytics = analytics or AnalyticsService(repository)

        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _lock_for(self, game_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(game_id)
            if lock is None:
                lock = self._locks[game_id] = threading.Lock()
            return lock

    def _require_game(self, game_id: str) -> Game:
        game = self.repository.get_game(game_id)
        if game is None:
            raise GameNotFoundError(f"Game {game_id} not found")
        return game

    def _carry_contract_ref(self, game: Game) -> None:
        # The sync service may have stored a contract reference meanwhile
        if game.contract_ref is None:
            stored = self.repository.get_game(game.id)
            if stored is not None and stored.contract_ref:
                game.contract_ref = stored.contract_ref
                game.last_synced_at = stored.last_synced_at

    def _save_game(self, game: Game) -> Game:
        self._carry_contract_ref(game)
        return self.repository.save_game(game)

    def _publish(self, event_type: DomainEventType, game: Game, week: Optional[int] = None, **payload) -> None:
        self.publisher.publish(DomainEvent(type=event_type, game_id=game.id, week=week, payload=payload))

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------
    def create_game(self, config: Optional[GameConfig] = None, creator_id: Optional[str] = None) -> Game:
        config = config or GameConfig(
            order_delay=self.settings.DEFAULT_ORDER_DELAY,
            shipping_delay=self.settings.DEFAULT_SHIPPING_DELAY,
            initial_inventory=self.settings.INITIAL_INVENTORY,
            max_weeks=self.settings.DEFAULT_MAX_WEEKS,
            holding_cost=self.settings.HOLDING_COST_PER_UNIT,
            backorder_cost=self.settings.BACKORDER_COST_PER_UNIT,
            agents=AgentConfig(algorithm=BaseStockConfig(default_demand=self.settings.DEFAULT_DEMAND)),
        )
        demand = get_demand_pattern(config.demand_pattern.model_dump(mode="json"), config.max_weeks)
        game = Game(config=config, created_by=creator_id, customer_demand=demand)
        self.repository.save_game(game)
        # Reseeded at start once the roster, and so the pending actions, are known
        self.repository.save_week_state(opening_week_state(game, 1))
        logger.info("Created game %s (ledger %s)", game.id, "on" if config.ledger_enabled else "off")

        self.sync.mirror(
            game,
            LedgerAction.CREATE_GAME,
            {"gameId": game.id, "config": config.model_dump(mode="json")},
        )
        self._publish(DomainEventType.GAME_CREATED, game, created_by=creator_id)
        return game

    def assign_role(self, game_id: str, participant_id: str, role: Role | str, is_agent: bool = False) -> Game:
        try:
            role = Role.parse(role)
        except ValueError as exc:
            raise GameValidationError(str(exc)) from exc
        with self._lock_for(game_id):
            game = self._require_game(game_id)
            if game.status != GameStatus.SETUP:
                raise GameValidationError("Roles can only be assigned while the game is being set up")
            taken = game.entry_for_role(role)
            if taken is not None:
                raise GameValidationError(f"Role {role.value} is already taken by {taken.participant_id}")
            if game.entry_for_participant(participant_id) is not None:
                raise GameValidationError(f"Participant {participant_id} already holds a role in this game")

            game.roster.append(RosterEntry(participant_id=participant_id, role=role, is_agent=is_agent))
            self._save_game(game)

        self.sync.mirror(
            game,
            LedgerAction.ASSIGN_ROLE,
            {"gameId": game.id, "participant": participant_id, "role": role.value},
        )
        self._publish(DomainEventType.ROLE_ASSIGNED, game, role=role.value, participant_id=participant_id)
        return game

    def fill_empty_roles(self, game_id: str) -> List[Role]:
        game = self._require_game(game_id)
        filled = []
        for role in game.open_roles:
            self.assign_role(game_id, f"{AGENT_PREFIX}-{role.value.lower()}", role, is_agent=True)
            filled.append(role)
        return filled

    def start_game(self, game_id: str) -> Game:
        game = self._require_game(game_id)
        if game.status != GameStatus.SETUP:
            raise GameValidationError(f"Game {game_id} has already been started")
        if game.open_roles and game.config.agents.fill_empty_roles:
            self.fill_empty_roles(game_id)

        with self._lock_for(game_id):
            game = self._require_game(game_id)
            if game.open_roles:
                missing = ", ".join(role.value for role in game.open_roles)
                raise GameValidationError(f"Cannot start game {game_id}; unassigned roles: {missing}")
            game.status = GameStatus.ACTIVE
            game.current_week = 1
            game.started_at = utcnow()
            self.repository.save_week_state(opening_week_state(game, 1))
            self._save_game(game)

        logger.info("Game %s started", game_id)
        self.sync.mirror(game, LedgerAction.START_GAME, {"gameId": game.id}, week=1)
        self._publish(DomainEventType.GAME_STARTED, game, week=1)
        return game

    # ------------------------------------------------------------------
    # Gameplay
    # ------------------------------------------------------------------
    def submit_order(self, game_id: str, participant_id: str, quantity: int) -> WeekState:
        """Record a participant's order for the open week; it may be revised until the week advances."""
        if isinstance(quantity, bool) or not isinstance(quantity, int):
            raise GameValidationError(f"Order quantity must be an integer, got {quantity!r}")
        if quantity < 0:
            raise GameValidationError("Order quantity must be non-negative")

        with self._lock_for(game_id):
            game = self._require_game(game_id)
            if game.status != GameStatus.ACTIVE:
                raise GameValidationError(f"Game {game_id} is not active")
            entry = game.entry_for_participant(participant_id)
            if entry is None:
                raise GameValidationError(f"Participant {participant_id} is not part of game {game_id}")

            state = self.repository.get_week_state(game_id, game.current_week)
            if state is None or state.closed:
                raise GameValidationError(f"Week {game.current_week} of game {game_id} is not open")
            state.submitted_orders[entry.role] = quantity
            for action in state.pending_actions:
                if action.participant_id == participant_id:
                    action.completed = True
            self.repository.save_week_state(state)

        self._publish(
            DomainEventType.ORDER_PLACED,
            game,
            week=state.week,
            role=entry.role.value,
            quantity=quantity,
        )
        return state

    def _policies_for(self, game: Game, state: WeekState) -> Dict[Role, OrderPolicy]:
        agent_roles = set(game.config.agents.roles)
        policies: Dict[Role, OrderPolicy] = {}
        for role in ROLE_SEQUENCE:
            entry = game.entry_for_role(role)
            if role in state.submitted_orders and (entry is None or not entry.is_agent):
                policies[role] = FixedOrderPolicy(state.submitted_orders[role])
            elif (entry is not None and entry.is_agent) or role in agent_roles:
                policies[role] = BaseStockPolicy(game.config.agents.algorithm)
            else:
                policies[role] = default_policy(role)
        return policies

    def advance_week(self, game_id: str) -> AdvanceResult:
        lock = self._lock_for(game_id)
        with lock:
            game = self._require_game(game_id)
            if game.status != GameStatus.ACTIVE:
                return AdvanceResult(
                    success=False,
                    game_id=game_id,
                    week=game.current_week,
                    reason=f"Game is {game.status.value}, not Active",
                )

            week = game.current_week
            state = self.repository.get_week_state(game_id, week)
            if state is None:
                state = opening_week_state(game, week)
            pending = state.incomplete_actions
            if pending:
                return AdvanceResult(
                    success=False,
                    game_id=game_id,
                    week=week,
                    reason="Waiting for participants to place their orders",
                    pending_participants=[action.participant_id for action in pending],
                )

            history = [s for s in self.repository.list_week_states(game_id) if s.closed]
            outcome = self.engine.run_week(game, state, self._policies_for(game, state), history)

            new_orders = orders_from_placements(
                game_id, outcome.placed_orders, ledger_enabled=self.sync.enabled_for(game)
            )
            book = OrderBook(
                self.repository.list_orders(game_id) + new_orders,
                game.config.shipping_delay,
            )
            changed = {order.id: order for order in book.apply_week(week, outcome.shipments)}
            for order in new_orders:
                changed.setdefault(order.id, order)

            completed = week >= game.config.max_weeks
            if completed:
                game.status = GameStatus.COMPLETED
                game.completed_at = utcnow()
            else:
                game.current_week = week + 1
            self._carry_contract_ref(game)
            self.repository.commit_week(
                game,
                outcome.closing,
                None if completed else outcome.next_state,
                list(changed.values()),
            )

        logger.info("Game %s advanced past week %s%s", game_id, week, " (completed)" if completed else "")
        self.sync.mirror_orders(game, new_orders)
        self.sync.mirror(game, LedgerAction.ADVANCE_WEEK, {"gameId": game_id, "week": week}, week=week)
        self._publish(
            DomainEventType.WEEK_ADVANCED,
            game,
            week=week,
            customer_demand=outcome.closing.customer_demand,
            roles={
                role.value: role_state.model_dump(mode="json")
                for role, role_state in outcome.closing.roles.items()
            },
        )
        if completed:
            self.complete_game(game_id)

        return AdvanceResult(
            success=True,
            game_id=game_id,
            week=week,
            next_week=None if completed else week + 1,
            completed=completed,
        )

    def complete_game(self, game_id: str) -> GameAnalytics:
        with self._lock_for(game_id):
            game = self._require_game(game_id)
            if game.status != GameStatus.COMPLETED:
                game.status = GameStatus.COMPLETED
                game.completed_at = utcnow()
                self._save_game(game)
        analytics = self.analytics.generate_game_analytics(game_id)
        self._publish(
            DomainEventType.GAME_COMPLETED,
            game,
            week=game.current_week,
            total_cost=analytics.total_cost,
            demand_amplification=analytics.bullwhip.demand_amplification,
        )
        return analytics

    def autoplay_turn(self, game_id: str) -> Optional[AdvanceResult]:
        """Advance a game whose open week needs no human input."""
        game = self._require_game(game_id)
        if game.status != GameStatus.ACTIVE:
            return None
        state = self.repository.get_week_state(game_id, game.current_week)
        if state is not None and state.incomplete_actions:
            return None
        if game.human_entries and not game.config.agents.autoplay:
            return None
        return self.advance_week(game_id)

    def autoplay_all(self) -> List[AdvanceResult]:
        results = []
        for game in self.repository.list_games(GameStatus.ACTIVE):
            if not game.config.agents.autoplay:
                continue
            result = self.autoplay_turn(game.id)
            if result is not None:
                results.append(result)
        return results

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def get_game(self, game_id: str) -> Game:
        return self._require_game(game_id)

    def get_week_state(self, game_id: str, week: Optional[int] = None) -> Optional[WeekState]:
        game = self._require_game(game_id)
        return self.repository.get_week_state(game_id, week or game.current_week)

    def get_history(self, game_id: str) -> List[WeekState]:
        self._require_game(game_id)
        return [state for state in self.repository.list_week_states(game_id) if state.closed]

    def list_orders(self, game_id: str, status: Optional[OrderStatus] = None) -> List[Order]:
        self._require_game(game_id)
        return self.repository.list_orders(game_id, status)
