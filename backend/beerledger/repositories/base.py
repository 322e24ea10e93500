"""Persistence collaborator: the storage access patterns the core relies on."""

from __future__ import annotations

import threading
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Protocol

from ..core.errors import GameNotFoundError, GameValidationError
from ..schemas.analytics import GameAnalytics
from ..schemas.game import Game, GameStatus, utcnow
from ..schemas.order import LedgerMetadata, Order, OrderStatus
from ..schemas.week import WeekState


class GameArchive(dict):
    """Archived game record: the game and its analytics, nothing else."""


class GameRepository(Protocol):
    def save_game(self, game: Game) -> Game:
        ...

    def get_game(self, game_id: str) -> Optional[Game]:
        ...

    def list_games(self, status: Optional[GameStatus] = None) -> List[Game]:
        ...

    def set_contract_ref(self, game_id: str, contract_ref: str, synced_at: datetime) -> None:
        ...

    def save_week_state(self, state: WeekState) -> WeekState:
        ...

    def get_week_state(self, game_id: str, week: int) -> Optional[WeekState]:
        ...

    def list_week_states(self, game_id: str) -> List[WeekState]:
        ...

    def mark_week_confirmed(self, game_id: str, week: int) -> None:
        ...

    def save_orders(self, orders: Iterable[Order]) -> List[Order]:
        ...

    def get_order(self, order_id: str) -> Optional[Order]:
        ...

    def list_orders(self, game_id: str, status: Optional[OrderStatus] = None) -> List[Order]:
        ...

    def update_ledger_metadata(
        self, order_id: str, update: Callable[[LedgerMetadata], bool]
    ) -> Optional[Order]:
        ...

    def commit_week(self, game: Game, closing: WeekState, next_state: Optional[WeekState], orders: Iterable[Order]) -> None:
        ...

    def save_analytics(self, analytics: GameAnalytics) -> None:
        ...

    def get_analytics(self, game_id: str) -> Optional[GameAnalytics]:
        ...

    def archive_game(self, game_id: str, analytics: Optional[GameAnalytics] = None) -> None:
        ...

    def get_archive(self, game_id: str) -> Optional[GameArchive]:
        ...


def check_week_write(existing: Optional[WeekState], latest_week: Optional[int], state: WeekState) -> None:
    """Closed history is append-only; only the newest week may be written."""
    if latest_week is not None and state.week < latest_week:
        raise GameValidationError(
            f"Week {state.week} of game {state.game_id} is history and cannot be rewritten"
        )
    if existing is not None and existing.closed:
        raise GameValidationError(f"Week {state.week} of game {state.game_id} is already closed")


class InMemoryGameRepository:
    """Thread-safe dict-backed repository handing out deep copies."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._games: Dict[str, Game] = {}
        self._weeks: Dict[str, Dict[int, WeekState]] = {}
        self._orders: Dict[str, Order] = {}
        self._analytics: Dict[str, GameAnalytics] = {}
        self._archives: Dict[str, GameArchive] = {}

    # Games -------------------------------------------------------------
    def save_game(self, game: Game) -> Game:
        with self._lock:
            self._games[game.id] = game.model_copy(deep=True)
            return game

    def get_game(self, game_id: str) -> Optional[Game]:
        with self._lock:
            game = self._games.get(game_id)
            return game.model_copy(deep=True) if game else None

    def list_games(self, status: Optional[GameStatus] = None) -> List[Game]:
        with self._lock:
            return [
                game.model_copy(deep=True)
                for game in self._games.values()
                if status is None or game.status == status
            ]

    def set_contract_ref(self, game_id: str, contract_ref: str, synced_at: datetime) -> None:
        with self._lock:
            game = self._games.get(game_id)
            if game is not None:
                game.contract_ref = contract_ref
                game.last_synced_at = synced_at

    # Week states --------------------------------------------------------
    def save_week_state(self, state: WeekState) -> WeekState:
        with self._lock:
            self._write_week(state)
            return state

    def _write_week(self, state: WeekState) -> None:
        weeks = self._weeks.setdefault(state.game_id, {})
        latest = max(weeks) if weeks else None
        check_week_write(weeks.get(state.week), latest, state)
        weeks[state.week] = state.model_copy(deep=True)

    def get_week_state(self, game_id: str, week: int) -> Optional[WeekState]:
        with self._lock:
            state = self._weeks.get(game_id, {}).get(week)
            return state.model_copy(deep=True) if state else None

    def list_week_states(self, game_id: str) -> List[WeekState]:
        with self._lock:
            weeks = self._weeks.get(game_id, {})
            return [weeks[w].model_copy(deep=True) for w in sorted(weeks)]

    def mark_week_confirmed(self, game_id: str, week: int) -> None:
        with self._lock:
            state = self._weeks.get(game_id, {}).get(week)
            if state is not None:
                state.ledger_confirmed = True

    # Orders -------------------------------------------------------------
    def save_orders(self, orders: Iterable[Order]) -> List[Order]:
        with self._lock:
            saved = []
            for order in orders:
                self._orders[order.id] = order.model_copy(deep=True)
                saved.append(order)
            return saved

    def get_order(self, order_id: str) -> Optional[Order]:
        with self._lock:
            order = self._orders.get(order_id)
            return order.model_copy(deep=True) if order else None

    def list_orders(self, game_id: str, status: Optional[OrderStatus] = None) -> List[Order]:
        with self._lock:
            orders = [
                order.model_copy(deep=True)
                for order in self._orders.values()
                if order.game_id == game_id and (status is None or order.status == status)
            ]
        return sorted(orders, key=lambda o: (o.week, o.created_at))

    def update_ledger_metadata(
        self, order_id: str, update: Callable[[LedgerMetadata], bool]
    ) -> Optional[Order]:
        """Apply ``update`` to the stored ledger metadata only; returns the order if it changed."""
        with self._lock:
            order = self._orders.get(order_id)
            if order is None:
                return None
            meta = order.ledger.model_copy(deep=True) if order.ledger else LedgerMetadata()
            if not update(meta):
                return None
            order.ledger = meta
            return order.model_copy(deep=True)

    def commit_week(
        self,
        game: Game,
        closing: WeekState,
        next_state: Optional[WeekState],
        orders: Iterable[Order],
    ) -> None:
        orders = list(orders)
        with self._lock:
            # Validate before touching anything so a rejected commit leaves no trace
            weeks = self._weeks.get(closing.game_id, {})
            latest = max(weeks) if weeks else None
            check_week_write(weeks.get(closing.week), latest, closing)
            self._write_week(closing)
            if next_state is not None:
                self._write_week(next_state)
            # Ledger metadata of existing orders belongs to the sync service
            for order in orders:
                stored = self._orders.get(order.id)
                order = order.model_copy(deep=True)
                if stored is not None:
                    order.ledger = stored.ledger
                self._orders[order.id] = order
            self.save_game(game)

    # Analytics and archive ---------------------------------------------
    def save_analytics(self, analytics: GameAnalytics) -> None:
        with self._lock:
            self._analytics[analytics.game_id] = analytics.model_copy(deep=True)

    def get_analytics(self, game_id: str) -> Optional[GameAnalytics]:
        with self._lock:
            analytics = self._analytics.get(game_id)
            return analytics.model_copy(deep=True) if analytics else None

    def archive_game(self, game_id: str, analytics: Optional[GameAnalytics] = None) -> None:
        with self._lock:
            game = self._games.pop(game_id, None)
            if game is None:
                raise GameNotFoundError(f"Game {game_id} not found")
            analytics = analytics or self._analytics.get(game_id)
            self._archives[game_id] = GameArchive(
                game=game.model_dump(mode="json"),
                analytics=analytics.model_dump(mode="json") if analytics else None,
                archived_at=utcnow().isoformat(),
            )
            self._weeks.pop(game_id, None)
            self._analytics.pop(game_id, None)
            for order_id in [oid for oid, o in self._orders.items() if o.game_id == game_id]:
                del self._orders[order_id]

    def get_archive(self, game_id: str) -> Optional[GameArchive]:
        with self._lock:
            archive = self._archives.get(game_id)
            return GameArchive(archive) if archive else None
