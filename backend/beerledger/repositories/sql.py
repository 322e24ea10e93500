"""SQLAlchemy-backed implementation of the game repository."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Iterable, List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session, sessionmaker

from ..core.errors import GameNotFoundError
from ..models import AnalyticsRecord, GameArchiveRecord, GameRecord, OrderRecord, WeekStateRecord
from ..schemas.analytics import GameAnalytics
from ..schemas.game import Game, GameStatus
from ..schemas.order import LedgerMetadata, Order, OrderStatus
from ..schemas.week import WeekState
from .base import GameArchive, check_week_write

logger = logging.getLogger(__name__)


class SqlAlchemyGameRepository:
    """Stores each aggregate as a JSON payload next to the columns it is queried by."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self.session_factory = session_factory

    # Games -------------------------------------------------------------
    def save_game(self, game: Game) -> Game:
        with self.session_factory() as db:
            self._put_game(db, game)
            db.commit()
        return game

    def _put_game(self, db: Session, game: Game) -> None:
        record = db.get(GameRecord, game.id)
        if record is None:
            record = GameRecord(id=game.id, created_at=game.created_at)
            db.add(record)
        record.status = game.status.value
        record.current_week = game.current_week
        record.payload = game.model_dump(mode="json")

    def get_game(self, game_id: str) -> Optional[Game]:
        with self.session_factory() as db:
            record = db.get(GameRecord, game_id)
            return Game.model_validate(record.payload) if record else None

    def list_games(self, status: Optional[GameStatus] = None) -> List[Game]:
        with self.session_factory() as db:
            stmt = select(GameRecord).order_by(GameRecord.created_at)
            if status is not None:
                stmt = stmt.where(GameRecord.status == status.value)
            return [Game.model_validate(r.payload) for r in db.scalars(stmt)]

    def set_contract_ref(self, game_id: str, contract_ref: str, synced_at: datetime) -> None:
        with self.session_factory() as db:
            record = db.get(GameRecord, game_id)
            if record is None:
                return
            game = Game.model_validate(record.payload)
            game.contract_ref = contract_ref
            game.last_synced_at = synced_at
            record.payload = game.model_dump(mode="json")
            db.commit()

    # Week states --------------------------------------------------------
    def save_week_state(self, state: WeekState) -> WeekState:
        with self.session_factory() as db:
            self._put_week(db, state)
            db.commit()
        return state

    def _put_week(self, db: Session, state: WeekState) -> None:
        latest = db.scalar(
            select(func.max(WeekStateRecord.week)).where(WeekStateRecord.game_id == state.game_id)
        )
        record = db.scalar(
            select(WeekStateRecord).where(
                WeekStateRecord.game_id == state.game_id, WeekStateRecord.week == state.week
            )
        )
        existing = WeekState.model_validate(record.payload) if record else None
        check_week_write(existing, latest, state)
        if record is None:
            record = WeekStateRecord(game_id=state.game_id, week=state.week)
            db.add(record)
        record.closed = state.closed
        record.ledger_confirmed = state.ledger_confirmed
        record.payload = state.model_dump(mode="json")
        db.flush()

    def get_week_state(self, game_id: str, week: int) -> Optional[WeekState]:
        with self.session_factory() as db:
            record = db.scalar(
                select(WeekStateRecord).where(
                    WeekStateRecord.game_id == game_id, WeekStateRecord.week == week
                )
            )
            return WeekState.model_validate(record.payload) if record else None

    def list_week_states(self, game_id: str) -> List[WeekState]:
        with self.session_factory() as db:
            stmt = (
                select(WeekStateRecord)
                .where(WeekStateRecord.game_id == game_id)
                .order_by(WeekStateRecord.week)
            )
            return [WeekState.model_validate(r.payload) for r in db.scalars(stmt)]

    def mark_week_confirmed(self, game_id: str, week: int) -> None:
        with self.session_factory() as db:
            record = db.scalar(
                select(WeekStateRecord).where(
                    WeekStateRecord.game_id == game_id, WeekStateRecord.week == week
                )
            )
            if record is None:
                return
            payload = dict(record.payload)
            payload["ledger_confirmed"] = True
            record.payload = payload
            record.ledger_confirmed = True
            db.commit()

    # Orders -------------------------------------------------------------
    def save_orders(self, orders: Iterable[Order]) -> List[Order]:
        orders = list(orders)
        with self.session_factory() as db:
            self._put_orders(db, orders)
            db.commit()
        return orders

    def _put_orders(self, db: Session, orders: List[Order], *, keep_ledger: bool = False) -> None:
        for order in orders:
            payload = order.model_dump(mode="json")
            record = db.get(OrderRecord, order.id)
            if record is None:
                record = OrderRecord(id=order.id, game_id=order.game_id, week=order.week, created_at=order.created_at)
                db.add(record)
            elif keep_ledger:
                payload["ledger"] = record.payload.get("ledger")
            record.status = order.status.value
            record.payload = payload

    def get_order(self, order_id: str) -> Optional[Order]:
        with self.session_factory() as db:
            record = db.get(OrderRecord, order_id)
            return Order.model_validate(record.payload) if record else None

    def list_orders(self, game_id: str, status: Optional[OrderStatus] = None) -> List[Order]:
        with self.session_factory() as db:
            stmt = (
                select(OrderRecord)
                .where(OrderRecord.game_id == game_id)
                .order_by(OrderRecord.week, OrderRecord.created_at)
            )
            if status is not None:
                stmt = stmt.where(OrderRecord.status == status.value)
            return [Order.model_validate(r.payload) for r in db.scalars(stmt)]

    def update_ledger_metadata(
        self, order_id: str, update: Callable[[LedgerMetadata], bool]
    ) -> Optional[Order]:
        with self.session_factory() as db:
            record = db.get(OrderRecord, order_id, with_for_update=True)
            if record is None:
                return None
            order = Order.model_validate(record.payload)
            meta = order.ledger or LedgerMetadata()
            if not update(meta):
                return None
            order.ledger = meta
            record.payload = order.model_dump(mode="json")
            db.commit()
            return order

    def commit_week(
        self,
        game: Game,
        closing: WeekState,
        next_state: Optional[WeekState],
        orders: Iterable[Order],
    ) -> None:
        with self.session_factory() as db:
            try:
                self._put_week(db, closing)
                if next_state is not None:
                    self._put_week(db, next_state)
                self._put_orders(db, list(orders), keep_ledger=True)
                self._put_game(db, game)
                db.commit()
            except Exception:
                db.rollback()
                raise

    # Analytics and archive ---------------------------------------------
    def save_analytics(self, analytics: GameAnalytics) -> None:
        with self.session_factory() as db:
            record = db.get(AnalyticsRecord, analytics.game_id)
            if record is None:
                record = AnalyticsRecord(game_id=analytics.game_id)
                db.add(record)
            record.payload = analytics.model_dump(mode="json")
            record.computed_at = analytics.computed_at
            db.commit()

    def get_analytics(self, game_id: str) -> Optional[GameAnalytics]:
        with self.session_factory() as db:
            record = db.get(AnalyticsRecord, game_id)
            return GameAnalytics.model_validate(record.payload) if record else None

    def archive_game(self, game_id: str, analytics: Optional[GameAnalytics] = None) -> None:
        with self.session_factory() as db:
            record = db.get(GameRecord, game_id)
            if record is None:
                raise GameNotFoundError(f"Game {game_id} not found")
            stored = db.get(AnalyticsRecord, game_id)
            analytics_payload = (
                analytics.model_dump(mode="json") if analytics else (stored.payload if stored else None)
            )
            db.merge(GameArchiveRecord(game_id=game_id, game=record.payload, analytics=analytics_payload))
            db.execute(delete(WeekStateRecord).where(WeekStateRecord.game_id == game_id))
            db.execute(delete(OrderRecord).where(OrderRecord.game_id == game_id))
            db.execute(delete(AnalyticsRecord).where(AnalyticsRecord.game_id == game_id))
            db.delete(record)
            db.commit()
        logger.info("Archived game %s", game_id)

    def get_archive(self, game_id: str) -> Optional[GameArchive]:
        with self.session_factory() as db:
            record = db.get(GameArchiveRecord, game_id)
            if record is None:
                return None
            return GameArchive(
                game=record.game,
                analytics=record.analytics,
                archived_at=record.archived_at.isoformat() if record.archived_at else None,
            )
