"""Keeps the authoritative simulation consistent with the external ledger.

Local writes always win.  Ledger submissions go through an outbox that is
flushed off the simulation path; confirmations arrive as :class:`LedgerEvent`
pushes or are pulled by the periodic reconciliation job.  Nothing here ever
blocks or fails a game because the ledger is slow or unavailable.
"""

from __future__ import annotations

import logging
import random
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Deque, Dict, List, Optional, Set

from ..core.config import Settings, settings as default_settings
from ..core.errors import LedgerUnavailableError
from ..repositories.base import GameRepository
from ..schemas.events import DomainEvent, DomainEventType, LedgerEvent, LedgerEventType
from ..schemas.game import Game, GameStatus, utcnow
from ..schemas.order import LedgerMetadata, Order, OrderStatus
from .ledger_client import LedgerAction, LedgerClient, LedgerReceipt
from .notifications import EventPublisher, NullPublisher

logger = logging.getLogger(__name__)

_EVENT_STATUS = {
    LedgerEventType.ORDER_PLACED: OrderStatus.PENDING,
    LedgerEventType.ORDER_SHIPPED: OrderStatus.SHIPPED,
    LedgerEventType.ORDER_DELIVERED: OrderStatus.DELIVERED,
}


@dataclass
class OutboxItem:
    game_id: str
    action: str
    params: Dict[str, Any]
    order_id: Optional[str] = None
    week: Optional[int] = None
    enqueued_at: datetime = field(default_factory=utcnow)


@dataclass
class ReconciliationReport:
    game_id: str
    skipped: bool = False
    local_week: Optional[int] = None
    ledger_week: Optional[int] = None
    week_diverged: bool = False
    resubmitted: int = 0
    pulled: int = 0
    confirmed: int = 0
    errors: List[str] = field(default_factory=list)


def order_params(order: Order) -> Dict[str, Any]:
    return {
        "gameId": order.game_id,
        "week": order.week,
        "sender": order.sender.value,
        "recipient": order.recipient.value,
        "quantity": order.quantity,
        "correlationId": order.correlation_id,
    }


class LedgerSyncService:
    def __init__(
        self,
        repository: GameRepository,
        ledger: Optional[LedgerClient] = None,
        publisher: Optional[EventPublisher] = None,
        settings: Optional[Settings] = None,
        *,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], None] = time.sleep,
        jitter: Callable[[], float] = random.random,
    ) -> None:
        self.repository = repository
        self.ledger = ledger
        self.publisher = publisher or NullPublisher()
        self.settings = settings or default_settings
        self.clock = clock
        self.sleep = sleep
        self.jitter = jitter

        self._outbox: Deque[OutboxItem] = deque()
        self._outbox_lock = threading.Lock()
        self._processed: Dict[str, Set[str]] = {}
        self._event_lock = threading.Lock()
        self._reconciling: Set[str] = set()
        self._reconcile_lock = threading.Lock()

    def enabled_for(self, game: Game) -> bool:
        return self.ledger is not None and game.ledger_active

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------
    def mirror(
        self,
        game: Game,
        action: str,
        params: Dict[str, Any],
        *,
        order_id: Optional[str] = None,
        week: Optional[int] = None,
    ) -> bool:
        """Queue a submission for the ledger; returns False when the game is not mirrored."""
        if not self.enabled_for(game):
            return False
        with self._outbox_lock:
            self._outbox.append(OutboxItem(game.id, action, dict(params), order_id=order_id, week=week))
        return True

    def mirror_orders(self, game: Game, orders: List[Order]) -> int:
        queued = 0
        for order in orders:
            if order.ledger is None:
                continue
            if self.mirror(game, LedgerAction.PLACE_ORDER, order_params(order), order_id=order.id, week=order.week):
                queued += 1
        return queued

    def outbox_size(self, game_id: Optional[str] = None) -> int:
        with self._outbox_lock:
            return sum(1 for item in self._outbox if game_id is None or item.game_id == game_id)

    def flush(self, limit: Optional[int] = None) -> int:
        """Dispatch queued submissions; returns how many were attempted."""
        dispatched = 0
        while limit is None or dispatched < limit:
            with self._outbox_lock:
                if not self._outbox:
                    break
                item = self._outbox.popleft()
            self._dispatch(item)
            dispatched += 1
        return dispatched

    def _dispatch(self, item: OutboxItem) -> LedgerReceipt:
        game = self.repository.get_game(item.game_id)
        if game is None:
            logger.info("Dropping ledger %s for unknown game %s", item.action, item.game_id)
            return LedgerReceipt(success=False, error="game not found")
        params = dict(item.params)
        if game.contract_ref and item.action != LedgerAction.CREATE_GAME:
            params["contract"] = game.contract_ref
        order = self.repository.get_order(item.order_id) if item.order_id else None
        receipt = self.submit_to_ledger(item.action, params, game_id=game.id, order=order, week=item.week)
        if receipt.success and item.action == LedgerAction.CREATE_GAME:
            self._store_contract_ref(game.id, receipt.external_ref)
        return receipt

    def _store_contract_ref(self, game_id: str, contract_ref: Optional[str]) -> None:
        if contract_ref:
            self.repository.set_contract_ref(game_id, contract_ref, self.clock())

    def submit_to_ledger(
        self,
        action: str,
        params: Dict[str, Any],
        *,
        game_id: str,
        order: Optional[Order] = None,
        week: Optional[int] = None,
    ) -> LedgerReceipt:
        """Submit with bounded retries; failures are recorded, never raised."""
        if self.ledger is None:
            return LedgerReceipt(success=False, error="ledger disabled")

        attempts = self.settings.LEDGER_MAX_RETRIES + 1
        backoff = self.settings.LEDGER_BACKOFF_SECONDS
        receipt: Optional[LedgerReceipt] = None
        last_error: Optional[str] = None

        for attempt in range(1, attempts + 1):
            try:
                receipt = self.ledger.submit(action, params)
            except LedgerUnavailableError as exc:
                receipt = None
                last_error = str(exc)
            else:
                if receipt.success:
                    break
                last_error = receipt.error or "rejected by ledger"
            if attempt < attempts:
                wait = min(backoff, self.settings.LEDGER_BACKOFF_MAX_SECONDS) * (1.0 + 0.25 * self.jitter())
                logger.debug("Ledger %s attempt %s/%s failed, retrying in %.2fs", action, attempt, attempts, wait)
                self.sleep(wait)
                backoff *= 2

        succeeded = receipt is not None and receipt.success
        if order is not None:
            self._record_attempt(order, receipt if succeeded else None, last_error)

        if succeeded:
            return receipt

        logger.warning("Ledger %s for game %s failed after %s attempts: %s", action, game_id, attempts, last_error)
        self._divergence(
            game_id,
            week,
            reason="ledger_submission_failed",
            action=action,
            order_id=order.id if order else None,
            error=last_error,
        )
        return LedgerReceipt(success=False, error=last_error)

    def _record_attempt(self, order: Order, receipt: Optional[LedgerReceipt], error: Optional[str]) -> None:
        attempted_at = self.clock()

        def update(meta: LedgerMetadata) -> bool:
            meta.last_attempt_at = attempted_at
            if receipt is not None:
                meta.external_id = receipt.external_ref or meta.external_id or order.correlation_id
                meta.submitted_at = meta.submitted_at or attempted_at
                meta.last_error = None
            else:
                meta.sync_attempts += 1
                meta.last_error = error
            return True

        self.repository.update_ledger_metadata(order.id, update)

    def _divergence(self, game_id: str, week: Optional[int], **payload: Any) -> None:
        self.publisher.publish(
            DomainEvent(
                type=DomainEventType.RECONCILIATION_DIVERGENCE,
                game_id=game_id,
                week=week,
                payload=payload,
            )
        )

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------
    def on_ledger_event(self, event: LedgerEvent) -> bool:
        """Apply a ledger push; returns False for duplicates and unmatched events.

        Only applied events are remembered, so a redelivery of an event that
        arrived before its local counterpart existed is tried again.
        """
        with self._event_lock:
            seen = self._processed.setdefault(event.game_id, set())
            if event.event_id in seen:
                logger.debug("Ignoring duplicate ledger event %s", event.event_id)
                return False

            if event.type in _EVENT_STATUS:
                applied = self._apply_order_event(event)
            elif event.type == LedgerEventType.WEEK_ADVANCED:
                applied = self._apply_week_event(event)
            else:
                applied = self._apply_inventory_event(event)
            if applied:
                seen.add(event.event_id)
            return applied

    def forget_game(self, game_id: str) -> None:
        """Drop the processed-event ids and queued submissions of an archived game."""
        with self._event_lock:
            self._processed.pop(game_id, None)
        with self._outbox_lock:
            self._outbox = deque(item for item in self._outbox if item.game_id != game_id)

    def _apply_order_event(self, event: LedgerEvent) -> bool:
        target = _EVENT_STATUS[event.type]
        order = self.match_order(event, target)
        if order is None:
            logger.warning(
                "No local order matches ledger %s for game %s week %s", event.type.value, event.game_id, event.week
            )
            return False
        self._confirm(order, target, event.external_id)
        return True

    def _confirm(self, order: Order, target: OrderStatus, external_id: Optional[str] = None) -> bool:
        def update(meta: LedgerMetadata) -> bool:
            changed = False
            if not meta.confirmed:
                meta.confirmed = True
                changed = True
            if external_id and meta.external_id != external_id:
                meta.external_id = external_id
                changed = True
            if meta.confirmed_status is None or target.rank > meta.confirmed_status.rank:
                meta.confirmed_status = target
                changed = True
            return changed

        updated = self.repository.update_ledger_metadata(order.id, update)
        local = (updated or order).status
        if target.rank > local.rank:
            # Local state is authoritative; a ledger ahead of it is only reported
            logger.info("Ledger reports order %s as %s while local status is %s", order.id, target.value, local.value)
        return updated is not None

    def match_order(self, event: LedgerEvent, target: OrderStatus) -> Optional[Order]:
        if event.correlation_id:
            order = self.repository.get_order(event.correlation_id)
            if order is not None and order.game_id == event.game_id:
                return order

        orders = self.repository.list_orders(event.game_id)
        if event.external_id:
            for order in orders:
                if order.ledger and order.ledger.external_id == event.external_id:
                    return order

        candidates = [
            order
            for order in orders
            if order.week == event.week
            and order.sender == event.sender
            and order.recipient == event.recipient
            and order.quantity == event.quantity
            and (
                order.ledger is None
                or order.ledger.confirmed_status is None
                or order.ledger.confirmed_status.rank < target.rank
            )
        ]
        if not candidates:
            return None
        # Oldest unresolved order with the same shape wins
        logger.warning(
            "Ledger %s for game %s matched by shape (%s candidates), using oldest order %s",
            event.type.value,
            event.game_id,
            len(candidates),
            candidates[0].id,
        )
        return candidates[0]

    def _apply_week_event(self, event: LedgerEvent) -> bool:
        state = self.repository.get_week_state(event.game_id, event.week)
        if state is None or not state.closed:
            logger.warning("Ledger reports week %s advanced for game %s, locally it is still open", event.week, event.game_id)
            self._divergence(event.game_id, event.week, reason="week_mismatch", ledger_week=event.week)
            return False
        self.repository.mark_week_confirmed(event.game_id, event.week)
        return True

    def _apply_inventory_event(self, event: LedgerEvent) -> bool:
        state = self.repository.get_week_state(event.game_id, event.week)
        if state is None or event.role is None:
            return False
        local = state.roles[event.role].inventory
        if event.quantity != local:
            logger.warning(
                "Inventory divergence for game %s week %s %s: ledger %s, local %s",
                event.game_id,
                event.week,
                event.role.value,
                event.quantity,
                local,
            )
            self._divergence(
                event.game_id,
                event.week,
                reason="inventory_mismatch",
                role=event.role.value,
                ledger=event.quantity,
                local=local,
            )
        return True

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------
    def reconcile_game(self, game_id: str) -> ReconciliationReport:
        report = ReconciliationReport(game_id=game_id)
        with self._reconcile_lock:
            if game_id in self._reconciling:
                report.skipped = True
                return report
            self._reconciling.add(game_id)
        try:
            self._reconcile(game_id, report)
        finally:
            with self._reconcile_lock:
                self._reconciling.discard(game_id)
        return report

    def _reconcile(self, game_id: str, report: ReconciliationReport) -> None:
        game = self.repository.get_game(game_id)
        if game is None or not self.enabled_for(game):
            return

        if game.contract_ref is None:
            if self._queued(game_id=game_id, action=LedgerAction.CREATE_GAME):
                return
            receipt = self.submit_to_ledger(
                LedgerAction.CREATE_GAME, {"gameId": game.id, "config": game.config.model_dump(mode="json")}, game_id=game.id
            )
            if not receipt.success:
                report.errors.append(receipt.error or "createGame failed")
                return
            self._store_contract_ref(game.id, receipt.external_ref)
            report.resubmitted += 1
            game = self.repository.get_game(game_id)

        report.local_week = self._last_closed_week(game_id)
        try:
            report.ledger_week = self.ledger.get_current_week(game.contract_ref)
        except LedgerUnavailableError as exc:
            report.errors.append(str(exc))
            logger.warning("Could not read ledger week for game %s: %s", game_id, exc)
        else:
            if report.ledger_week != report.local_week:
                report.week_diverged = True
                logger.warning(
                    "Week divergence for game %s: ledger %s, local %s", game_id, report.ledger_week, report.local_week
                )
                self._divergence(
                    game_id,
                    report.local_week,
                    reason="week_mismatch",
                    ledger_week=report.ledger_week,
                    local_week=report.local_week,
                )

        now = self.clock()
        stale_after = self.settings.RECONCILE_STALE_SECONDS
        for order in self.repository.list_orders(game_id):
            meta = order.ledger
            if meta is None or meta.confirmed:
                continue
            if meta.external_id is None:
                if self._queued(order_id=order.id):
                    continue
                params = order_params(order)
                params["contract"] = game.contract_ref
                receipt = self.submit_to_ledger(
                    LedgerAction.PLACE_ORDER, params, game_id=game_id, order=order, week=order.week
                )
                report.resubmitted += 1
                if not receipt.success:
                    report.errors.append(receipt.error or "placeOrder failed")
                continue
            last_seen = meta.last_attempt_at or meta.submitted_at or order.created_at
            if (now - last_seen).total_seconds() < stale_after:
                continue
            try:
                remote = self.ledger.get_order(game.contract_ref, meta.external_id)
            except LedgerUnavailableError as exc:
                report.errors.append(str(exc))
                continue
            report.pulled += 1
            if not remote:
                continue
            try:
                status = OrderStatus(remote.get("status", OrderStatus.PENDING.value))
            except ValueError:
                logger.warning("Unknown order status %r from ledger for order %s", remote.get("status"), order.id)
                continue
            if self._confirm(order, status):
                report.confirmed += 1

    def _queued(self, *, order_id: Optional[str] = None, game_id: Optional[str] = None, action: Optional[str] = None) -> bool:
        with self._outbox_lock:
            for item in self._outbox:
                if order_id is not None and item.order_id == order_id:
                    return True
                if game_id is not None and item.game_id == game_id and item.action == action:
                    return True
        return False

    def _last_closed_week(self, game_id: str) -> int:
        closed = [state.week for state in self.repository.list_week_states(game_id) if state.closed]
        return max(closed) if closed else 0

    def reconcile_all(self) -> List[ReconciliationReport]:
        reports = []
        for status in (GameStatus.ACTIVE, GameStatus.COMPLETED):
            for game in self.repository.list_games(status):
                if not self.enabled_for(game):
                    continue
                reports.append(self.reconcile_game(game.id))
        return reports

    def pending_sync_count(self, game_id: str) -> int:
        unconfirmed = sum(
            1 for order in self.repository.list_orders(game_id) if order.ledger is not None and not order.ledger.confirmed
        )
        return unconfirmed
