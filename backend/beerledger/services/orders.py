"""Order records and their Pending → Shipped → Delivered lifecycle."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Sequence

from ..schemas.order import LedgerMetadata, Order, OrderStatus
from ..schemas.roles import Party, Role
from .engine import PlacedOrder, ShipmentFlow

logger = logging.getLogger(__name__)


def orders_from_placements(
    game_id: str,
    placements: Iterable[PlacedOrder],
    *,
    ledger_enabled: bool = False,
) -> List[Order]:
    """Turn an engine week's placements into Order records."""
    orders = []
    for placed in placements:
        orders.append(
            Order(
                game_id=game_id,
                week=placed.week,
                sender=placed.sender,
                recipient=placed.recipient,
                quantity=placed.quantity,
                delivery_week=placed.delivery_week,
                ledger=LedgerMetadata() if ledger_enabled and placed.sender is not Party.CUSTOMER else None,
            )
        )
    return orders


class OrderBook:
    """Applies a week's shipments to the orders of one game.

    Works on the list it is given; callers persist the orders it returns as
    changed.
    """

    def __init__(self, orders: Sequence[Order], shipping_delay: int) -> None:
        self.orders = sorted(orders, key=lambda o: (o.week, o.created_at))
        self.shipping_delay = shipping_delay

    def received_by(self, role: Role, week: int) -> List[Order]:
        """Orders ``role`` has received and not yet fully shipped, oldest first."""
        return [
            order
            for order in self.orders
            if order.recipient == role
            and order.delivery_week <= week
            and order.status == OrderStatus.PENDING
            and order.outstanding > 0
        ]

    def apply_week(self, week: int, shipments: Iterable[ShipmentFlow]) -> List[Order]:
        changed: Dict[str, Order] = {}

        shipped_by: Dict[Role, int] = {}
        for flow in shipments:
            shipped_by[flow.sender] = shipped_by.get(flow.sender, 0) + flow.quantity

        for role, quantity in shipped_by.items():
            for order in self._allocate(role, quantity, week):
                changed[order.id] = order

        # Zero-quantity orders need no shipment to be considered served
        for order in self.orders:
            if order.status == OrderStatus.PENDING and order.quantity == 0 and order.delivery_week <= week:
                self._mark_shipped(order, week)
                changed[order.id] = order

        for order in self.orders:
            if order.status == OrderStatus.SHIPPED and order.arrival_week is not None and order.arrival_week <= week:
                order.advance_status(OrderStatus.DELIVERED)
                changed[order.id] = order

        return list(changed.values())

    def _allocate(self, role: Role, quantity: int, week: int) -> List[Order]:
        touched = []
        remaining = quantity
        for order in self.received_by(role, week):
            if remaining <= 0:
                break
            portion = min(remaining, order.outstanding)
            order.shipped_quantity += portion
            remaining -= portion
            touched.append(order)
            if order.outstanding == 0:
                self._mark_shipped(order, week)
        if remaining > 0:
            logger.debug("%s shipped %s units not matched to any open order in week %s", role.value, remaining, week)
        return touched

    def _mark_shipped(self, order: Order, week: int) -> None:
        order.shipped_week = week
        if order.sender is Party.CUSTOMER:
            # Retailer shipments reach the customer immediately
            order.arrival_week = week
        else:
            order.arrival_week = week + self.shipping_delay
        order.advance_status(OrderStatus.SHIPPED)
