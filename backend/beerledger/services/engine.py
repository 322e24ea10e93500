"""Weekly cycle engine: one deterministic state transition per simulated week."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from ..core.config import Settings, settings as default_settings
from ..core.errors import GameValidationError, check_invariant
from ..schemas.game import Game, utcnow
from ..schemas.roles import ROLE_SEQUENCE, Party, Role
from ..schemas.week import PendingAction, PipelineSet, RoleState, WeekState
from .pipeline import Pipeline
from .policies import OrderPolicy, PolicyObservation, default_policy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlacedOrder:
    """An order created during a week, before it becomes an Order record."""

    sender: Party
    recipient: Role
    quantity: int
    week: int
    delivery_week: int


@dataclass(frozen=True)
class ShipmentFlow:
    """Units that left ``sender`` this week; ``recipient`` None means the customer."""

    sender: Role
    recipient: Optional[Role]
    quantity: int
    week: int
    arrival_week: int


@dataclass
class WeekOutcome:
    closing: WeekState
    next_state: WeekState
    placed_orders: List[PlacedOrder] = field(default_factory=list)
    shipments: List[ShipmentFlow] = field(default_factory=list)
    production: int = 0
    stats: Dict[Role, Dict[str, Any]] = field(default_factory=dict)


class RoleNode:
    """Working copy of one role while a week is being processed."""

    def __init__(
        self,
        role: Role,
        state: RoleState,
        pipelines: PipelineSet,
        *,
        order_delay: int,
        shipping_delay: int,
        production_lead_time: int,
        strict: bool,
    ) -> None:
        self.role = role
        self.inventory = int(state.inventory)
        self.backlog = int(state.backlog)
        self.cost = float(state.current_cost)
        self.orders = Pipeline(order_delay, pipelines.orders, strict=strict)
        self.shipments = Pipeline(shipping_delay, pipelines.shipments, strict=strict)
        self.production = Pipeline(production_lead_time, pipelines.production, strict=strict)

        self.incoming_orders = 0
        self.outgoing_orders = 0
        self.received = 0
        self.shipped = 0
        self.produced = 0
        self.cost_added = 0.0

    @property
    def incoming_supply(self) -> int:
        """Units already on their way to this role."""
        return self.shipments.in_transit + self.production.in_transit

    def accrue_costs(self, holding_cost: float, backlog_cost: float) -> float:
        previous = self.cost
        self.cost_added = holding_cost * max(self.inventory, 0) + backlog_cost * max(self.backlog, 0)
        self.cost += self.cost_added
        return self.cost - previous

    def to_role_state(self) -> RoleState:
        return RoleState(
            inventory=self.inventory,
            backlog=self.backlog,
            incoming_orders=self.incoming_orders,
            outgoing_orders=self.outgoing_orders,
            current_cost=self.cost,
            received=self.received,
            shipped=self.shipped,
            produced=self.produced,
            cost_added=self.cost_added,
        )

    def to_pipeline_set(self) -> PipelineSet:
        return PipelineSet(
            orders=self.orders.snapshot(),
            shipments=self.shipments.snapshot(),
            production=self.production.snapshot(),
        )


def opening_week_state(game: Game, week: int = 1) -> WeekState:
    """Seed state for the first week of a game: opening stock, empty pipelines."""
    config = game.config
    roles = {role: RoleState(inventory=config.initial_inventory) for role in ROLE_SEQUENCE}
    pipelines = {role: PipelineSet() for role in ROLE_SEQUENCE}
    return WeekState(
        game_id=game.id,
        week=week,
        customer_demand=game.demand_for_week(week),
        roles=roles,
        pipelines=pipelines,
        pending_actions=pending_actions_for(game),
    )


def pending_actions_for(game: Game) -> List[PendingAction]:
    return [
        PendingAction(participant_id=entry.participant_id, role=entry.role)
        for entry in game.human_entries
    ]


@dataclass
class WeekRun:
    """Working state of a single ``run_week`` call."""

    week: int
    order_delay: int
    shipping_delay: int
    nodes: Dict[Role, RoleNode]
    placed: List[PlacedOrder] = field(default_factory=list)
    flows: List[ShipmentFlow] = field(default_factory=list)


class WeeklyCycleEngine:
    """Advance a game's supply chain by exactly one week.

    The engine never mutates its inputs.  It builds a :class:`RoleNode` per
    role from the opening :class:`WeekState`, runs the weekly sub-steps in
    order and returns both the closed snapshot and the seed for the next week.
    Each call keeps its working state in its own :class:`WeekRun`, so one
    engine can serve several games at once.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or default_settings
        self.strict = self.settings.strict_invariants

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def run_week(
        self,
        game: Game,
        state: WeekState,
        policies: Optional[Mapping[Role, OrderPolicy]] = None,
        history: Sequence[WeekState] = (),
    ) -> WeekOutcome:
        if state.closed:
            raise GameValidationError(f"Week {state.week} of game {state.game_id} is already closed")
        if state.game_id != game.id:
            raise GameValidationError("Week state does not belong to this game")

        config = game.config
        week = state.week
        policies = dict(policies or {})
        run = WeekRun(
            week=week,
            order_delay=config.order_delay,
            shipping_delay=config.shipping_delay,
            nodes={
                role: RoleNode(
                    role,
                    state.roles[role],
                    state.pipelines[role],
                    order_delay=config.order_delay,
                    shipping_delay=config.shipping_delay,
                    production_lead_time=self.settings.PRODUCTION_LEAD_TIME,
                    strict=self.strict,
                )
                for role in ROLE_SEQUENCE
            },
        )
        nodes = run.nodes
        stats: Dict[Role, Dict[str, Any]] = {
            role: {"inventory_before": node.inventory, "backlog_before": node.backlog}
            for role, node in nodes.items()
        }

        # Step 1: shipment arrivals, clearing backlog first
        for role in reversed(ROLE_SEQUENCE):
            self._receive_shipments(run, nodes[role])
        self._settle_same_week_arrivals(run)

        # Step 2: factory production completes
        factory = nodes[Role.FACTORY]
        completed = factory.production.drain()
        factory.inventory += completed
        factory.received += completed
        stats[Role.FACTORY]["production_completed"] = completed
        self._clear_backlog(run, factory)
        self._settle_same_week_arrivals(run)

        # Step 3: fulfil this week's incoming orders
        demand = int(state.customer_demand)
        run.placed.append(
            PlacedOrder(Party.CUSTOMER, Role.RETAILER, demand, week, delivery_week=week)
        )
        for role in ROLE_SEQUENCE:
            node = nodes[role]
            incoming = demand if role == Role.RETAILER else node.orders.drain()
            self._fulfil(run, node, incoming)
        self._settle_same_week_arrivals(run)

        # Step 4: ordering decisions, downstream first so zero-delay orders
        # are visible to the supplier before it decides its own order
        for role in ROLE_SEQUENCE[:-1]:
            node = nodes[role]
            quantity = self._decide(run, role, policies, history)
            self._place_order(run, node, quantity)
            stats[role]["order_placed"] = quantity

        # Step 5: factory production decision
        request = self._decide(run, Role.FACTORY, policies, history)
        production = self._schedule_production(factory, request)
        stats[Role.FACTORY]["production_requested"] = request
        stats[Role.FACTORY]["order_placed"] = production

        # Step 6: pipelines move one week
        for node in nodes.values():
            self._advance(node.shipments, node.role, "shipment")
            self._advance(node.production, node.role, "production")
            if run.order_delay == 0:
                node.orders.clear()
            else:
                self._advance(node.orders, node.role, "order")

        # Step 7: cumulative costs
        for node in nodes.values():
            if not check_invariant(
                node.inventory >= 0,
                f"{node.role.value} inventory went negative ({node.inventory}) in week {week}",
                strict=self.strict,
            ):
                node.inventory = 0
            node.accrue_costs(config.holding_cost, config.backorder_cost)
            stats[node.role].update(
                {
                    "incoming_order": node.incoming_orders,
                    "shipped": node.shipped,
                    "received": node.received,
                    "inventory_after": node.inventory,
                    "backlog_after": node.backlog,
                    "cost_added": node.cost_added,
                    "total_cost": node.cost,
                }
            )

        # Step 8: closing snapshot and next week's seed
        closing = self._closing_state(run, state)
        next_state = self._next_state(game, closing)
        logger.debug("Game %s week %s closed with demand %s", game.id, week, demand)
        return WeekOutcome(
            closing=closing,
            next_state=next_state,
            placed_orders=list(run.placed),
            shipments=list(run.flows),
            production=production,
            stats=stats,
        )

    # ------------------------------------------------------------------
    # Sub-steps
    # ------------------------------------------------------------------
    def _receive_shipments(self, run: WeekRun, node: RoleNode) -> int:
        arrived = node.shipments.drain()
        if arrived:
            node.inventory += arrived
            node.received += arrived
            self._clear_backlog(run, node)
        return arrived

    def _clear_backlog(self, run: WeekRun, node: RoleNode) -> int:
        cleared = min(node.backlog, node.inventory)
        if cleared > 0:
            node.backlog -= cleared
            node.inventory -= cleared
            self._ship(run, node, cleared)
        return cleared

    def _fulfil(self, run: WeekRun, node: RoleNode, incoming: int) -> int:
        node.incoming_orders += incoming
        shipped = min(node.inventory, incoming)
        node.inventory -= shipped
        node.backlog += incoming - shipped
        if shipped:
            self._ship(run, node, shipped)
        return shipped

    def _ship(self, run: WeekRun, node: RoleNode, quantity: int) -> None:
        recipient = node.role.downstream
        if recipient is not None:
            run.nodes[recipient].shipments.place(quantity, run.shipping_delay)
        node.shipped += quantity
        run.flows.append(
            ShipmentFlow(
                sender=node.role,
                recipient=recipient,
                quantity=quantity,
                week=run.week,
                arrival_week=run.week + (run.shipping_delay if recipient is not None else 0),
            )
        )

    def _settle_same_week_arrivals(self, run: WeekRun) -> None:
        """With no shipping delay, shipped units must land before the week closes."""
        if run.shipping_delay != 0:
            return
        # Shipments only move downstream, so one upstream-to-downstream sweep
        # delivers everything, including units forwarded by backlog clearing.
        for role in reversed(ROLE_SEQUENCE):
            self._receive_shipments(run, run.nodes[role])

    def _decide(
        self,
        run: WeekRun,
        role: Role,
        policies: Mapping[Role, OrderPolicy],
        history: Sequence[WeekState],
    ) -> int:
        policy = policies.get(role) or default_policy(role)
        quantity = policy.order(self._observe(run, role, history))
        return max(0, int(round(quantity)))

    def _observe(self, run: WeekRun, role: Role, history: Sequence[WeekState]) -> PolicyObservation:
        node = run.nodes[role]
        past = [snapshot for snapshot in history if snapshot.week < run.week]
        downstream: Dict[Role, tuple] = {}
        below = role.downstream
        while below is not None:
            downstream[below] = tuple(s.roles[below].incoming_orders for s in past)
            below = below.downstream
        return PolicyObservation(
            role=role,
            week=run.week,
            inventory=node.inventory,
            backlog=node.backlog,
            incoming_order=node.incoming_orders,
            incoming_supply=node.incoming_supply,
            demand_history=tuple(s.roles[role].incoming_orders for s in past),
            downstream_history=downstream,
        )

    def _place_order(self, run: WeekRun, node: RoleNode, quantity: int) -> None:
        supplier_role = node.role.upstream
        supplier = run.nodes[supplier_role]
        supplier.orders.place(quantity, run.order_delay)
        node.outgoing_orders = quantity
        run.placed.append(
            PlacedOrder(
                sender=Party.of(node.role),
                recipient=supplier_role,
                quantity=quantity,
                week=run.week,
                delivery_week=run.week + run.order_delay,
            )
        )
        if run.order_delay == 0:
            # Zero order delay: the supplier sees and serves it this week
            self._fulfil(run, supplier, supplier.orders.drain())
            self._settle_same_week_arrivals(run)

    def _schedule_production(self, factory: RoleNode, request: int) -> int:
        ceiling = self.settings.PRODUCTION_INVENTORY_CEILING
        in_progress = factory.production.in_transit
        if factory.inventory + in_progress >= ceiling:
            production = 0
        else:
            production = min(
                request,
                self.settings.MAX_PRODUCTION_RUN,
                ceiling - (factory.inventory + in_progress),
            )
        if production < request:
            logger.debug("Factory production capped from %s to %s", request, production)
        factory.production.place(production, self.settings.PRODUCTION_LEAD_TIME)
        factory.produced = production
        factory.outgoing_orders = production
        return production

    def _advance(self, pipeline: Pipeline, role: Role, kind: str) -> None:
        before = pipeline.in_transit
        drained = pipeline.peek(0)
        pipeline.advance()
        check_invariant(
            pipeline.in_transit == before,
            f"{role.value} {kind} pipeline lost units: {before} - {drained} != {pipeline.in_transit}",
            strict=self.strict,
        )

    def _closing_state(self, run: WeekRun, state: WeekState) -> WeekState:
        closing = state.model_copy(deep=True)
        closing.roles = {role: node.to_role_state() for role, node in run.nodes.items()}
        closing.pipelines = {role: node.to_pipeline_set() for role, node in run.nodes.items()}
        closing.closed = True
        closing.closed_at = utcnow()
        return closing

    def _next_state(self, game: Game, closing: WeekState) -> WeekState:
        next_week = closing.week + 1
        return WeekState(
            game_id=game.id,
            week=next_week,
            customer_demand=game.demand_for_week(next_week),
            roles={
                role: RoleState(
                    inventory=state.inventory,
                    backlog=state.backlog,
                    current_cost=state.current_cost,
                )
                for role, state in closing.roles.items()
            },
            pipelines={role: p.model_copy(deep=True) for role, p in closing.pipelines.items()},
            pending_actions=pending_actions_for(game),
        )
