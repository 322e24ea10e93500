"""Read-only performance and bullwhip analytics over a game's week history."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Sequence

import numpy as np

from ..core.errors import GameNotFoundError
from ..repositories.base import GameRepository
from ..schemas.analytics import (
    AggregateAnalytics,
    BullwhipMetrics,
    GameAnalytics,
    LedgerMetrics,
    RolePerformance,
)
from ..schemas.order import Order
from ..schemas.roles import ROLE_SEQUENCE, Role
from ..schemas.week import WeekState

logger = logging.getLogger(__name__)


def variance(values: Sequence[float]) -> float:
    """Population variance; series shorter than two points have none."""
    if len(values) < 2:
        return 0.0
    return float(np.var(np.asarray(values, dtype=float)))


def safe_ratio(numerator: float, denominator: float) -> float:
    if denominator == 0:
        return 0.0
    return float(numerator / denominator)


def _closed(history: Iterable[WeekState]) -> List[WeekState]:
    return sorted((state for state in history if state.closed), key=lambda s: s.week)


class AnalyticsService:
    def __init__(self, repository: Optional[GameRepository] = None) -> None:
        self.repository = repository

    def calculate_role_performance(self, history: Sequence[WeekState]) -> Dict[Role, RolePerformance]:
        weeks = _closed(history)
        performance: Dict[Role, RolePerformance] = {}
        for role in ROLE_SEQUENCE:
            if not weeks:
                performance[role] = RolePerformance(role=role)
                continue
            inventory = [s.roles[role].inventory for s in weeks]
            backlog = [s.roles[role].backlog for s in weeks]
            orders = [s.roles[role].outgoing_orders for s in weeks]
            order_variance = variance(orders)
            performance[role] = RolePerformance(
                role=role,
                # current_cost is cumulative, so the last closed week holds the total
                total_cost=float(weeks[-1].roles[role].current_cost),
                average_inventory=float(np.mean(inventory)),
                average_backlog=float(np.mean(backlog)),
                order_std=float(np.sqrt(order_variance)),
                order_variance=order_variance,
                weeks=len(weeks),
            )
        return performance

    def calculate_bullwhip_metrics(
        self,
        history: Sequence[WeekState],
        customer_demand: Optional[Sequence[int]] = None,
    ) -> BullwhipMetrics:
        weeks = _closed(history)
        if customer_demand is None:
            demand = [s.customer_demand for s in weeks]
        else:
            demand = list(customer_demand)[: len(weeks)] if weeks else list(customer_demand)

        demand_variance = variance(demand)
        order_variance = {
            role: variance([s.roles[role].outgoing_orders for s in weeks]) for role in ROLE_SEQUENCE
        }

        tier_ratios: Dict[Role, float] = {}
        for role in ROLE_SEQUENCE:
            below = role.downstream
            baseline = demand_variance if below is None else order_variance[below]
            tier_ratios[role] = safe_ratio(order_variance[role], baseline)

        return BullwhipMetrics(
            customer_demand_variance=demand_variance,
            order_variance=order_variance,
            tier_ratios=tier_ratios,
            demand_amplification=safe_ratio(order_variance[Role.FACTORY], demand_variance),
            order_variance_ratio=safe_ratio(order_variance[Role.FACTORY], order_variance[Role.RETAILER]),
        )

    def calculate_ledger_metrics(self, orders: Sequence[Order]) -> LedgerMetrics:
        mirrored = [order for order in orders if order.ledger is not None]
        submitted = [order for order in mirrored if order.ledger.external_id is not None]
        confirmed = [order for order in mirrored if order.ledger.confirmed]
        failures = [order for order in mirrored if order.ledger.last_error]
        return LedgerMetrics(
            orders_total=len(mirrored),
            orders_submitted=len(submitted),
            orders_confirmed=len(confirmed),
            sync_failures=len(failures),
            confirmation_rate=safe_ratio(len(confirmed), len(mirrored)),
        )

    def build_analytics(
        self,
        game_id: str,
        history: Sequence[WeekState],
        customer_demand: Optional[Sequence[int]] = None,
        orders: Optional[Sequence[Order]] = None,
    ) -> GameAnalytics:
        roles = self.calculate_role_performance(history)
        return GameAnalytics(
            game_id=game_id,
            weeks_played=len(_closed(history)),
            total_cost=sum(perf.total_cost for perf in roles.values()),
            roles=roles,
            bullwhip=self.calculate_bullwhip_metrics(history, customer_demand),
            ledger=self.calculate_ledger_metrics(orders) if orders is not None else None,
        )

    # ------------------------------------------------------------------
    # Repository-backed helpers
    # ------------------------------------------------------------------
    def _repo(self) -> GameRepository:
        if self.repository is None:
            raise RuntimeError("AnalyticsService was created without a repository")
        return self.repository

    def generate_game_analytics(self, game_id: str) -> GameAnalytics:
        repo = self._repo()
        game = repo.get_game(game_id)
        if game is None:
            raise GameNotFoundError(f"Game {game_id} not found")
        orders = repo.list_orders(game_id) if game.ledger_active else None
        analytics = self.build_analytics(
            game_id,
            repo.list_week_states(game_id),
            game.customer_demand,
            orders,
        )
        repo.save_analytics(analytics)
        logger.info("Computed analytics for game %s over %s weeks", game_id, analytics.weeks_played)
        return analytics

    def get_game_analytics(self, game_id: str, force: bool = False) -> GameAnalytics:
        if not force:
            cached = self._repo().get_analytics(game_id)
            if cached is not None:
                return cached
        return self.generate_game_analytics(game_id)

    def aggregate(self, analytics: Iterable[GameAnalytics]) -> AggregateAnalytics:
        items = list(analytics)
        if not items:
            return AggregateAnalytics()
        cost_by_role = {
            role: float(np.mean([a.roles[role].total_cost for a in items if role in a.roles] or [0.0]))
            for role in ROLE_SEQUENCE
        }
        return AggregateAnalytics(
            games=len(items),
            game_ids=[a.game_id for a in items],
            average_total_cost=float(np.mean([a.total_cost for a in items])),
            average_cost_by_role=cost_by_role,
            average_demand_amplification=float(np.mean([a.bullwhip.demand_amplification for a in items])),
            average_order_variance_ratio=float(np.mean([a.bullwhip.order_variance_ratio for a in items])),
        )
