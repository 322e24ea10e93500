"""Order policies for the weekly cycle engine.

Policies consume a :class:`PolicyObservation` for a single role and return the
non-negative quantity that role orders upstream this week (or, for the
Factory, the quantity it asks to produce).

* :class:`NaiveEchoPolicy`: echoes the order that arrived from the downstream
  partner this week.  This is the classic "naïve" benchmark and the default
  for roles nobody controls.
* :class:`FixedOrderPolicy`: replays a quantity decided outside the engine,
  i.e. a human participant's submission.
* :class:`BaseStockPolicy`: the order-up-to rule used by agents.  All of its
  arithmetic lives in :func:`compute_base_stock_order`, a pure function of the
  observation and the configuration.
* :class:`FactoryProductionPolicy`: replaces what was requested plus any
  backlog, net of surplus stock.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from statistics import mean
from typing import Dict, List, Optional, Sequence, Tuple

from ..schemas.game import BaseStockConfig, VisibilityMode
from ..schemas.roles import Role


@dataclass(frozen=True)
class PolicyObservation:
    """Read-only view of one role at the moment it decides its order."""

    role: Role
    week: int
    inventory: int
    backlog: int
    incoming_order: int
    incoming_supply: int = 0
    #: Orders this role received in earlier weeks, oldest first.
    demand_history: Tuple[int, ...] = ()
    #: Orders received by each tier below this role in earlier weeks.
    downstream_history: Dict[Role, Tuple[int, ...]] = field(default_factory=dict)


class OrderPolicy:
    """Base interface for order policies."""

    def order(self, obs: PolicyObservation) -> int:
        """Return the order quantity for the current period."""
        raise NotImplementedError


class NaiveEchoPolicy(OrderPolicy):
    """Echo the incoming order from the downstream partner."""

    def order(self, obs: PolicyObservation) -> int:
        return max(0, int(obs.incoming_order))


class FixedOrderPolicy(OrderPolicy):
    """Return a quantity chosen by a participant."""

    def __init__(self, quantity: int) -> None:
        if quantity < 0:
            raise ValueError("Order quantity must be non-negative")
        self.quantity = int(quantity)

    def order(self, obs: PolicyObservation) -> int:
        return self.quantity


def _window(values: Sequence[int], size: Optional[int]) -> List[int]:
    values = list(values)
    if size is None:
        return values
    return values[-size:]


def observed_demand(obs: PolicyObservation, config: BaseStockConfig) -> List[int]:
    """Demand signals visible to ``obs.role`` under the configured visibility mode."""
    signals = _window(obs.demand_history, config.history_window)
    if config.visibility_mode == VisibilityMode.LEDGER:
        for role in sorted(obs.downstream_history, key=lambda r: r.tier):
            signals.extend(_window(obs.downstream_history[role], config.history_window))
    return signals


def average_observed_demand(obs: PolicyObservation, config: BaseStockConfig) -> float:
    signals = observed_demand(obs, config)
    if not signals:
        return float(config.default_demand)
    return float(mean(signals))


def compute_base_stock_order(obs: PolicyObservation, config: BaseStockConfig) -> int:
    """Order-up-to quantity for one role.

    ``target = avg * horizon + safety * avg`` and the order is whatever closes
    the gap between the target and the current position, never negative.
    """
    avg = average_observed_demand(obs, config)
    target = avg * config.forecast_horizon + config.safety_factor * avg
    gap = target - obs.inventory + obs.backlog - obs.incoming_supply
    return max(0, int(round(gap)))


class BaseStockPolicy(OrderPolicy):
    """Modified base-stock policy used for computer-controlled roles."""

    def __init__(self, config: Optional[BaseStockConfig] = None) -> None:
        self.config = config or BaseStockConfig()

    def order(self, obs: PolicyObservation) -> int:
        return compute_base_stock_order(obs, self.config)


class FactoryProductionPolicy(OrderPolicy):
    """Produce what was requested plus backlog, less stock above this week's need."""

    def order(self, obs: PolicyObservation) -> int:
        surplus = max(0, obs.inventory - obs.incoming_order)
        return max(0, obs.incoming_order + obs.backlog - surplus)


def default_policy(role: Role) -> OrderPolicy:
    if role == Role.FACTORY:
        return FactoryProductionPolicy()
    return NaiveEchoPolicy()
