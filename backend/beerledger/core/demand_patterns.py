from typing import List, Dict, Optional, Any
import math
import random
from enum import Enum


class DemandPatternType(str, Enum):
    CONSTANT = "constant"
    STEP = "step"
    RANDOM = "random"
    SEASONAL = "seasonal"


DEFAULT_STEP_PARAMS = {
    "initial_demand": 4,
    "change_week": 5,
    "final_demand": 8,
}

DEFAULT_RANDOM_PARAMS = {
    "min_demand": 2,
    "max_demand": 6,
}

# Legacy labels used by older game configurations
_PATTERN_ALIASES = {
    "classic": DemandPatternType.STEP,
    "Step": DemandPatternType.STEP,
    "Constant": DemandPatternType.CONSTANT,
    "Random": DemandPatternType.RANDOM,
}


def _safe_int(value: Any, default: int) -> int:
    """Convert a value to an integer, falling back to the provided default."""
    try:
        if value is None:
            raise ValueError("None")
        return int(value)
    except (TypeError, ValueError):
        return default


def _coerce_type(raw_type: Any) -> DemandPatternType:
    if isinstance(raw_type, DemandPatternType):
        return raw_type
    if raw_type in _PATTERN_ALIASES:
        return _PATTERN_ALIASES[raw_type]
    try:
        return DemandPatternType(str(raw_type).lower())
    except ValueError:
        return DemandPatternType.CONSTANT


def normalize_step_params(params: Optional[Dict[str, Any]]) -> Dict[str, int]:
    """Normalize step demand parameters to the {initial, change_week, final} schema."""
    params = params or {}

    initial = _safe_int(
        params.get("initial_demand", params.get("base_demand")),
        DEFAULT_STEP_PARAMS["initial_demand"],
    )

    if "change_week" in params:
        change_week = _safe_int(params.get("change_week"), DEFAULT_STEP_PARAMS["change_week"])
    else:
        stable_period = params.get("stable_period")
        change_week = (
            _safe_int(stable_period, DEFAULT_STEP_PARAMS["change_week"] - 1) + 1
            if stable_period is not None
            else DEFAULT_STEP_PARAMS["change_week"]
        )

    if "final_demand" in params:
        final = _safe_int(params.get("final_demand"), DEFAULT_STEP_PARAMS["final_demand"])
    else:
        step_increase = params.get("step_increase")
        final = (
            initial + _safe_int(step_increase, DEFAULT_STEP_PARAMS["final_demand"] - initial)
            if step_increase is not None
            else DEFAULT_STEP_PARAMS["final_demand"]
        )

    return {
        "initial_demand": max(0, initial),
        "change_week": max(1, change_week),
        "final_demand": max(0, final),
    }


def normalize_random_params(params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    params = params or {}
    low = max(0, _safe_int(params.get("min_demand"), DEFAULT_RANDOM_PARAMS["min_demand"]))
    high = max(0, _safe_int(params.get("max_demand"), DEFAULT_RANDOM_PARAMS["max_demand"]))
    if high < low:
        low, high = high, low
    normalized: Dict[str, Any] = {"min_demand": low, "max_demand": high}
    if params.get("seed") is not None:
        normalized["seed"] = _safe_int(params.get("seed"), 0)
    return normalized


def normalize_demand_pattern(pattern_config: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Return a normalized demand pattern dictionary with sanitized parameters."""
    pattern = dict(pattern_config or {})
    pattern_type = _coerce_type(pattern.get("type", DemandPatternType.CONSTANT))

    params = pattern.get("params", {}) if isinstance(pattern.get("params", {}), dict) else {}

    if pattern_type == DemandPatternType.STEP:
        params = normalize_step_params(params)
    elif pattern_type == DemandPatternType.RANDOM:
        params = normalize_random_params(params)
    elif pattern_type == DemandPatternType.CONSTANT:
        params = {"demand": max(0, _safe_int(params.get("demand"), 4))}

    normalized = {
        key: value
        for key, value in pattern.items()
        if key not in {"type", "params"}
    }
    normalized.update({
        "type": pattern_type.value,
        "params": params,
    })
    return normalized


class DemandGenerator:
    """Generates the customer demand sequences a game can be configured with."""

    @staticmethod
    def generate_step(
        num_weeks: int,
        initial_demand: Optional[int] = None,
        change_week: Optional[int] = None,
        final_demand: Optional[int] = None,
    ) -> List[int]:
        """Generate demand with a single step change at ``change_week`` (1-based)."""
        if num_weeks <= 0:
            return []

        normalized = normalize_step_params(
            {
                "initial_demand": initial_demand,
                "change_week": change_week,
                "final_demand": final_demand,
            }
        )
        initial = normalized["initial_demand"]
        final = normalized["final_demand"]
        change_at = normalized["change_week"]

        return [final if week >= change_at else initial for week in range(1, num_weeks + 1)]

    @staticmethod
    def generate_random(
        num_weeks: int,
        min_demand: int = 2,
        max_demand: int = 6,
        seed: Optional[int] = None,
    ) -> List[int]:
        """Generate random demand values within a bounded range."""
        rng = random.Random(seed)
        return [rng.randint(min_demand, max_demand) for _ in range(max(0, num_weeks))]

    @staticmethod
    def generate_seasonal(num_weeks: int, base_demand: int = 4, amplitude: int = 2, period: int = 12) -> List[int]:
        """Generate a seasonal demand pattern."""
        period = max(1, int(period))
        return [
            max(1, int(base_demand + amplitude * math.sin(2 * math.pi * (i % period) / period)))
            for i in range(max(0, num_weeks))
        ]

    @staticmethod
    def generate_constant(num_weeks: int, demand: int = 4) -> List[int]:
        """Generate a constant demand pattern."""
        return [demand] * max(0, num_weeks)

    @classmethod
    def generate(
        cls,
        pattern_type: DemandPatternType,
        num_weeks: int,
        **kwargs,
    ) -> List[int]:
        """Generate demand pattern based on the specified type."""
        if pattern_type == DemandPatternType.STEP:
            return cls.generate_step(num_weeks, **kwargs)
        if pattern_type == DemandPatternType.RANDOM:
            return cls.generate_random(num_weeks, **kwargs)
        if pattern_type == DemandPatternType.SEASONAL:
            return cls.generate_seasonal(num_weeks, **kwargs)
        if pattern_type == DemandPatternType.CONSTANT:
            return cls.generate_constant(num_weeks, **kwargs)
        raise ValueError(f"Unknown demand pattern type: {pattern_type}")


DEFAULT_DEMAND_PATTERN = {
    "type": DemandPatternType.CONSTANT.value,
    "params": {"demand": 4},
}


def get_demand_pattern(
    pattern_config: Optional[Dict] = None,
    num_weeks: int = 20,
) -> List[int]:
    """Precompute the customer demand for every week of a game."""
    normalized = normalize_demand_pattern(pattern_config or DEFAULT_DEMAND_PATTERN)
    pattern_type = DemandPatternType(normalized["type"])
    params = normalized.get("params", {})

    return DemandGenerator.generate(pattern_type, num_weeks, **params)
