from beerledger.core.demand_patterns import (
    DemandGenerator,
    DemandPatternType,
    get_demand_pattern,
    normalize_demand_pattern,
)


def test_default_pattern_is_constant():
    assert get_demand_pattern(None, 5) == [4, 4, 4, 4, 4]


def test_step_changes_at_week_five_by_default():
    demand = get_demand_pattern({"type": "step", "params": {}}, 8)
    assert demand == [4, 4, 4, 4, 8, 8, 8, 8]


def test_legacy_step_parameters_are_normalized():
    pattern = normalize_demand_pattern(
        {"type": "classic", "params": {"base_demand": 3, "stable_period": 2, "step_increase": 5}}
    )
    assert pattern["type"] == "step"
    assert pattern["params"] == {"initial_demand": 3, "change_week": 3, "final_demand": 8}


def test_seeded_random_demand_is_reproducible_and_bounded():
    config = {"type": "random", "params": {"min_demand": 6, "max_demand": 2, "seed": 42}}
    first = get_demand_pattern(config, 30)

    assert first == get_demand_pattern(config, 30)
    assert all(2 <= value <= 6 for value in first)


def test_seasonal_demand_stays_positive():
    demand = DemandGenerator.generate(DemandPatternType.SEASONAL, 24, base_demand=2, amplitude=3)
    assert len(demand) == 24
    assert min(demand) >= 1


def test_unknown_types_fall_back_to_constant():
    assert get_demand_pattern({"type": "zigzag"}, 3) == [4, 4, 4]
