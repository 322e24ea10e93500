import math

import pytest

from beerledger.core.errors import GameValidationError, InvariantViolation
from beerledger.services.pipeline import Pipeline, pipeline_length


@pytest.mark.parametrize("delay", [0, 1, 2, 3, 4])
def test_placed_amount_arrives_after_exactly_delay_advances(delay):
    pipe = Pipeline(delay)
    pipe.place(7, delay)

    if delay == 0:
        # Available in the same cycle, before any advance
        assert pipe.peek(0) == 7
        return

    results = [pipe.advance() for _ in range(delay)]
    assert results[-1] == 7
    assert all(value == 0 for value in results[:-1])


def test_advance_conserves_units():
    pipe = Pipeline(3)
    pipe.place(3, 1)
    pipe.place(5, 2)
    pipe.place(2, 3)
    pipe.advance()

    before = pipe.in_transit
    drained = pipe.drain()
    pipe.advance()

    assert drained == 3
    assert pipe.in_transit == before - drained


@pytest.mark.parametrize("amount", [-1, float("nan"), math.inf, 1.5, True, "4", None])
def test_invalid_amounts_are_rejected_without_mutation(amount):
    pipe = Pipeline(2, [0, 1, 2])
    with pytest.raises(GameValidationError):
        pipe.place(amount)
    assert pipe.snapshot() == [0, 1, 2]


def test_strict_pipeline_refuses_to_advance_over_undrained_units():
    pipe = Pipeline(2)
    pipe.place(4, 0)
    with pytest.raises(InvariantViolation):
        pipe.advance()


def test_lenient_pipeline_carries_undrained_units_forward():
    pipe = Pipeline(2, strict=False)
    pipe.place(4, 0)

    assert pipe.advance() == 4
    assert pipe.in_transit == 4


def test_advance_reports_what_the_next_drain_returns():
    pipe = Pipeline(2)
    pipe.place(5, 1)
    pipe.place(3, 2)

    assert pipe.drain() == 0
    assert pipe.advance() == 5
    assert pipe.drain() == 5
    assert pipe.advance() == 3
    assert pipe.drain() == 3

def test_length_tolerates_zero_delay_and_grows_on_demand():
    assert pipeline_length(0) == 2
    assert pipeline_length(3) == 4

    pipe = Pipeline(1)
    pipe.place(2, 3)
    assert len(pipe) == 4
    assert [pipe.advance() for _ in range(3)] == [0, 0, 2]


def test_resize_folds_overflow_into_the_tail():
    pipe = Pipeline(3, [0, 1, 2, 3])
    pipe.resize(1)

    assert pipe.snapshot() == [0, 6]
    assert pipe.in_transit == 6


def test_clear_empties_head_only():
    pipe = Pipeline(0)
    pipe.place(5, 0)
    assert pipe.clear() == 5
    assert pipe.in_transit == 0
