"""Fixed-delay transit pipelines used by the weekly cycle engine.

A :class:`Pipeline` is a shift buffer of integer buckets indexed by the number
of weeks remaining until arrival.  Bucket 0 holds whatever is due *now*; the
engine empties it with :meth:`Pipeline.drain` before calling
:meth:`Pipeline.advance`, which shifts every bucket one position towards the
head and reports the amount that has just become due.

Units are conserved: nothing enters except through :meth:`place` and nothing
leaves except through :meth:`drain` (or :meth:`clear`).
"""

from __future__ import annotations

import logging
import math
from collections import deque
from typing import Deque, Iterable, List, Optional

from ..core.errors import GameValidationError, check_invariant

logger = logging.getLogger(__name__)


def pipeline_length(delay: int) -> int:
    """Number of buckets needed for a pipeline with the given delay."""
    return max(int(delay), 1) + 1


class Pipeline:
    """Shift buffer of in-transit quantities."""

    def __init__(
        self,
        delay: int,
        buckets: Optional[Iterable[int]] = None,
        *,
        strict: bool = True,
    ) -> None:
        if delay is None or int(delay) < 0:
            raise GameValidationError(f"Pipeline delay must be non-negative, got {delay!r}")
        self.delay = int(delay)
        self.strict = strict
        length = pipeline_length(self.delay)
        values = [int(v) for v in buckets] if buckets is not None else []
        if len(values) > length:
            # Shrinking after a delay reconfiguration: fold the overflow into the tail
            overflow = sum(values[length - 1:])
            values = values[: length - 1] + [overflow]
        values.extend([0] * (length - len(values)))
        self._buckets: Deque[int] = deque(values, maxlen=length)

    # ------------------------------------------------------------------
    # Convenience properties
    # ------------------------------------------------------------------
    def __len__(self) -> int:
        return len(self._buckets)

    def __repr__(self) -> str:
        return f"Pipeline(delay={self.delay}, buckets={list(self._buckets)})"

    @property
    def in_transit(self) -> int:
        """Total quantity currently held in the pipeline."""
        return sum(self._buckets)

    def peek(self, bucket: int = 0) -> int:
        return self._buckets[bucket]

    def snapshot(self) -> List[int]:
        return list(self._buckets)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def place(self, amount: int, delay_weeks: Optional[int] = None) -> None:
        """Add ``amount`` into the bucket ``delay_weeks`` positions from the head."""
        if isinstance(amount, bool) or not isinstance(amount, (int, float)):
            raise GameValidationError(f"Pipeline amount must be numeric, got {amount!r}")
        if not math.isfinite(amount) or amount < 0:
            raise GameValidationError(f"Pipeline amount must be a finite non-negative number, got {amount!r}")
        if amount != int(amount):
            raise GameValidationError(f"Pipeline amount must be a whole number of units, got {amount!r}")
        delay = self.delay if delay_weeks is None else int(delay_weeks)
        if delay < 0:
            raise GameValidationError(f"Delay must be non-negative, got {delay_weeks!r}")
        if delay >= len(self._buckets):
            self._grow(delay)
        self._buckets[delay] += int(amount)

    def drain(self) -> int:
        """Remove and return everything due this week (bucket 0)."""
        due = self._buckets[0]
        self._buckets[0] = 0
        return due

    def advance(self) -> int:
        """Shift every bucket one week closer and return the amount now due.

        The return value is the new head bucket, i.e. what the next
        :meth:`drain` will hand out, not the departing bucket 0, which
        :meth:`drain` has already emptied.

        The head bucket must already have been drained.  Leftover units at
        the head are a bookkeeping bug: strict pipelines raise, lenient ones
        carry them into the new head so nothing is lost.
        """
        stale = self._buckets[0]
        if not check_invariant(
            stale == 0,
            f"advancing a pipeline with {stale} undrained units at the head",
            strict=self.strict,
        ):
            self._buckets[1] += stale
        self._buckets.popleft()
        self._buckets.append(0)
        return self._buckets[0]

    def clear(self) -> int:
        """Empty the head bucket without shifting (zero-delay order pipelines)."""
        return self.drain()

    def resize(self, delay: int) -> None:
        """Adopt a new configured delay without losing in-transit units."""
        if int(delay) < 0:
            raise GameValidationError(f"Pipeline delay must be non-negative, got {delay!r}")
        self.delay = int(delay)
        target = pipeline_length(self.delay)
        if target > len(self._buckets):
            self._grow(target - 1)
        elif target < len(self._buckets):
            values = list(self._buckets)
            overflow = sum(values[target - 1:])
            self._buckets = deque(values[: target - 1] + [overflow], maxlen=target)

    def _grow(self, max_index: int) -> None:
        values = list(self._buckets)
        values.extend([0] * (max_index + 1 - len(values)))
        self._buckets = deque(values, maxlen=len(values))
