"""Exception taxonomy shared by the simulation and synchronisation layers."""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


class BeerGameError(Exception):
    """Base class for all errors raised by the package."""


class GameValidationError(BeerGameError, ValueError):
    """A request was rejected before any state was mutated."""


class GameNotFoundError(GameValidationError, LookupError):
    """No game exists with the requested identifier."""


class LedgerUnavailableError(BeerGameError):
    """The ledger collaborator could not be reached or rejected the call."""


class InvariantViolation(BeerGameError):
    """Internal arithmetic produced a state that must never exist."""


def check_invariant(ok: bool, message: str, *, strict: bool) -> bool:
    """Return ``ok``; on failure raise in strict mode or log so the caller can clamp."""
    if ok:
        return True
    if strict:
        raise InvariantViolation(message)
    logger.error("Invariant violated, clamping: %s", message)
    return False
