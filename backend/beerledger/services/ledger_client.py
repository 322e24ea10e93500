"""Clients for the external ledger that mirrors game state.

The ledger is an opaque service.  The core only needs three calls: submit a
state-changing action, read the week the ledger believes a game is in, and
read one order back.  :class:`JsonRpcLedgerClient` speaks JSON-RPC 2.0 over
HTTP; tests use an in-process fake implementing the same protocol.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol, runtime_checkable

import requests

from ..core.config import Settings, settings as default_settings
from ..core.errors import LedgerUnavailableError

logger = logging.getLogger(__name__)


class LedgerAction:
    CREATE_GAME = "createGame"
    ASSIGN_ROLE = "assignRole"
    START_GAME = "startGame"
    PLACE_ORDER = "placeOrder"
    ADVANCE_WEEK = "advanceWeek"


@dataclass
class LedgerReceipt:
    success: bool
    external_ref: Optional[str] = None
    error: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class LedgerClient(Protocol):
    def submit(self, action: str, params: Dict[str, Any]) -> LedgerReceipt:
        ...

    def get_current_week(self, contract_ref: str) -> int:
        ...

    def get_order(self, contract_ref: str, external_id: str) -> Optional[Dict[str, Any]]:
        ...


class JsonRpcLedgerClient:
    """Ledger client speaking JSON-RPC 2.0 over a shared ``requests.Session``."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        cfg = settings or default_settings
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout if timeout is not None else cfg.LEDGER_TIMEOUT_SECONDS
        self.session = session or requests.Session()
        self._ids = itertools.count(1)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> Optional["JsonRpcLedgerClient"]:
        """Build a client from configuration, or None when no ledger is configured."""
        cfg = settings or default_settings
        if not cfg.LEDGER_RPC_URL:
            return None
        return cls(cfg.LEDGER_RPC_URL, settings=cfg)

    def _call(self, method: str, params: Dict[str, Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            resp = self.session.post(self.base_url, json=payload, timeout=self.timeout)
            resp.raise_for_status()
            body = resp.json()
        except requests.RequestException as exc:
            raise LedgerUnavailableError(f"Ledger call {method} failed: {exc}") from exc
        except ValueError as exc:
            raise LedgerUnavailableError(f"Ledger call {method} returned invalid JSON") from exc

        if body.get("error"):
            error = body["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise LedgerUnavailableError(f"Ledger call {method} rejected: {message}")
        return body.get("result")

    def submit(self, action: str, params: Dict[str, Any]) -> LedgerReceipt:
        result = self._call(action, params)
        if isinstance(result, dict):
            ref = result.get("externalRef") or result.get("txHash") or result.get("id")
            return LedgerReceipt(success=True, external_ref=None if ref is None else str(ref), data=result)
        return LedgerReceipt(success=True, external_ref=None if result is None else str(result))

    def get_current_week(self, contract_ref: str) -> int:
        result = self._call("getCurrentWeek", {"contract": contract_ref})
        try:
            return int(result)
        except (TypeError, ValueError) as exc:
            raise LedgerUnavailableError(f"Unexpected week value from ledger: {result!r}") from exc

    def get_order(self, contract_ref: str, external_id: str) -> Optional[Dict[str, Any]]:
        result = self._call("getOrder", {"contract": contract_ref, "orderId": external_id})
        if result is None:
            return None
        if not isinstance(result, dict):
            raise LedgerUnavailableError(f"Unexpected order payload from ledger: {result!r}")
        return result

    def close(self) -> None:
        self.session.close()
