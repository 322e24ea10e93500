"""Archives games that have been finished or abandoned for long enough."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from ..core.config import Settings, settings as default_settings
from ..repositories.base import GameRepository
from ..schemas.game import Game, GameStatus, utcnow
from .analytics import AnalyticsService
from .synchronization import LedgerSyncService

logger = logging.getLogger(__name__)


@dataclass
class RetentionReport:
    archived_completed: List[str] = field(default_factory=list)
    archived_incomplete: List[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.archived_completed) + len(self.archived_incomplete)


def last_activity(game: Game) -> datetime:
    return game.completed_at or game.started_at or game.created_at


class DataRetentionService:
    def __init__(
        self,
        repository: GameRepository,
        analytics: Optional[AnalyticsService] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
        sync: Optional[LedgerSyncService] = None,
    ) -> None:
        self.repository = repository
        self.analytics = analytics or AnalyticsService(repository)
        self.settings = settings or default_settings
        self.clock = clock
        self.sync = sync

    def run(self) -> RetentionReport:
        now = self.clock()
        completed_cutoff = now - timedelta(days=self.settings.RETENTION_COMPLETED_GAMES)
        incomplete_cutoff = now - timedelta(days=self.settings.RETENTION_INCOMPLETE_GAMES)
        report = RetentionReport()

        for game in self.repository.list_games():
            activity = last_activity(game)
            if game.status == GameStatus.COMPLETED:
                if activity >= completed_cutoff:
                    continue
                analytics = self.analytics.get_game_analytics(game.id)
                self.repository.archive_game(game.id, analytics)
                self._forget(game.id)
                report.archived_completed.append(game.id)
            elif self._latest_activity(game) < incomplete_cutoff:
                self.repository.archive_game(game.id)
                self._forget(game.id)
                report.archived_incomplete.append(game.id)

        if report.total:
            logger.info(
                "Retention archived %s completed and %s stale games",
                len(report.archived_completed),
                len(report.archived_incomplete),
            )
        return report

    def _latest_activity(self, game: Game) -> datetime:
        weeks = self.repository.list_week_states(game.id)
        if not weeks:
            return last_activity(game)
        latest = weeks[-1]
        return max(last_activity(game), latest.closed_at or latest.created_at)

    def _forget(self, game_id: str) -> None:
        if self.sync is not None:
            self.sync.forget_game(game_id)
