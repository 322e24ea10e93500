from .base import GameArchive, GameRepository, InMemoryGameRepository
from .sql import SqlAlchemyGameRepository

__all__ = ["GameArchive", "GameRepository", "InMemoryGameRepository", "SqlAlchemyGameRepository"]
