"""Pong Rank core package.

Exports commonly used modules for convenience.
"""

from . import db as db
from . import elo as elo
from . import rules as rules
from . import logging_config as logging_config
from .config import Settings
from .errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    PersistenceError,
    PongRankError,
    ValidationError,
)
from .models import Match, Player, RatingHistory, Result, SweepResult
from .service import Ladder

__all__ = [
    "db",
    "elo",
    "rules",
    "logging_config",
    "Settings",
    "Ladder",
    "Player",
    "Match",
    "RatingHistory",
    "Result",
    "SweepResult",
    "PongRankError",
    "ValidationError",
    "AuthorizationError",
    "ConflictError",
    "NotFoundError",
    "PersistenceError",
]
