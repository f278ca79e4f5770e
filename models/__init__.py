"""SQLAlchemy models package for MeepleVault.
Re-exports the shared `db` instance to avoid import loops and provides
convenient names for the model classes.

Usage:
    from models import db, GameSession, UserGame, UserStats
"""
from __future__ import annotations

from extensions import db  # shared SQLAlchemy() instance

# Import models only after db exists to avoid circular imports
from .user import User  # type: ignore F401
from .library import Library, LibraryItem  # type: ignore F401
from .user_game import UserGame  # type: ignore F401
from .game import GameSession, Tournament  # type: ignore F401
from .stats import UserStats, UserGameStats  # type: ignore F401

__all__ = [
    "db",
    "User",
    "Library",
    "LibraryItem",
    "UserGame",
    "GameSession",
    "Tournament",
    "UserStats",
    "UserGameStats",
]
