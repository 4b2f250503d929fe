"""Session management package providing SQLite-backed message trees and APIs."""

from .dependencies import get_session_store
from .store import SQLiteSessionStore
from .title import ensure_session_title

__all__ = ["SQLiteSessionStore", "ensure_session_title", "get_session_store"]
