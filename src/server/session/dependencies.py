from __future__ import annotations

import logging
from typing import Optional

from fastapi import Depends

from src.config import get_str_env

from .store import SQLiteSessionStore

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = "chats.db"

_SESSION_STORE: Optional[SQLiteSessionStore] = None


def initialise_session_store() -> SQLiteSessionStore:
    """Return the process-wide chat store, creating it from ``SESSION_DB_PATH`` on first use."""
    global _SESSION_STORE
    if _SESSION_STORE is None:
        _SESSION_STORE = SQLiteSessionStore(get_str_env("SESSION_DB_PATH", DEFAULT_DB_PATH))
        logger.info("Using chat session database %s", _SESSION_STORE.db_path)
    return _SESSION_STORE


def set_session_store(store: Optional[SQLiteSessionStore]) -> None:
    """Swap the active store; ``None`` forces the next request to rebuild it from config."""
    global _SESSION_STORE
    _SESSION_STORE = store


def get_session_store(store: SQLiteSessionStore = Depends(initialise_session_store)) -> SQLiteSessionStore:
    if _SESSION_STORE is None:
        raise RuntimeError("Session store has not been initialised")
    return _SESSION_STORE
