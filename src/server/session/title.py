from __future__ import annotations

import logging
from typing import Optional

from src.config import get_int_env

from .store import SQLiteSessionStore

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Untitled conversation"
DEFAULT_TITLE_MAX_LENGTH = 40


def title_max_length() -> int:
    return get_int_env("SESSION_TITLE_MAX_LENGTH", DEFAULT_TITLE_MAX_LENGTH)


async def ensure_session_title(store: SQLiteSessionStore, session_id: str) -> Optional[str]:
    """Derive and persist a session title from the first user message if none exists."""
    if await store.session_has_title(session_id):
        return None

    message = await store.get_first_user_message(session_id)
    if message is None or not message.content.strip():
        logger.debug("Session %s has no user message yet; skipping title generation", session_id)
        return None

    title = derive_title(message.content)
    await store.update_session_title(session_id, title)
    return title


def derive_title(text: str) -> str:
    limit = title_max_length()
    cleaned = " ".join(text.split())
    if not cleaned:
        return DEFAULT_TITLE
    if len(cleaned) <= limit:
        return cleaned
    trimmed = cleaned[: limit - 1].rstrip()
    return f"{trimmed}…"
