from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from src.conversation import Message


@dataclass(slots=True)
class SessionRecord:
    id: str
    title: Optional[str]
    last_message_id: Optional[str]
    created_at: datetime
    updated_at: datetime
    archived: bool


@dataclass(slots=True)
class MessageRecord:
    id: str
    session_id: str
    parent_message_id: Optional[str]
    role: str
    content: str
    model: Optional[str]
    tool_calls: Optional[list[dict[str, Any]]]
    seq: int
    created_at: datetime

    def to_message(self) -> Message:
        return Message(
            message_id=self.id,
            parent_message_id=self.parent_message_id,
            role=self.role,
            content=self.content,
            model=self.model,
            created_at=self.created_at,
        )


@dataclass(slots=True)
class SnapshotRecord:
    id: str
    session_id: str
    message_id: str
    created_at: datetime
