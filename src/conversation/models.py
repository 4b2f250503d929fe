# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Union


class ToolCallStatus(str, Enum):
    """Lifecycle state of a tool invocation, ordered by how final it is."""

    STARTING = "Starting"
    EXECUTING = "Executing"
    SUCCESS = "Success"
    ERROR = "Error"

    @property
    def priority(self) -> int:
        return _STATUS_PRIORITY[self]


_STATUS_PRIORITY = {
    ToolCallStatus.STARTING: 1,
    ToolCallStatus.EXECUTING: 2,
    ToolCallStatus.SUCCESS: 3,
    ToolCallStatus.ERROR: 3,
}


def parse_status(value: Any) -> Optional[ToolCallStatus]:
    """Map a wire value onto ``ToolCallStatus``; unknown values give ``None``."""
    if isinstance(value, ToolCallStatus):
        return value
    if not isinstance(value, str):
        return None
    cleaned = value.strip().lower()
    for status in ToolCallStatus:
        if status.value.lower() == cleaned:
            return status
    return None


@dataclass(slots=True)
class Message:
    message_id: str
    parent_message_id: Optional[str]
    role: str
    content: str
    created_at: datetime
    model: Optional[str] = None


@dataclass(slots=True)
class MessageNode:
    message: Message
    children: list[MessageNode] = field(default_factory=list)
    # Effective parent after orphan/cycle recovery; may differ from the declared one.
    parent: Optional[MessageNode] = field(default=None, repr=False, compare=False)

    @property
    def message_id(self) -> str:
        return self.message.message_id


@dataclass(slots=True)
class Forest:
    roots: list[MessageNode] = field(default_factory=list)
    index: dict[str, MessageNode] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.index)

    def __contains__(self, message_id: object) -> bool:
        return message_id in self.index

    def get(self, message_id: Optional[str]) -> Optional[MessageNode]:
        if message_id is None:
            return None
        return self.index.get(message_id)


@dataclass(slots=True)
class ContentDelta:
    text: str


@dataclass(slots=True)
class ToolCallUpdate:
    tool_id: str
    # Raw wire values are accepted; unknown ones fall back during merging.
    status: Union[ToolCallStatus, str, None] = None
    arguments: Optional[str] = None
    result: Optional[str] = None
    tool_name: Optional[str] = None


StreamEvent = Union[ContentDelta, ToolCallUpdate]


@dataclass(slots=True)
class ToolCallEntry:
    tool_id: str
    status: ToolCallStatus
    arguments: Optional[str] = None
    result: Optional[str] = None
    tool_name: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "tool_id": self.tool_id,
            "tool_name": self.tool_name,
            "arguments": self.arguments,
            "result": self.result,
            "status": self.status.value,
        }


@dataclass(slots=True)
class ContentGroup:
    text: str
    index: int


@dataclass(slots=True)
class ToolGroup:
    tool_call: ToolCallEntry
    index: int


Group = Union[ContentGroup, ToolGroup]
