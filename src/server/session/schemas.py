from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from src.conversation import (
    ContentDelta,
    ContentGroup,
    Group,
    StreamEvent,
    ToolCallEntry,
    ToolCallUpdate,
)
from src.server.session.title import title_max_length


class SessionMessage(BaseModel):
    id: str
    parent_message_id: Optional[str] = None
    role: str
    content: str
    model: Optional[str] = None
    tool_calls: Optional[list[dict[str, Any]]] = None
    seq: int
    created_at: datetime


class SessionSummary(BaseModel):
    id: str
    title: Optional[str] = None
    last_message_id: Optional[str] = None
    updated_at: datetime
    created_at: datetime
    archived: bool = False


class SessionDetail(SessionSummary):
    messages: list[SessionMessage] = Field(default_factory=list)
    path: dict[str, str] = Field(
        default_factory=dict,
        description="Branch selections restored from the last active message.",
    )
    visible_message_ids: list[str] = Field(default_factory=list)


class SessionCreateRequest(BaseModel):
    initial_message: Optional[str] = Field(
        default=None,
        description="Optional initial user message to seed the session.",
    )
    model: Optional[str] = None


class SessionCreateResponse(BaseModel):
    session: SessionDetail


class SessionListResponse(BaseModel):
    sessions: list[SessionSummary]


class SessionUpdateRequest(BaseModel):
    title: Optional[str] = Field(default=None, description="Manual session title override.")
    archived: Optional[bool] = Field(default=None, description="Archive/unarchive session.")

    @field_validator("title")
    @classmethod
    def validate_title_length(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        value = value.strip()
        if not value:
            return None
        limit = title_max_length()
        if len(value) > limit:
            raise ValueError(f"Title must be {limit} characters or fewer")
        return value


class MessageCreateRequest(BaseModel):
    content: str
    parent_message_id: Optional[str] = Field(
        default=None,
        description="Message to reply to; reuse an edited message's parent to start a sibling branch.",
    )
    model: Optional[str] = None

    @field_validator("content")
    @classmethod
    def validate_content(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Message content must not be empty")
        return value


class MessageCreateResponse(BaseModel):
    message: SessionMessage
    path: dict[str, str]
    visible_message_ids: list[str]


class PathSelectRequest(BaseModel):
    path: dict[str, str] = Field(default_factory=dict)
    parent_key: str
    child_id: str


class PathResponse(BaseModel):
    path: dict[str, str]
    messages: list[SessionMessage]


class TreeNode(BaseModel):
    message: SessionMessage
    children: list[TreeNode] = Field(default_factory=list)


TreeNode.model_rebuild()


class SessionTree(BaseModel):
    roots: list[TreeNode]


class SnapshotCreateRequest(BaseModel):
    message_id: str


class SnapshotResponse(BaseModel):
    id: str
    session_id: str
    message_id: str
    created_at: datetime
    messages: list[SessionMessage] = Field(default_factory=list)


class ToolCallPayload(BaseModel):
    tool_id: str
    tool_name: Optional[str] = None
    arguments: Optional[str] = None
    result: Optional[str] = None
    status: Optional[str] = None

    @classmethod
    def from_entry(cls, entry: ToolCallEntry) -> ToolCallPayload:
        return cls(**entry.to_dict())


class StreamEventPayload(BaseModel):
    """One record as delivered by the transport (``Content`` or a ``ToolCall*`` entry)."""

    type: str = "Content"
    content: str = ""
    tool_call: Optional[ToolCallPayload] = None

    def to_event(self) -> StreamEvent:
        if self.tool_call is not None and self.type != "Content":
            return ToolCallUpdate(
                tool_id=self.tool_call.tool_id,
                status=self.tool_call.status,
                arguments=self.tool_call.arguments,
                result=self.tool_call.result,
                tool_name=self.tool_call.tool_name,
            )
        return ContentDelta(text=self.content)


class StreamRequest(BaseModel):
    parent_message_id: Optional[str] = None
    model: Optional[str] = None
    events: list[StreamEventPayload] = Field(default_factory=list)


class StreamGroup(BaseModel):
    type: Literal["content", "tool"]
    index: int
    content: Optional[str] = None
    tool_call: Optional[ToolCallPayload] = None

    @classmethod
    def from_group(cls, group: Group) -> StreamGroup:
        if isinstance(group, ContentGroup):
            return cls(type="content", index=group.index, content=group.text)
        return cls(
            type="tool",
            index=group.index,
            tool_call=ToolCallPayload.from_entry(group.tool_call),
        )


class DeleteResponse(BaseModel):
    success: bool
