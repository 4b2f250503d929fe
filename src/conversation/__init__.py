"""Branching conversation history and streamed response grouping."""

from .aggregator import StreamAggregator, consume
from .forest import build_forest
from .models import (
    ContentDelta,
    ContentGroup,
    Forest,
    Group,
    Message,
    MessageNode,
    StreamEvent,
    ToolCallEntry,
    ToolCallStatus,
    ToolCallUpdate,
    ToolGroup,
    parse_status,
)
from .path import (
    ROOT_KEY,
    MessagePath,
    ancestors,
    branch_siblings,
    get_visible_path,
    initialize_from_target,
    navigate_to,
    next_parent_id,
    select,
)

__all__ = [
    "ROOT_KEY",
    "ContentDelta",
    "ContentGroup",
    "Forest",
    "Group",
    "Message",
    "MessageNode",
    "MessagePath",
    "StreamAggregator",
    "StreamEvent",
    "ToolCallEntry",
    "ToolCallStatus",
    "ToolCallUpdate",
    "ToolGroup",
    "ancestors",
    "branch_siblings",
    "build_forest",
    "consume",
    "get_visible_path",
    "initialize_from_target",
    "navigate_to",
    "next_parent_id",
    "parse_status",
    "select",
]
