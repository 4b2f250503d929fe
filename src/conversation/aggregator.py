# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

"""Online grouping of streamed model output into display groups.

Text deltas are accumulated into a buffer that becomes one ``ContentGroup`` as soon
as a non-text event arrives or the stream ends. Tool call updates are merged per
``tool_id`` into a single ``ToolGroup`` that keeps the position of its first
appearance for the rest of the stream.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Iterable, Optional, Union
from uuid import uuid4

from .models import (
    ContentDelta,
    ContentGroup,
    Group,
    Message,
    StreamEvent,
    ToolCallEntry,
    ToolCallStatus,
    ToolCallUpdate,
    ToolGroup,
    parse_status,
)

logger = logging.getLogger(__name__)


def resolve_status(
    new_status: Union[ToolCallStatus, str, None],
    existing: Optional[ToolCallStatus],
) -> ToolCallStatus:
    """Pick the more final of two statuses; ties keep the new one."""
    parsed = parse_status(new_status)
    if parsed is None:
        if new_status is not None:
            logger.debug("Unrecognised tool status %r", new_status)
        return existing or ToolCallStatus.STARTING
    if existing is None:
        return parsed
    return parsed if parsed.priority >= existing.priority else existing


def merge_tool_call(update: ToolCallUpdate, existing: Optional[ToolCallEntry]) -> ToolCallEntry:
    if existing is None:
        return ToolCallEntry(
            tool_id=update.tool_id,
            status=resolve_status(update.status, None),
            arguments=update.arguments or None,
            result=update.result or None,
            tool_name=update.tool_name or None,
        )
    return ToolCallEntry(
        tool_id=update.tool_id,
        status=resolve_status(update.status, existing.status),
        arguments=update.arguments or existing.arguments,
        result=update.result or existing.result,
        tool_name=update.tool_name or existing.tool_name,
    )


class StreamAggregator:
    """Incrementally folds ``StreamEvent`` records into an ordered group list.

    ``push`` and ``finish`` return fresh snapshots, so callers never share the
    aggregator's internal groups.
    """

    def __init__(self, *, include_provisional: bool = True) -> None:
        self._include_provisional = include_provisional
        self._groups: list[Group] = []
        self._tool_positions: dict[str, int] = {}
        self._buffer: list[str] = []
        self._finished = False

    @property
    def finished(self) -> bool:
        return self._finished

    def push(self, event: StreamEvent) -> list[Group]:
        if self._finished:
            raise RuntimeError("Cannot push events into a finished stream")

        if isinstance(event, ContentDelta):
            self._buffer.append(event.text or "")
        elif isinstance(event, ToolCallUpdate):
            self._flush()
            self._apply_tool_update(event)
        else:
            raise TypeError(f"Unsupported stream event: {type(event).__name__}")
        return self.snapshot()

    def extend(self, events: Iterable[StreamEvent]) -> list[Group]:
        for event in events:
            self.push(event)
        return self.snapshot()

    def finish(self) -> list[Group]:
        if not self._finished:
            self._flush()
            self._finished = True
        return self.snapshot()

    def snapshot(self) -> list[Group]:
        groups = [_copy_group(group) for group in self._groups]
        if self._include_provisional and not self._finished:
            pending = "".join(self._buffer)
            if pending.strip():
                groups.append(ContentGroup(text=pending, index=len(self._groups)))
        return groups

    def tool_calls(self) -> list[ToolCallEntry]:
        return [replace(group.tool_call) for group in self._groups if isinstance(group, ToolGroup)]

    def text(self) -> str:
        return "".join(group.text for group in self._groups if isinstance(group, ContentGroup))

    def build_message(
        self,
        *,
        parent_message_id: Optional[str],
        model: Optional[str] = None,
        message_id: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> Message:
        """Turn a completed stream into the assistant message handed to persistence."""
        self.finish()
        return Message(
            message_id=message_id or uuid4().hex,
            parent_message_id=parent_message_id,
            role="assistant",
            content=self.text().strip(),
            model=model,
            created_at=created_at or datetime.now(timezone.utc),
        )

    def _flush(self) -> None:
        pending = "".join(self._buffer)
        self._buffer.clear()
        if not pending.strip():
            return
        self._groups.append(ContentGroup(text=pending, index=len(self._groups)))

    def _apply_tool_update(self, update: ToolCallUpdate) -> None:
        position = self._tool_positions.get(update.tool_id)
        if position is None:
            position = len(self._groups)
            self._tool_positions[update.tool_id] = position
            self._groups.append(ToolGroup(tool_call=merge_tool_call(update, None), index=position))
            return

        group = self._groups[position]
        if isinstance(group, ToolGroup):
            group.tool_call = merge_tool_call(update, group.tool_call)


def consume(events: Iterable[StreamEvent]) -> list[Group]:
    """Group a complete event sequence; repeated calls on equal input give equal output."""
    aggregator = StreamAggregator()
    aggregator.extend(events)
    return aggregator.finish()


def _copy_group(group: Group) -> Group:
    if isinstance(group, ToolGroup):
        return ToolGroup(tool_call=replace(group.tool_call), index=group.index)
    return replace(group)
