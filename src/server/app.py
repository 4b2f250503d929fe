# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, List, Optional

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse

from src.config import get_bool_env, get_str_env
from src.conversation import Group, StreamAggregator, StreamEvent, initialize_from_target
from src.server.session.dependencies import (
    get_session_store,
    initialise_session_store,
    set_session_store,
)
from src.server.session.models import MessageRecord
from src.server.session.router import build_session_forest
from src.server.session.router import router as session_router
from src.server.session.router import snapshot_router
from src.server.session.schemas import StreamEventPayload, StreamGroup, StreamRequest
from src.server.session.store import SQLiteSessionStore
from src.server.session.title import ensure_session_title

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    session_store = initialise_session_store()
    await session_store.init()
    set_session_store(session_store)
    try:
        yield
    finally:
        await session_store.close()


app = FastAPI(
    title="Chat Sessions API",
    description="Branching chat history and streamed response grouping",
    version="0.1.0",
    lifespan=lifespan,
)

allowed_origins_str = get_str_env("ALLOWED_ORIGINS", "http://localhost:3000")
allowed_origins = [origin.strip() for origin in allowed_origins_str.split(",")]

logger.info(f"Allowed origins: {allowed_origins}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(session_router)
app.include_router(snapshot_router)


class StreamPersistenceContext:
    """Groups a response stream and persists the finished assistant message."""

    def __init__(
        self,
        store: SQLiteSessionStore,
        session_id: str,
        parent_message_id: Optional[str],
        model: Optional[str],
    ) -> None:
        self._store = store
        self._session_id = session_id
        self._parent_message_id = parent_message_id
        self._model = model
        self._aggregator = StreamAggregator(
            include_provisional=get_bool_env("STREAM_EMIT_PROVISIONAL", True)
        )

    def handle_event(self, event: StreamEvent) -> List[Group]:
        return self._aggregator.push(event)

    async def finalize(self) -> tuple[List[Group], MessageRecord]:
        groups = self._aggregator.finish()
        message = self._aggregator.build_message(
            parent_message_id=self._parent_message_id,
            model=self._model,
        )
        tool_calls = [entry.to_dict() for entry in self._aggregator.tool_calls()]
        record = await self._store.append_message(
            session_id=self._session_id,
            role=message.role,
            content=message.content,
            parent_message_id=message.parent_message_id,
            model=message.model,
            tool_calls=tool_calls,
            message_id=message.message_id,
        )
        await ensure_session_title(self._store, self._session_id)
        return groups, record

    async def restore_path(self, message_id: str) -> dict[str, str]:
        forest = build_session_forest(await self._store.get_messages(self._session_id))
        return initialize_from_target(forest, message_id)


@app.post("/api/sessions/{session_id}/stream")
async def chat_stream(
    session_id: str,
    request: StreamRequest,
    session_store: SQLiteSessionStore = Depends(get_session_store),
):
    session = await session_store.get_session(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    if session.archived:
        raise HTTPException(status_code=403, detail="Session has been archived")

    if request.parent_message_id is not None:
        parent = await session_store.get_message(session_id, request.parent_message_id)
        if parent is None:
            raise HTTPException(
                status_code=400,
                detail="Parent message does not belong to this session",
            )

    persistence = StreamPersistenceContext(
        session_store,
        session_id,
        request.parent_message_id,
        request.model,
    )
    return StreamingResponse(
        _astream_response(session_id, request.events, persistence),
        media_type="text/event-stream",
    )


async def _astream_response(
    session_id: str,
    events: List[StreamEventPayload],
    persistence: StreamPersistenceContext,
) -> AsyncIterator[str]:
    # An abandoned stream never reaches finalize, so partial groups are dropped.
    try:
        for payload in events:
            groups = persistence.handle_event(payload.to_event())
            yield _make_event("groups", _groups_payload(session_id, groups))

        groups, record = await persistence.finalize()
        yield _make_event("groups", _groups_payload(session_id, groups))

        yield _make_event(
            "message",
            {
                "session_id": session_id,
                "id": record.id,
                "parent_message_id": record.parent_message_id,
                "role": record.role,
                "content": record.content,
                "model": record.model,
                "path": await persistence.restore_path(record.id),
            },
        )
    except Exception:
        logger.exception("Error while aggregating response stream")
        yield _make_event(
            "error",
            {
                "session_id": session_id,
                "error": "Error while aggregating response stream",
            },
        )


def _groups_payload(session_id: str, groups: List[Group]) -> dict[str, Any]:
    return {
        "session_id": session_id,
        "groups": [StreamGroup.from_group(group).model_dump() for group in groups],
    }


def _make_event(event_type: str, data: dict[str, Any]) -> str:
    try:
        json_data = json.dumps(data, ensure_ascii=False)
        return f"event: {event_type}\ndata: {json_data}\n\n"
    except (TypeError, ValueError) as e:
        logger.error(f"Error serializing event data: {e}")
        error_data = json.dumps({"error": "Serialization failed"}, ensure_ascii=False)
        return f"event: error\ndata: {error_data}\n\n"
