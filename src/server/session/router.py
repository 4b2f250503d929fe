from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status

from src.conversation import (
    Forest,
    MessageNode,
    ancestors,
    build_forest,
    get_visible_path,
    initialize_from_target,
    select,
)

from .dependencies import get_session_store
from .models import MessageRecord, SessionRecord, SnapshotRecord
from .schemas import (
    DeleteResponse,
    MessageCreateRequest,
    MessageCreateResponse,
    PathResponse,
    PathSelectRequest,
    SessionCreateRequest,
    SessionCreateResponse,
    SessionDetail,
    SessionListResponse,
    SessionMessage,
    SessionSummary,
    SessionTree,
    SessionUpdateRequest,
    SnapshotCreateRequest,
    SnapshotResponse,
    TreeNode,
)
from .store import SQLiteSessionStore
from .title import ensure_session_title

router = APIRouter(prefix="/api/sessions", tags=["sessions"])
snapshot_router = APIRouter(prefix="/api/snapshots", tags=["snapshots"])


@router.get("", response_model=SessionListResponse)
async def list_sessions(
    include_archived: bool = Query(default=False, description="Include archived sessions."),
    store: SQLiteSessionStore = Depends(get_session_store),
) -> SessionListResponse:
    records = await store.list_sessions(include_archived=include_archived)
    return SessionListResponse(sessions=[_to_summary(record) for record in records])


@router.post("", status_code=status.HTTP_201_CREATED, response_model=SessionCreateResponse)
async def create_session(
    payload: SessionCreateRequest,
    store: SQLiteSessionStore = Depends(get_session_store),
) -> SessionCreateResponse:
    session = await store.create_session()
    if payload.initial_message and payload.initial_message.strip():
        await store.append_message(
            session_id=session.id,
            role="user",
            content=payload.initial_message.strip(),
            model=payload.model,
        )
        await ensure_session_title(store, session.id)
        session = await store.get_session(session.id) or session
    messages = await store.get_messages(session.id)
    return SessionCreateResponse(session=_to_detail(session, messages))


@router.get("/{session_id}", response_model=SessionDetail)
async def get_session(
    session_id: str,
    store: SQLiteSessionStore = Depends(get_session_store),
) -> SessionDetail:
    session = await _require_session(store, session_id)
    messages = await store.get_messages(session_id)
    return _to_detail(session, messages)


@router.patch("/{session_id}", response_model=SessionDetail)
async def update_session(
    session_id: str,
    payload: SessionUpdateRequest,
    store: SQLiteSessionStore = Depends(get_session_store),
) -> SessionDetail:
    session = await _require_session(store, session_id)

    if payload.title is not None:
        session = await store.rename_session(session_id, payload.title)

    if payload.archived is not None:
        if payload.archived:
            await store.archive_session(session_id)
        else:
            await store.unarchive_session(session_id)
        session = await store.get_session(session_id) or session

    messages = await store.get_messages(session_id)
    return _to_detail(session, messages)


@router.delete("/{session_id}", response_model=DeleteResponse)
async def delete_session(
    session_id: str,
    store: SQLiteSessionStore = Depends(get_session_store),
) -> DeleteResponse:
    await _require_session(store, session_id)
    await store.delete_session(session_id)
    return DeleteResponse(success=True)


@router.post(
    "/{session_id}/messages",
    status_code=status.HTTP_201_CREATED,
    response_model=MessageCreateResponse,
)
async def send_message(
    session_id: str,
    payload: MessageCreateRequest,
    store: SQLiteSessionStore = Depends(get_session_store),
) -> MessageCreateResponse:
    session = await _require_session(store, session_id)
    if session.archived:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Session has been archived")
    await _require_parent(store, session_id, payload.parent_message_id)

    record = await store.append_message(
        session_id=session_id,
        role="user",
        content=payload.content,
        parent_message_id=payload.parent_message_id,
        model=payload.model,
    )
    await ensure_session_title(store, session_id)

    forest = build_session_forest(await store.get_messages(session_id))
    path = initialize_from_target(forest, record.id)
    visible = get_visible_path(forest.roots, path)
    return MessageCreateResponse(
        message=_to_message(record),
        path=path,
        visible_message_ids=[node.message_id for node in visible],
    )


@router.get("/{session_id}/tree", response_model=SessionTree)
async def get_session_tree(
    session_id: str,
    store: SQLiteSessionStore = Depends(get_session_store),
) -> SessionTree:
    await _require_session(store, session_id)
    messages = await store.get_messages(session_id)
    forest = build_session_forest(messages)
    records = {record.id: record for record in messages}
    return SessionTree(roots=[_to_tree_node(node, records) for node in forest.roots])


@router.post("/{session_id}/path", response_model=PathResponse)
async def select_branch(
    session_id: str,
    payload: PathSelectRequest,
    store: SQLiteSessionStore = Depends(get_session_store),
) -> PathResponse:
    await _require_session(store, session_id)
    messages = await store.get_messages(session_id)
    forest = build_session_forest(messages)

    path = select(payload.path, payload.parent_key, payload.child_id)
    visible = get_visible_path(forest.roots, path)
    if visible:
        await store.set_last_message(session_id, visible[-1].message_id)
    return PathResponse(path=path, messages=_visible_messages(visible, messages))


@router.post(
    "/{session_id}/snapshots",
    status_code=status.HTTP_201_CREATED,
    response_model=SnapshotResponse,
)
async def create_snapshot(
    session_id: str,
    payload: SnapshotCreateRequest,
    store: SQLiteSessionStore = Depends(get_session_store),
) -> SnapshotResponse:
    await _require_session(store, session_id)
    try:
        snapshot = await store.create_snapshot(session_id, payload.message_id)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    messages = await store.get_messages(session_id)
    return _to_snapshot(snapshot, messages)


@snapshot_router.get("/{snapshot_id}", response_model=SnapshotResponse)
async def get_snapshot(
    snapshot_id: str,
    store: SQLiteSessionStore = Depends(get_session_store),
) -> SnapshotResponse:
    snapshot = await store.get_snapshot(snapshot_id)
    if snapshot is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Snapshot not found")
    messages = await store.get_messages(snapshot.session_id)
    return _to_snapshot(snapshot, messages)


def build_session_forest(messages: list[MessageRecord]) -> Forest:
    return build_forest(record.to_message() for record in messages)


async def _require_session(store: SQLiteSessionStore, session_id: str) -> SessionRecord:
    session = await store.get_session(session_id)
    if session is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
    return session


async def _require_parent(store: SQLiteSessionStore, session_id: str, parent_message_id: str | None) -> None:
    if parent_message_id is None:
        return
    if await store.get_message(session_id, parent_message_id) is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Parent message does not belong to this session",
        )


def _to_summary(record: SessionRecord) -> SessionSummary:
    return SessionSummary(
        id=record.id,
        title=record.title,
        last_message_id=record.last_message_id,
        updated_at=record.updated_at,
        created_at=record.created_at,
        archived=record.archived,
    )


def _to_message(record: MessageRecord) -> SessionMessage:
    return SessionMessage(
        id=record.id,
        parent_message_id=record.parent_message_id,
        role=record.role,
        content=record.content,
        model=record.model,
        tool_calls=record.tool_calls,
        seq=record.seq,
        created_at=record.created_at,
    )


def _to_tree_node(node: MessageNode, records: dict[str, MessageRecord]) -> TreeNode:
    return TreeNode(
        message=_to_message(records[node.message_id]),
        children=[_to_tree_node(child, records) for child in node.children],
    )


def _visible_messages(visible: list[MessageNode], messages: list[MessageRecord]) -> list[SessionMessage]:
    records = {record.id: record for record in messages}
    return [_to_message(records[node.message_id]) for node in visible]


def _to_detail(session: SessionRecord, messages: list[MessageRecord]) -> SessionDetail:
    forest = build_session_forest(messages)
    path = initialize_from_target(forest, session.last_message_id)
    visible = get_visible_path(forest.roots, path)
    return SessionDetail(
        **_to_summary(session).model_dump(),
        messages=[_to_message(message) for message in messages],
        path=path,
        visible_message_ids=[node.message_id for node in visible],
    )


def _to_snapshot(snapshot: SnapshotRecord, messages: list[MessageRecord]) -> SnapshotResponse:
    forest = build_session_forest(messages)
    return SnapshotResponse(
        id=snapshot.id,
        session_id=snapshot.session_id,
        message_id=snapshot.message_id,
        created_at=snapshot.created_at,
        messages=_visible_messages(ancestors(forest, snapshot.message_id), messages),
    )
