import pytest

from src.conversation import build_forest
from src.server.session.store import SQLiteSessionStore
from src.server.session.title import derive_title, ensure_session_title


@pytest.mark.asyncio
async def test_create_session_and_messages(tmp_path):
    db_path = tmp_path / "session_store.db"
    store = SQLiteSessionStore(str(db_path))
    await store.init()

    session = await store.create_session()
    assert session.id
    assert session.title is None
    assert session.last_message_id is None

    question = await store.append_message(session_id=session.id, role="user", content="Hello")
    answer = await store.append_message(
        session_id=session.id,
        role="assistant",
        content="Hi, how can I help?",
        parent_message_id=question.id,
        model="test-model",
        tool_calls=[{"tool_id": "t1", "status": "Success"}],
    )

    messages = await store.get_messages(session.id)
    assert [message.id for message in messages] == [question.id, answer.id]
    assert [message.seq for message in messages] == [1, 2]
    assert messages[1].parent_message_id == question.id
    assert messages[1].model == "test-model"
    assert messages[1].tool_calls == [{"tool_id": "t1", "status": "Success"}]

    stored = await store.get_session(session.id)
    assert stored is not None
    assert stored.last_message_id == answer.id

    sessions = await store.list_sessions()
    assert len(sessions) == 1


@pytest.mark.asyncio
async def test_edited_messages_build_sibling_branches(tmp_path):
    store = SQLiteSessionStore(str(tmp_path / "branches.db"))
    await store.init()
    session = await store.create_session()

    root = await store.append_message(session_id=session.id, role="user", content="Question")
    first = await store.append_message(
        session_id=session.id, role="assistant", content="First", parent_message_id=root.id
    )
    second = await store.append_message(
        session_id=session.id, role="assistant", content="Second", parent_message_id=root.id
    )

    forest = build_forest(record.to_message() for record in await store.get_messages(session.id))

    assert [node.message_id for node in forest.roots] == [root.id]
    assert [node.message_id for node in forest.index[root.id].children] == [first.id, second.id]


@pytest.mark.asyncio
async def test_explicit_message_id_is_kept(tmp_path):
    store = SQLiteSessionStore(str(tmp_path / "ids.db"))
    await store.init()
    session = await store.create_session()

    record = await store.append_message(
        session_id=session.id, role="assistant", content="done", message_id="fixed-id"
    )

    assert record.id == "fixed-id"
    assert (await store.get_message(session.id, "fixed-id")) is not None
    assert (await store.get_message("other-session", "fixed-id")) is None


@pytest.mark.asyncio
async def test_rename_and_archive_session(tmp_path):
    db_path = tmp_path / "session_store.db"
    store = SQLiteSessionStore(str(db_path))
    await store.init()

    session = await store.create_session()
    await store.append_message(session_id=session.id, role="user", content="test")

    renamed = await store.rename_session(session.id, "Renamed session")
    assert renamed.title == "Renamed session"

    await store.archive_session(session.id)
    archived = await store.get_session(session.id)
    assert archived is not None
    assert archived.archived is True
    assert await store.list_sessions() == []
    assert len(await store.list_sessions(include_archived=True)) == 1

    await store.unarchive_session(session.id)
    restored = await store.get_session(session.id)
    assert restored is not None
    assert restored.archived is False

    await store.delete_session(session.id)
    assert await store.get_session(session.id) is None
    assert await store.get_messages(session.id) == []


@pytest.mark.asyncio
async def test_snapshots(tmp_path):
    store = SQLiteSessionStore(str(tmp_path / "snapshots.db"))
    await store.init()
    session = await store.create_session()
    message = await store.append_message(session_id=session.id, role="user", content="share me")

    snapshot = await store.create_snapshot(session.id, message.id)
    loaded = await store.get_snapshot(snapshot.id)

    assert loaded is not None
    assert loaded.message_id == message.id
    assert loaded.session_id == session.id
    assert await store.get_snapshot("missing") is None

    with pytest.raises(ValueError):
        await store.create_snapshot(session.id, "not-a-message")

    await store.delete_session(session.id)
    assert await store.get_snapshot(snapshot.id) is None


@pytest.mark.asyncio
async def test_session_title_from_first_user_message(tmp_path):
    store = SQLiteSessionStore(str(tmp_path / "titles.db"))
    await store.init()
    session = await store.create_session()

    assert await ensure_session_title(store, session.id) is None

    await store.append_message(session_id=session.id, role="user", content="  Plan a   trip to Lisbon  ")
    title = await ensure_session_title(store, session.id)

    assert title == "Plan a trip to Lisbon"
    assert (await store.get_session(session.id)).title == title
    assert await ensure_session_title(store, session.id) is None


def test_derive_title_truncates(monkeypatch):
    monkeypatch.setenv("SESSION_TITLE_MAX_LENGTH", "10")

    assert derive_title("a very long opening question") == "a very lo…"
    assert derive_title("   ") == "Untitled conversation"
