from __future__ import annotations

import pytest

from workchat.agent.messages import AssistantMessage, SystemMessage, ToolCall, ToolResultMessage, UserMessage
from workchat.agent.store import InMemoryConversationStore, SQLiteConversationStore
from workchat.db.engine import Database
from workchat.errors import StoreError


class FakeClock:
    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
async def sqlite_store(tmp_path, clock):
    store = SQLiteConversationStore(Database(str(tmp_path)), ttl_seconds=60, clock=clock)
    await store.initialize()
    yield store
    await store.close()


@pytest.mark.asyncio
async def test_memory_store_unknown_id_is_empty() -> None:
    assert await InMemoryConversationStore().get("nope") == []


@pytest.mark.asyncio
async def test_memory_store_appends_and_returns_copies() -> None:
    store = InMemoryConversationStore()
    await store.append("c1", SystemMessage("policy"))
    await store.append("c1", UserMessage("hi"))

    history = await store.get("c1")
    history.append(UserMessage("not stored"))

    assert [m.content for m in await store.get("c1")] == ["policy", "hi"]


@pytest.mark.asyncio
async def test_memory_store_expires_idle_conversations() -> None:
    clock = FakeClock()
    store = InMemoryConversationStore(ttl_seconds=60, clock=clock)
    await store.append("c1", UserMessage("hi"))

    clock.now += 59
    await store.append("c1", UserMessage("still here"))
    clock.now += 59
    assert len(await store.get("c1")) == 2

    clock.now += 61
    assert await store.get("c1") == []
    assert await store.list_conversations() == []


@pytest.mark.asyncio
async def test_memory_store_delete_and_list() -> None:
    store = InMemoryConversationStore()
    await store.append("a", UserMessage("one"))
    await store.extend("b", [UserMessage("two"), AssistantMessage(content="three")])

    listed = {row["id"]: row["message_count"] for row in await store.list_conversations()}
    assert listed == {"a": 1, "b": 2}

    assert await store.delete("a") is True
    assert await store.delete("a") is False
    assert await store.get("a") == []


@pytest.mark.asyncio
async def test_sqlite_store_keeps_tool_linkage(sqlite_store) -> None:
    await sqlite_store.extend(
        "c1",
        [
            UserMessage("status?"),
            AssistantMessage(tool_calls=[ToolCall(id="call_9", name="jira__search", arguments={"q": "x"})]),
            ToolResultMessage(tool_call_id="call_9", name="jira__search", content="2 issues"),
        ],
    )

    history = await sqlite_store.get("c1")

    assert history[1].tool_calls[0].id == "call_9"
    assert history[2].tool_call_id == "call_9"
    assert history[1].tool_calls[0].arguments == {"q": "x"}


@pytest.mark.asyncio
async def test_sqlite_store_replace_and_delete(sqlite_store) -> None:
    await sqlite_store.append("c1", UserMessage("first"))
    await sqlite_store.replace("c1", [SystemMessage("policy"), UserMessage("fresh")])

    assert [m.content for m in await sqlite_store.get("c1")] == ["policy", "fresh"]
    rows = await sqlite_store.list_conversations()
    assert [(r["id"], r["message_count"]) for r in rows] == [("c1", 2)]

    assert await sqlite_store.delete("c1") is True
    assert await sqlite_store.get("c1") == []


@pytest.mark.asyncio
async def test_sqlite_store_ttl_and_purge(sqlite_store, clock) -> None:
    await sqlite_store.append("old", UserMessage("stale"))
    clock.now += 30
    await sqlite_store.append("new", UserMessage("fresh"))
    clock.now += 40

    assert [r["id"] for r in await sqlite_store.list_conversations()] == ["new"]
    assert await sqlite_store.purge_expired() == 1
    assert await sqlite_store.get("old") == []
    assert len(await sqlite_store.get("new")) == 1


@pytest.mark.asyncio
async def test_sqlite_store_survives_reopen(tmp_path) -> None:
    store = SQLiteConversationStore(Database(str(tmp_path)))
    await store.initialize()
    await store.append("c1", UserMessage("remember me"))
    await store.close()

    reopened = SQLiteConversationStore(Database(str(tmp_path)))
    await reopened.initialize()
    try:
        assert [m.content for m in await reopened.get("c1")] == ["remember me"]
    finally:
        await reopened.close()


@pytest.mark.asyncio
async def test_sqlite_failures_surface_as_store_error(tmp_path) -> None:
    store = SQLiteConversationStore(Database(str(tmp_path)))

    with pytest.raises(StoreError, match="c1"):
        await store.get("c1")


@pytest.mark.asyncio
async def test_sqlite_delete_list_and_purge_failures_surface_as_store_error(tmp_path) -> None:
    store = SQLiteConversationStore(Database(str(tmp_path)))

    with pytest.raises(StoreError, match="c1"):
        await store.delete("c1")
    with pytest.raises(StoreError, match="list"):
        await store.list_conversations()
    with pytest.raises(StoreError, match="purge"):
        await store.purge_expired()
