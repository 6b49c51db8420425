from __future__ import annotations

import pytest

from kbchat.db.base import create_engine, create_sessionmaker, init_db
from kbchat.memory.list_store import InMemoryListStore, SQLListStore, resolve_bounds
from kbchat.memory.types import StoredMessage
from kbchat.services.chat_memory_service import NO_HISTORY_TEXT, ChatMemoryService


class FakeClock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture(params=["memory", "sql"])
async def list_store(request, tmp_path, clock):
    if request.param == "memory":
        yield InMemoryListStore(clock=clock)
        return
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'kv.db'}")
    await init_db(engine)
    yield SQLListStore(create_sessionmaker(engine), clock=clock)
    await engine.dispose()


def test_resolve_bounds_follows_inclusive_negative_indices():
    assert resolve_bounds(5, 0, -1) == (0, 4)
    assert resolve_bounds(5, -2, -1) == (3, 4)
    assert resolve_bounds(5, 3, 100) == (3, 4)
    assert resolve_bounds(5, 4, 2) is None
    assert resolve_bounds(0, 0, -1) is None


@pytest.mark.anyio
async def test_list_store_append_range_trim(list_store):
    for value in ("a", "b", "c", "d"):
        await list_store.list_append("k", value)

    assert await list_store.list_size("k") == 4
    assert await list_store.list_range("k", 0, -1) == ["a", "b", "c", "d"]
    assert await list_store.list_range("k", -2, -1) == ["c", "d"]

    await list_store.list_trim("k", 1, -1)
    assert await list_store.list_range("k", 0, -1) == ["b", "c", "d"]
    assert await list_store.list_append("k", "e") == 4


@pytest.mark.anyio
async def test_list_store_expired_key_behaves_as_absent(list_store, clock):
    await list_store.list_append("k", "a")
    assert await list_store.expire("k", 60) is True
    assert await list_store.ttl("k") == pytest.approx(60)

    clock.advance(61)

    assert await list_store.list_size("k") == 0
    assert await list_store.list_range("k", 0, -1) == []
    assert await list_store.expire("k", 60) is False
    assert await list_store.list_append("k", "fresh") == 1
    assert await list_store.ttl("k") is None


def _service(list_store, **overrides) -> ChatMemoryService:
    options = dict(
        max_messages=10,
        prompt_messages=8,
        temporary_ttl_sec=60,
        persistent_ttl_sec=7 * 24 * 3600,
    )
    options.update(overrides)
    return ChatMemoryService(list_store, **options)


@pytest.mark.anyio
async def test_append_turn_keeps_latest_window(list_store):
    service = _service(list_store)
    for index in range(6):
        await service.append_turn("s1", f"q{index}", f"a{index}", temporary=False)

    history = await service.load_history("s1")

    assert len(history) == 10
    assert history[0].content == "q1"
    assert history[-1].content == "a5"
    assert [message.role for message in history[:2]] == ["user", "assistant"]
    assert await list_store.list_size(service.build_key("s1")) == 10


@pytest.mark.anyio
async def test_ttl_depends_on_session_kind(list_store, clock):
    service = _service(list_store)
    await service.append_turn("temp-1", "q", "a", temporary=True)
    await service.append_turn("named", "q", "a", temporary=False)

    assert await list_store.ttl(service.build_key("temp-1")) == pytest.approx(60)
    assert await list_store.ttl(service.build_key("named")) == pytest.approx(7 * 24 * 3600)

    clock.advance(120)

    assert await service.load_history("temp-1") == []
    assert len(await service.load_history("named")) == 2


@pytest.mark.anyio
async def test_append_turn_refreshes_ttl(list_store, clock):
    service = _service(list_store)
    await service.append_turn("temp-1", "q1", "a1", temporary=True)
    clock.advance(50)
    await service.append_turn("temp-1", "q2", "a2", temporary=True)
    clock.advance(50)

    assert len(await service.load_history("temp-1")) == 4


@pytest.mark.anyio
async def test_load_history_skips_malformed_entries(list_store):
    service = _service(list_store)
    key = service.build_key("s1")
    await list_store.list_append(key, StoredMessage("user", "hello", 1).to_json())
    await list_store.list_append(key, "{not json")
    await list_store.list_append(key, '{"role": "system", "content": "x", "timestamp": 1}')
    await list_store.list_append(key, StoredMessage("assistant", "hi", 2).to_json())

    history = await service.load_history("s1")

    assert [(message.role, message.content) for message in history] == [
        ("user", "hello"),
        ("assistant", "hi"),
    ]


@pytest.mark.anyio
async def test_empty_assistant_text_is_still_stored(list_store):
    service = _service(list_store)
    await service.append_turn("s1", "question", "", temporary=False)

    history = await service.load_history("s1")

    assert [(message.role, message.content) for message in history] == [
        ("user", "question"),
        ("assistant", ""),
    ]


@pytest.mark.anyio
async def test_unencodable_message_is_dropped_and_ttl_still_set(list_store):
    service = _service(list_store)
    await service.append_turn("temp-1", "q", "bad \ud800 text", temporary=True)

    history = await service.load_history("temp-1")

    assert [message.content for message in history] == ["q"]
    assert await list_store.ttl(service.build_key("temp-1")) == pytest.approx(60)


def test_render_history_uses_prompt_window():
    service = ChatMemoryService(InMemoryListStore(), max_messages=10, prompt_messages=2)
    messages = [
        StoredMessage("user", "q1", 1),
        StoredMessage("assistant", "a1", 1),
        StoredMessage("user", "q2", 2),
        StoredMessage("assistant", "a2", 2),
    ]

    assert service.render_history(messages) == "user: q2\nassistant: a2"
    assert service.render_history([]) == NO_HISTORY_TEXT


def test_prompt_window_is_clamped_to_stored_window():
    service = ChatMemoryService(InMemoryListStore(), max_messages=2, prompt_messages=8)
    messages = [StoredMessage("user", f"m{index}", index) for index in range(4)]

    assert service.render_history(messages) == "user: m2\nuser: m3"
