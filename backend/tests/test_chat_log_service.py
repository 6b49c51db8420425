from __future__ import annotations

import json

import pytest

from conftest import make_match
from kbchat.db.base import create_engine, create_sessionmaker, init_db
from kbchat.repos.chat_log_repo import ChatLogRepo
from kbchat.services.chat_log_service import ChatLogService, serialize_matches


@pytest.fixture
async def sessionmaker(tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'chat_log.db'}")
    await init_db(engine)
    yield create_sessionmaker(engine)
    await engine.dispose()


async def _logs(sessionmaker, session_id: str):
    async with sessionmaker() as db:
        return await ChatLogRepo(db).list_by_session(session_id)


@pytest.mark.anyio
async def test_record_chat_stores_documents(sessionmaker):
    service = ChatLogService(sessionmaker)

    await service.record_chat(
        session_id="s1",
        model="deepseek",
        question="q",
        prompt="prompt",
        answer="a",
        matches=[make_match("d1", 0.9, content="c", metadata={"k": "v"})],
    )

    logs = await _logs(sessionmaker, "s1")
    assert len(logs) == 1
    assert logs[0].model == "deepseek"
    assert logs[0].answer == "a"
    assert json.loads(logs[0].documents_json)[0]["id"] == "d1"


@pytest.mark.anyio
async def test_disabled_service_records_nothing(sessionmaker):
    service = ChatLogService(sessionmaker, enabled=False)

    await service.record_chat(
        session_id="s1", model=None, question="q", prompt=None, answer="", matches=[]
    )

    assert await _logs(sessionmaker, "s1") == []


def test_unserializable_documents_fall_back_to_empty_list():
    match = make_match("d1", 0.9, metadata={"bad": object()})

    assert serialize_matches([match]) == "[]"
    assert serialize_matches([]) == "[]"
