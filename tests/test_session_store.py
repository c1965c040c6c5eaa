"""
Tests — SessionStore concurrency semantics

Run:
  pytest tests/test_session_store.py -v
"""
import asyncio
import pytest

from context.session import Session
from context.session_store import SessionStore
from core.errors import SessionNotFoundError
from models.schemas import MessageRole, Sponsor


@pytest.fixture
def session():
    return Session(sponsor=Sponsor(name="Acme"))


class TestSessionStore:

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self):
        store = SessionStore()
        assert await store.get("CA404") is None

    @pytest.mark.asyncio
    async def test_require_missing_raises(self):
        store = SessionStore()
        with pytest.raises(SessionNotFoundError) as exc:
            await store.require("CA404")
        assert exc.value.call_sid == "CA404"

    @pytest.mark.asyncio
    async def test_get_returns_independent_copy(self, session):
        store = SessionStore()
        await store.upsert("CA1", session)
        copy = await store.get("CA1")
        copy.add_user_message("not stored")
        assert (await store.get("CA1")).messages == []

    @pytest.mark.asyncio
    async def test_upsert_stores_copy(self, session):
        store = SessionStore()
        await store.upsert("CA1", session)
        session.caller_name = "changed later"
        assert (await store.get("CA1")).caller_name == ""

    @pytest.mark.asyncio
    async def test_mutate_applies_and_returns_copy(self, session):
        store = SessionStore()
        await store.upsert("CA1", session)
        result = await store.mutate("CA1", lambda s: s.add_user_message("hi"))
        assert result.messages == [(MessageRole.USER, "hi")]
        result.messages.clear()
        assert len((await store.get("CA1")).messages) == 1

    @pytest.mark.asyncio
    async def test_mutate_missing_raises(self):
        store = SessionStore()
        with pytest.raises(SessionNotFoundError):
            await store.mutate("CA404", lambda s: None)

    @pytest.mark.asyncio
    async def test_concurrent_mutations_are_not_lost(self, session):
        store = SessionStore()
        await store.upsert("CA1", session)
        await asyncio.gather(*[
            store.mutate("CA1", lambda s, i=i: s.add_user_message(f"m{i}"))
            for i in range(50)
        ])
        assert len((await store.get("CA1")).messages) == 50

    @pytest.mark.asyncio
    async def test_second_remove_returns_none(self, session):
        store = SessionStore()
        await store.upsert("CA1", session)
        assert await store.remove("CA1") is not None
        assert await store.remove("CA1") is None
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_concurrent_remove_hands_out_one_session(self, session):
        store = SessionStore()
        await store.upsert("CA1", session)
        results = await asyncio.gather(*[store.remove("CA1") for _ in range(5)])
        assert sum(r is not None for r in results) == 1

    @pytest.mark.asyncio
    async def test_replace_after_remove_does_not_resurrect(self, session):
        store = SessionStore()
        await store.upsert("CA1", session)
        copy = await store.get("CA1")
        await store.remove("CA1")
        assert await store.replace("CA1", copy) is False
        assert await store.get("CA1") is None

    @pytest.mark.asyncio
    async def test_replace_refuses_stale_copy(self, session):
        store = SessionStore()
        await store.upsert("CA1", session)
        copy = await store.get("CA1")
        await store.mutate("CA1", lambda s: s.add_system_message("Time is up!", role=MessageRole.ASSISTANT))

        copy.add_system_message("Late reply", role=MessageRole.ASSISTANT)
        assert await store.replace("CA1", copy) is False
        assert (await store.get("CA1")).messages == [(MessageRole.ASSISTANT, "Time is up!")]

    @pytest.mark.asyncio
    async def test_replace_accepts_fresh_copy_once(self, session):
        store = SessionStore()
        await store.upsert("CA1", session)
        copy = await store.get("CA1")
        copy.add_user_message("la la")
        assert await store.replace("CA1", copy) is True
        assert await store.replace("CA1", copy) is False
        assert (await store.get("CA1")).messages == [(MessageRole.USER, "la la")]

    @pytest.mark.asyncio
    async def test_call_sids(self, session):
        store = SessionStore()
        await store.upsert("CA1", session)
        await store.upsert("CA2", session)
        assert sorted(store.call_sids()) == ["CA1", "CA2"]
