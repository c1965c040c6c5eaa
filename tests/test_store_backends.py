"""
Tests — Game store backends

Runs the same behaviour checks against:
  Memory:  InMemoryGameStore
  SQL:     SqlGameStore on a temporary SQLite file

Run:
  pytest tests/test_store_backends.py -v
"""
import asyncio
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from models.schemas import Sponsor, User


# ──────────────────────────────────────────────────────────────
#  Fixtures
# ──────────────────────────────────────────────────────────────


@pytest_asyncio.fixture(params=["memory", "sql"])
async def game_store(request, tmp_path, monkeypatch):
    from config.settings import load_settings
    from database.session import close_db, init_db
    from database.store import SqlGameStore
    from database.store_memory import InMemoryGameStore

    if request.param == "memory":
        yield InMemoryGameStore(max_challenge_time=60)
        return

    config = tmp_path / "settings.yaml"
    config.write_text(
        "database:\n"
        f"  url: \"sqlite:///{tmp_path / 'game.db'}\"\n"
        "  store_backend: sql\n"
        "game:\n"
        "  max_challenge_time: 60\n"
    )
    monkeypatch.setattr("config.settings._settings", None)
    load_settings(str(config))
    await init_db()
    yield SqlGameStore()
    await close_db()


@pytest.fixture
def memory_store():
    from database.store_memory import InMemoryGameStore
    return InMemoryGameStore(max_challenge_time=60)


def make_sponsor(**overrides) -> Sponsor:
    fields = dict(
        name="Acme Cola",
        active=True,
        public_key="SponsorPub",
        private_key="SponsorSecret",
        token_mint="MintAcme",
        original_tokens=100,
        available_tokens=100,
        reward_tokens=10,
        challenge_time=30,
        challenge_text="Sing the jingle.",
        background_url="https://cdn.example/acme.mp4",
    )
    fields.update(overrides)
    return Sponsor(**fields)


# ──────────────────────────────────────────────────────────────
#  Shared behaviour
# ──────────────────────────────────────────────────────────────


class TestSponsors:

    @pytest.mark.asyncio
    async def test_create_and_get(self, game_store):
        created = await game_store.create_sponsor(make_sponsor())
        assert created.id > 0
        fetched = await game_store.get_sponsor(created.id)
        assert fetched.name == "Acme Cola"
        assert fetched.available_tokens == 100

    @pytest.mark.asyncio
    async def test_challenge_time_is_clamped(self, game_store):
        created = await game_store.create_sponsor(make_sponsor(challenge_time=600))
        assert created.challenge_time == 60

    @pytest.mark.asyncio
    async def test_random_sponsor_skips_inactive_and_unfunded(self, game_store):
        await game_store.create_sponsor(make_sponsor(name="inactive", active=False))
        await game_store.create_sponsor(make_sponsor(name="broke", available_tokens=5))
        assert await game_store.get_random_sponsor() is None
        await game_store.create_sponsor(make_sponsor(name="ready"))
        picked = await game_store.get_random_sponsor()
        assert picked.name == "ready"

    @pytest.mark.asyncio
    async def test_activate_sponsor(self, game_store):
        created = await game_store.create_sponsor(make_sponsor(active=False, public_key="PubX"))
        await game_store.activate_sponsor("PubX")
        fetched = await game_store.get_sponsor(created.id)
        assert fetched.active is True
        assert fetched.initial_funded is True

    @pytest.mark.asyncio
    async def test_get_by_public_key(self, game_store):
        created = await game_store.create_sponsor(make_sponsor(public_key="PubY"))
        assert (await game_store.get_sponsor_by_public_key("PubY")).id == created.id
        assert await game_store.get_sponsor_by_public_key("PubZ") is None

    @pytest.mark.asyncio
    async def test_list_by_launching_wallet(self, game_store):
        first = await game_store.create_sponsor(make_sponsor(name="first", user_id="WalletA"))
        await game_store.create_sponsor(make_sponsor(name="other", user_id="WalletB"))
        second = await game_store.create_sponsor(make_sponsor(name="second", user_id="WalletA"))
        listed = await game_store.list_sponsors_by_user("WalletA")
        assert [s.id for s in listed] == [first.id, second.id]
        assert await game_store.list_sponsors_by_user("WalletC") == []


class TestWithdraw:

    @pytest.mark.asyncio
    async def test_withdraw_debits_reward(self, game_store):
        sponsor = await game_store.create_sponsor(make_sponsor())
        assert await game_store.withdraw_tokens(sponsor.id) == 10
        assert (await game_store.get_sponsor(sponsor.id)).available_tokens == 90

    @pytest.mark.asyncio
    async def test_withdraw_insufficient_returns_none(self, game_store):
        sponsor = await game_store.create_sponsor(make_sponsor(available_tokens=9))
        assert await game_store.withdraw_tokens(sponsor.id) is None
        assert (await game_store.get_sponsor(sponsor.id)).available_tokens == 9

    @pytest.mark.asyncio
    async def test_concurrent_withdraw_of_last_reward(self, game_store):
        sponsor = await game_store.create_sponsor(make_sponsor(available_tokens=10))
        results = await asyncio.gather(
            game_store.withdraw_tokens(sponsor.id),
            game_store.withdraw_tokens(sponsor.id),
        )
        assert sorted(results, key=lambda r: r is None) == [10, None]
        assert (await game_store.get_sponsor(sponsor.id)).available_tokens == 0

    @pytest.mark.asyncio
    async def test_balance_never_negative(self, game_store):
        sponsor = await game_store.create_sponsor(make_sponsor(available_tokens=35))
        results = [await game_store.withdraw_tokens(sponsor.id) for _ in range(5)]
        assert results == [10, 10, 10, None, None]
        assert (await game_store.get_sponsor(sponsor.id)).available_tokens == 5


class TestUsers:

    @pytest.mark.asyncio
    async def test_get_or_create_user(self, game_store):
        user = await game_store.get_or_create_user("+15550001111")
        assert user.attempts_today == 0
        assert user.banned is False
        again = await game_store.get_or_create_user("+15550001111")
        assert again.phone_number == user.phone_number

    @pytest.mark.asyncio
    async def test_update_user_stamps_last_attempt(self, game_store):
        user = await game_store.get_or_create_user("+15550001111")
        user.attempts_today = 2
        user.last_attempt = datetime.now(timezone.utc) - timedelta(days=3)
        await game_store.update_user(user)
        fetched = await game_store.get_or_create_user("+15550001111")
        assert fetched.attempts_today == 2
        assert fetched.last_attempt.date() == datetime.now(timezone.utc).date()
        assert fetched.last_attempt.tzinfo is not None

    @pytest.mark.asyncio
    async def test_simultaneous_first_calls_share_one_user(self, game_store):
        users = await asyncio.gather(*[
            game_store.get_or_create_user("+15550002222") for _ in range(3)
        ])
        assert {u.phone_number for u in users} == {"+15550002222"}

    @pytest.mark.asyncio
    async def test_user_inserted_between_lookup_and_insert(self, game_store, monkeypatch):
        from sqlalchemy.ext.asyncio import AsyncSession

        user = await game_store.get_or_create_user("+15550001111")
        user.attempts_today = 2
        await game_store.update_user(user)

        original_get = AsyncSession.get
        lookups = []

        async def get_missing_once(self, *args, **kwargs):
            lookups.append(args)
            if len(lookups) == 1:
                return None
            return await original_get(self, *args, **kwargs)

        monkeypatch.setattr(AsyncSession, "get", get_missing_once)
        fetched = await game_store.get_or_create_user("+15550001111")
        assert fetched.attempts_today == 2


class TestAttempts:

    @pytest.mark.asyncio
    async def test_attempt_snapshots_sponsor(self, game_store):
        sponsor = await game_store.create_sponsor(make_sponsor())
        user = await game_store.get_or_create_user("+15550001111")
        attempt = await game_store.create_attempt(user, sponsor, "CA1")
        assert attempt.sponsor_name == "Acme Cola"
        assert attempt.sponsor_question == "Sing the jingle."
        assert attempt.sponsor_attempt_reward == 10
        assert attempt.is_winner is None

    @pytest.mark.asyncio
    async def test_attempt_updates(self, game_store):
        sponsor = await game_store.create_sponsor(make_sponsor())
        user = await game_store.get_or_create_user("+15550001111")
        await game_store.create_attempt(user, sponsor, "CA1")

        await game_store.update_attempt_judgement("CA1", "Nailed it.")
        await game_store.update_attempt_video("+15550001111", "https://v/CA1.mp4", "CA1")
        await game_store.update_attempt_winner("+15550001111", True, "CA1")
        await game_store.update_attempt_winner_url("+15550001111", "https://claim/?key=k", "CA1")

        attempt = await game_store.get_attempt_by_sid("CA1")
        assert attempt.challenge_status == "Nailed it."
        assert attempt.video_url == "https://v/CA1.mp4"
        assert attempt.is_winner is True
        assert attempt.winner_url == "https://claim/?key=k"
        assert attempt.twitter_url is None

    @pytest.mark.asyncio
    async def test_update_ignores_other_phone_number(self, game_store):
        sponsor = await game_store.create_sponsor(make_sponsor())
        user = await game_store.get_or_create_user("+15550001111")
        await game_store.create_attempt(user, sponsor, "CA1")
        await game_store.update_attempt_winner("+15559999999", True, "CA1")
        assert (await game_store.get_attempt_by_sid("CA1")).is_winner is None

    @pytest.mark.asyncio
    async def test_latest_attempt(self, game_store):
        sponsor = await game_store.create_sponsor(make_sponsor())
        user = await game_store.get_or_create_user("+15550001111")
        await game_store.create_attempt(user, sponsor, "CA1")
        await game_store.create_attempt(user, sponsor, "CA2")
        latest = await game_store.get_latest_attempt("+15550001111")
        assert latest.call_sid == "CA2"
        assert await game_store.get_latest_attempt("+15550000000") is None

    @pytest.mark.asyncio
    async def test_attempts_since(self, game_store):
        sponsor = await game_store.create_sponsor(make_sponsor())
        user = await game_store.get_or_create_user("+15550001111")
        await game_store.create_attempt(user, sponsor, "CA1")
        await game_store.create_attempt(user, sponsor, "CA2")
        now = datetime.now(timezone.utc)

        recent = await game_store.list_attempts_since(now - timedelta(hours=1))

        assert [a.call_sid for a in recent] == ["CA2", "CA1"]
        assert await game_store.list_attempts_since(now + timedelta(hours=1)) == []


class TestWinners:

    @pytest.mark.asyncio
    async def test_create_winner_generates_unique_keys(self, game_store):
        sponsor = await game_store.create_sponsor(make_sponsor())
        w1 = await game_store.create_winner("Alex", sponsor.id)
        w2 = await game_store.create_winner("Sam", sponsor.id)
        assert w1.key != w2.key
        assert (w1.name, w1.sponsor_id) == ("Alex", sponsor.id)
        assert w2.id != w1.id


# ──────────────────────────────────────────────────────────────
#  Store Factory Tests
# ──────────────────────────────────────────────────────────────


class TestStoreFactory:

    def setup_method(self):
        from database.store_factory import reset_store
        reset_store()

    def teardown_method(self):
        from database.store_factory import reset_store
        reset_store()

    def test_create_memory_store_default(self):
        from database.store_factory import create_store
        from database.store_memory import InMemoryGameStore
        assert isinstance(create_store({}), InMemoryGameStore)

    def test_create_sql_store(self):
        from database.store_factory import create_store
        from database.store import SqlGameStore
        assert isinstance(create_store({"store_backend": "sql"}), SqlGameStore)

    def test_unknown_backend(self):
        from database.store_factory import create_store
        with pytest.raises(ValueError):
            create_store({"store_backend": "file"})

    def test_memory_store_clamp_from_config(self):
        from database.store_factory import create_store
        assert create_store({"max_challenge_time": 15})._max_challenge_time == 15

    def test_singleton_behavior(self):
        from database.store_factory import create_store, get_store
        s1 = create_store({"store_backend": "memory"})
        assert get_store() is s1


class TestSessionURLMapping:

    def test_postgresql_url_mapping(self):
        from database.session import _to_async_url
        assert _to_async_url("postgresql://u:p@h/d") == "postgresql+asyncpg://u:p@h/d"

    def test_sqlite_url_mapping(self):
        from database.session import _to_async_url
        assert _to_async_url("sqlite:///./test.db") == "sqlite+aiosqlite:///./test.db"

    def test_already_async_url_passthrough(self):
        from database.session import _to_async_url
        url = "postgresql+asyncpg://u:p@h/d"
        assert _to_async_url(url) == url


class TestMemoryStoreStats:

    @pytest.mark.asyncio
    async def test_stats(self, memory_store):
        sponsor = await memory_store.create_sponsor(make_sponsor())
        memory_store.put_user(User(phone_number="+1555"))
        await memory_store.create_winner("Alex", sponsor.id)
        assert memory_store.stats() == {"sponsors": 1, "users": 1, "attempts": 0, "winners": 1}
