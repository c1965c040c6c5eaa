"""Shared test fixtures for GameCall."""
import pytest
import pytest_asyncio

from config.settings import GameConfig, LaunchpadConfig, MediaConfig, Settings
from context.session_store import SessionStore
from core.call_flow import CallFlow
from core.deadline import DeadlineController
from core.errors import TransactionRejectedError
from core.judge import JudgeStage
from core.settlement import SettlementPipeline
from core.sponsors import SponsorService
from core.tasks import TaskRunner
from channels.sms_adapter import SmsNotifier
from database.store_memory import InMemoryGameStore
from ledger.base import Ledger, WalletKeypair
from models.schemas import CallEvent, Judgement, Sponsor
from video.handoff import RenderHandoff


# ──────────────────────────────────────────────────────────────
#  Fakes
# ──────────────────────────────────────────────────────────────


class FakeTelephony:
    """Records every REST call the engine makes to Twilio."""

    def __init__(self):
        self.redirects: list[tuple[str, str]] = []
        self.recordings_started: list[tuple[str, str]] = []
        self.messages: list[tuple[str, str]] = []
        self.record_failures = 0
        self.record_attempts = 0
        self.redirect_error: Exception | None = None
        self.recording_bytes = b"ID3-fake-mp3"

    async def update_call_url(self, call_sid, url):
        self.redirects.append((call_sid, url))
        if self.redirect_error is not None:
            raise self.redirect_error
        return {"sid": call_sid}

    async def record_call(self, call_sid, status_callback_url):
        self.record_attempts += 1
        if self.record_failures > 0:
            self.record_failures -= 1
            raise RuntimeError("Call is not in-progress")
        self.recordings_started.append((call_sid, status_callback_url))
        return {"sid": f"RE{call_sid}", "status": "in-progress"}

    async def download_recording(self, recording_sid):
        return self.recording_bytes

    async def send_message(self, to, body):
        self.messages.append((to, body))
        return {"sid": f"SM{len(self.messages)}", "status": "queued"}


class FakeEngine:
    """Scripted stand-in for the OpenAI-backed GameEngine."""

    def __init__(self):
        self.names: dict[str, str] = {}
        self.replies: list[str] = []
        self.reply_error: Exception | None = None
        self.judgement: Judgement | Exception = Judgement(
            won_prize=True, rating=8, explanation="Sang the whole chorus.",
        )
        self.reply_calls: list[list[dict]] = []
        self.judge_calls: list[list[dict]] = []

    async def extract_name(self, utterance):
        return self.names.get(utterance)

    async def generate_reply(self, messages):
        self.reply_calls.append(messages)
        if self.reply_error is not None:
            raise self.reply_error
        return self.replies.pop(0) if self.replies else "Keep going!"

    async def judge(self, messages):
        self.judge_calls.append(messages)
        if isinstance(self.judgement, Exception):
            raise self.judgement
        return self.judgement


class FakeLedger(Ledger):

    def __init__(self):
        self.transfers: list[tuple[str, str, str, int]] = []
        self.error: Exception | None = None
        self._issued = 0
        self.balances: dict[tuple[str, str], int] = {}
        self.on_submit: dict[tuple[str, str], int] = {}   # credited when a transaction lands
        self.submitted: list[str] = []

    def new_keypair(self):
        self._issued += 1
        return WalletKeypair(public_key=f"ClaimPub{self._issued}", secret=f"claimsecret{self._issued}")

    async def transfer(self, sender_private_key, receiver_public_key, token_mint, amount):
        if self.error is not None:
            raise self.error
        self.transfers.append((sender_private_key, receiver_public_key, token_mint, amount))
        return f"sig{len(self.transfers)}"

    async def token_balance(self, owner_public_key, token_mint):
        return self.balances.get((owner_public_key, token_mint), 0)

    async def build_launch_payment(self, sender_public_key, lamports):
        return f"payment:{sender_public_key}:{lamports}"

    async def build_token_deposit(self, sender_public_key, receiver_public_key, token_mint, amount):
        return f"deposit:{sender_public_key}:{receiver_public_key}:{token_mint}:{amount}"

    async def submit_cosigned(self, transaction):
        if transaction.startswith("unsigned"):
            raise TransactionRejectedError("Transaction is not signed by the treasury")
        self.submitted.append(transaction)
        for key, amount in self.on_submit.items():
            self.balances[key] = self.balances.get(key, 0) + amount
        return f"cosig{len(self.submitted)}"

    def verify_message(self, public_key, signature, message):
        return signature == f"signed:{public_key}:{message}"


# ──────────────────────────────────────────────────────────────
#  Fixtures
# ──────────────────────────────────────────────────────────────


def _call_event(call_sid="CA100", phone="+15550001111", speech=None) -> CallEvent:
    return CallEvent(
        call_sid=call_sid,
        from_number=phone,
        to_number="+15559990000",
        status="in-progress",
        speech_result=speech,
        speech_confidence=0.92 if speech else None,
    )


@pytest.fixture
def call_event():
    """Factory for voice webhook events."""
    return _call_event


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        global_url="https://game.example",
        game=GameConfig(record_retry=3, record_retry_wait=0),
        media=MediaConfig(
            recordings_dir=str(tmp_path / "recordings"),
            drafts_dir=str(tmp_path / "drafts"),
            recording_timeout=1,
            recording_poll_interval=0.01,
        ),
    )


@pytest.fixture
def store() -> InMemoryGameStore:
    return InMemoryGameStore(max_challenge_time=60)


@pytest.fixture
def sponsor_fields() -> dict:
    return dict(
        name="Acme Cola",
        active=True,
        private_key="SponsorSecret58",
        public_key="SponsorPub",
        token_mint="MintAcme111",
        original_tokens=100,
        available_tokens=100,
        reward_tokens=10,
        challenge_time=0,
        system_instruction="You are the host of a phone game show.",
        greeting_text="Welcome to the Acme game show! What's your name?",
        start_text="Hi {name}, you have {duration} seconds to sing the Acme jingle. Go!",
        challenge_text="Sing the Acme jingle.",
        end_text="Time is up! Let's see how you did.",
        won_text="Congrats {name}! Claim your tokens: {link} Watch: {video_url}",
        lost_text="Sorry {name}, no prize this time.",
        background_url="https://cdn.example/acme.mp4",
        rating_threshold=6,
    )


@pytest_asyncio.fixture
async def sponsor(store, sponsor_fields) -> Sponsor:
    return await store.create_sponsor(Sponsor(**sponsor_fields))


@pytest.fixture
def telephony() -> FakeTelephony:
    return FakeTelephony()


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def sessions() -> SessionStore:
    return SessionStore()


@pytest_asyncio.fixture
async def runner():
    runner = TaskRunner()
    yield runner
    await runner.cancel_all()


@pytest.fixture
def settlement(store, ledger, telephony, settings) -> SettlementPipeline:
    return SettlementPipeline(store, ledger, SmsNotifier(telephony), settings.claim_url)


@pytest.fixture
def flow(settings, store, sessions, engine, telephony, runner, settlement) -> CallFlow:
    judge = JudgeStage(
        engine=engine,
        store=store,
        settlement=settlement,
        handoff=RenderHandoff(settings.media, store),
        runner=runner,
        video_base_url=settings.media.video_base_url,
    )
    return CallFlow(
        settings=settings,
        store=store,
        sessions=sessions,
        engine=engine,
        telephony=telephony,
        deadline=DeadlineController(telephony, runner, settings.global_url),
        judge=judge,
        runner=runner,
    )


@pytest.fixture
def sponsor_service(store, ledger) -> SponsorService:
    return SponsorService(store, ledger, LaunchpadConfig(launch_fee_lamports=5_000))
