"""
FastAPI Application — Twilio webhooks + game API.

Provides:
- Voice webhooks driving the call state machine (all answer TwiML)
- Recording status callback
- Winner lookup and attempt inspection for the claim site
- Sponsor launchpad: launch fee, creation, deposit and activation
- Health check

Every webhook is signature-checked before it can touch any state.
"""
from __future__ import annotations

import asyncio
import structlog
from datetime import datetime, timezone
from contextlib import asynccontextmanager
from typing import Optional

# Load .env before any config is read
from dotenv import load_dotenv
load_dotenv()

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from channels.sms_adapter import SmsNotifier
from channels.telephony import (
    TwilioClient, TwilioWebhookVerifier, parse_call_event, parse_recording_event,
)
from channels.telephony.webhook import SIGNATURE_HEADER
from config.settings import get_settings
from context.session_store import SessionStore
from core.call_flow import CallFlow
from core.deadline import DeadlineController
from core.engine import GameEngine
from core.errors import (
    SessionNotFoundError, SponsorActivationError, SponsorNotFoundError,
    TransactionRejectedError, WalletAuthError, WebhookAuthError, WebhookParseError,
)
from core.judge import JudgeStage
from core.settlement import SettlementPipeline
from core.sponsors import SponsorLaunch, SponsorService
from core.tasks import TaskRunner
from database.session import close_db, init_db
from database.store_base import BaseGameStore
from database.store_factory import create_store
from ledger import SolanaLedger
from video.handoff import RenderHandoff

logger = structlog.get_logger()

# ──────────────────────────────────────────────────────────────
#  Bootstrap
# ──────────────────────────────────────────────────────────────

settings = get_settings()

game_store = create_store({
    "store_backend": settings.database.store_backend,
    "max_challenge_time": settings.game.max_challenge_time,
})
sessions = SessionStore()
runner = TaskRunner()

twilio_client = TwilioClient(
    settings.telephony.account_sid,
    settings.telephony.auth_token,
    settings.telephony.phone_number,
)
verifier = TwilioWebhookVerifier(
    settings.telephony.auth_token,
    enabled=settings.telephony.validate_signatures,
)
game_engine = GameEngine(settings.llm)
ledger = SolanaLedger(settings.ledger)

settlement = SettlementPipeline(game_store, ledger, SmsNotifier(twilio_client), settings.claim_url)
judge_stage = JudgeStage(
    engine=game_engine,
    store=game_store,
    settlement=settlement,
    handoff=RenderHandoff(settings.media, game_store),
    runner=runner,
    video_base_url=settings.media.video_base_url,
)
sponsor_service = SponsorService(game_store, ledger, settings.launchpad)
call_flow = CallFlow(
    settings=settings,
    store=game_store,
    sessions=sessions,
    engine=game_engine,
    telephony=twilio_client,
    deadline=DeadlineController(twilio_client, runner, settings.global_url),
    judge=judge_stage,
    runner=runner,
)

SHUTDOWN_DRAIN_SECONDS = 30


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.database.store_backend == "sql":
        await init_db()

    logger.info("gamecall_started",
                store=type(game_store).__name__,
                global_url=settings.global_url)
    yield

    # Judgments may be mid-settlement; give them a chance to finish
    try:
        await runner.wait_idle(timeout=SHUTDOWN_DRAIN_SECONDS)
    except asyncio.TimeoutError:
        logger.warning("background_tasks_abandoned", pending=runner.pending)
        await runner.cancel_all()
    await twilio_client.close()
    await ledger.close()
    if settings.database.store_backend == "sql":
        await close_db()
    logger.info("gamecall_stopped")


# ──────────────────────────────────────────────────────────────
#  App
# ──────────────────────────────────────────────────────────────

app = FastAPI(
    title="GameCall API",
    description="Voice game show call engine",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Dependencies ──────────────────────────────────────────────

def get_call_flow() -> CallFlow:
    return call_flow


def get_verifier() -> TwilioWebhookVerifier:
    return verifier


def get_game_store() -> BaseGameStore:
    return game_store


def get_sponsor_service() -> SponsorService:
    return sponsor_service


def get_sessions() -> SessionStore:
    return sessions


def get_runner() -> TaskRunner:
    return runner


async def twilio_form(
    request: Request,
    webhook_verifier: TwilioWebhookVerifier = Depends(get_verifier),
) -> dict[str, str]:
    """Form body of a Twilio webhook, after the signature check."""
    form = {k: str(v) for k, v in (await request.form()).items()}
    host = request.headers.get("host", request.url.netloc)
    url = webhook_verifier.public_url(host, request.url.path)
    webhook_verifier.verify(url, form, request.headers.get(SIGNATURE_HEADER))
    return form


def _twiml(content: str) -> Response:
    return Response(content=content, media_type="application/xml")


# ── Error mapping ─────────────────────────────────────────────

@app.exception_handler(WebhookAuthError)
async def webhook_auth_error(request: Request, exc: WebhookAuthError):
    return JSONResponse(status_code=403, content={"detail": str(exc)})


@app.exception_handler(WebhookParseError)
async def webhook_parse_error(request: Request, exc: WebhookParseError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(TransactionRejectedError)
@app.exception_handler(SponsorActivationError)
async def launchpad_rejected(request: Request, exc: Exception):
    logger.warning("launchpad_request_rejected", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(WalletAuthError)
async def wallet_auth_error(request: Request, exc: WalletAuthError):
    return JSONResponse(status_code=403, content={"detail": str(exc)})


@app.exception_handler(SponsorNotFoundError)
async def sponsor_not_found(request: Request, exc: SponsorNotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(SessionNotFoundError)
async def session_not_found(request: Request, exc: SessionNotFoundError):
    logger.error("webhook_without_session", path=request.url.path, call_sid=exc.call_sid)
    return JSONResponse(status_code=500, content={"detail": str(exc)})


# ──────────────────────────────────────────────────────────────
#  Request/Response Models
# ──────────────────────────────────────────────────────────────

class VerifyWinnerRequest(BaseModel):
    phone_number: str


class VerifyWinnerResponse(BaseModel):
    is_winner: Optional[bool] = None
    winner_url: Optional[str] = None


class PaymentRequest(BaseModel):
    sender: str


class DepositRequest(BaseModel):
    sender_public_key: str
    sponsor_public_key: str


class ActivateSponsorRequest(BaseModel):
    sponsor_public_key: str
    transaction: str


class SponsorListRequest(BaseModel):
    public_key: str
    signature: str


def _public_sponsor(sponsor) -> dict:
    """A sponsor as the launchpad sees it; the wallet secret never leaves the service."""
    return sponsor.model_dump(mode="json", exclude={"private_key"})


# ══════════════════════════════════════════════════════════════
#  HEALTH
# ══════════════════════════════════════════════════════════════

@app.get("/health")
async def health(
    live: SessionStore = Depends(get_sessions),
    tasks: TaskRunner = Depends(get_runner),
):
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "live_sessions": len(live),
        "background_tasks": tasks.pending,
    }


# ══════════════════════════════════════════════════════════════
#  TWILIO VOICE WEBHOOKS
# ══════════════════════════════════════════════════════════════

@app.post("/start")
async def start_webhook(form: dict = Depends(twilio_form), flow: CallFlow = Depends(get_call_flow)):
    return _twiml(await flow.start(parse_call_event(form)))


@app.post("/redirect-gather/{path:path}")
async def redirect_gather_webhook(
    path: str,
    form: dict = Depends(twilio_form),
    flow: CallFlow = Depends(get_call_flow),
):
    return _twiml(await flow.gather(path, parse_call_event(form)))


@app.post("/name")
async def name_webhook(form: dict = Depends(twilio_form), flow: CallFlow = Depends(get_call_flow)):
    return _twiml(await flow.name(parse_call_event(form)))


@app.post("/challenge/start")
async def challenge_start_webhook(form: dict = Depends(twilio_form), flow: CallFlow = Depends(get_call_flow)):
    return _twiml(await flow.challenge_start(parse_call_event(form)))


@app.post("/challenge/respond")
async def challenge_respond_webhook(form: dict = Depends(twilio_form), flow: CallFlow = Depends(get_call_flow)):
    return _twiml(await flow.challenge_respond(parse_call_event(form)))


@app.post("/end")
async def end_webhook(form: dict = Depends(twilio_form), flow: CallFlow = Depends(get_call_flow)):
    return _twiml(await flow.end(parse_call_event(form)))


@app.post("/judge")
async def judge_webhook(form: dict = Depends(twilio_form), flow: CallFlow = Depends(get_call_flow)):
    return _twiml(await flow.judge(parse_call_event(form)))


@app.post("/recording")
async def recording_webhook(form: dict = Depends(twilio_form), flow: CallFlow = Depends(get_call_flow)):
    return _twiml(await flow.recording(parse_recording_event(form)))


# ══════════════════════════════════════════════════════════════
#  GAME API
# ══════════════════════════════════════════════════════════════

@app.post("/api/verify-winner", response_model=VerifyWinnerResponse)
async def verify_winner(req: VerifyWinnerRequest, store: BaseGameStore = Depends(get_game_store)):
    attempt = await store.get_latest_attempt(req.phone_number)
    if attempt is None:
        raise HTTPException(404, "No attempt for this phone number")
    return VerifyWinnerResponse(is_winner=attempt.is_winner, winner_url=attempt.winner_url)


@app.get("/api/attempts/{call_sid}")
async def get_attempt(call_sid: str, store: BaseGameStore = Depends(get_game_store)):
    attempt = await store.get_attempt_by_sid(call_sid)
    if attempt is None:
        raise HTTPException(404, "Attempt not found")
    return attempt.model_dump(mode="json")


@app.get("/api/attempts")
async def list_attempts(sponsors: SponsorService = Depends(get_sponsor_service)):
    attempts = await sponsors.recent_attempts()
    return [a.model_dump(mode="json", exclude={"phone_number", "winner_url"}) for a in attempts]


# ══════════════════════════════════════════════════════════════
#  SPONSOR LAUNCHPAD
# ══════════════════════════════════════════════════════════════

@app.post("/api/payment")
async def launch_payment(req: PaymentRequest, sponsors: SponsorService = Depends(get_sponsor_service)):
    return await sponsors.payment_transaction(req.sender)


@app.post("/api/launchpad", status_code=201)
async def launchpad(req: SponsorLaunch, sponsors: SponsorService = Depends(get_sponsor_service)):
    sponsor, signature = await sponsors.launch(req)
    return {"sponsor": _public_sponsor(sponsor), "signature": signature}


@app.post("/api/deposit")
async def deposit(req: DepositRequest, sponsors: SponsorService = Depends(get_sponsor_service)):
    return await sponsors.deposit_transaction(req.sender_public_key, req.sponsor_public_key)


@app.post("/api/activate-sponsor", status_code=201)
async def activate_sponsor(
    req: ActivateSponsorRequest,
    sponsors: SponsorService = Depends(get_sponsor_service),
):
    sponsor, signature = await sponsors.activate(req.sponsor_public_key, req.transaction)
    return {"sponsor": _public_sponsor(sponsor), "signature": signature}


@app.post("/api/sponsors")
async def sponsor_list(req: SponsorListRequest, sponsors: SponsorService = Depends(get_sponsor_service)):
    return [_public_sponsor(s) for s in await sponsors.sponsors_for_wallet(req.public_key, req.signature)]
