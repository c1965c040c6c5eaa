"""
Twilio Telephony Client — REST calls the call engine makes mid-call.

Inbound call flow:
1. Twilio POSTs /start when a caller dials the game number
2. Each webhook answers with TwiML (see channels.telephony.twiml)
3. Background tasks use this client to start the recording, force the
   challenge deadline (redirect the live call to /end) and text the result
4. Recording status callbacks arrive at /recording

API Docs: https://www.twilio.com/docs/voice/api
"""
from __future__ import annotations

import structlog
from typing import Any, Optional

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

logger = structlog.get_logger()


class TwilioClient:
    """Twilio REST API client for live call control and messaging."""

    BASE_URL = "https://api.twilio.com/2010-04-01/Accounts"

    def __init__(self, account_sid: str, auth_token: str, from_number: str):
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.base_url = f"{self.BASE_URL}/{account_sid}"
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                auth=(self.account_sid, self.auth_token),
                timeout=httpx.Timeout(30.0, connect=10.0),
                follow_redirects=True,
            )
        return self._client

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(2),
        wait=wait_exponential(min=1, max=5),
        reraise=True,
    )
    async def _request(self, method: str, path: str, **kwargs) -> dict[str, Any]:
        client = await self._get_client()
        url = f"{self.base_url}{path}.json"
        resp = await client.request(method, url, **kwargs)
        if resp.status_code >= 400:
            logger.error(
                "twilio_api_error",
                status=resp.status_code,
                body=resp.text[:500],
                path=path,
            )
            resp.raise_for_status()
        return resp.json()

    # ── Call Control ────────────────────────────────────────

    async def update_call_url(self, call_sid: str, url: str) -> dict[str, Any]:
        """Point a live call at a new TwiML URL; its current verb is abandoned."""
        logger.info("twilio_redirect_call", call_sid=call_sid, url=url)
        return await self._request(
            "POST",
            f"/Calls/{call_sid}",
            data={"Url": url, "Method": "POST"},
        )

    async def record_call(self, call_sid: str, status_callback_url: str) -> dict[str, Any]:
        """Start a dual-channel recording of the live call."""
        logger.info("twilio_record_call", call_sid=call_sid)
        result = await self._request(
            "POST",
            f"/Calls/{call_sid}/Recordings",
            data={
                "RecordingChannels": "dual",
                "RecordingStatusCallback": status_callback_url,
                "RecordingStatusCallbackEvent": "completed",
                "RecordingStatusCallbackMethod": "POST",
            },
        )
        return {"sid": result.get("sid", ""), "status": result.get("status", "")}

    async def download_recording(self, recording_sid: str) -> bytes:
        """Fetch a finished recording as MP3 bytes."""
        client = await self._get_client()
        url = f"{self.base_url}/Recordings/{recording_sid}.mp3"
        resp = await client.get(url)
        if resp.status_code >= 400:
            logger.error("twilio_recording_download_failed",
                         status=resp.status_code, recording_sid=recording_sid)
            resp.raise_for_status()
        return resp.content

    # ── Messaging ───────────────────────────────────────────

    async def send_message(self, to: str, body: str) -> dict[str, Any]:
        result = await self._request(
            "POST",
            "/Messages",
            data={"From": self.from_number, "To": to, "Body": body},
        )
        return {"sid": result.get("sid", ""), "status": result.get("status", "queued")}

    # ── Helpers ─────────────────────────────────────────────

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
