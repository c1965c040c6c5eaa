"""
Twilio webhook verification and parsing.

Twilio signs every webhook with HMAC-SHA1 over the full public URL followed by
the sorted POST parameters, base64-encoded into X-Twilio-Signature. The game
runs behind a TLS-terminating proxy, so the URL is rebuilt as
https://{Host}{path} rather than taken from the request line.
"""
from __future__ import annotations

import structlog
from typing import Any, Mapping

from pydantic import ValidationError
from twilio.request_validator import RequestValidator

from core.errors import WebhookAuthError, WebhookParseError
from models.schemas import CallEvent, RecordingEvent

logger = structlog.get_logger()

SIGNATURE_HEADER = "X-Twilio-Signature"


class TwilioWebhookVerifier:
    """Checks X-Twilio-Signature before a webhook may touch any state."""

    def __init__(self, auth_token: str, enabled: bool = True):
        self._validator = RequestValidator(auth_token)
        self.enabled = enabled

    @staticmethod
    def public_url(host: str, path: str) -> str:
        return f"https://{host}{path}"

    def verify(self, url: str, params: Mapping[str, Any], signature: str | None) -> None:
        if not self.enabled:
            return
        if not signature:
            logger.warning("twilio_signature_missing", url=url)
            raise WebhookAuthError("Missing X-Twilio-Signature")
        if not self._validator.validate(url, dict(params), signature):
            logger.warning("twilio_signature_invalid", url=url)
            raise WebhookAuthError("Invalid X-Twilio-Signature")


# ── Parsing ───────────────────────────────────────────────

def parse_call_event(form: Mapping[str, Any]) -> CallEvent:
    """Normalize a voice webhook body (call status or gather result)."""
    confidence = form.get("Confidence")
    try:
        return CallEvent(
            call_sid=form["CallSid"],
            from_number=form["From"],
            to_number=form.get("To", ""),
            status=form.get("CallStatus", "in-progress"),
            speech_result=form.get("SpeechResult") or None,
            speech_confidence=float(confidence) if confidence else None,
        )
    except (KeyError, ValueError, ValidationError) as e:
        logger.warning("twilio_webhook_malformed", error=str(e))
        raise WebhookParseError(f"Malformed voice webhook: {e}") from e


def parse_recording_event(form: Mapping[str, Any]) -> RecordingEvent:
    try:
        return RecordingEvent(call_sid=form["CallSid"], recording_sid=form["RecordingSid"])
    except KeyError as e:
        logger.warning("twilio_recording_webhook_malformed", missing=str(e))
        raise WebhookParseError(f"Malformed recording webhook: missing {e}") from e
