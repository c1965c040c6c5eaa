"""
SMS Notifier — texts the caller the outcome of their attempt.

Won texts carry a claim link and a video link, so they often run past one
segment; the segment count is logged with every send.
"""
from __future__ import annotations

import structlog
from typing import Any, Protocol

logger = structlog.get_logger()


# ── Segment counting ──────────────────────────────────────────

# GSM 03.38 default alphabet
_GSM7_BASIC = frozenset(
    "@£$¥èéùìòÇ\nØø\rÅåΔ_ΦΓΛΩΠΨΣΘΞÆæßÉ !\"#¤%&'()*+,-./0123456789:;<=>?"
    "¡ABCDEFGHIJKLMNOPQRSTUVWXYZÄÖÑÜ§¿abcdefghijklmnopqrstuvwxyzäöñüà"
)
# Escape-table characters cost two septets
_GSM7_ESCAPED = frozenset("^{}[]~|\\€")

# (single message, per segment once concatenated)
_LIMITS = {"gsm7": (160, 153), "ucs2": (70, 67)}


def _encoding(text: str) -> str:
    if all(c in _GSM7_BASIC or c in _GSM7_ESCAPED for c in text):
        return "gsm7"
    return "ucs2"


def _units(text: str, encoding: str) -> int:
    if encoding == "gsm7":
        return len(text) + sum(1 for c in text if c in _GSM7_ESCAPED)
    # UTF-16 code units; characters outside the BMP take two
    return len(text.encode("utf-16-le")) // 2


def segment_count(text: str) -> int:
    """Number of SMS segments Twilio bills for text."""
    if not text:
        return 0
    encoding = _encoding(text)
    units = _units(text, encoding)
    single, per_segment = _LIMITS[encoding]
    if units <= single:
        return 1
    return (units + per_segment - 1) // per_segment


class MessageSender(Protocol):
    async def send_message(self, to: str, body: str) -> dict[str, Any]:
        ...


class SmsNotifier:
    """Sends result texts; delivery errors propagate to the caller."""

    def __init__(self, sender: MessageSender):
        self._sender = sender

    async def send(self, to: str, body: str, **context: Any) -> dict[str, Any]:
        segments = segment_count(body)
        result = await self._sender.send_message(to, body)
        logger.info("sms_sent", to=to, segments=segments,
                    encoding=_encoding(body), msg_sid=result.get("sid", ""), **context)
        return result
