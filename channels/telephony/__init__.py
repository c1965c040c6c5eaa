"""
Twilio telephony for the game line.

Provides: REST call control (TwilioClient), TwiML documents (TwimlBuilder),
webhook signature checks and parsing.

Usage:
    from channels.telephony import TwilioClient, TwimlBuilder
    client = TwilioClient(account_sid, auth_token, from_number)
    await client.update_call_url(call_sid, f"{global_url}/end")
"""
from channels.telephony.twilio_client import TwilioClient
from channels.telephony.twiml import TwimlBuilder
from channels.telephony.webhook import (
    TwilioWebhookVerifier, parse_call_event, parse_recording_event,
)

__all__ = [
    "TwilioClient", "TwimlBuilder",
    "TwilioWebhookVerifier", "parse_call_event", "parse_recording_event",
]
