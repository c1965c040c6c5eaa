"""Outbound channels: Twilio voice and SMS."""
from channels.sms_adapter import SmsNotifier, segment_count

__all__ = ["SmsNotifier", "segment_count"]
