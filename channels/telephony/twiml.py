"""
TwiML builders — the small set of call-control documents the game speaks.

Every webhook answers with one of these. Voice, language and speech model
come from the game config so all stages sound the same.
"""
from __future__ import annotations

from twilio.twiml.voice_response import VoiceResponse

from config.settings import GameConfig


class TwimlBuilder:

    def __init__(self, game: GameConfig, global_url: str):
        self.game = game
        self.global_url = global_url.rstrip("/")

    def url(self, path: str) -> str:
        return f"{self.global_url}/{path.lstrip('/')}"

    def say(self, response: VoiceResponse, text: str) -> None:
        response.say(text, voice=self.game.voice, language=self.game.language)

    def say_then_redirect(self, text: str, path: str) -> str:
        response = VoiceResponse()
        self.say(response, text)
        response.redirect(self.url(path), method="POST")
        return str(response)

    def say_only(self, text: str) -> str:
        response = VoiceResponse()
        self.say(response, text)
        return str(response)

    def say_then_hangup(self, text: str) -> str:
        response = VoiceResponse()
        self.say(response, text)
        response.hangup()
        return str(response)

    def redirect(self, path: str) -> str:
        response = VoiceResponse()
        response.redirect(self.url(path), method="POST")
        return str(response)

    def gather(self, path: str) -> str:
        """Listen for speech and post it to path; loop back on silence."""
        response = VoiceResponse()
        response.gather(
            input="speech",
            action=self.url(path),
            method="POST",
            timeout=self.game.gather_timeout,
            speech_timeout="auto",
            speech_model=self.game.speech_model,
            language=self.game.language,
        )
        response.redirect(self.url(path), method="POST")
        return str(response)

    @staticmethod
    def reject() -> str:
        response = VoiceResponse()
        response.reject()
        return str(response)

    @staticmethod
    def empty() -> str:
        return str(VoiceResponse())
