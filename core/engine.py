"""
Game Engine — LLM calls made during and after a call.

Three uses:
- Name extraction: strict JSON schema, the name may be null
- Challenge host: free-text reply to the running transcript
- Judging: strict JSON schema {won_prize, rating, explanation}

All calls go to OpenAI chat completions; structured answers use
response_format json_schema with strict mode so the reply always parses.
"""
from __future__ import annotations

import json
import structlog
from typing import Any, Optional

from pydantic import ValidationError

from config.settings import LLMConfig, get_settings
from core.errors import JudgementError
from models.schemas import Judgement

logger = structlog.get_logger()


class GameEngine:
    """
    Wraps AsyncOpenAI for the three game prompts.
    The client is created lazily so importing the API never needs a key.
    """

    def __init__(self, config: LLMConfig = None):
        self._config = config or get_settings().llm
        self._client = None

    def _get_client(self):
        if self._client is None:
            from openai import AsyncOpenAI
            self._client = AsyncOpenAI(api_key=self._config.api_key)
            logger.info("llm_client_initialized", provider="openai")
        return self._client

    async def _call_llm(
        self,
        model: str,
        messages: list[dict[str, str]],
        max_tokens: int,
        response_format: dict[str, Any] = None,
    ) -> str:
        client = self._get_client()
        kwargs: dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens,
            "messages": messages,
        }
        if response_format is not None:
            kwargs["response_format"] = response_format
        response = await client.chat.completions.create(**kwargs)
        return response.choices[0].message.content or ""

    @staticmethod
    def _json_schema(name: str, schema: dict[str, Any], description: str = "") -> dict[str, Any]:
        body: dict[str, Any] = {"name": name, "strict": True, "schema": schema}
        if description:
            body["description"] = description
        return {"type": "json_schema", "json_schema": body}

    # ── Name extraction ───────────────────────────────────────

    async def extract_name(self, utterance: str) -> Optional[str]:
        """
        Pull the caller's name out of one transcribed utterance.
        Returns None when the caller did not say one.
        """
        schema = {
            "type": "object",
            "properties": {
                "name": {
                    "type": ["string", "null"],
                    "description": self._config.name_schema_property,
                },
            },
            "required": ["name"],
            "additionalProperties": False,
        }
        raw = await self._call_llm(
            model=self._config.name_model,
            messages=[{"role": "user", "content": utterance}],
            max_tokens=self._config.name_max_tokens,
            response_format=self._json_schema("caller_name", schema),
        )
        try:
            name = json.loads(raw).get("name")
        except (json.JSONDecodeError, AttributeError):
            logger.warning("name_extraction_unparseable", raw=raw[:200])
            return None
        if not isinstance(name, str):
            return None
        name = name.strip()
        # Models sometimes spell out null instead of returning it
        if not name or name.lower() == "null":
            return None
        return name

    # ── Challenge host ────────────────────────────────────────

    async def generate_reply(self, messages: list[dict[str, str]]) -> str:
        reply = await self._call_llm(
            model=self._config.challenge_model,
            messages=messages,
            max_tokens=self._config.challenge_max_tokens,
        )
        return reply.strip()

    # ── Judging ───────────────────────────────────────────────

    async def judge(self, messages: list[dict[str, str]]) -> Judgement:
        """Verdict on the whole call. Raises JudgementError if unusable."""
        schema = {
            "type": "object",
            "properties": {
                "won_prize": {
                    "type": "boolean",
                    "description": self._config.won_schema_property,
                },
                "rating": {
                    "type": "integer",
                    "description": self._config.rating_schema_property,
                },
                "explanation": {
                    "type": "string",
                    "description": self._config.explanation_schema_property,
                },
            },
            "required": ["won_prize", "rating", "explanation"],
            "additionalProperties": False,
        }
        raw = await self._call_llm(
            model=self._config.judge_model,
            messages=messages,
            max_tokens=self._config.judge_max_tokens,
            response_format=self._json_schema(
                "judgement", schema, self._config.judge_schema_description,
            ),
        )
        try:
            return Judgement.model_validate_json(raw)
        except ValidationError as e:
            logger.error("judgement_unparseable", raw=raw[:500], error=str(e))
            raise JudgementError(f"Judge returned no usable verdict: {e}") from e
