"""
GameCall settings: dataclass sections filled from settings.yaml.
String values may reference environment variables as ${VAR}.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Optional

import yaml


@dataclass
class GameConfig:
    daily_attempt_limit: int = 3       # above this the caller hears the limit message
    daily_response_limit: int = 10     # above this the call is rejected silently
    record_retry: int = 5
    record_retry_wait: float = 1.0     # seconds between recording start attempts
    max_challenge_time: int = 60       # seconds, sponsor challenge_time is clamped to this
    gather_timeout: int = 5
    speech_model: str = "phone_call"
    voice: str = "Polly.Matthew-Neural"
    language: str = "en-US"


@dataclass
class TextsConfig:
    out_of_attempts: str = (
        "You have used all $attempts attempts for today. Call again tomorrow!"
    )
    name_not_found: str = "Sorry, I didn't catch your name. Could you repeat it?"
    apology: str = "Sorry, I lost my train of thought. Please go on."
    no_sponsor: str = "There is no game running right now. Please call again later."


@dataclass
class LLMConfig:
    api_key: str = ""
    name_model: str = "gpt-4o-mini"
    name_max_tokens: int = 64
    name_schema_property: str = (
        "The first name of the caller, or null if no name was said."
    )
    challenge_model: str = "gpt-4o"
    challenge_max_tokens: int = 256
    judge_model: str = "gpt-4o"
    judge_max_tokens: int = 512
    judge_schema_description: str = (
        "Judge whether the caller completed the sponsor's challenge."
    )
    won_schema_property: str = "True if the caller completed the challenge."
    rating_schema_property: str = (
        "How entertaining the call was, from 1 (dull) to 10 (outstanding)."
    )
    explanation_schema_property: str = "One or two sentences explaining the verdict."


@dataclass
class TelephonyConfig:
    account_sid: str = ""
    auth_token: str = ""
    phone_number: str = ""
    validate_signatures: bool = True


@dataclass
class LedgerConfig:
    rpc_url: str = "https://api.mainnet-beta.solana.com"
    compute_unit_limit: int = 40_000
    compute_unit_price: int = 1_000    # micro-lamports
    treasury_public_key: str = ""
    treasury_private_key: str = ""      # base58; pays fees for launchpad transactions


@dataclass
class LaunchpadConfig:
    """Defaults for sponsors created through the launchpad."""
    launch_fee_lamports: int = 1_000_000_000
    start_prefix: str = "Lets start the game:"
    greeting_text: str = "Welcome to Why dot Fun. Please tell me your name to start the game."
    end_text: str = (
        "Alright, your time is up! Thank you for participating. "
        "You will receive a text message with the results of your attempt."
    )
    won_text: str = (
        "Congratulations {name}, you won! Claim your prize: {link}. "
        "View the video of your attempt here: {video_url} (it will be ready in around 15 minutes)"
    )
    lost_text: str = "Unfortunately, you did not win this time. Better luck next time!"
    listing_days: int = 14             # /api/attempts shows this many days


@dataclass
class DatabaseConfig:
    url: str = "sqlite:///./gamecall.db"        # postgresql:// | sqlite://
    store_backend: str = "memory"                # "sql" | "memory"


@dataclass
class MediaConfig:
    recordings_dir: str = "./cache/recordings"
    drafts_dir: str = "./cache/drafts"
    recording_timeout: int = 120               # seconds to wait for the recording
    recording_poll_interval: float = 1.0
    video_base_url: str = "https://gamecall.ams3.cdn.digitaloceanspaces.com"


@dataclass
class Settings:
    app_name: str = "GameCall"
    debug: bool = False
    global_url: str = "http://localhost:8000"
    claim_url: str = "https://claim.why.fun/"
    game: GameConfig = field(default_factory=GameConfig)
    texts: TextsConfig = field(default_factory=TextsConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    telephony: TelephonyConfig = field(default_factory=TelephonyConfig)
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    launchpad: LaunchpadConfig = field(default_factory=LaunchpadConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    media: MediaConfig = field(default_factory=MediaConfig)


_settings: Optional[Settings] = None

_ENV_REF = re.compile(r"\$\{(\w+)\}")

_SECTIONS = {
    "game": GameConfig,
    "texts": TextsConfig,
    "llm": LLMConfig,
    "telephony": TelephonyConfig,
    "ledger": LedgerConfig,
    "launchpad": LaunchpadConfig,
    "database": DatabaseConfig,
    "media": MediaConfig,
}


def _expand_env(node: Any) -> Any:
    """Expand ${VAR} references in every string of the parsed YAML tree.
    Unset variables are left as written."""
    if isinstance(node, str):
        return _ENV_REF.sub(lambda m: os.environ.get(m.group(1), m.group(0)), node)
    if isinstance(node, dict):
        return {key: _expand_env(value) for key, value in node.items()}
    if isinstance(node, list):
        return [_expand_env(value) for value in node]
    return node


def _build_section(cls, raw: dict[str, Any]):
    """Instantiate a config dataclass from the keys it knows about."""
    known = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in (raw or {}).items() if k in known})


def _default_path() -> str:
    return os.environ.get("GAMECALL_CONFIG", str(Path(__file__).parent / "settings.yaml"))


def load_settings(config_path: str = None) -> Settings:
    """Read settings.yaml (or GAMECALL_CONFIG); a missing file means defaults."""
    global _settings

    path = Path(config_path or _default_path())
    settings = Settings()

    if path.exists():
        raw = _expand_env(yaml.safe_load(path.read_text()) or {})
        for key in ("app_name", "debug", "claim_url"):
            if key in raw:
                setattr(settings, key, raw[key])
        settings.global_url = str(raw.get("global_url", settings.global_url)).rstrip("/")
        for name, cls in _SECTIONS.items():
            if name in raw:
                setattr(settings, name, _build_section(cls, raw[name]))

    _settings = settings
    return settings


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings
