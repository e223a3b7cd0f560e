"""Runtime configuration for the chapter audio service.

All settings come from environment variables so that the same code runs
locally, in tests and on Vercel. ``get_settings`` caches the parsed
values; tests that change the environment call
``get_settings.cache_clear()``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Mapping, Optional

DEFAULT_VERSION_CODE = "finstlk201"
# Aria, the first voice in the ElevenLabs catalog.
DEFAULT_READER_KEY = "elevenlabs:9BWtsMINqrJLrRacOk9x"

_FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class Settings:
    db_path: str
    audio_dir: Path
    public_base_url: str
    default_version: str = DEFAULT_VERSION_CODE
    default_reader_key: str = DEFAULT_READER_KEY
    elevenlabs_api_key: Optional[str] = None
    elevenlabs_model: str = "eleven_multilingual_v2"
    openai_api_key: Optional[str] = None
    openai_tts_model: str = "tts-1"
    enable_silent_provider: bool = True
    log_level: str = "INFO"


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """Build ``Settings`` from ``env`` (defaults to ``os.environ``)."""
    env = os.environ if env is None else env
    silent = env.get("BIBLEAUDIO_ENABLE_SILENT", "1").strip().lower()
    return Settings(
        db_path=env.get("BIBLEAUDIO_DB", "/tmp/bibleaudio/bibleaudio.db"),
        audio_dir=Path(env.get("BIBLEAUDIO_AUDIO_DIR", "/tmp/bibleaudio/storage")),
        public_base_url=env.get("BIBLEAUDIO_PUBLIC_URL", "http://localhost:8000").rstrip("/"),
        default_version=env.get("BIBLEAUDIO_DEFAULT_VERSION", DEFAULT_VERSION_CODE),
        default_reader_key=env.get("BIBLEAUDIO_DEFAULT_READER", DEFAULT_READER_KEY),
        elevenlabs_api_key=env.get("ELEVENLABS_API_KEY") or None,
        elevenlabs_model=env.get("ELEVENLABS_MODEL", "eleven_multilingual_v2"),
        openai_api_key=env.get("OPENAI_API_KEY") or None,
        openai_tts_model=env.get("OPENAI_TTS_MODEL", "tts-1"),
        enable_silent_provider=silent not in _FALSE_VALUES,
        log_level=env.get("LOG_LEVEL", "INFO").upper(),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()
