"""Text-to-speech adapters for chapter narration.

A provider is any object with a ``name`` attribute and an async
``synthesize(text, voice)`` method returning the MP3 bytes of the whole
text. The generation pipeline sends one request per chapter: the verse
texts joined with single spaces, without verse numbers, so the provider
only ever sees plain prose.

Three providers are available:

* ``ElevenLabsTTSProvider`` - the production voice provider. The voice
  part of a reader key (``elevenlabs:<voice_id>``) is the ElevenLabs
  voice id.
* ``OpenAITTSProvider`` - OpenAI's speech endpoint, reader keys of the
  form ``openai:<voice>`` (``alloy``, ``nova``, ...).
* ``SilentTTSProvider`` - produces silent MP3 audio whose length matches
  the estimated narration time. Useful for development and tests where
  no API key is configured.

Providers make exactly one HTTP call per synthesis and never retry.
Every failure, including an empty response body, is raised as
``SynthesisError``.
"""

from __future__ import annotations

import math
from typing import Any, Dict, Iterable, Mapping, Optional, Protocol

import httpx

from .config import Settings
from .cues import estimate_duration_ms
from .errors import SynthesisError, ValidationError
from .logging_setup import get_logger

logger = get_logger(__name__)

# One MPEG-1 Layer III frame (128 kbit/s, 44.1 kHz, mono) with an all-zero
# body, which decoders play back as silence. 44100 / 1152 frames make up a
# second of audio.
SILENT_FRAME: bytes = b"\xff\xfb\x90\xc4" + bytes(413)
FRAMES_PER_SECOND = 44100 / 1152


class TTSProvider(Protocol):
    name: str

    async def synthesize(self, text: str, voice: str) -> bytes:
        ...


def chapter_text(verses: Iterable[Mapping[str, Any]]) -> str:
    """Join verse texts into the prose sent to a provider."""
    return " ".join(v["text"] for v in verses)


def silent_mp3(duration_ms: int) -> bytes:
    frames = max(1, math.ceil(duration_ms / 1000 * FRAMES_PER_SECOND))
    return SILENT_FRAME * frames


class SilentTTSProvider:
    """A placeholder provider that returns silent MP3 audio.

    The length of the audio follows ``estimate_duration_ms`` so that the
    estimated cues line up with the track as well as they would for real
    speech.
    """

    name = "silent"

    async def synthesize(self, text: str, voice: str) -> bytes:
        return silent_mp3(estimate_duration_ms(text))


class ElevenLabsTTSProvider:
    """Text-to-speech provider using the ElevenLabs API.

    Usage::

        provider = ElevenLabsTTSProvider(api_key=os.environ["ELEVENLABS_API_KEY"])
        audio = await provider.synthesize("Alussa loi Jumala taivaan ja maan.",
                                          "9BWtsMINqrJLrRacOk9x")

    The multilingual model is the default because the texts are Finnish.
    """

    name = "elevenlabs"
    api_url = "https://api.elevenlabs.io/v1/text-to-speech/{voice}"

    def __init__(self, api_key: str, model_id: str = "eleven_multilingual_v2",
                 stability: float = 0.5, similarity_boost: float = 0.75,
                 timeout: float = 120.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.api_key = api_key
        self.model_id = model_id
        self.stability = stability
        self.similarity_boost = similarity_boost
        self.timeout = timeout
        self.transport = transport

    async def synthesize(self, text: str, voice: str) -> bytes:
        payload = {
            "text": text,
            "model_id": self.model_id,
            "voice_settings": {
                "stability": self.stability,
                "similarity_boost": self.similarity_boost,
            },
        }
        headers = {
            "xi-api-key": self.api_key,
            "Content-Type": "application/json",
            "Accept": "audio/mpeg",
        }
        return await _post_for_audio(
            self.name,
            self.api_url.format(voice=voice),
            headers=headers,
            payload=payload,
            timeout=self.timeout,
            transport=self.transport,
        )


class OpenAITTSProvider:
    """Text-to-speech provider using OpenAI's speech endpoint."""

    name = "openai"
    api_url = "https://api.openai.com/v1/audio/speech"

    def __init__(self, api_key: str, model: str = "tts-1", speed: float = 1.0,
                 timeout: float = 120.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.api_key = api_key
        self.model = model
        self.speed = speed
        self.timeout = timeout
        self.transport = transport

    async def synthesize(self, text: str, voice: str) -> bytes:
        payload = {
            "model": self.model,
            "input": text,
            "voice": voice,
            "response_format": "mp3",
            "speed": self.speed,
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        return await _post_for_audio(
            self.name,
            self.api_url,
            headers=headers,
            payload=payload,
            timeout=self.timeout,
            transport=self.transport,
        )


async def _post_for_audio(provider: str, url: str, *, headers: Dict[str, str],
                          payload: Dict[str, Any], timeout: float,
                          transport: Optional[httpx.AsyncBaseTransport]) -> bytes:
    """POST ``payload`` and return the response body, mapping failures."""
    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            response = await client.post(url, headers=headers, json=payload)
            response.raise_for_status()
            audio_bytes = response.content
    except httpx.HTTPStatusError as exc:
        # The body usually explains quota or voice problems; keep it in the logs only.
        logger.error("%s API error %s: %s", provider, exc.response.status_code, exc.response.text[:500])
        raise SynthesisError(f"{provider} API error: {exc.response.status_code}") from exc
    except httpx.HTTPError as exc:
        logger.error("%s request failed: %s", provider, exc)
        raise SynthesisError(f"{provider} request failed") from exc
    if not audio_bytes:
        raise SynthesisError(f"{provider} returned no audio")
    return audio_bytes


def build_providers(settings: Settings) -> Dict[str, TTSProvider]:
    """Register the providers whose credentials are configured."""
    providers: Dict[str, TTSProvider] = {}
    if settings.elevenlabs_api_key:
        providers["elevenlabs"] = ElevenLabsTTSProvider(
            api_key=settings.elevenlabs_api_key, model_id=settings.elevenlabs_model
        )
    if settings.openai_api_key:
        providers["openai"] = OpenAITTSProvider(
            api_key=settings.openai_api_key, model=settings.openai_tts_model
        )
    if settings.enable_silent_provider:
        providers["silent"] = SilentTTSProvider()
    return providers


def get_provider(providers: Mapping[str, TTSProvider], name: str) -> TTSProvider:
    provider = providers.get(name)
    if provider is None:
        raise ValidationError(f"Unsupported TTS provider: {name}")
    return provider
