import asyncio
import json

import httpx
import pytest

from bibleaudio import tts
from bibleaudio.config import load_settings
from bibleaudio.errors import SynthesisError, ValidationError


def test_chapter_text_joins_verses_with_spaces():
    assert tts.chapter_text([{"text": "Alussa oli"}, {"text": "Sana."}]) == "Alussa oli Sana."


def test_elevenlabs_request():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, content=b"ID3audio")

    provider = tts.ElevenLabsTTSProvider(api_key="secret", transport=httpx.MockTransport(handler))
    audio = asyncio.run(provider.synthesize("Alussa oli Sana.", "9BWtsMINqrJLrRacOk9x"))

    assert audio == b"ID3audio"
    assert seen["url"] == "https://api.elevenlabs.io/v1/text-to-speech/9BWtsMINqrJLrRacOk9x"
    assert seen["headers"]["xi-api-key"] == "secret"
    assert seen["body"] == {
        "text": "Alussa oli Sana.",
        "model_id": "eleven_multilingual_v2",
        "voice_settings": {"stability": 0.5, "similarity_boost": 0.75},
    }


def test_openai_request():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers["authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, content=b"mp3")

    provider = tts.OpenAITTSProvider(api_key="sk-test", transport=httpx.MockTransport(handler))
    assert asyncio.run(provider.synthesize("Amen.", "alloy")) == b"mp3"
    assert seen["auth"] == "Bearer sk-test"
    assert seen["body"]["voice"] == "alloy"
    assert seen["body"]["input"] == "Amen."


def test_provider_error_status_is_a_synthesis_error():
    transport = httpx.MockTransport(lambda request: httpx.Response(429, text="quota exceeded"))
    provider = tts.ElevenLabsTTSProvider(api_key="secret", transport=transport)
    with pytest.raises(SynthesisError) as exc_info:
        asyncio.run(provider.synthesize("teksti", "voice"))
    assert exc_info.value.detail == "elevenlabs API error: 429"
    assert exc_info.value.status_code == 502


def test_transport_failure_is_a_synthesis_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    provider = tts.ElevenLabsTTSProvider(api_key="secret", transport=httpx.MockTransport(handler))
    with pytest.raises(SynthesisError):
        asyncio.run(provider.synthesize("teksti", "voice"))


def test_empty_audio_is_a_synthesis_error():
    provider = tts.OpenAITTSProvider(
        api_key="sk-test", transport=httpx.MockTransport(lambda request: httpx.Response(200))
    )
    with pytest.raises(SynthesisError):
        asyncio.run(provider.synthesize("teksti", "alloy"))


def test_silent_provider_returns_mpeg_frames():
    audio = asyncio.run(tts.SilentTTSProvider().synthesize("x" * 100, "any"))
    assert audio.startswith(b"\xff\xfb")
    assert len(audio) % len(tts.SILENT_FRAME) == 0
    # 8 seconds of audio
    assert len(audio) // len(tts.SILENT_FRAME) == 307


def test_build_providers_follows_configuration():
    settings = load_settings({"ELEVENLABS_API_KEY": "el", "BIBLEAUDIO_ENABLE_SILENT": "1"})
    providers = tts.build_providers(settings)
    assert sorted(providers) == ["elevenlabs", "silent"]
    assert tts.get_provider(providers, "silent").name == "silent"
    with pytest.raises(ValidationError):
        tts.get_provider(providers, "openai")
