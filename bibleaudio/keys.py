"""Cache keys and voice selectors.

A chapter rendering is identified by the triple (chapter row id, version
row id, reader key). The reader key is a serialized ``VoiceSelector`` of
the form ``"<provider>:<voice>"``, for example
``"elevenlabs:9BWtsMINqrJLrRacOk9x"``. The cache key is the SHA-256 hex
digest of the three strings concatenated in that order without
separators; it is stored as ``audio_assets.hash`` and also names the
uploaded MP3 file.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass

from .errors import ValidationError


@dataclass(frozen=True)
class VoiceSelector:
    provider: str
    voice: str

    @classmethod
    def parse(cls, reader_key: str) -> "VoiceSelector":
        """Split ``reader_key`` on its first colon.

        Raises ``ValidationError`` when either half is empty.
        """
        if not isinstance(reader_key, str):
            raise ValidationError("reader_key must be a string")
        provider, _, voice = reader_key.partition(":")
        provider = provider.strip()
        voice = voice.strip()
        if not provider or not voice:
            raise ValidationError("Invalid reader_key format. Expected 'provider:voice'")
        return cls(provider=provider, voice=voice)

    def serialize(self) -> str:
        return f"{self.provider}:{self.voice}"

    def __str__(self) -> str:
        return self.serialize()


def compute_key(chapter_id: str, version_id: str, reader_key: str) -> str:
    """Return the cache key for one chapter rendering."""
    digest = hashlib.sha256(f"{chapter_id}{version_id}{reader_key}".encode("utf-8"))
    return digest.hexdigest()
