from __future__ import annotations

from typing import Dict, List, Tuple

import pytest

from bibleaudio import db
from bibleaudio.config import get_settings
from bibleaudio.errors import SynthesisError

# Exactly 10, 20 and 30 characters.
JOHN_1 = ["Alussa oli", "ja Sana oli Jumalan.", "Hän oli alussa Jumalan tykönä."]
JOHN_2 = ["Ja kolmantena päivänä", "oli häät Galilean Kaanassa."]
ROMANS_1 = ["Paavali, Kristuksen Jeesuksen palvelija."]

READER_KEY = "elevenlabs:9BWtsMINqrJLrRacOk9x"


class RecordingProvider:
    """TTS provider test double that records every synthesis call."""

    name = "elevenlabs"

    def __init__(self, payload: bytes = b"ID3-fake-mp3") -> None:
        self.payload = payload
        self.calls: List[Tuple[str, str]] = []

    async def synthesize(self, text: str, voice: str) -> bytes:
        self.calls.append((text, voice))
        return self.payload


class FailingProvider:
    name = "elevenlabs"

    def __init__(self) -> None:
        self.calls = 0

    async def synthesize(self, text: str, voice: str) -> bytes:
        self.calls += 1
        raise SynthesisError("elevenlabs API error: 429")


@pytest.fixture(autouse=True)
def service_env(tmp_path, monkeypatch):
    monkeypatch.setenv("BIBLEAUDIO_DB", str(tmp_path / "bibleaudio.db"))
    monkeypatch.setenv("BIBLEAUDIO_AUDIO_DIR", str(tmp_path / "storage"))
    monkeypatch.setenv("BIBLEAUDIO_PUBLIC_URL", "http://testserver")
    monkeypatch.delenv("ELEVENLABS_API_KEY", raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    get_settings.cache_clear()
    db.init_db()
    yield tmp_path
    get_settings.cache_clear()


def _seed_chapter(book_id: str, version_id: str, number: int, texts: List[str]) -> Dict[str, object]:
    chapter_id = db.insert_chapter({"book_id": book_id, "chapter_number": number})
    verse_ids = [
        db.insert_verse({
            "chapter_id": chapter_id,
            "version_id": version_id,
            "verse_number": i,
            "text": text,
        })
        for i, text in enumerate(texts, start=1)
    ]
    return {"id": chapter_id, "verse_ids": verse_ids}


@pytest.fixture
def bible() -> Dict[str, object]:
    """A tiny Bible: John 1-2 and Romans 1 of one Finnish version."""
    version_id = db.insert_version({"code": "finstlk201", "name": "STLK 2017", "language_code": "fi"})
    john = db.insert_book({"version_id": version_id, "name": "Johannes", "book_order": 43, "chapters_count": 2})
    romans = db.insert_book({
        "version_id": version_id,
        "name": "Kirje roomalaisille",
        "book_order": 45,
        "chapters_count": 1,
    })
    return {
        "version_id": version_id,
        "john_1": _seed_chapter(john, version_id, 1, JOHN_1),
        "john_2": _seed_chapter(john, version_id, 2, JOHN_2),
        "romans_1": _seed_chapter(romans, version_id, 1, ROMANS_1),
    }


def clear_cues(audio_id: str) -> None:
    conn = db.get_connection()
    conn.execute("DELETE FROM audio_cues WHERE audio_id = ?", (audio_id,))
    conn.commit()
    conn.close()
