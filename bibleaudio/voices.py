"""Narrator voices and the versions they may read.

Voice ids are short slugs used by the UI; ``voice_id`` is the provider's
own identifier that goes into the reader key.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Dict, List, Optional

NO_AUDIO_VOICE_ID = "no-audio"
NO_AUDIO_LABEL = "Ei ääntä toistaiseksi"


@dataclass(frozen=True)
class Voice:
    id: str
    name: str
    voice_id: str
    provider: str = "elevenlabs"

    @property
    def reader_key(self) -> str:
        return f"{self.provider}:{self.voice_id}"

    def to_dict(self) -> Dict[str, str]:
        data = asdict(self)
        data["reader_key"] = self.reader_key if self.id != NO_AUDIO_VOICE_ID else ""
        return data


ELEVENLABS_VOICES: List[Voice] = [
    Voice("aria", "Aria (nainen)", "9BWtsMINqrJLrRacOk9x"),
    Voice("sarah", "Sarah (nainen)", "EXAVITQu4vr4xnSDxMaL"),
    Voice("laura", "Laura (nainen)", "FGY2WhTYpPnrIDTdsKH5"),
    Voice("charlotte", "Charlotte (nainen)", "XB0fDUnXU5powFXDhCwa"),
    Voice("alice", "Alice (nainen)", "Xb7hH8MSUJpSbSDYk0k2"),
    Voice("matilda", "Matilda (nainen)", "XrExE9yKIg1WjnnlVkGX"),
    Voice("jessica", "Jessica (nainen)", "cgSgspJ2msm6clMCkdW9"),
    Voice("lily", "Lily (nainen)", "pFZP5JQG7iQjIQuC4Bku"),
    Voice("roger", "Roger (mies)", "CwhRBWXzGAHq8TQ4Fs17"),
    Voice("charlie", "Charlie (mies)", "IKne3meq5aSn9XLyUdCD"),
    Voice("george", "George (mies)", "JBFqnCBsd6RMkjVDRZzb"),
    Voice("callum", "Callum (mies)", "N2lVS1w4EtoT3dr4eOWO"),
    Voice("liam", "Liam (mies)", "TX3LPaxmHKxFdv7VOQHJ"),
    Voice("will", "Will (mies)", "bIHbv24MWmeRgasZH58o"),
    Voice("eric", "Eric (mies)", "cjVigY5qzO86Huf0OWal"),
    Voice("chris", "Chris (mies)", "iP95p4xoKVk53GoZ742B"),
    Voice("brian", "Brian (mies)", "nPczCjzI2devNBz1zQrb"),
    Voice("daniel", "Daniel (mies)", "onwK4e9ZLuTAKqWW03F9"),
    Voice("bill", "Bill (mies)", "pqHfZKP75CvOlQylNhV4"),
    Voice("river", "River (neutraali)", "SAz9YHcvj6GT2YYXdXww"),
]

# Finnish versions may use every voice. Versions missing here get no audio.
VERSION_ALLOWED_VOICES: Dict[str, List[str]] = {
    "finstlk201": [v.id for v in ELEVENLABS_VOICES],
    "finpr_finn": [v.id for v in ELEVENLABS_VOICES],
}

NO_AUDIO_VOICE = Voice(NO_AUDIO_VOICE_ID, NO_AUDIO_LABEL, NO_AUDIO_VOICE_ID)


def voice_for_reader_key(reader_key: Optional[str]) -> Optional[Voice]:
    for voice in ELEVENLABS_VOICES:
        if voice.reader_key == reader_key:
            return voice
    return None


def voice_options(version_code: str) -> List[Voice]:
    """Return the selectable voices for a version, "no audio" first."""
    allowed = VERSION_ALLOWED_VOICES.get(version_code) or []
    return [NO_AUDIO_VOICE] + [v for v in ELEVENLABS_VOICES if v.id in allowed]


def is_voice_allowed(version_code: str, voice_id: str) -> bool:
    if voice_id == NO_AUDIO_VOICE_ID:
        return True
    return voice_id in (VERSION_ALLOWED_VOICES.get(version_code) or [])


def default_voice(version_code: str, preferred_reader_key: Optional[str] = None) -> str:
    """Pick the voice a version starts with.

    ``preferred_reader_key`` (the configured default reader) wins when the
    version allows its voice; otherwise the first allowed voice is used.
    Versions without voices default to "no audio".
    """
    allowed = VERSION_ALLOWED_VOICES.get(version_code)
    if not allowed:
        return NO_AUDIO_VOICE_ID
    preferred = voice_for_reader_key(preferred_reader_key)
    if preferred is not None and is_voice_allowed(version_code, preferred.id):
        return preferred.id
    return allowed[0]
