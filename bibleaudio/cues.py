"""Verse timing for narrated chapters.

The narration of a chapter is a single audio track. To highlight the
verse being read we need to know where each verse starts and ends inside
that track. Providers do not return word timings for plain synthesis, so
the boundaries are *estimated*: every character is assumed to take the
same amount of time, and each verse gets a share of the total duration
proportional to its length.

The estimate is intentionally simple. Rounding happens per verse and is
never corrected against the true end of the track, so the last cue may
end a few milliseconds before or after ``total_duration_ms``.
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

# Speaking rate used to estimate the length of synthesized audio when no
# measurement of the audio is available: ~5 characters per word, 150 words per minute,
# which works out at 80 ms per character.
CHARS_PER_WORD = 5
WORDS_PER_MINUTE = 150


@dataclass(frozen=True)
class VerseCue:
    """Start/end offsets (milliseconds) of one verse inside a track."""

    verse_id: str
    start_ms: int
    end_ms: int
    verse_number: Optional[int] = None

    def contains(self, time_ms: float) -> bool:
        return self.start_ms <= time_ms < self.end_ms

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "VerseCue":
        verse_number = data.get("verse_number")
        end_ms = data.get("end_ms")
        start_ms = int(data["start_ms"])
        return cls(
            verse_id=str(data["verse_id"]),
            start_ms=start_ms,
            end_ms=int(end_ms) if end_ms is not None else start_ms,
            verse_number=int(verse_number) if verse_number is not None else None,
        )


def round_half_up(value: float) -> int:
    """Round like JavaScript's ``Math.round`` (halves go up)."""
    return int(math.floor(value + 0.5))


def estimate_duration_ms(text: str) -> int:
    """Estimate the narration length of ``text`` in milliseconds."""
    words = len(text) / CHARS_PER_WORD
    return round_half_up(words / WORDS_PER_MINUTE * 60 * 1000)


def estimate_cues(verses: Sequence[Mapping[str, Any]], total_duration_ms: float) -> List[VerseCue]:
    """Distribute ``total_duration_ms`` over ``verses`` by character count.

    ``verses`` are rows with ``id`` and ``text`` (and optionally
    ``verse_number``) in reading order. One cue is returned per verse, in
    the same order. Cues are contiguous and the first one starts at 0.

    When every text is empty all cues are zero-width at 0. A negative
    duration raises ``ValueError``.
    """
    if total_duration_ms < 0:
        raise ValueError("total_duration_ms must not be negative")
    if not verses:
        return []
    total_chars = sum(len(v["text"] or "") for v in verses)
    ms_per_char = total_duration_ms / total_chars if total_chars else 0.0

    cues: List[VerseCue] = []
    current_ms = 0
    for verse in verses:
        verse_ms = round_half_up(len(verse["text"] or "") * ms_per_char)
        cues.append(
            VerseCue(
                verse_id=str(verse["id"]),
                start_ms=current_ms,
                end_ms=current_ms + verse_ms,
                verse_number=verse.get("verse_number"),
            )
        )
        current_ms += verse_ms
    return cues


def find_cue_at(cues: Iterable[VerseCue], time_ms: float) -> Optional[VerseCue]:
    """Return the cue whose ``[start, end)`` interval contains ``time_ms``."""
    for cue in cues:
        if cue.contains(time_ms):
            return cue
    return None


def cue_for_verse(cues: Iterable[VerseCue], verse_number: int) -> Optional[VerseCue]:
    for cue in cues:
        if cue.verse_number == verse_number:
            return cue
    return None


def audio_range(cues: Sequence[VerseCue]) -> Optional[Tuple[int, int]]:
    """Return ``(min start, max end)`` over ``cues`` or ``None`` if empty."""
    if not cues:
        return None
    start = min(cue.start_ms for cue in cues)
    end = max(cue.end_ms for cue in cues)
    return start, end
