"""Chapter audio generation and cue maintenance.

``generate_chapter_audio`` is the request level coordinator behind
``POST /generate-audio``. For a (chapter, version, reader key) triple it
either returns the cached rendering or produces a new one:

1. validate the three identifiers and parse the reader key;
2. load the chapter's verses (``NotFoundError`` when there are none);
3. compute the cache key;
4. look up the asset stored under that key;
5. cache hit with cues: return at once, no provider is touched;
6. cache hit without cues: estimate cues from the stored duration and save
   them;
7. cache miss: synthesize, upload, estimate the duration, save the asset,
   estimate and save the cues.

Writes are ordered so that a failure at any step leaves nothing partial
behind: the asset row is only written after synthesis and upload have
succeeded, and cues only after the asset row exists.

``repair_missing_cues`` is the maintenance entry point. It walks assets
and gives every asset without cues a freshly estimated set. Each asset is
handled independently; failures are counted, not raised.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from . import db, storage
from .cues import VerseCue, audio_range, estimate_cues, estimate_duration_ms
from .errors import AudioServiceError, NotFoundError, ValidationError
from .keys import VoiceSelector, compute_key
from .logging_setup import get_logger
from .tts import TTSProvider, chapter_text, get_provider

logger = get_logger(__name__)


@dataclass
class GenerationResult:
    audio_id: str
    file_url: str
    duration_ms: int
    from_cache: bool
    cues: List[VerseCue] = field(default_factory=list)

    def to_response(self) -> Dict[str, Any]:
        return {
            "audio_id": self.audio_id,
            "file_url": self.file_url,
            "duration_ms": self.duration_ms,
            "from_cache": self.from_cache,
        }


@dataclass
class RepairResult:
    processed: int = 0
    created: int = 0
    skipped: int = 0
    errors: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "processed": self.processed,
            "created": self.created,
            "skipped": self.skipped,
            "errors": self.errors,
        }


def _require(value: Any, name: str) -> str:
    if value is None or value == "":
        raise ValidationError("chapter_id, version_id, and reader_key are required")
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{name} must be a non-empty string")
    return value


def _load_verses(chapter_id: str, version_id: str) -> List[Dict[str, Any]]:
    verses = db.get_chapter_verses(chapter_id, version_id)
    if not verses:
        raise NotFoundError("No verses found for this chapter")
    return verses


def _store_estimated_cues(audio_id: str, verses: List[Dict[str, Any]],
                          duration_ms: int) -> List[VerseCue]:
    cues = estimate_cues(verses, duration_ms)
    db.insert_cues(audio_id, cues)
    return cues


async def generate_chapter_audio(chapter_id: Any, version_id: Any, reader_key: Any,
                                 providers: Mapping[str, TTSProvider]) -> GenerationResult:
    """Return cached or freshly synthesized audio for one chapter."""
    chapter_id = _require(chapter_id, "chapter_id")
    version_id = _require(version_id, "version_id")
    reader_key = _require(reader_key, "reader_key")
    selector = VoiceSelector.parse(reader_key)

    verses = _load_verses(chapter_id, version_id)
    cache_key = compute_key(chapter_id, version_id, reader_key)

    existing = db.find_asset_by_hash(cache_key)
    if existing:
        stored_cues = db.get_cues(existing["id"])
        if stored_cues:
            logger.info("Audio already exists for hash %s", cache_key)
            return GenerationResult(
                audio_id=existing["id"],
                file_url=existing["file_url"],
                duration_ms=existing["duration_ms"],
                from_cache=True,
                cues=[VerseCue.from_dict(row) for row in stored_cues],
            )
        logger.info("Audio cues missing for audio %s, estimating from stored duration", existing["id"])
        cues = _store_estimated_cues(existing["id"], verses, existing["duration_ms"])
        return GenerationResult(
            audio_id=existing["id"],
            file_url=existing["file_url"],
            duration_ms=existing["duration_ms"],
            from_cache=True,
            cues=cues,
        )

    provider = get_provider(providers, selector.provider)
    full_text = chapter_text(verses)
    logger.info("Generating TTS for %d verses using %s", len(verses), reader_key)
    audio_bytes = await provider.synthesize(full_text, selector.voice)

    file_url = storage.upload_audio(cache_key, audio_bytes)
    duration_ms = estimate_duration_ms(full_text)
    asset = db.insert_asset({
        "hash": cache_key,
        "chapter_id": chapter_id,
        "version_id": version_id,
        "file_url": file_url,
        "duration_ms": duration_ms,
        "scope": "chapter",
        "reader_key": reader_key,
        "tts_provider": selector.provider,
        "voice": selector.voice,
    })
    # A concurrent request may have stored its asset (and cues) first; the
    # stored row wins and insert_cues is a no-op if its cues already exist.
    cues = _store_estimated_cues(asset["id"], verses, asset["duration_ms"])
    logger.info("Audio generated successfully: %s", asset["file_url"])
    return GenerationResult(
        audio_id=asset["id"],
        file_url=asset["file_url"],
        duration_ms=asset["duration_ms"],
        from_cache=False,
        cues=cues,
    )


def repair_missing_cues(audio_id: Optional[str] = None, force: bool = False) -> RepairResult:
    """Estimate and store cues for assets that have none.

    ``audio_id`` limits the run to one asset. With ``force`` existing cue
    sets are replaced as well. The absence of cues is re-checked per
    asset right before writing, so repeated or overlapping runs never
    create a second set.
    """
    results = RepairResult()
    assets = db.list_assets(audio_id)
    logger.info("Found %d audio assets to process", len(assets))

    for asset in assets:
        try:
            exists = db.has_cues(asset["id"])
            if exists and not force:
                logger.info("Skipping audio %s - cues exist", asset["id"])
                results.skipped += 1
                continue
            verses = db.get_chapter_verses(asset["chapter_id"], asset["version_id"])
            if not verses:
                logger.error("No verses found for audio %s", asset["id"])
                results.errors += 1
                continue
            cues = estimate_cues(verses, asset["duration_ms"])
            if exists:
                created = db.replace_cues(asset["id"], cues)
            else:
                created = db.insert_cues(asset["id"], cues)
            if created == 0:
                logger.info("Skipping audio %s - cues appeared during repair", asset["id"])
                results.skipped += 1
                continue
            logger.info("Created %d cues for audio %s", created, asset["id"])
            results.created += created
            results.processed += 1
        except (AudioServiceError, ValueError, sqlite3.Error) as exc:
            logger.error("Error processing audio %s: %s", asset["id"], exc)
            results.errors += 1

    logger.info("Regeneration complete: %s", results.to_dict())
    return results


def verse_range_audio(verse_ids: List[str]) -> Dict[str, Any]:
    """Describe the part of a chapter track that covers ``verse_ids``.

    Returns ``{"available", "url", "startTime", "endTime"}`` with times in
    seconds. Only cues of one asset are considered (the asset of the
    earliest matching cue), so renderings by different voices never mix.
    """
    audio: Dict[str, Any] = {"available": False, "url": None, "startTime": None, "endTime": None}
    rows = db.cues_for_verses(verse_ids)
    if not rows:
        return audio
    audio_id = rows[0]["audio_id"]
    asset = db.get_asset(audio_id)
    if not asset:
        return audio
    cues = [VerseCue.from_dict(row) for row in rows if row["audio_id"] == audio_id]
    start_ms, end_ms = audio_range(cues)
    audio.update(
        available=True,
        url=asset["file_url"],
        startTime=start_ms / 1000,
        endTime=end_ms / 1000,
    )
    return audio
