"""Main FastAPI application for the chapter audio service.

The HTTP API mirrors the serverless functions the reader app calls:

* ``POST /generate-audio`` - return cached chapter audio or synthesize it;
* ``GET /audio/{audio_id}/cues`` - verse timings for a rendering;
* ``POST /regenerate-audio-cues`` - maintenance job filling in missing cues;
* ``GET /chapters/resolve`` and ``GET /chapters/next`` - chapter lookups the
  playback client needs;
* ``GET /embed`` - verse text plus the matching audio range for the
  third-party widget;
* ``GET /voices`` - narrator options for a version;
* ``/admin/audio`` - list and delete cached renderings;
* ``GET /media/audio/{hash}.mp3`` - the stored MP3 files, with HTTP range
  support so browsers can seek.

Expected failures are raised as ``AudioServiceError`` subclasses and
turned into ``{"error": ...}`` JSON responses with the status code the
error class carries.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Tuple
from urllib.parse import quote

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from . import db, generation, storage, tts, voices
from .config import get_settings
from .errors import AudioServiceError, NotFoundError, SynthesisError, ValidationError
from .logging_setup import get_logger
from .reference import parse_reference

logger = get_logger(__name__)

app = FastAPI(title="Raamattu Chapter Audio Service")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
)

PROVIDERS = tts.build_providers(get_settings())

DEFAULT_VERSION_NAME = "Suomalainen raamatunkäännös"
_HASH_RE = re.compile(r"^[0-9a-f]{64}$")


@app.on_event("startup")
async def on_startup() -> None:
    """Initialise the database on startup."""
    db.init_db()
    logger.info("Registered TTS providers: %s", ", ".join(sorted(PROVIDERS)) or "none")


@app.exception_handler(AudioServiceError)
async def audio_service_error_handler(request: Request, exc: AudioServiceError) -> JSONResponse:
    if isinstance(exc, SynthesisError):
        body = {"error": "Audio generation failed", "details": exc.detail}
    else:
        body = {"error": exc.detail}
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.detail)
    return JSONResponse(body, status_code=exc.status_code)


async def _json_body(request: Request, required: bool = True) -> Dict[str, Any]:
    try:
        data = await request.json()
    except ValueError:
        if required:
            raise ValidationError("Request body must be JSON")
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


@app.post("/generate-audio")
async def generate_audio_endpoint(request: Request) -> Response:
    """Return the audio rendering of a chapter, synthesizing it on a miss."""
    data = await _json_body(request)
    result = await generation.generate_chapter_audio(
        data.get("chapter_id"),
        data.get("version_id"),
        data.get("reader_key"),
        providers=PROVIDERS,
    )
    return JSONResponse(result.to_response())


@app.get("/audio/{audio_id}/cues")
async def audio_cues_endpoint(audio_id: str) -> Response:
    if not db.get_asset(audio_id):
        raise NotFoundError("Audio not found")
    return JSONResponse(db.get_cues(audio_id))


@app.post("/regenerate-audio-cues")
async def regenerate_cues_endpoint(request: Request) -> Response:
    """Fill in cues for cached audio that has none.

    Optional body: ``{"audio_id": ..., "force": true}``. ``force`` replaces
    existing cue sets too.
    """
    data = await _json_body(request, required=False)
    force = data.get("force", False)
    if not isinstance(force, bool):
        raise ValidationError("force must be a boolean")
    results = generation.repair_missing_cues(audio_id=data.get("audio_id"), force=force)
    return JSONResponse({"success": True, "results": results.to_dict()})


@app.get("/chapters/resolve")
async def resolve_chapter_endpoint(book: str, chapter: int, version: Optional[str] = None) -> Response:
    version_code = version or get_settings().default_version
    ids = db.resolve_chapter(book, chapter, version_code)
    if not ids:
        raise NotFoundError(f"Chapter not found: {book} {chapter}")
    return JSONResponse(ids)


@app.get("/chapters/next")
async def next_chapter_endpoint(book: str, chapter: int, version: Optional[str] = None) -> Response:
    version_code = version or get_settings().default_version
    following = db.get_next_chapter(book, chapter, version_code)
    if not following:
        raise NotFoundError("No next chapter")
    return JSONResponse(following)


@app.get("/embed")
async def embed_endpoint(ref: Optional[str] = None, version: Optional[str] = None) -> Response:
    """Verses and audio range for the embeddable widget."""
    if not ref:
        raise ValidationError("Missing ref parameter")
    version_code = version or get_settings().default_version
    parsed = parse_reference(ref)
    if not parsed:
        raise ValidationError("Invalid reference format")

    verses = db.get_verses_by_ref(parsed.book, parsed.chapter, parsed.verse_numbers, version_code)
    if not verses:
        raise NotFoundError("Verses not found")

    version_row = db.get_version_by_code(version_code)
    version_name = (version_row or {}).get("name") or DEFAULT_VERSION_NAME
    audio = generation.verse_range_audio([v["verse_id"] for v in verses])

    book_name = verses[0]["book_name"]
    link = (f"{get_settings().public_base_url}/?book={quote(book_name)}"
            f"&chapter={parsed.chapter}&verse={parsed.start_verse}")
    body = {
        "reference": parsed.label(book_name),
        "version": version_name,
        "versionCode": version_code,
        "verses": [{"number": v["verse_number"], "text": v["text_content"]} for v in verses],
        "audio": audio,
        "link": link,
    }
    return JSONResponse(body, headers={"Cache-Control": "public, max-age=3600"})


@app.get("/voices")
async def voices_endpoint(version: Optional[str] = None) -> Response:
    version_code = version or get_settings().default_version
    return JSONResponse({
        "version": version_code,
        "default": voices.default_voice(version_code, get_settings().default_reader_key),
        "voices": [v.to_dict() for v in voices.voice_options(version_code)],
    })


@app.get("/admin/audio")
async def admin_list_audio() -> Response:
    assets = db.list_assets()
    return JSONResponse({
        "assets": assets,
        "total_audio": len(assets),
        "total_cues": sum(a["cues_count"] for a in assets),
    })


@app.delete("/admin/audio/{audio_id}")
async def admin_delete_audio(audio_id: str) -> Response:
    """Delete one rendering: its cues, its row and its stored file."""
    asset = db.delete_asset(audio_id)
    if not asset:
        raise NotFoundError("Audio not found")
    storage.delete_audio(asset["hash"])
    logger.info("Deleted audio %s", audio_id)
    return JSONResponse({"deleted": True, "audio_id": audio_id})


@app.delete("/admin/audio")
async def admin_delete_all_audio() -> Response:
    deleted = db.delete_all_audio()
    storage.delete_all()
    logger.warning("Deleted all audio (%d assets)", deleted)
    return JSONResponse({"deleted": deleted})


_RANGE_RE = re.compile(r"^bytes=(\d*)-(\d*)$")


class RangeNotSatisfiable(Exception):
    def __init__(self, size: int) -> None:
        super().__init__(f"bytes */{size}")
        self.size = size


def _byte_range(header: str, size: int) -> Optional[Tuple[int, int]]:
    """Resolve a single ``Range`` header against ``size`` bytes.

    Returns the inclusive ``(first, last)`` byte positions, or ``None`` when
    the header is not a single byte range (the whole file is sent then).
    Raises ``RangeNotSatisfiable`` for ranges beyond the end of the file.
    """
    match = _RANGE_RE.match(header.strip())
    if not match or match.groups() == ("", ""):
        return None
    first, last = match.groups()
    if not first:
        # Suffix range: the final N bytes.
        length = int(last)
        if length == 0 or size == 0:
            raise RangeNotSatisfiable(size)
        return max(size - length, 0), size - 1
    start = int(first)
    end = min(int(last), size - 1) if last else size - 1
    if start >= size or start > end:
        raise RangeNotSatisfiable(size)
    return start, end


def _read_chunks(path: Path, start: int, end: int, chunk_size: int = 64 * 1024) -> Iterator[bytes]:
    """Yield the bytes of ``path`` from ``start`` to ``end`` inclusive."""
    remaining = end - start + 1
    with path.open("rb") as f:
        f.seek(start)
        while remaining > 0:
            chunk = f.read(min(chunk_size, remaining))
            if not chunk:
                return
            remaining -= len(chunk)
            yield chunk


@app.get("/media/audio/{cache_key}.mp3")
async def stream_audio(cache_key: str, request: Request) -> Response:
    """Serve a stored chapter MP3, honouring single byte ranges for seeking."""
    path = storage.audio_path(cache_key)
    if not _HASH_RE.match(cache_key) or not path.is_file():
        raise NotFoundError("Audio not found")
    size = path.stat().st_size
    headers = {"Accept-Ranges": "bytes"}
    try:
        byte_range = _byte_range(request.headers.get("range", ""), size)
    except RangeNotSatisfiable as exc:
        return Response(status_code=416, headers={**headers, "Content-Range": str(exc)})
    if byte_range is None:
        headers["Content-Length"] = str(size)
        return StreamingResponse(_read_chunks(path, 0, size - 1), media_type=storage.CONTENT_TYPE,
                                 headers=headers)
    start, end = byte_range
    headers["Content-Range"] = f"bytes {start}-{end}/{size}"
    headers["Content-Length"] = str(end - start + 1)
    return StreamingResponse(_read_chunks(path, start, end), status_code=206,
                             media_type=storage.CONTENT_TYPE, headers=headers)
