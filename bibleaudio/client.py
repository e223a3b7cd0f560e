"""HTTP client used by the reader to fetch chapter audio.

``AudioServiceClient.generate_chapter_audio`` follows the same steps the
reader app always took: resolve the chapter reference to row ids, ask
the service for the rendering (synthesizing it on first use) and then
fetch the verse cues of that rendering. The result is a ``LoadedAudio``
ready for ``PlaybackController``.

No timeout is applied by default; a first synthesis of a long chapter
can take a while. Every transport or HTTP failure is raised as
``PlaybackError`` with a readable message.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Dict, Optional, Tuple

import httpx

from .cues import VerseCue
from .errors import PlaybackError
from .logging_setup import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ChapterRequest:
    """Identity of one playback session: which chapter, read by whom."""

    book: str
    chapter: int
    version_code: str
    reader_key: str

    def with_chapter(self, book: str, chapter: int) -> "ChapterRequest":
        return replace(self, book=book, chapter=chapter)


@dataclass(frozen=True)
class LoadedAudio:
    audio_id: str
    url: str
    duration_ms: int
    cues: Tuple[VerseCue, ...] = ()
    from_cache: bool = False


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return response.reason_phrase


class AudioServiceClient:
    def __init__(self, base_url: str, timeout: Optional[float] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self.transport)

    async def _request(self, client: httpx.AsyncClient, method: str, url: str,
                       context: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            logger.error("%s: %s", context, exc)
            raise PlaybackError(f"{context}: {exc}") from exc
        if response.is_error:
            raise PlaybackError(f"{context}: {_error_message(response)}",
                                status_code=response.status_code)
        return response

    async def generate_chapter_audio(self, request: ChapterRequest) -> LoadedAudio:
        """Resolve, generate (or fetch) and load cues for ``request``."""
        async with self._client() as client:
            resolved = await self._request(
                client, "GET", "/chapters/resolve", f"Chapter not found: {request.book} {request.chapter}",
                params={"book": request.book, "chapter": request.chapter, "version": request.version_code},
            )
            ids = resolved.json()
            generated = await self._request(
                client, "POST", "/generate-audio", "Audio generation failed",
                json={
                    "chapter_id": ids["chapter_id"],
                    "version_id": ids["version_id"],
                    "reader_key": request.reader_key,
                },
            )
            data: Dict[str, Any] = generated.json()
            if not data.get("file_url"):
                raise PlaybackError("No audio URL returned from server")
            cue_response = await self._request(
                client, "GET", f"/audio/{data['audio_id']}/cues", "Loading audio cues failed"
            )
            cues = tuple(VerseCue.from_dict(row) for row in cue_response.json())
        logger.info("Loaded audio %s with %d cues", data["audio_id"], len(cues))
        return LoadedAudio(
            audio_id=data["audio_id"],
            url=data["file_url"],
            duration_ms=int(data["duration_ms"]),
            cues=cues,
            from_cache=bool(data.get("from_cache")),
        )

    async def get_next_chapter(self, request: ChapterRequest) -> Optional[ChapterRequest]:
        """Return the request for the chapter after ``request``, if any."""
        async with self._client() as client:
            try:
                response = await client.get(
                    "/chapters/next",
                    params={"book": request.book, "chapter": request.chapter, "version": request.version_code},
                )
            except httpx.HTTPError as exc:
                raise PlaybackError(f"Next chapter lookup failed: {exc}") from exc
        if response.status_code == 404:
            return None
        if response.is_error:
            raise PlaybackError(f"Next chapter lookup failed: {_error_message(response)}",
                                status_code=response.status_code)
        data = response.json()
        return request.with_chapter(data["book"], int(data["chapter"]))
