"""Exception taxonomy for the chapter audio service.

Every error raised on purpose by the service derives from
``AudioServiceError``. Each class carries the HTTP status code that the
FastAPI layer returns for it, so handlers never need to translate
exceptions one by one. None of these errors are retried automatically.
"""

from __future__ import annotations

from typing import Optional


class AudioServiceError(Exception):
    """Base class for expected service failures."""

    status_code: int = 500

    def __init__(self, detail: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(detail)
        self.detail = detail
        if status_code is not None:
            self.status_code = status_code


class ValidationError(AudioServiceError):
    """Missing or malformed identity inputs."""

    status_code = 400


class NotFoundError(AudioServiceError):
    """The chapter, verses or audio asset do not exist."""

    status_code = 404


class SynthesisError(AudioServiceError):
    """The external text-to-speech provider failed."""

    status_code = 502


class StorageError(AudioServiceError):
    """Uploading audio or persisting rows failed."""

    status_code = 500


class PlaybackError(AudioServiceError):
    """Client side failure while loading or playing chapter audio.

    Playback errors are recoverable: the controller keeps its session and
    the user can try again without reloading anything.
    """
