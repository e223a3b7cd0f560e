"""Blob storage for synthesized chapter audio.

Audio files are stored below ``Settings.audio_dir`` in a bucket style
layout, ``audio/<hash>.mp3``. The service itself
serves that directory at ``/media/audio/<hash>.mp3``, which is the public
URL recorded on each asset. Uploads overwrite an existing file with the
same hash.
"""

from __future__ import annotations

import os
import shutil
import tempfile
from pathlib import Path

from .config import get_settings
from .errors import StorageError

AUDIO_PREFIX = "audio"
CONTENT_TYPE = "audio/mpeg"


def audio_path(cache_key: str) -> Path:
    return get_settings().audio_dir / AUDIO_PREFIX / f"{cache_key}.mp3"


def public_url(cache_key: str) -> str:
    return f"{get_settings().public_base_url}/media/audio/{cache_key}.mp3"


def upload_audio(cache_key: str, data: bytes) -> str:
    """Write ``data`` for ``cache_key`` and return its public URL.

    The bytes go to a temporary file of their own and are then moved into
    place, so a reader never sees a half-written MP3. Concurrent uploads
    for the same key do not interfere; the last rename wins.
    """
    target = audio_path(cache_key)
    tmp_path = None
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=target.parent, prefix=f"{cache_key}.", suffix=".part")
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp_path, target)
        tmp_path = None
    except OSError as exc:
        raise StorageError(f"Upload failed: {exc}") from exc
    finally:
        if tmp_path is not None and os.path.exists(tmp_path):
            os.remove(tmp_path)
    return public_url(cache_key)


def delete_audio(cache_key: str) -> bool:
    """Remove the stored file for ``cache_key``; returns whether it existed."""
    target = audio_path(cache_key)
    try:
        target.unlink()
    except FileNotFoundError:
        return False
    except OSError as exc:
        raise StorageError(f"Delete failed: {exc}") from exc
    return True


def delete_all() -> None:
    root = get_settings().audio_dir / AUDIO_PREFIX
    try:
        shutil.rmtree(root)
    except FileNotFoundError:
        return
    except OSError as exc:
        raise StorageError(f"Delete failed: {exc}") from exc
