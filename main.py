"""
Entry point for Vercel.

This module exposes the FastAPI application instance defined in the
`bibleaudio.main` module. Vercel's Python runtime imports this file and
looks for an object called `app`, which it uses to handle incoming HTTP
requests, so the chapter audio functions run without a separate Uvicorn
server.

Usage:
    Point the Vercel Python runtime (or any ASGI server, e.g.
    `uvicorn main:app`) at this module. Configure the service through
    environment variables (see `bibleaudio/config.py`),
    at least `ELEVENLABS_API_KEY` and `BIBLEAUDIO_PUBLIC_URL`.
"""

from bibleaudio.main import app as app  # noqa: F401  re-export FastAPI instance
