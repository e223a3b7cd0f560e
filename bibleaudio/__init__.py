"""Narrated chapter audio for a Finnish Bible reader.

This package contains a FastAPI service that turns a Bible chapter into a
single narrated MP3 track, estimates where every verse starts and ends
inside that track, caches both, and a client-side playback controller
that keeps verse highlighting in step with the audio.

The modules in this package are:

* ``keys.py`` - reader keys (``"<provider>:<voice>"``) and the SHA-256
  cache key of a (chapter, version, reader key) rendering.

* ``tts.py`` - text-to-speech adapters. ElevenLabs is the production
  provider; OpenAI and a silent placeholder provider are also available.

* ``cues.py`` - the verse cue estimator. Verse boundaries are derived
  from character counts, not measured from the audio.

* ``db.py`` and ``storage.py`` - the SQLite tables (Bible text and the
  audio cache) and the directory holding the uploaded MP3 files.

* ``generation.py`` - the orchestrator behind ``POST /generate-audio``
  and the cue repair job.

* ``main.py`` - the FastAPI application.

* ``client.py`` and ``player.py`` - the HTTP client the reader uses and
  the playback state machine that drives seeking, highlighting and
  automatic continuation to the next chapter.

* ``reference.py`` and ``voices.py`` - verse reference parsing for the
  embeddable widget, and the narrator catalog.

Configuration is read from environment variables, see ``config.py``.
"""
