"""Verse-synchronized chapter playback.

The playback logic is a finite-state machine. ``transition`` is a pure
reducer: it takes the current ``PlaybackState`` and one event and returns
the next state plus a list of *effects* (fetch audio, start the media
element, save the reading position, ...). ``PlaybackController`` owns the
state, feeds it events from the host (media element notifications, user
actions) and performs the effects against a ``MediaElement`` and a few
callbacks.

States::

    IDLE -> LOADING -> READY <-> PLAYING <-> PAUSED
                                   |
                                 ENDED -> LOADING (next chapter)
    any error -> ERROR (audio kept if it was loaded; play() retries)

The current verse is never stored independently of time: it is always
recomputed from the playback position against the loaded cues
(start-inclusive, end-exclusive). Each load gets a new request id, and
responses carrying an older id are dropped, so a superseded load or a
changed chapter/voice can never drive highlighting with stale cues.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Protocol, Tuple, Union

from .client import ChapterRequest, LoadedAudio
from .cues import VerseCue, cue_for_verse, find_cue_at
from .logging_setup import get_logger

logger = get_logger(__name__)

# Pause between the end of a chapter and the start of the next one, so the
# reader view can switch chapters before narration resumes.
AUTO_ADVANCE_DELAY_S = 0.5

END_OF_BOOK_MESSAGE = "Raamatun loppu saavutettu"


class Status(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    PLAYING = "playing"
    PAUSED = "paused"
    ENDED = "ended"
    ERROR = "error"


@dataclass(frozen=True)
class PlaybackState:
    status: Status = Status.IDLE
    request: Optional[ChapterRequest] = None
    request_id: int = 0
    audio: Optional[LoadedAudio] = None
    position_ms: float = 0
    current_verse: Optional[int] = None
    autoplay: bool = False
    start_verse: Optional[int] = None
    error: Optional[str] = None

    @property
    def cues(self) -> Tuple[VerseCue, ...]:
        return self.audio.cues if self.audio else ()


# Events


@dataclass(frozen=True)
class LoadRequested:
    request: ChapterRequest
    autoplay: bool = False
    start_verse: Optional[int] = None


@dataclass(frozen=True)
class LoadSucceeded:
    request_id: int
    audio: LoadedAudio


@dataclass(frozen=True)
class LoadFailed:
    request_id: int
    message: str


@dataclass(frozen=True)
class PlayRequested:
    pass


@dataclass(frozen=True)
class PlayFromVerse:
    verse_number: int


@dataclass(frozen=True)
class PlayFailed:
    message: str


@dataclass(frozen=True)
class PauseRequested:
    position_ms: float


@dataclass(frozen=True)
class TimeUpdate:
    position_ms: float


@dataclass(frozen=True)
class ReachedEnd:
    pass


@dataclass(frozen=True)
class NextChapterResolved:
    request_id: int
    next_request: Optional[ChapterRequest]


@dataclass(frozen=True)
class AdvanceDue:
    request_id: int
    next_request: ChapterRequest


@dataclass(frozen=True)
class MediaError:
    message: str


@dataclass(frozen=True)
class IdentityChanged:
    request: Optional[ChapterRequest] = None


Event = Union[
    LoadRequested, LoadSucceeded, LoadFailed, PlayRequested, PlayFromVerse, PlayFailed,
    PauseRequested, TimeUpdate, ReachedEnd, NextChapterResolved, AdvanceDue, MediaError,
    IdentityChanged,
]


# Effects


@dataclass(frozen=True)
class FetchAudio:
    request_id: int
    request: ChapterRequest


@dataclass(frozen=True)
class StartMedia:
    url: str
    position_ms: float


@dataclass(frozen=True)
class PauseMedia:
    pass


@dataclass(frozen=True)
class StopMedia:
    pass


@dataclass(frozen=True)
class SavePosition:
    request: ChapterRequest
    verse_number: int


@dataclass(frozen=True)
class ScrollToVerse:
    verse_number: int


@dataclass(frozen=True)
class Notify:
    level: str
    message: str


@dataclass(frozen=True)
class LookupNextChapter:
    request_id: int
    request: ChapterRequest


@dataclass(frozen=True)
class ScheduleAdvance:
    request_id: int
    next_request: ChapterRequest


Effect = Union[
    FetchAudio, StartMedia, PauseMedia, StopMedia, SavePosition, ScrollToVerse, Notify,
    LookupNextChapter, ScheduleAdvance,
]
Transition = Tuple[PlaybackState, List[Effect]]


def _verse_at(cues: Tuple[VerseCue, ...], position_ms: float) -> Optional[int]:
    cue = find_cue_at(cues, position_ms)
    return cue.verse_number if cue else None


def _moved_to(state: PlaybackState, position_ms: float, **changes) -> Transition:
    """Return ``state`` at ``position_ms`` with the verse recomputed.

    Emits ``ScrollToVerse`` only when the verse actually changes. A
    position outside every cue keeps the previous verse.
    """
    verse = _verse_at(state.cues, position_ms)
    effects: List[Effect] = []
    if verse is not None and verse != state.current_verse:
        effects.append(ScrollToVerse(verse))
    else:
        verse = state.current_verse
    return replace(state, position_ms=position_ms, current_verse=verse, **changes), effects


def _start_load(state: PlaybackState, request: ChapterRequest, autoplay: bool,
                start_verse: Optional[int]) -> Transition:
    effects: List[Effect] = []
    if state.audio is not None or state.status == Status.PLAYING:
        effects.append(StopMedia())
    request_id = state.request_id + 1
    new_state = PlaybackState(
        status=Status.LOADING,
        request=request,
        request_id=request_id,
        autoplay=autoplay,
        start_verse=start_verse,
    )
    effects.append(FetchAudio(request_id, request))
    return new_state, effects


def _play_at(state: PlaybackState, position_ms: float) -> Transition:
    assert state.audio is not None
    new_state, effects = _moved_to(
        state, position_ms, status=Status.PLAYING, autoplay=False, start_verse=None, error=None
    )
    effects.append(StartMedia(state.audio.url, position_ms))
    return new_state, effects


def _verse_position(state: PlaybackState, verse_number: Optional[int]) -> float:
    if verse_number is None:
        return 0
    cue = cue_for_verse(state.cues, verse_number)
    return cue.start_ms if cue else 0


def _end_of_track(state: PlaybackState) -> Transition:
    assert state.audio is not None and state.request is not None
    new_state = replace(state, status=Status.ENDED)
    return new_state, [LookupNextChapter(state.request_id, state.request)]


def transition(state: PlaybackState, event: Event) -> Transition:
    """Apply ``event`` to ``state``; return the new state and its effects.

    Events that do not apply to the current state return ``state``
    unchanged with no effects.
    """
    status = state.status
    loaded = state.audio is not None

    if isinstance(event, LoadRequested):
        return _start_load(state, event.request, event.autoplay, event.start_verse)

    if isinstance(event, IdentityChanged):
        effects: List[Effect] = [StopMedia()] if (loaded or status == Status.PLAYING) else []
        return PlaybackState(request=event.request, request_id=state.request_id + 1), effects

    if isinstance(event, LoadSucceeded):
        if event.request_id != state.request_id or status != Status.LOADING:
            return state, []
        ready = replace(state, status=Status.READY, audio=event.audio, error=None)
        position = _verse_position(ready, state.start_verse)
        if state.autoplay:
            return _play_at(ready, position)
        return _moved_to(ready, position, start_verse=None)

    if isinstance(event, LoadFailed):
        if event.request_id != state.request_id or status != Status.LOADING:
            return state, []
        failed = PlaybackState(
            status=Status.ERROR,
            request=state.request,
            request_id=state.request_id,
            error=event.message,
        )
        return failed, [Notify("error", event.message)]

    if isinstance(event, PlayRequested):
        if status == Status.PLAYING:
            return state, []
        if status == Status.LOADING:
            return replace(state, autoplay=True), []
        if loaded and status in (Status.READY, Status.PAUSED, Status.ERROR):
            return _play_at(state, state.position_ms)
        if loaded and status == Status.ENDED:
            return _play_at(state, 0)
        if state.request is not None:
            return _start_load(state, state.request, True, None)
        return state, []

    if isinstance(event, PlayFromVerse):
        if status == Status.LOADING:
            return replace(state, autoplay=True, start_verse=event.verse_number), []
        if loaded:
            return _play_at(state, _verse_position(state, event.verse_number))
        if state.request is not None:
            return _start_load(state, state.request, True, event.verse_number)
        return state, []

    if isinstance(event, PlayFailed):
        if status != Status.PLAYING:
            return state, []
        return replace(state, status=Status.ERROR, error=event.message), [Notify("error", event.message)]

    if isinstance(event, PauseRequested):
        if status != Status.PLAYING:
            return state, []
        paused, effects = _moved_to(state, event.position_ms, status=Status.PAUSED)
        effects.insert(0, PauseMedia())
        cue = find_cue_at(state.cues, event.position_ms)
        if cue is not None and cue.verse_number is not None and state.request is not None:
            effects.append(SavePosition(state.request, cue.verse_number))
        return paused, effects

    if isinstance(event, TimeUpdate):
        if not loaded or status not in (Status.READY, Status.PLAYING, Status.PAUSED):
            return state, []
        # duration_ms is an estimate; only the media element reports the end.
        return _moved_to(state, event.position_ms)

    if isinstance(event, ReachedEnd):
        if status != Status.PLAYING:
            return state, []
        return _end_of_track(state)

    if isinstance(event, NextChapterResolved):
        if event.request_id != state.request_id or status != Status.ENDED:
            return state, []
        if event.next_request is None:
            idle = replace(state, status=Status.READY, position_ms=0)
            return idle, [Notify("info", END_OF_BOOK_MESSAGE)]
        return state, [ScheduleAdvance(state.request_id, event.next_request)]

    if isinstance(event, AdvanceDue):
        if event.request_id != state.request_id or status != Status.ENDED:
            return state, []
        return _start_load(state, event.next_request, True, None)

    if isinstance(event, MediaError):
        if not loaded or status not in (Status.READY, Status.PLAYING, Status.PAUSED):
            return state, []
        failed = replace(state, status=Status.ERROR, error=event.message)
        return failed, [PauseMedia(), Notify("error", event.message)]

    raise TypeError(f"Unknown playback event: {event!r}")


class MediaElement(Protocol):
    """The host's audio element. Its clock is the source of truth for time."""

    @property
    def current_time_ms(self) -> float:
        ...

    def set_source(self, url: str) -> None:
        ...

    def seek(self, position_ms: float) -> None:
        ...

    async def play(self) -> None:
        """Start playback; may raise if the host refuses to play."""
        ...

    def pause(self) -> None:
        ...

    def stop(self) -> None:
        """Pause and drop the current source."""
        ...


AudioLoader = Callable[[ChapterRequest], Awaitable[LoadedAudio]]
NextChapterLookup = Callable[[ChapterRequest], Awaitable[Optional[ChapterRequest]]]


class PlaybackController:
    """Drive one reader view's audio from ``transition``.

    ``loader`` fetches a chapter's audio and cues (usually
    ``AudioServiceClient.generate_chapter_audio``), ``next_chapter`` looks
    up the following chapter. The ``on_*`` callbacks receive the UI side
    effects: verse changes to scroll to, positions to save and messages
    to show.
    """

    def __init__(self, media: MediaElement, loader: AudioLoader,
                 next_chapter: Optional[NextChapterLookup] = None,
                 on_verse_change: Optional[Callable[[int], None]] = None,
                 on_save_position: Optional[Callable[[ChapterRequest, int], None]] = None,
                 on_notify: Optional[Callable[[str, str], None]] = None,
                 advance_delay: float = AUTO_ADVANCE_DELAY_S) -> None:
        self.media = media
        self.loader = loader
        self.next_chapter = next_chapter
        self.on_verse_change = on_verse_change
        self.on_save_position = on_save_position
        self.on_notify = on_notify
        self.advance_delay = advance_delay
        self.state = PlaybackState()
        self._source: Optional[str] = None

    @property
    def status(self) -> Status:
        return self.state.status

    @property
    def current_verse(self) -> Optional[int]:
        return self.state.current_verse

    async def dispatch(self, event: Event) -> PlaybackState:
        self.state, effects = transition(self.state, event)
        for effect in effects:
            await self._perform(effect)
        return self.state

    # User actions

    async def load_chapter(self, request: ChapterRequest, autoplay: bool = False) -> PlaybackState:
        return await self.dispatch(LoadRequested(request, autoplay=autoplay))

    async def play(self) -> PlaybackState:
        return await self.dispatch(PlayRequested())

    async def play_from_verse(self, verse_number: int) -> PlaybackState:
        return await self.dispatch(PlayFromVerse(verse_number))

    async def pause(self) -> PlaybackState:
        return await self.dispatch(PauseRequested(self.media.current_time_ms))

    async def change_identity(self, request: Optional[ChapterRequest] = None) -> PlaybackState:
        return await self.dispatch(IdentityChanged(request))

    # Media element notifications

    async def time_update(self, position_ms: Optional[float] = None) -> PlaybackState:
        if position_ms is None:
            position_ms = self.media.current_time_ms
        return await self.dispatch(TimeUpdate(position_ms))

    async def ended(self) -> PlaybackState:
        return await self.dispatch(ReachedEnd())

    async def media_error(self, message: str = "Äänen toisto epäonnistui") -> PlaybackState:
        return await self.dispatch(MediaError(message))

    async def _perform(self, effect: Effect) -> None:
        if isinstance(effect, FetchAudio):
            try:
                audio = await self.loader(effect.request)
            except Exception as exc:  # noqa: BLE001 - surfaced as LoadFailed
                logger.error("Loading audio for %s failed: %s", effect.request, exc)
                await self.dispatch(LoadFailed(effect.request_id, str(exc)))
                return
            await self.dispatch(LoadSucceeded(effect.request_id, audio))
        elif isinstance(effect, StartMedia):
            if effect.url != self._source:
                self.media.set_source(effect.url)
                self._source = effect.url
            self.media.seek(effect.position_ms)
            try:
                await self.media.play()
            except Exception as exc:  # noqa: BLE001 - surfaced as PlayFailed
                logger.error("Media playback was rejected: %s", exc)
                await self.dispatch(PlayFailed(str(exc) or type(exc).__name__))
        elif isinstance(effect, PauseMedia):
            self.media.pause()
        elif isinstance(effect, StopMedia):
            self.media.stop()
            self._source = None
        elif isinstance(effect, ScrollToVerse):
            if self.on_verse_change:
                self.on_verse_change(effect.verse_number)
        elif isinstance(effect, SavePosition):
            if self.on_save_position:
                self.on_save_position(effect.request, effect.verse_number)
        elif isinstance(effect, Notify):
            if self.on_notify:
                self.on_notify(effect.level, effect.message)
        elif isinstance(effect, LookupNextChapter):
            next_request = None
            if self.next_chapter is not None:
                try:
                    next_request = await self.next_chapter(effect.request)
                except Exception as exc:  # noqa: BLE001 - treated like the end of the book
                    logger.warning("Next chapter lookup failed: %s", exc)
            await self.dispatch(NextChapterResolved(effect.request_id, next_request))
        elif isinstance(effect, ScheduleAdvance):
            await asyncio.sleep(self.advance_delay)
            await self.dispatch(AdvanceDue(effect.request_id, effect.next_request))
