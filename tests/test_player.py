import asyncio

import pytest

from bibleaudio.client import ChapterRequest, LoadedAudio
from bibleaudio.cues import VerseCue
from bibleaudio.player import (
    END_OF_BOOK_MESSAGE,
    LoadSucceeded,
    LookupNextChapter,
    PlaybackController,
    PlaybackState,
    ReachedEnd,
    ScrollToVerse,
    Status,
    TimeUpdate,
    transition,
)

JOHN_1 = ChapterRequest("Johannes", 1, "finstlk201", "elevenlabs:aria")
JOHN_2 = JOHN_1.with_chapter("Johannes", 2)
JOHN_1_OTHER_VOICE = ChapterRequest("Johannes", 1, "finstlk201", "elevenlabs:roger")

CUES = (
    VerseCue("v1", 0, 1000, 1),
    VerseCue("v2", 1000, 2500, 2),
    VerseCue("v3", 2500, 4000, 3),
)
AUDIO = {
    JOHN_1: LoadedAudio("a1", "http://service/media/audio/a1.mp3", 4000, CUES),
    JOHN_2: LoadedAudio("a2", "http://service/media/audio/a2.mp3", 3000, (
        VerseCue("w1", 0, 1500, 1),
        VerseCue("w2", 1500, 3000, 2),
    )),
    JOHN_1_OTHER_VOICE: LoadedAudio("a3", "http://service/media/audio/a3.mp3", 4000, (
        VerseCue("v1", 0, 500, 1),
        VerseCue("v2", 500, 900, 2),
        VerseCue("v3", 900, 4000, 3),
    )),
}


class FakeMedia:
    def __init__(self, fail_play=False):
        self.fail_play = fail_play
        self.current_time_ms = 0
        self.source = None
        self.playing = False
        self.sources = []

    def set_source(self, url):
        self.source = url
        self.sources.append(url)

    def seek(self, position_ms):
        self.current_time_ms = position_ms

    async def play(self):
        if self.fail_play:
            raise RuntimeError("NotAllowedError")
        self.playing = True

    def pause(self):
        self.playing = False

    def stop(self):
        self.playing = False
        self.source = None


class Recorder:
    """Collects controller callbacks and counts loader/lookup calls."""

    def __init__(self, next_chapters=None):
        self.loads = []
        self.lookups = []
        self.verses = []
        self.saved = []
        self.notes = []
        self.next_chapters = next_chapters if next_chapters is not None else {JOHN_1: JOHN_2}

    async def loader(self, request):
        self.loads.append(request)
        return AUDIO[request]

    async def next_chapter(self, request):
        self.lookups.append(request)
        return self.next_chapters.get(request)

    def controller(self, media, loader=None):
        return PlaybackController(
            media,
            loader or self.loader,
            next_chapter=self.next_chapter,
            on_verse_change=self.verses.append,
            on_save_position=lambda request, verse: self.saved.append((request, verse)),
            on_notify=lambda level, message: self.notes.append((level, message)),
            advance_delay=0,
        )


def _ready_state():
    return PlaybackState(status=Status.PLAYING, request=JOHN_1, request_id=1, audio=AUDIO[JOHN_1])


@pytest.mark.parametrize("position, verse", [(0, 1), (999, 1), (1000, 2), (1500, 2), (2500, 3)])
def test_time_maps_to_verse(position, verse):
    state, _ = transition(_ready_state(), TimeUpdate(position))
    assert state.current_verse == verse


def test_scroll_is_emitted_only_when_the_verse_changes():
    state, effects = transition(_ready_state(), TimeUpdate(100))
    assert effects == [ScrollToVerse(1)]
    state, effects = transition(state, TimeUpdate(500))
    assert effects == []
    state, effects = transition(state, TimeUpdate(1200))
    assert effects == [ScrollToVerse(2)]


def test_time_updates_are_ignored_without_audio():
    state = PlaybackState()
    assert transition(state, TimeUpdate(1500)) == (state, [])


def test_stale_load_results_are_ignored():
    state = PlaybackState(status=Status.LOADING, request=JOHN_1, request_id=2)
    assert transition(state, LoadSucceeded(1, AUDIO[JOHN_1])) == (state, [])


def test_end_of_track_is_handled_once():
    state, effects = transition(_ready_state(), ReachedEnd())
    assert state.status == Status.ENDED
    assert effects == [LookupNextChapter(1, JOHN_1)]
    assert transition(state, ReachedEnd()) == (state, [])
    assert transition(state, TimeUpdate(4100)) == (state, [])


def test_time_past_estimated_duration_keeps_playing():
    state, _ = transition(_ready_state(), TimeUpdate(3000))
    assert state.current_verse == 3

    state, effects = transition(state, TimeUpdate(5200))
    assert state.status == Status.PLAYING
    assert state.position_ms == 5200
    assert state.current_verse == 3
    assert effects == []


def test_narration_longer_than_estimate_is_not_cut_short():
    async def scenario():
        recorder = Recorder()
        media = FakeMedia()
        controller = recorder.controller(media)
        await controller.load_chapter(JOHN_1, autoplay=True)
        await controller.time_update(4100)
        return recorder, controller, media

    recorder, controller, media = asyncio.run(scenario())
    assert controller.state.request == JOHN_1
    assert controller.status == Status.PLAYING
    assert recorder.lookups == []
    assert recorder.loads == [JOHN_1]
    assert media.playing is True


def test_unknown_events_are_rejected():
    with pytest.raises(TypeError):
        transition(PlaybackState(), object())


def test_load_and_play_highlights_verses():
    async def scenario():
        recorder = Recorder()
        media = FakeMedia()
        controller = recorder.controller(media)

        await controller.load_chapter(JOHN_1)
        assert controller.status == Status.READY
        assert media.playing is False

        await controller.play()
        assert controller.status == Status.PLAYING
        assert media.source == AUDIO[JOHN_1].url
        assert media.playing is True

        await controller.time_update(1500)
        assert controller.current_verse == 2
        return recorder

    recorder = asyncio.run(scenario())
    assert recorder.verses == [1, 2]


def test_end_of_chapter_advances_once():
    async def scenario():
        recorder = Recorder()
        media = FakeMedia()
        controller = recorder.controller(media)

        await controller.load_chapter(JOHN_1, autoplay=True)
        for position in (500, 1500, 3000, 4000):
            await controller.time_update(position)
        await controller.ended()
        return recorder, controller, media

    recorder, controller, media = asyncio.run(scenario())
    assert recorder.lookups == [JOHN_1]
    assert recorder.loads == [JOHN_1, JOHN_2]
    assert controller.state.request == JOHN_2
    assert controller.status == Status.PLAYING
    assert media.source == AUDIO[JOHN_2].url
    assert controller.current_verse == 1


def test_end_of_book_is_announced():
    async def scenario():
        recorder = Recorder(next_chapters={})
        controller = recorder.controller(FakeMedia())
        await controller.load_chapter(JOHN_1, autoplay=True)
        await controller.ended()
        await controller.ended()
        return recorder, controller

    recorder, controller = asyncio.run(scenario())
    assert recorder.lookups == [JOHN_1]
    assert recorder.notes == [("info", END_OF_BOOK_MESSAGE)]
    assert controller.status == Status.READY
    assert controller.state.position_ms == 0


def test_failed_next_chapter_lookup_ends_playback():
    async def scenario():
        recorder = Recorder()

        async def broken_lookup(request):
            raise ConnectionError("offline")

        controller = recorder.controller(FakeMedia())
        controller.next_chapter = broken_lookup
        await controller.load_chapter(JOHN_1, autoplay=True)
        await controller.ended()
        return recorder, controller

    recorder, controller = asyncio.run(scenario())
    assert recorder.loads == [JOHN_1]
    assert recorder.notes == [("info", END_OF_BOOK_MESSAGE)]


def test_voice_change_discards_old_cues():
    async def scenario():
        recorder = Recorder()
        media = FakeMedia()
        controller = recorder.controller(media)
        await controller.load_chapter(JOHN_1, autoplay=True)
        await controller.time_update(600)
        assert controller.current_verse == 1

        await controller.change_identity(JOHN_1_OTHER_VOICE)
        assert controller.status == Status.IDLE
        assert controller.state.cues == ()
        assert media.playing is False
        await controller.time_update(1500)
        assert controller.current_verse is None

        await controller.load_chapter(JOHN_1_OTHER_VOICE, autoplay=True)
        await controller.time_update(600)
        return controller

    controller = asyncio.run(scenario())
    assert controller.current_verse == 2
    assert controller.state.audio.audio_id == "a3"


def test_superseded_load_never_applies():
    async def scenario():
        recorder = Recorder()
        gate = asyncio.Event()

        async def slow_loader(request):
            recorder.loads.append(request)
            if request == JOHN_1:
                await gate.wait()
            return AUDIO[request]

        controller = recorder.controller(FakeMedia(), loader=slow_loader)
        first = asyncio.ensure_future(controller.load_chapter(JOHN_1))
        await asyncio.sleep(0)
        await controller.load_chapter(JOHN_2)
        gate.set()
        await first
        return controller

    controller = asyncio.run(scenario())
    assert controller.state.request == JOHN_2
    assert controller.state.audio.audio_id == "a2"
    assert controller.status == Status.READY


def test_pause_saves_the_current_verse():
    async def scenario():
        recorder = Recorder()
        media = FakeMedia()
        controller = recorder.controller(media)
        await controller.load_chapter(JOHN_1, autoplay=True)
        media.current_time_ms = 1200
        await controller.pause()
        return recorder, controller, media

    recorder, controller, media = asyncio.run(scenario())
    assert controller.status == Status.PAUSED
    assert media.playing is False
    assert recorder.saved == [(JOHN_1, 2)]
    assert controller.current_verse == 2


def test_play_from_verse_loads_and_seeks():
    async def scenario():
        recorder = Recorder()
        media = FakeMedia()
        controller = recorder.controller(media)
        controller.state = PlaybackState(request=JOHN_1)
        await controller.play_from_verse(3)
        return controller, media

    controller, media = asyncio.run(scenario())
    assert controller.status == Status.PLAYING
    assert media.current_time_ms == 2500
    assert controller.current_verse == 3


def test_rejected_play_can_be_retried():
    async def scenario():
        recorder = Recorder()
        media = FakeMedia(fail_play=True)
        controller = recorder.controller(media)
        await controller.load_chapter(JOHN_1, autoplay=True)
        assert controller.status == Status.ERROR
        assert controller.state.audio is not None

        media.fail_play = False
        await controller.play()
        return recorder, controller, media

    recorder, controller, media = asyncio.run(scenario())
    assert recorder.notes == [("error", "NotAllowedError")]
    assert recorder.loads == [JOHN_1]
    assert controller.status == Status.PLAYING
    assert media.playing is True


def test_media_error_pauses_and_keeps_audio():
    async def scenario():
        recorder = Recorder()
        media = FakeMedia()
        controller = recorder.controller(media)
        await controller.load_chapter(JOHN_1, autoplay=True)
        await controller.media_error()
        return recorder, controller, media

    recorder, controller, media = asyncio.run(scenario())
    assert controller.status == Status.ERROR
    assert media.playing is False
    assert controller.state.audio is AUDIO[JOHN_1]
    assert recorder.notes[-1][0] == "error"


def test_load_failure_is_reported():
    async def scenario():
        recorder = Recorder()

        async def failing_loader(request):
            raise RuntimeError("Audio generation failed")

        controller = recorder.controller(FakeMedia(), loader=failing_loader)
        await controller.load_chapter(JOHN_1, autoplay=True)
        return recorder, controller

    recorder, controller = asyncio.run(scenario())
    assert controller.status == Status.ERROR
    assert controller.state.audio is None
    assert controller.state.error == "Audio generation failed"
    assert recorder.notes == [("error", "Audio generation failed")]
