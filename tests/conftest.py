"""Shared fakes for the recognition engine, capture facility and surface."""

import asyncio
from typing import List, Optional

import pytest

from livescribe.app_types import RecognitionResult, ResultEvent
from livescribe.audio.analyser import SampleRing
from livescribe.audio.visualizer import AudioVisualizer, FrameBuffer
from livescribe.controller import SessionController
from livescribe.core.transcript import TranscriptAccumulator
from livescribe.stt.session import RecognitionSession


class FakeEngine:
    def __init__(self, language, emit):
        self.language = language
        self.emit = emit
        self.calls: List[str] = []

    def start(self):
        self.calls.append("start")

    def stop(self):
        self.calls.append("stop")

    def abort(self):
        self.calls.append("abort")


class FakeEngineFactory:
    def __init__(self):
        self.engines: List[FakeEngine] = []

    def __call__(self, language, emit):
        engine = FakeEngine(language, emit)
        self.engines.append(engine)
        return engine

    @property
    def last(self) -> FakeEngine:
        return self.engines[-1]


class FakeStream:
    def __init__(self, capacity: int = 1024):
        self.buffer = SampleRing(capacity)
        self.stopped = False

    @property
    def tracks(self):
        return [] if self.stopped else [self]

    def stop(self):
        self.stopped = True


class FakeCapture:
    def __init__(self, deny: Optional[Exception] = None):
        self.deny = deny
        self.streams: List[FakeStream] = []
        self.requests = 0
        self.gate: Optional[asyncio.Event] = None

    def hold(self) -> asyncio.Event:
        """Make the next requests wait until the returned event is set."""
        self.gate = asyncio.Event()
        return self.gate

    async def request_stream(self) -> FakeStream:
        self.requests += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.deny is not None:
            raise self.deny
        stream = FakeStream()
        self.streams.append(stream)
        return stream

    @property
    def live_streams(self) -> List[FakeStream]:
        return [s for s in self.streams if not s.stopped]


class BrokenSurface(FrameBuffer):
    def draw_line(self, points):
        raise RuntimeError("canvas destroyed")


def result_event(*results, index: int = 0) -> ResultEvent:
    """Build a result event from (text, is_final) pairs."""
    return ResultEvent(
        result_index=index,
        results=[RecognitionResult(transcript=text, is_final=final) for text, final in results],
    )


@pytest.fixture
def engines():
    return FakeEngineFactory()


@pytest.fixture
def transcript():
    return TranscriptAccumulator()


@pytest.fixture
def session(transcript, engines):
    return RecognitionSession(transcript, engines)


@pytest.fixture
def capture():
    return FakeCapture()


@pytest.fixture
def surface():
    return FrameBuffer(64, 32)


@pytest.fixture
def visualizer(capture, surface):
    return AudioVisualizer(capture, surface, fft_size=256, frame_interval=0.001)


@pytest.fixture
def controller(session, visualizer):
    return SessionController(session, visualizer)
