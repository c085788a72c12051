import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Protocol, Sequence, Tuple

from ..app_types import PipelineState
from ..errors import LiveScribeError, PermissionDenied, UnsupportedPlatform
from .analyser import Analyser, SampleRing, waveform_points

logger = logging.getLogger(__name__)

Point = Tuple[float, float]


class MediaStream(Protocol):
    buffer: SampleRing

    @property
    def tracks(self) -> list: ...

    def stop(self) -> None: ...


class CaptureFacility(Protocol):
    async def request_stream(self) -> MediaStream: ...


class RenderSurface(Protocol):
    width: int
    height: int

    def clear(self) -> None: ...

    def draw_line(self, points: Sequence[Point]) -> None: ...


class FrameBuffer:
    """Headless surface that keeps the last rendered frame."""

    def __init__(self, width: int, height: int):
        self.width = width
        self.height = height
        self.points: List[Point] = []

    def clear(self) -> None:
        self.points = []

    def draw_line(self, points: Sequence[Point]) -> None:
        self.points = list(points)


@dataclass
class AudioGraph:
    stream: MediaStream
    analyser: Analyser


class AudioVisualizer:
    """Draws the live microphone waveform at display cadence.

    Each ``start()`` builds a fresh graph on top of the shared capture
    facility. ``stop()`` may be called at any time, including while the
    stream request is still pending; a stream granted after that point is
    released as soon as it arrives.
    """

    def __init__(
        self,
        capture: Optional[CaptureFacility],
        surface: RenderSurface,
        fft_size: int = 256,
        frame_interval: float = 1 / 60,
        on_error: Optional[Callable[[str], None]] = None,
    ):
        self._capture = capture
        self.surface = surface
        self.fft_size = fft_size
        self.frame_interval = frame_interval
        self.on_error = on_error
        self._state = PipelineState.IDLE
        self._graph: Optional[AudioGraph] = None
        self._frame_handle: Optional[asyncio.TimerHandle] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._ticket: Optional[object] = None
        self.frames_drawn = 0
        self.last_error: Optional[str] = None

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def is_capturing(self) -> bool:
        return self._state is PipelineState.CAPTURING

    @property
    def pending(self) -> bool:
        return self._ticket is not None and self._graph is None

    @property
    def has_scheduled_frame(self) -> bool:
        return self._frame_handle is not None

    @property
    def stream(self) -> Optional[MediaStream]:
        return self._graph.stream if self._graph else None

    async def start(self) -> bool:
        if self.is_capturing or self.pending:
            return self.is_capturing
        if self._capture is None:
            self._fail(UnsupportedPlatform("Audio capture is not available on this host"))
            return False

        self._loop = asyncio.get_running_loop()
        ticket = self._ticket = object()
        try:
            stream = await self._capture.request_stream()
        except (PermissionDenied, UnsupportedPlatform) as exc:
            if ticket is self._ticket:
                self._ticket = None
                self._fail(exc)
            return False
        except Exception as exc:
            logger.exception("Microphone request failed")
            if ticket is self._ticket:
                self._ticket = None
                self._fail(LiveScribeError(f"Microphone could not be opened: {exc}"))
            return False

        if ticket is not self._ticket:
            logger.info("Microphone granted after stop; releasing it")
            stream.stop()
            return False

        try:
            analyser = Analyser(stream.buffer, self.fft_size)
        except ValueError as exc:
            stream.stop()
            self._ticket = None
            self._fail(LiveScribeError(f"Invalid visualizer settings: {exc}"))
            return False

        self._graph = AudioGraph(stream=stream, analyser=analyser)
        self._state = PipelineState.CAPTURING
        self.last_error = None
        logger.info("Visualizer started (fft_size=%d)", self.fft_size)
        self._schedule_frame()
        return True

    def stop(self) -> None:
        self._ticket = None
        if self._frame_handle is not None:
            self._frame_handle.cancel()
            self._frame_handle = None
        graph, self._graph = self._graph, None
        self._state = PipelineState.IDLE
        if graph is None:
            return
        graph.stream.stop()
        try:
            self.surface.clear()
        except Exception as exc:  # surface may already be gone at teardown
            logger.debug("Could not clear surface: %s", exc)
        logger.info("Visualizer stopped after %d frames", self.frames_drawn)

    def _schedule_frame(self) -> None:
        if self._frame_handle is not None:
            self._frame_handle.cancel()
        self._frame_handle = self._loop.call_later(self.frame_interval, self._draw_frame)

    def _draw_frame(self) -> None:
        self._frame_handle = None
        if self._graph is None:
            return
        samples = self._graph.analyser.get_time_domain_data()
        try:
            self.surface.clear()
            self.surface.draw_line(waveform_points(samples, self.surface.width, self.surface.height))
        except Exception as exc:
            logger.exception("Waveform rendering failed")
            self.stop()
            self._fail(LiveScribeError(f"Waveform rendering failed: {exc}"))
            return
        self.frames_drawn += 1
        self._schedule_frame()

    def _fail(self, exc: Exception) -> None:
        self.last_error = str(exc)
        logger.warning("Visualizer unavailable: %s", exc)
        if self.on_error is not None:
            self.on_error(self.last_error)
