import asyncio
import importlib.util
import logging
import time
from typing import AsyncIterator, Callable, List, Optional, Protocol

from ..app_types import EndEvent, EngineEvent, ErrorEvent, RecognitionResult, ResultEvent, StartEvent
from ..config import Settings
from ..errors import PermissionDenied, UnsupportedPlatform

logger = logging.getLogger(__name__)

Emit = Callable[[EngineEvent], None]

# engines terminate every final segment with this separator
SEGMENT_SEPARATOR = " "


class RecognitionEngine(Protocol):
    language: str

    def start(self) -> None: ...

    def stop(self) -> None: ...

    def abort(self) -> None: ...


EngineFactory = Callable[[str, Emit], RecognitionEngine]


class FrameSource(Protocol):
    def start(self) -> None: ...

    def frames(self) -> AsyncIterator[bytes]: ...

    def stop(self) -> None: ...


def default_capture_factory(settings: Settings) -> FrameSource:
    from ..audio.capture import AudioCapture, CaptureConfig

    return AudioCapture(CaptureConfig.from_settings(settings))


class StreamingEngine:
    """Continuous recognizer fed by live microphone frames.

    Subclasses implement ``_recognize`` and report text through
    ``_publish_interim`` and ``_publish_final``. A ``start`` event is emitted
    once the microphone is open; an ``end`` event always follows, whatever
    stopped the run, and is delivered from a task callback so it never fires
    inside ``start()``/``stop()``.
    """

    def __init__(
        self,
        language: str,
        emit: Emit,
        settings: Settings,
        capture_factory: Optional[Callable[[Settings], FrameSource]] = None,
    ):
        self.language = language
        self.settings = settings
        self._emit = emit
        self._capture_factory = capture_factory or default_capture_factory
        self._task: Optional[asyncio.Task] = None
        self._finals: List[RecognitionResult] = []
        self._partial = ""
        self._graceful = False
        self._last_activity = time.monotonic()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            logger.debug("%s already running", type(self).__name__)
            return
        self._finals = []
        self._partial = ""
        self._graceful = False
        self._last_activity = time.monotonic()
        self._task = asyncio.get_running_loop().create_task(self._run())
        self._task.add_done_callback(self._on_done)

    def stop(self) -> None:
        """Stop listening and deliver whatever was heard so far."""
        if self.running:
            self._graceful = True
            self._task.cancel()

    def abort(self) -> None:
        if self.running:
            self._graceful = False
            self._task.cancel()

    async def _recognize(self, capture: FrameSource) -> None:
        raise NotImplementedError

    async def _run(self) -> None:
        capture = None
        try:
            try:
                capture = self._capture_factory(self.settings)
                capture.start()
            except PermissionDenied as exc:
                self._emit(ErrorEvent(code="not-allowed", message=str(exc)))
                return
            except (UnsupportedPlatform, OSError) as exc:
                self._emit(ErrorEvent(code="audio-capture", message=str(exc)))
                return
            except Exception as exc:
                logger.exception("Microphone could not be opened")
                self._emit(ErrorEvent(code="audio-capture", message=str(exc)))
                return

            self._emit(StartEvent())
            try:
                await self._recognize(capture)
            except asyncio.CancelledError:
                if self._graceful:
                    self._flush()
                raise
            except Exception as exc:
                logger.exception("%s stopped on error", type(self).__name__)
                self._emit(ErrorEvent(code=self._error_code(exc), message=str(exc)))
        finally:
            if capture is not None:
                capture.stop()

    def _on_done(self, task: asyncio.Task) -> None:
        if not task.cancelled() and task.exception() is not None:
            logger.error("%s task crashed: %s", type(self).__name__, task.exception())
        self._emit(EndEvent())

    def _error_code(self, exc: Exception) -> str:
        return "network"

    def _idle_expired(self) -> bool:
        timeout = self.settings.idle_timeout_sec
        return timeout > 0 and (time.monotonic() - self._last_activity) > timeout

    def _publish_interim(self, text: str) -> None:
        self._partial = text
        self._last_activity = time.monotonic()
        results = self._finals + [RecognitionResult(transcript=text)]
        self._emit(ResultEvent(result_index=len(self._finals), results=results))

    def _publish_final(self, text: str) -> None:
        self._partial = ""
        self._last_activity = time.monotonic()
        text = text.strip()
        if not text:
            return
        self._finals.append(RecognitionResult(transcript=text + SEGMENT_SEPARATOR, is_final=True))
        self._emit(ResultEvent(result_index=len(self._finals) - 1, results=list(self._finals)))

    def _flush(self) -> None:
        if self._partial.strip():
            self._publish_final(self._partial)


def resolve_engine_factory(settings: Settings) -> Optional[EngineFactory]:
    """Pick the configured engine, or None when it cannot run on this host."""
    backend = settings.stt_backend
    if backend == "realtime":
        if not settings.openai_api_key:
            logger.warning("OPENAI_API_KEY missing; realtime recognition unavailable")
            return None
        if importlib.util.find_spec("websockets") is None:
            logger.warning("websockets not installed; realtime recognition unavailable")
            return None
        from .realtime import RealtimeEngine

        return lambda language, emit: RealtimeEngine(language, emit, settings)
    if backend == "whisper":
        if importlib.util.find_spec("whisper") is None:
            logger.warning("openai-whisper not installed; install the 'whisper' extra")
            return None
        from .whisper_local import WhisperEngine

        return lambda language, emit: WhisperEngine(language, emit, settings)
    raise RuntimeError(f"Unknown STT_BACKEND: {backend}")
