import asyncio
import logging
from pathlib import Path
from typing import Callable, List, Optional, Set, Union

from .app_types import ControllerState, SessionNotice
from .audio.visualizer import AudioVisualizer, CaptureFacility, RenderSurface
from .config import Settings
from .core.transcript import TranscriptAccumulator
from .errors import ClipboardFailure, LiveScribeError, UnsupportedPlatform
from .stt.engine import EngineFactory, resolve_engine_factory
from .stt.session import RecognitionSession
from .ui.output import copy_to_clipboard, export_text

logger = logging.getLogger(__name__)

StateListener = Callable[[ControllerState], None]


class SessionController:
    """Single command surface over transcription and waveform display.

    The two subsystems start and fail independently; errors from either end
    up in the one ``error`` field of the observable state.
    """

    def __init__(self, session: RecognitionSession, visualizer: AudioVisualizer):
        self.session = session
        self.visualizer = visualizer
        self.transcript = session.transcript
        self._error: Optional[str] = None
        self._listeners: List[StateListener] = []
        self._pending: Set[asyncio.Task] = set()
        self._closed = False
        session.subscribe(self._on_session_notice)
        visualizer.on_error = self._record_error

    @property
    def state(self) -> ControllerState:
        return ControllerState(
            is_listening=self.session.is_listening,
            text=self.transcript.finalized,
            interim_text=self.transcript.interim,
            error=self._error,
            language=self.session.language,
            recognition_supported=self.session.supported,
            visualizing=self.visualizer.is_capturing,
        )

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ---- commands ----

    def start(self) -> Optional[asyncio.Task]:
        """Start both subsystems; returns the pending visualizer start, if any."""
        if self._closed:
            raise RuntimeError("controller is closed")
        try:
            self.session.start()
        except UnsupportedPlatform as exc:
            logger.error("Transcription disabled: %s", exc)
            self._error = str(exc)
        except LiveScribeError as exc:
            self._error = str(exc)

        task = None
        if not (self.visualizer.is_capturing or self.visualizer.pending):
            task = asyncio.get_running_loop().create_task(self.visualizer.start())
            self._pending.add(task)
            task.add_done_callback(self._on_visualizer_started)
        self._notify()
        return task

    def stop(self) -> None:
        self.session.stop()
        self.visualizer.stop()
        self._notify()

    def clear(self) -> None:
        self.transcript.clear()
        self._error = None
        self._notify()

    def set_language(self, language: str) -> None:
        self.session.configure(language)
        self._notify()

    def copy_transcript(self) -> bool:
        try:
            copy_to_clipboard(self.transcript.finalized)
        except ClipboardFailure as exc:
            logger.warning("%s", exc)
            return False
        return True

    def export_transcript(self, path: Union[str, Path]) -> Optional[Path]:
        try:
            return export_text(self.transcript.finalized, path)
        except OSError as exc:
            self._record_error(f"Export failed: {exc}")
            return None

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.session.stop()
        self.visualizer.stop()
        self.session.close()
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        self._listeners.clear()

    async def __aenter__(self) -> "SessionController":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # ---- subsystem callbacks ----

    def _on_session_notice(self, notice: SessionNotice) -> None:
        if notice.kind == "started":
            self._error = None
        elif notice.kind == "error":
            self._error = notice.message
        self._notify()

    def _on_visualizer_started(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            self._record_error(str(task.exception()))
            return
        self._notify()

    def _record_error(self, message: str) -> None:
        self._error = message
        self._notify()

    def _notify(self) -> None:
        if not self._listeners:
            return
        snapshot = self.state
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("State listener failed")


def default_capture(settings: Settings) -> Optional[CaptureFacility]:
    try:
        from .audio.capture import CaptureConfig, SoundDeviceCapture
    except OSError as exc:
        # sounddevice raises OSError when the PortAudio library is missing
        logger.warning("Audio capture unavailable: %s", exc)
        return None
    return SoundDeviceCapture(CaptureConfig.from_settings(settings), min_capacity=settings.fft_size)


def build_controller(
    settings: Settings,
    surface: RenderSurface,
    engine_factory: Optional[EngineFactory] = None,
    capture: Optional[CaptureFacility] = None,
) -> SessionController:
    if engine_factory is None:
        engine_factory = resolve_engine_factory(settings)
    if capture is None:
        capture = default_capture(settings)
    session = RecognitionSession(TranscriptAccumulator(), engine_factory, language=settings.language)
    visualizer = AudioVisualizer(
        capture,
        surface,
        fft_size=settings.fft_size,
        frame_interval=settings.frame_interval,
    )
    return SessionController(session, visualizer)
