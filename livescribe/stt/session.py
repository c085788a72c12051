import logging
from typing import Callable, List, Optional

from ..app_types import (
    EndEvent,
    EngineEvent,
    ErrorEvent,
    ResultEvent,
    SessionNotice,
    SessionState,
    StartEvent,
)
from ..config import DEFAULT_LANGUAGE
from ..core.transcript import TranscriptAccumulator
from ..errors import RecognitionRuntimeError, UnsupportedPlatform, error_for_code
from .engine import EngineFactory, RecognitionEngine

logger = logging.getLogger(__name__)

Listener = Callable[[SessionNotice], None]


class RecognitionSession:
    """Owns one recognition engine and folds its events into a transcript.

    State only changes on engine ``start``/``end`` events, never on the
    commands themselves, so ``is_listening`` lags ``start()``/``stop()``.
    """

    def __init__(
        self,
        transcript: TranscriptAccumulator,
        engine_factory: Optional[EngineFactory],
        language: str = DEFAULT_LANGUAGE,
    ):
        self.transcript = transcript
        self._factory = engine_factory
        self._language = language
        self._engine: Optional[RecognitionEngine] = None
        self._engine_language: Optional[str] = None
        self._generation = 0
        self._state = SessionState.IDLE
        self._start_requested = False
        self._retiring = False
        self._restart_pending = False
        self._listeners: List[Listener] = []

    @property
    def supported(self) -> bool:
        return self._factory is not None

    @property
    def language(self) -> str:
        return self._language

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_listening(self) -> bool:
        return self._state is SessionState.LISTENING

    @property
    def engine(self) -> Optional[RecognitionEngine]:
        return self._engine

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def configure(self, language: str) -> None:
        """Select the locale for the next engine handle.

        A handle bound to another locale is never reused: an idle one is
        dropped now, a live one is stopped and dropped once it reports ``end``.
        """
        if not language:
            raise ValueError("language tag must not be empty")
        if language == self._language:
            return
        self._language = language
        if self._engine is None:
            return
        if self._engine_language == language:
            # back to the live handle's own locale before it ended
            self._retiring = False
            return
        if self._state is SessionState.LISTENING or self._start_requested:
            logger.info("Language changed to %s while listening; stopping current session", language)
            self._retiring = True
            self._engine.stop()
        else:
            self._release_engine()

    def start(self) -> None:
        if self._factory is None:
            raise UnsupportedPlatform("Speech recognition is not available on this host")
        if self._retiring:
            self._restart_pending = True
            return
        if self._start_requested or self._state is SessionState.LISTENING:
            return
        engine = self._ensure_engine()
        self._start_requested = True
        try:
            engine.start()
        except Exception as exc:
            self._start_requested = False
            raise RecognitionRuntimeError("start-failed", str(exc)) from exc

    def stop(self) -> None:
        self._restart_pending = False
        if self._engine is None:
            return
        if self._state is SessionState.IDLE and not self._start_requested:
            return
        self._engine.stop()

    def close(self) -> None:
        """Abort and release the engine; later events from it are ignored."""
        engine = self._engine
        self._release_engine()
        self._start_requested = False
        self._retiring = False
        self._restart_pending = False
        self._state = SessionState.IDLE
        if engine is not None:
            engine.abort()

    def _ensure_engine(self) -> RecognitionEngine:
        if self._engine is None:
            self._generation += 1
            generation = self._generation
            self._engine = self._factory(self._language, lambda event: self._on_event(generation, event))
            self._engine_language = self._language
            logger.debug("Created recognition engine for %s", self._language)
        return self._engine

    def _release_engine(self) -> None:
        self._generation += 1
        self._engine = None
        self._engine_language = None

    def _on_event(self, generation: int, event: EngineEvent) -> None:
        if generation != self._generation:
            logger.debug("Dropping %s event from a released engine", event.type)
            return
        if isinstance(event, StartEvent):
            self._handle_start()
        elif isinstance(event, ResultEvent):
            self._handle_result(event)
        elif isinstance(event, ErrorEvent):
            self._handle_error(event)
        elif isinstance(event, EndEvent):
            self._handle_end()

    def _handle_start(self) -> None:
        self._start_requested = False
        self._state = SessionState.LISTENING
        logger.info("Listening (%s)", self._engine_language)
        self._publish(SessionNotice(kind="started"))

    def _handle_result(self, event: ResultEvent) -> None:
        if self._state is not SessionState.LISTENING:
            logger.debug("Dropping result delivered while idle")
            return
        interim: List[str] = []
        for result in event.results[event.result_index:]:
            if result.is_final:
                self.transcript.append_final(result.transcript)
            else:
                interim.append(result.transcript)
        self.transcript.set_interim("".join(interim))
        self._publish(SessionNotice(kind="transcript"))

    def _handle_error(self, event: ErrorEvent) -> None:
        err = error_for_code(event.code, event.message)
        logger.warning("Recognition error %s: %s", event.code, err)
        self._publish(SessionNotice(kind="error", message=str(err)))

    def _handle_end(self) -> None:
        self._start_requested = False
        self._state = SessionState.IDLE
        # nothing will ever confirm a dangling interim
        self.transcript.set_interim("")
        if self._retiring:
            self._retiring = False
            self._release_engine()
        logger.info("Recognition ended")
        self._publish(SessionNotice(kind="ended"))
        if self._restart_pending:
            self._restart_pending = False
            try:
                self.start()
            except RecognitionRuntimeError as exc:
                self._publish(SessionNotice(kind="error", message=str(exc)))

    def _publish(self, notice: SessionNotice) -> None:
        for listener in list(self._listeners):
            try:
                listener(notice)
            except Exception:
                logger.exception("Session listener failed on %s", notice.kind)
