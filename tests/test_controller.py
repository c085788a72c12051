"""
Unit tests for livescribe.controller.
"""

import asyncio

import pyperclip
import pytest
from conftest import FakeCapture, result_event

from livescribe.app_types import EndEvent, ErrorEvent, StartEvent
from livescribe.audio.visualizer import AudioVisualizer, FrameBuffer
from livescribe.config import Settings
from livescribe.controller import SessionController, build_controller
from livescribe.core.transcript import TranscriptAccumulator
from livescribe.errors import PermissionDenied, describe_error
from livescribe.stt.session import RecognitionSession


def _controller(engines, capture):
    session = RecognitionSession(TranscriptAccumulator(), engines)
    visualizer = AudioVisualizer(capture, FrameBuffer(32, 16), frame_interval=0.001)
    return SessionController(session, visualizer)


class TestControllerStart:
    """Tests for starting both subsystems."""

    @pytest.mark.asyncio
    async def test_start_runs_both(self, controller, engines, capture):
        """Test one start drives recognition and the waveform."""
        task = controller.start()
        assert await task is True
        engines.last.emit(StartEvent())
        state = controller.state
        assert state.is_listening
        assert state.visualizing
        await controller.aclose()

    @pytest.mark.asyncio
    async def test_visualizer_denial_does_not_block_transcription(self, engines):
        """Test transcription proceeds when the microphone view is refused."""
        capture = FakeCapture(deny=PermissionDenied(describe_error("not-allowed")))
        controller = _controller(engines, capture)
        task = controller.start()
        engines.last.emit(StartEvent())
        await task
        engines.last.emit(result_event(("still works ", True)))
        state = controller.state
        assert state.is_listening
        assert state.text == "still works "
        assert not state.visualizing
        assert state.error == describe_error("not-allowed")
        await controller.aclose()

    @pytest.mark.asyncio
    async def test_unsupported_recognition_does_not_block_visualizer(self, capture):
        """Test the waveform still runs without a recognition engine."""
        session = RecognitionSession(TranscriptAccumulator(), None)
        visualizer = AudioVisualizer(capture, FrameBuffer(32, 16), frame_interval=0.001)
        controller = SessionController(session, visualizer)
        await controller.start()
        state = controller.state
        assert state.recognition_supported is False
        assert state.visualizing
        assert "not available" in state.error
        await controller.aclose()

    @pytest.mark.asyncio
    async def test_second_start_does_not_duplicate(self, controller, engines, capture):
        """Test repeated start keeps one engine and one stream."""
        await controller.start()
        assert controller.start() is None
        assert len(engines.engines) == 1
        assert capture.requests == 1
        await controller.aclose()

    @pytest.mark.asyncio
    async def test_start_clears_error_on_session_start(self, controller, engines):
        """Test a successful session start clears an earlier error."""
        await controller.start()
        engines.last.emit(ErrorEvent(code="network"))
        assert controller.state.error == describe_error("network")
        controller.stop()
        engines.last.emit(EndEvent())
        await controller.start()
        engines.last.emit(StartEvent())
        assert controller.state.error is None
        await controller.aclose()


    @pytest.mark.asyncio
    async def test_visualizer_retried_after_unexpected_failure(self, engines):
        """Test a crashed microphone request does not block later starts."""
        capture = FakeCapture(deny=RuntimeError("Error querying device -1"))
        controller = _controller(engines, capture)
        assert await controller.start() is False
        assert "Error querying device -1" in controller.state.error

        capture.deny = None
        task = controller.start()
        assert task is not None
        assert await task is True
        assert capture.requests == 2
        await controller.aclose()


class TestControllerCommands:
    """Tests for stop, clear and language selection."""

    @pytest.mark.asyncio
    async def test_stop_tears_down_both(self, controller, engines, capture):
        """Test stop releases the stream and asks the engine to stop."""
        await controller.start()
        engines.last.emit(StartEvent())
        controller.stop()
        assert "stop" in engines.last.calls
        assert capture.live_streams == []
        assert not controller.state.visualizing
        engines.last.emit(EndEvent())
        assert not controller.state.is_listening
        await controller.aclose()

    @pytest.mark.asyncio
    async def test_stop_while_permission_pending(self, controller, capture):
        """Test stop during a pending grant leaks no stream."""
        gate = capture.hold()
        task = controller.start()
        await asyncio.sleep(0)
        controller.stop()
        gate.set()
        assert await task is False
        assert capture.live_streams == []
        await controller.aclose()

    @pytest.mark.asyncio
    async def test_clear_keeps_listening(self, controller, engines):
        """Test clear resets text and error but leaves the session running."""
        await controller.start()
        engines.last.emit(StartEvent())
        engines.last.emit(result_event(("words ", True), ("more", False)))
        engines.last.emit(ErrorEvent(code="no-speech"))
        controller.clear()
        state = controller.state
        assert state.text == ""
        assert state.interim_text == ""
        assert state.error is None
        assert state.is_listening
        assert "stop" not in engines.last.calls
        await controller.aclose()

    @pytest.mark.asyncio
    async def test_set_language_while_listening(self, controller, engines):
        """Test switching locale mid-session restarts on a fresh handle."""
        await controller.start()
        engines.last.emit(StartEvent())
        controller.set_language("de-DE")
        assert controller.state.language == "de-DE"
        old = engines.last
        old.emit(EndEvent())
        controller.start()
        assert engines.last is not old
        assert engines.last.language == "de-DE"
        await controller.aclose()

    @pytest.mark.asyncio
    async def test_subscribers_see_updates(self, controller, engines):
        """Test state listeners receive snapshots on transcript changes."""
        seen = []
        controller.subscribe(seen.append)
        await controller.start()
        engines.last.emit(StartEvent())
        engines.last.emit(result_event(("hi ", True)))
        assert seen[-1].text == "hi "
        assert seen[-1].display == "hi "
        await controller.aclose()


class TestControllerOutput:
    """Tests for clipboard and export."""

    def test_copy_transcript(self, controller, monkeypatch):
        """Test only finalized text reaches the clipboard."""
        copied = []
        monkeypatch.setattr(pyperclip, "copy", copied.append)
        controller.transcript.append_final("done ")
        controller.transcript.set_interim("pending")
        assert controller.copy_transcript() is True
        assert copied == ["done "]

    def test_copy_failure_returns_false(self, controller, monkeypatch):
        """Test a missing clipboard backend is reported, not raised."""

        def broken(text):
            raise pyperclip.PyperclipException("no clipboard")

        monkeypatch.setattr(pyperclip, "copy", broken)
        assert controller.copy_transcript() is False

    def test_export_transcript(self, controller, tmp_path):
        """Test the exported file matches the finalized text."""
        controller.transcript.append_final("héllo wörld ")
        path = controller.export_transcript(tmp_path / "out.txt")
        assert path.read_bytes() == "héllo wörld ".encode("utf-8")

    def test_export_failure_records_error(self, controller, tmp_path):
        """Test an unwritable target surfaces as a state error."""
        blocker = tmp_path / "file"
        blocker.write_text("x")
        assert controller.export_transcript(blocker / "sub" / "out.txt") is None
        assert controller.state.error.startswith("Export failed")


class TestControllerTeardown:
    """Tests for aclose."""

    @pytest.mark.asyncio
    async def test_aclose_releases_everything(self, controller, engines, capture):
        """Test teardown aborts the engine and stops capture."""
        await controller.start()
        engines.last.emit(StartEvent())
        await controller.aclose()
        assert engines.last.calls[-1] == "abort"
        assert capture.live_streams == []
        assert controller.session.engine is None

    @pytest.mark.asyncio
    async def test_aclose_waits_for_pending_grant(self, controller, capture):
        """Test a grant resolving during teardown is released."""
        gate = capture.hold()
        controller.start()
        await asyncio.sleep(0)
        closing = asyncio.ensure_future(controller.aclose())
        await asyncio.sleep(0)
        gate.set()
        await closing
        assert capture.live_streams == []

    @pytest.mark.asyncio
    async def test_context_manager(self, engines, capture):
        """Test the async context manager closes on exit."""
        async with _controller(engines, capture) as controller:
            await controller.start()
        with pytest.raises(RuntimeError):
            controller.start()

    @pytest.mark.asyncio
    async def test_aclose_is_idempotent(self, controller):
        """Test closing twice is safe."""
        await controller.aclose()
        await controller.aclose()


class TestBuildController:
    """Tests for build_controller."""

    def test_uses_settings(self, engines, capture):
        """Test language and visualizer options come from settings."""
        settings = Settings(language="es-ES", fft_size=512, frame_rate=30)
        controller = build_controller(settings, FrameBuffer(10, 10), engine_factory=engines, capture=capture)
        assert controller.state.language == "es-ES"
        assert controller.visualizer.fft_size == 512
        assert controller.visualizer.frame_interval == pytest.approx(1 / 30)
