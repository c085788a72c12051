# livescribe/stt/realtime.py
import asyncio
import base64
import json
import logging
import time

from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosedOK, InvalidStatus

from ..app_types import ErrorEvent
from .engine import FrameSource, StreamingEngine

logger = logging.getLogger(__name__)

RECV_POLL_SEC = 0.5

# Interim text arrives under several event names depending on the session kind
DELTA_TYPES = (
    "conversation.item.input_audio_transcription.delta",
    "transcript.delta",
    "response.text.delta",
    "response.output_text.delta",
    "response.audio_transcript.delta",
)

DONE_TYPES = (
    "conversation.item.input_audio_transcription.completed",
    "transcript.completed",
    "response.text.done",
    "response.output_text.done",
    "response.audio_transcript.done",
)


def primary_subtag(language: str) -> str:
    return language.split("-")[0].lower()


class RealtimeEngine(StreamingEngine):
    """Streams microphone PCM to the OpenAI realtime transcription endpoint."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._last_emit = 0.0

    def _session_payload(self) -> dict:
        return {
            "type": "transcription_session.update",
            "session": {
                "input_audio_format": "pcm16",
                "input_audio_transcription": {
                    "model": self.settings.transcribe_model,
                    "language": primary_subtag(self.language),
                },
                "turn_detection": {
                    "type": "server_vad",
                    "threshold": 0.3,
                    "prefix_padding_ms": 300,
                    "silence_duration_ms": 250,
                },
            },
        }

    async def _recognize(self, capture: FrameSource) -> None:
        headers = {
            "Authorization": f"Bearer {self.settings.openai_api_key}",
            "OpenAI-Beta": "realtime=v1",
        }
        self._last_emit = 0.0
        async with connect(self.settings.realtime_url, additional_headers=headers, ping_interval=20) as ws:
            await ws.send(json.dumps(self._session_payload()))
            logger.info("Realtime session open (language=%s)", self.language)

            sender = asyncio.create_task(self._send_audio(ws, capture))
            try:
                while True:
                    if sender.done():
                        sender.result()
                        return
                    if self._idle_expired():
                        logger.info("No speech for %.1fs, ending session", self.settings.idle_timeout_sec)
                        self._emit(ErrorEvent(code="no-speech"))
                        return
                    try:
                        raw = await asyncio.wait_for(ws.recv(), timeout=RECV_POLL_SEC)
                    except asyncio.TimeoutError:
                        continue
                    except ConnectionClosedOK:
                        return
                    try:
                        data = json.loads(raw)
                    except json.JSONDecodeError:
                        logger.debug("Ignoring non-JSON frame: %r", raw)
                        continue
                    self._handle_message(data)
            finally:
                sender.cancel()

    async def _send_audio(self, ws, capture: FrameSource) -> None:
        async for chunk in capture.frames():
            b64 = base64.b64encode(chunk).decode("utf-8")
            await ws.send(json.dumps({"type": "input_audio_buffer.append", "audio": b64}))

    def _handle_message(self, data: dict) -> None:
        kind = data.get("type", "")

        if kind == "error":
            err = data.get("error") or {}
            logger.warning("Realtime error: %s", err)
            self._emit(ErrorEvent(code=err.get("code") or "network", message=err.get("message", "")))
            return

        if kind in DELTA_TYPES:
            delta = data.get("delta") or data.get("text") or data.get("transcript") or ""
            if not delta:
                return
            self._partial += delta
            now = time.monotonic()
            if (now - self._last_emit) * 1000 >= self.settings.partial_emit_ms:
                self._publish_interim(self._partial)
                self._last_emit = now
            return

        if kind in DONE_TYPES:
            text = data.get("transcript") or data.get("text") or self._partial
            self._publish_final(text or "")
            self._last_emit = 0.0
            return

        if kind == "input_audio_buffer.speech_started":
            self._last_activity = time.monotonic()
            return

        logger.debug("Realtime event %s", kind)

    def _error_code(self, exc: Exception) -> str:
        if isinstance(exc, InvalidStatus) and exc.response.status_code in (401, 403):
            return "service-not-allowed"
        return "network"
