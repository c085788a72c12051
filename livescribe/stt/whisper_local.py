# livescribe/stt/whisper_local.py
import asyncio
import logging
from typing import Optional

import numpy as np
import whisper

from ..app_types import ErrorEvent
from .engine import FrameSource, StreamingEngine
from .realtime import primary_subtag

logger = logging.getLogger(__name__)

# Load the model once per process
MODEL = None


def load_whisper_model(model_size: str):
    global MODEL
    if MODEL is None:
        logger.info("Loading whisper model: %s", model_size)
        MODEL = whisper.load_model(model_size)
        logger.info("Whisper model loaded")
    return MODEL


def transcribe_audio(audio_bytes: bytes, sr: int, language: str, model_size: str) -> str:
    audio_np = np.frombuffer(audio_bytes, dtype=np.int16).astype(np.float32) / 32768.0

    # too short to be worth decoding
    if len(audio_np) < sr * 0.5:
        return ""

    if sr != whisper.audio.SAMPLE_RATE:
        target = int(len(audio_np) * whisper.audio.SAMPLE_RATE / sr)
        audio_np = np.interp(
            np.linspace(0, len(audio_np) - 1, target),
            np.arange(len(audio_np)),
            audio_np,
        ).astype(np.float32)

    result = load_whisper_model(model_size).transcribe(
        audio_np,
        language=language,
        task="transcribe",
        verbose=False,
        word_timestamps=False,
        fp16=False,
        temperature=0.0,
        no_speech_threshold=0.6,
        logprob_threshold=-1.0,
    )
    text = result["text"].strip()
    if text and text != "[BLANK_AUDIO]":
        return text
    return ""


class WhisperEngine(StreamingEngine):
    """Transcribes fixed-length chunks with a local whisper model.

    Whisper has no partial hypotheses, so every result is final.
    """

    def _chunk_bytes(self) -> int:
        # int16 = 2 bytes
        return int(self.settings.sample_rate * self.settings.whisper_chunk_sec * 2)

    async def _recognize(self, capture: FrameSource) -> None:
        loop = asyncio.get_running_loop()
        buf = bytearray()
        bytes_per_chunk = self._chunk_bytes()
        language = primary_subtag(self.language)
        logger.info("Whisper: %.1fs chunks, %d bytes each", self.settings.whisper_chunk_sec, bytes_per_chunk)

        async for audio_chunk in capture.frames():
            buf.extend(audio_chunk)
            if len(buf) < bytes_per_chunk:
                continue
            audio_bytes = bytes(buf)
            buf.clear()

            # CPU-heavy, keep it off the event loop
            text: Optional[str] = await loop.run_in_executor(
                None,
                transcribe_audio,
                audio_bytes,
                self.settings.sample_rate,
                language,
                self.settings.whisper_model,
            )
            if text:
                logger.debug("Whisper transcript: %s", text)
                self._publish_final(text)
            elif self._idle_expired():
                logger.info("No speech for %.1fs, ending session", self.settings.idle_timeout_sec)
                self._emit(ErrorEvent(code="no-speech"))
                return

    def _error_code(self, exc: Exception) -> str:
        return "aborted"
