import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_LANGUAGE = "en-US"

SUPPORTED_LANGUAGES = {
    "en-US": "English (US)",
    "en-GB": "English (UK)",
    "es-ES": "Spanish",
    "fr-FR": "French",
    "de-DE": "German",
}

DEFAULT_REALTIME_URL = "wss://api.openai.com/v1/realtime?intent=transcription"


@dataclass
class Settings:
    language: str = DEFAULT_LANGUAGE
    stt_backend: str = "realtime"
    openai_api_key: str = ""
    realtime_url: str = DEFAULT_REALTIME_URL
    transcribe_model: str = "gpt-4o-transcribe"
    partial_emit_ms: int = 250
    idle_timeout_sec: float = 0.0          # 0 = never end on silence
    audio_device: Optional[str] = None
    sample_rate: int = 24000
    block_ms: int = 50
    fft_size: int = 256
    frame_rate: int = 60
    canvas_width: int = 600
    canvas_height: int = 100
    export_dir: Path = Path(".")
    whisper_model: str = "base"
    whisper_chunk_sec: float = 2.0
    hotkey: str = "alt+shift+c"
    log_level: str = "INFO"

    @property
    def frame_interval(self) -> float:
        return 1.0 / max(1, self.frame_rate)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring %s=%r, expected an integer", name, raw)
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring %s=%r, expected a number", name, raw)
        return default


def load_settings() -> Settings:
    return Settings(
        language=os.getenv("LIVESCRIBE_LANG", DEFAULT_LANGUAGE),
        stt_backend=os.getenv("STT_BACKEND", "realtime").lower(),
        openai_api_key=os.getenv("OPENAI_API_KEY", ""),
        realtime_url=os.getenv("OPENAI_REALTIME_URL", DEFAULT_REALTIME_URL),
        transcribe_model=os.getenv("OPENAI_TRANSCRIBE_MODEL", "gpt-4o-transcribe"),
        partial_emit_ms=_env_int("REALTIME_PARTIAL_EMIT_MS", 250),
        idle_timeout_sec=_env_float("STT_IDLE_TIMEOUT_SEC", 0.0),
        audio_device=os.getenv("AUDIO_INPUT_DEVICE") or None,
        sample_rate=_env_int("AUDIO_SAMPLE_RATE", 24000),
        block_ms=_env_int("AUDIO_BLOCK_MS", 50),
        fft_size=_env_int("VISUALIZER_FFT_SIZE", 256),
        frame_rate=_env_int("VISUALIZER_FPS", 60),
        canvas_width=_env_int("CANVAS_WIDTH", 600),
        canvas_height=_env_int("CANVAS_HEIGHT", 100),
        export_dir=Path(os.getenv("EXPORT_DIR", ".")).expanduser(),
        whisper_model=os.getenv("WHISPER_MODEL", "base"),
        whisper_chunk_sec=_env_float("WHISPER_CHUNK_DURATION", 2.0),
        hotkey=os.getenv("HOTKEY", "alt+shift+c"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
