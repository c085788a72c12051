import asyncio
import logging
import queue
import time
from dataclasses import dataclass
from typing import AsyncGenerator, List, Optional

import numpy as np
import sounddevice as sd

from ..config import Settings
from ..errors import PermissionDenied, UnsupportedPlatform
from .analyser import SampleRing

logger = logging.getLogger(__name__)

STALL_SECONDS = 1.5          # silence from the driver before the stream is reopened
QUEUE_MAX = 200              # callback -> consumer buffer
REOPEN_BACKOFF_MAX = 3.0     # seconds
RING_SECONDS = 0.5           # visualizer ring buffer length


@dataclass
class CaptureConfig:
    device_name: Optional[str] = None
    samplerate: int = 24000
    channels: int = 1
    block_ms: int = 50
    dtype: str = "int16"
    _frames_per_block: int = 0

    def __post_init__(self):
        self._frames_per_block = max(1, int(self.samplerate * self.block_ms / 1000))

    @classmethod
    def from_settings(cls, settings: Settings) -> "CaptureConfig":
        return cls(
            device_name=settings.audio_device,
            samplerate=settings.sample_rate,
            block_ms=settings.block_ms,
        )


def list_input_devices() -> List[dict]:
    return [
        {"index": i, "name": d["name"], "channels": int(d.get("max_input_channels", 0))}
        for i, d in enumerate(sd.query_devices())
        if int(d.get("max_input_channels", 0)) > 0
    ]


def resolve_device(name: Optional[str]) -> Optional[int]:
    """Map a device name, substring or ``#index`` to a PortAudio index.

    None means the host default input.
    """
    if not name or name.strip().lower() in ("", "default", "auto"):
        return None
    name = name.strip()
    if name.startswith("#") and name[1:].isdigit():
        return int(name[1:])
    candidates = [(d["index"], d["name"]) for d in list_input_devices()]
    lname = name.lower()
    for i, dev_name in candidates:
        if str(dev_name).lower() == lname:
            return i
    for i, dev_name in candidates:
        if lname in str(dev_name).lower():
            return i
    return None


def _check_device(cfg: CaptureConfig) -> Optional[int]:
    try:
        device_index = resolve_device(cfg.device_name)
        inputs = list_input_devices()
    except sd.PortAudioError as exc:
        raise UnsupportedPlatform(f"Audio devices could not be queried: {exc}") from exc
    if cfg.device_name and device_index is None:
        names = [f"#{d['index']} {d['name']}" for d in inputs]
        raise UnsupportedPlatform(
            f"Input device not found: {cfg.device_name}. Available inputs: " + ", ".join(names)
        )
    if device_index is None and not inputs:
        raise UnsupportedPlatform("No audio input device is available")
    return device_index


def _to_mono(indata: np.ndarray) -> np.ndarray:
    if indata.ndim == 2 and indata.shape[1] > 1:
        return indata.mean(axis=1)
    return indata.reshape(-1)


class AudioCapture:
    """PCM16 frame producer for recognition engines."""

    def __init__(self, cfg: CaptureConfig):
        self.cfg = cfg
        self._q: "queue.Queue[np.ndarray]" = queue.Queue(maxsize=QUEUE_MAX)
        self._stream: Optional[sd.InputStream] = None
        self._running = False
        self._device_index: Optional[int] = None
        self._last_put = time.monotonic()
        self._reopen_backoff = 0.1

    def _make_stream(self) -> sd.InputStream:
        return sd.InputStream(
            device=self._device_index,
            channels=self.cfg.channels,
            samplerate=self.cfg.samplerate,
            dtype=self.cfg.dtype,
            blocksize=self.cfg._frames_per_block,
            latency="low",
            callback=self._callback,
            dither_off=True,
        )

    def start(self) -> None:
        self._device_index = _check_device(self.cfg)
        try:
            self._open_stream(initial=True)
        except sd.PortAudioError as exc:
            raise PermissionDenied(f"Microphone could not be opened: {exc}") from exc
        self._running = True

    def _open_stream(self, initial: bool = False) -> None:
        self._stream = self._make_stream()
        self._stream.start()
        self._last_put = time.monotonic()
        self._reopen_backoff = 0.1
        logger.info(
            "Capture %s device=%s idx=%s sr=%sHz ch=%s block=%sms",
            "started" if initial else "reopened",
            self.cfg.device_name or "(default)", self._device_index,
            self.cfg.samplerate, self.cfg.channels, self.cfg.block_ms,
        )

    def _close_stream(self) -> None:
        if self._stream:
            try:
                self._stream.stop()
                self._stream.close()
            except sd.PortAudioError as exc:
                logger.debug("Ignoring error while closing stream: %s", exc)
            self._stream = None

    async def _restart_stream(self, re_resolve_device: bool = False) -> None:
        # the device index can change when hardware is replugged
        if re_resolve_device:
            self._device_index = resolve_device(self.cfg.device_name)
        self._close_stream()
        try:
            self._open_stream(initial=False)
            logger.info("Capture stream restarted after stall")
        except sd.PortAudioError as exc:
            logger.error("Capture restart failed: %s", exc)
            await asyncio.sleep(self._reopen_backoff)
            self._reopen_backoff = min(REOPEN_BACKOFF_MAX, self._reopen_backoff * 2.0)

    def _callback(self, indata, frames, time_info, status):
        if status:
            logger.debug("Capture status: %s", status)
        x = _to_mono(indata.astype(np.int32)).astype(np.int16)
        try:
            self._q.put_nowait(x.copy())
            self._last_put = time.monotonic()
        except queue.Full:
            # drop the oldest block
            try:
                self._q.get_nowait()
                self._q.put_nowait(x.copy())
                self._last_put = time.monotonic()
            except queue.Empty:
                pass

    async def frames(self) -> AsyncGenerator[bytes, None]:
        loop = asyncio.get_running_loop()
        consecutive_stalls = 0
        while self._running:
            if (time.monotonic() - self._last_put) > STALL_SECONDS:
                consecutive_stalls += 1
                await self._restart_stream(re_resolve_device=(consecutive_stalls >= 2))
                await asyncio.sleep(0.01)
                continue
            consecutive_stalls = 0

            try:
                arr = await loop.run_in_executor(None, self._q.get, True, 0.5)
            except queue.Empty:
                continue
            yield arr.tobytes()

    def stop(self) -> None:
        self._running = False
        self._close_stream()


class MicrophoneStream:
    """A live input stream whose samples land in a rolling buffer."""

    def __init__(self, cfg: CaptureConfig, device_index: Optional[int], capacity: int):
        self.buffer = SampleRing(capacity)
        self._stream: Optional[sd.InputStream] = sd.InputStream(
            device=device_index,
            channels=cfg.channels,
            samplerate=cfg.samplerate,
            dtype="float32",
            blocksize=cfg._frames_per_block,
            latency="low",
            callback=self._callback,
        )
        try:
            self._stream.start()
        except sd.PortAudioError:
            self._stream.close()
            self._stream = None
            raise

    @property
    def tracks(self) -> List[sd.InputStream]:
        return [self._stream] if self._stream is not None else []

    @property
    def active(self) -> bool:
        return self._stream is not None

    def _callback(self, indata, frames, time_info, status):
        if status:
            logger.debug("Visualizer stream status: %s", status)
        self.buffer.write(_to_mono(indata))

    def stop(self) -> None:
        for track in self.tracks:
            try:
                track.stop()
                track.close()
            except sd.PortAudioError as exc:
                logger.debug("Ignoring error while closing stream: %s", exc)
        self._stream = None


class SoundDeviceCapture:
    """Permission-gated stream acquisition shared across visualizer sessions."""

    def __init__(self, cfg: CaptureConfig, min_capacity: int = 256):
        self.cfg = cfg
        self.capacity = max(min_capacity, int(cfg.samplerate * RING_SECONDS))

    async def request_stream(self) -> MicrophoneStream:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._open)

    def _open(self) -> MicrophoneStream:
        try:
            device_index = _check_device(self.cfg)
            return MicrophoneStream(self.cfg, device_index, self.capacity)
        except sd.PortAudioError as exc:
            raise PermissionDenied(f"Microphone access was refused: {exc}") from exc
