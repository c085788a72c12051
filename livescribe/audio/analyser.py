import threading
from typing import List, Tuple

import numpy as np

MIN_FFT_SIZE = 32
MAX_FFT_SIZE = 32768


class SampleRing:
    """Rolling window of the most recent mono samples.

    Written from the PortAudio callback thread, read from the event loop.
    """

    def __init__(self, capacity: int):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._buf = np.zeros(capacity, dtype=np.float32)
        self._pos = 0
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return len(self._buf)

    def write(self, samples: np.ndarray) -> None:
        x = np.asarray(samples, dtype=np.float32).reshape(-1)
        n = len(self._buf)
        if len(x) >= n:
            x = x[-n:]
        with self._lock:
            end = self._pos + len(x)
            if end <= n:
                self._buf[self._pos:end] = x
            else:
                split = n - self._pos
                self._buf[self._pos:] = x[:split]
                self._buf[:end - n] = x[split:]
            self._pos = end % n

    def latest(self, count: int) -> np.ndarray:
        """Return the newest ``count`` samples, oldest first."""
        count = min(count, len(self._buf))
        with self._lock:
            ordered = np.concatenate((self._buf[self._pos:], self._buf[:self._pos]))
        return ordered[-count:].copy()


class Analyser:
    """Time-domain sampling stage fed by a stream's ring buffer."""

    def __init__(self, source: SampleRing, fft_size: int = 256):
        if fft_size < MIN_FFT_SIZE or fft_size > MAX_FFT_SIZE or fft_size & (fft_size - 1):
            raise ValueError(f"fft_size must be a power of two in [{MIN_FFT_SIZE}, {MAX_FFT_SIZE}]")
        if source.capacity < fft_size:
            raise ValueError("source buffer is smaller than fft_size")
        self.source = source
        self.fft_size = fft_size

    @property
    def frequency_bin_count(self) -> int:
        return self.fft_size // 2

    def get_time_domain_data(self) -> np.ndarray:
        return self.source.latest(self.fft_size)


def waveform_points(samples: np.ndarray, width: int, height: int) -> List[Tuple[float, float]]:
    """Map samples in [-1, 1] onto a polyline spanning a width x height surface."""
    n = len(samples)
    if n == 0:
        return []
    clipped = np.clip(samples, -1.0, 1.0)
    step = width / (n - 1) if n > 1 else 0.0
    mid = height / 2.0
    return [(i * step, mid - float(v) * mid) for i, v in enumerate(clipped)]
