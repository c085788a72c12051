from typing import List, Tuple


class TranscriptAccumulator:
    """Finalized segments plus one replaceable interim value.

    Appends are not idempotent: feeding the same final text twice stores it
    twice. The recognition session only hands over each result once.
    """

    def __init__(self):
        self._segments: List[str] = []
        self._interim = ""

    @property
    def finalized(self) -> str:
        return "".join(self._segments)

    @property
    def interim(self) -> str:
        return self._interim

    @property
    def segments(self) -> Tuple[str, ...]:
        return tuple(self._segments)

    def append_final(self, text: str) -> None:
        if text:
            self._segments.append(text)

    def set_interim(self, text: str) -> None:
        self._interim = text

    def clear(self) -> None:
        self._segments.clear()
        self._interim = ""

    def display(self) -> str:
        return self.finalized + self._interim
