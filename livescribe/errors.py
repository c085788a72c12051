from typing import Optional


class LiveScribeError(Exception):
    """Base class for errors surfaced to the user as a single message."""


class UnsupportedPlatform(LiveScribeError):
    pass


class PermissionDenied(LiveScribeError):
    pass


class RecognitionRuntimeError(LiveScribeError):
    def __init__(self, code: str, detail: str = ""):
        self.code = code
        self.detail = detail
        super().__init__(describe_error(code, detail))


class ClipboardFailure(LiveScribeError):
    pass


ERROR_MESSAGES = {
    "no-speech": "No speech was detected.",
    "aborted": "Speech recognition was aborted.",
    "audio-capture": "No microphone was found or it could not be opened.",
    "network": "Network error while talking to the speech service.",
    "not-allowed": "Microphone permission was denied.",
    "service-not-allowed": "The speech service refused the request.",
    "language-not-supported": "The selected language is not supported.",
    "start-failed": "Speech recognition could not be started.",
}

PERMISSION_CODES = frozenset({"not-allowed", "service-not-allowed"})


def describe_error(code: str, detail: Optional[str] = None) -> str:
    base = ERROR_MESSAGES.get(code, f"Speech recognition error: {code}")
    if detail:
        return f"{base} ({detail})"
    return base


def error_for_code(code: str, detail: str = "") -> LiveScribeError:
    if code in PERMISSION_CODES:
        return PermissionDenied(describe_error(code, detail))
    return RecognitionRuntimeError(code, detail)
