from enum import Enum
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, Field


class RecognitionResult(BaseModel):
    transcript: str
    is_final: bool = False
    confidence: Optional[float] = None


# ---- Engine -> session messages ----

class StartEvent(BaseModel):
    type: Literal["start"] = "start"


class ResultEvent(BaseModel):
    type: Literal["result"] = "result"
    # results before this index were already delivered as final
    result_index: int = Field(default=0, ge=0)
    results: List[RecognitionResult] = Field(default_factory=list)


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    code: str
    message: str = ""


class EndEvent(BaseModel):
    type: Literal["end"] = "end"


EngineEvent = Union[StartEvent, ResultEvent, ErrorEvent, EndEvent]


# ---- Session -> host messages ----

class SessionNotice(BaseModel):
    kind: Literal["started", "ended", "transcript", "error"]
    message: Optional[str] = None


class SessionState(str, Enum):
    IDLE = "idle"
    LISTENING = "listening"


class PipelineState(str, Enum):
    IDLE = "idle"
    CAPTURING = "capturing"


class ControllerState(BaseModel):
    """Read-only snapshot handed to the presentation layer."""

    is_listening: bool = False
    text: str = ""
    interim_text: str = ""
    error: Optional[str] = None
    language: str = "en-US"
    recognition_supported: bool = True
    visualizing: bool = False

    @property
    def display(self) -> str:
        return self.text + self.interim_text
