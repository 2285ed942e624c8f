"""Data models for the NotebookLM content generator."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .config import DEFAULT_LANGUAGE, QUEUE_CREATED_BY

BackendMode = Literal["local", "cloud", "auto"]
BackendName = Literal["local", "cloud"]
OutputType = Literal["podcast", "slides", "infographic"]
ContentType = Literal["podcast", "slides", "infographic", "question"]
ResultStatus = Literal["pending", "processing", "completed", "failed"]

STUDIO_TYPES = ("podcast", "slides", "infographic")
TERMINAL_STATUSES = ("completed", "failed")


class GenerationRequest(BaseModel):
    """One content request: a source text and the artifacts to build from it."""

    title: str
    source_content: str
    outputs: List[OutputType] = Field(default_factory=list)
    question: Optional[str] = None
    language: str = DEFAULT_LANGUAGE
    focus_prompt: Optional[str] = None

    @field_validator("source_content")
    @classmethod
    def _source_not_empty(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("source_content must not be empty")
        return value

    @field_validator("outputs")
    @classmethod
    def _dedupe_outputs(cls, value: List[str]) -> List[str]:
        # dict preserves request order
        return list(dict.fromkeys(value))

    @field_validator("question", "focus_prompt")
    @classmethod
    def _blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.strip():
            return None
        return value

    @model_validator(mode="after")
    def _something_requested(self) -> "GenerationRequest":
        if not self.outputs and not self.question:
            raise ValueError("at least one output type or a question is required")
        return self


class GenerationResult(BaseModel):
    """Outcome of one requested output (or the question) in an orchestration run."""

    type: ContentType
    status: ResultStatus = "pending"
    data: Optional[Any] = None
    url: Optional[str] = None
    error: Optional[str] = None
    task_id: Optional[str] = None  # local notebook id while the studio job runs

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class BackendStatus(BaseModel):
    """Availability snapshot used to pick the backend for one request."""

    mode: BackendMode
    local_available: bool
    cloud_available: bool
    active_backend: Optional[BackendName] = None


class QueueItem(BaseModel):
    """A persisted (batch, content type) unit of work."""

    id: str
    batch_id: str
    content_type: ContentType
    source_content: Optional[str] = None
    title: Optional[str] = None
    notebook_name: Optional[str] = None
    prompt: Optional[str] = None  # question text, only for content_type "question"
    status: ResultStatus = "pending"
    progress_percent: int = 0
    task_id: Optional[str] = None
    content_url: Optional[str] = None
    answer: Optional[str] = None
    error_message: Optional[str] = None
    transcript: Optional[str] = None  # cloud podcast script
    description: Optional[str] = None  # cloud slides or infographic payload as JSON
    created_by: str = QUEUE_CREATED_BY
    settings: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("progress_percent", mode="before")
    @classmethod
    def _clamp_progress(cls, value: Any) -> int:
        if value is None:
            return 0
        return max(0, min(100, int(value)))

    @field_validator("settings", mode="before")
    @classmethod
    def _settings_default(cls, value: Any) -> Any:
        return value or {}


class StudioArtifact(BaseModel):
    """One artifact entry of the local server's studio status report."""

    model_config = ConfigDict(extra="allow")

    type: str = ""
    status: str = ""
    url: Optional[str] = None
    audio_url: Optional[str] = None
    slide_deck_url: Optional[str] = None
    infographic_url: Optional[str] = None

    @property
    def content_url(self) -> Optional[str]:
        return self.url or self.audio_url or self.slide_deck_url or self.infographic_url


class StudioSummary(BaseModel):
    model_config = ConfigDict(extra="allow")

    total: int = 0
    completed: int = 0


class StudioStatus(BaseModel):
    model_config = ConfigDict(extra="allow")

    status: Optional[str] = None
    artifacts: List[StudioArtifact] = Field(default_factory=list)
    summary: Optional[StudioSummary] = None

    @field_validator("artifacts", mode="before")
    @classmethod
    def _artifacts_default(cls, value: Any) -> Any:
        return value or []


class Slide(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    title: str = ""
    content: str = ""
    speaker_notes: Optional[str] = Field(default=None, alias="speakerNotes")

    @field_validator("content", mode="before")
    @classmethod
    def _join_bullets(cls, value: Any) -> Any:
        # Models sometimes return bullet lists instead of a single string
        if isinstance(value, list):
            return "\n".join(str(item) for item in value)
        return value if value is not None else ""


class SlidesResult(BaseModel):
    slides: List[Slide]


class PodcastResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    script: str
    audio_url: Optional[str] = Field(default=None, alias="audioUrl")


class InfographicResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    description: str
    key_points: List[str] = Field(default_factory=list, alias="keyPoints")
    sections: List[Dict[str, Any]] = Field(default_factory=list)
    stats: List[Dict[str, Any]] = Field(default_factory=list)


@dataclass(frozen=True)
class Structured:
    """A tool reply that carried (or parsed into) a JSON object."""

    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RawText:
    """A tool reply whose text could not be parsed as a JSON object."""

    text: str


ParsedResponse = Union[Structured, RawText]
