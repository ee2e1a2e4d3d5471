from enum import Enum
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class SourceType(str, Enum):
    IMAGE = "image"
    PDF = "pdf"
    URL = "url"
    TEXT = "text"


# --- Source payloads: exactly one variant is active per session ---

class ImagePayload(BaseModel):
    model_config = ConfigDict(frozen=True, ser_json_bytes="base64")

    kind: Literal["image"] = "image"
    data: bytes
    media_type: str


class DocumentPayload(BaseModel):
    model_config = ConfigDict(frozen=True, ser_json_bytes="base64")

    kind: Literal["document"] = "document"
    data: bytes
    media_type: str = "application/pdf"
    filename: str = "source.pdf"


class PlainTextPayload(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["text"] = "text"
    text: str


class RemoteUrlPayload(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["url"] = "url"
    url: str


SourcePayload = Annotated[
    Union[ImagePayload, DocumentPayload, PlainTextPayload, RemoteUrlPayload],
    Field(discriminator="kind"),
]

PAYLOAD_SOURCE_TYPES = {
    "image": SourceType.IMAGE,
    "document": SourceType.PDF,
    "text": SourceType.TEXT,
    "url": SourceType.URL,
}


def source_type_of(payload) -> SourceType:
    return PAYLOAD_SOURCE_TYPES[payload.kind]


# --- Derived state ---

class GenerationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    analysis: str
    story: str


class ConversationEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    speaker: Literal["user", "assistant"]
    text: str


class ChatContext(BaseModel):
    """Grounding context sent with every chat call."""
    story: Optional[str] = None
    analysis: Optional[str] = None
    image: Optional[ImagePayload] = None


class AudioClip(BaseModel):
    model_config = ConfigDict(frozen=True)

    data: bytes
    media_type: str = "audio/mpeg"
    story: str


class GenerationStatus(str, Enum):
    IDLE = "idle"
    GENERATING = "generating"
    READY = "ready"
    FAILED = "failed"


class NarrationStatus(str, Enum):
    IDLE = "idle"
    SYNTHESIZING = "synthesizing"
    READY = "ready"
    PLAYING = "playing"
    PAUSED = "paused"


class ChatStatus(str, Enum):
    IDLE = "idle"
    AWAITING_REPLY = "awaiting_reply"


# --- HTTP request / response bodies ---

class SelectTypeRequest(BaseModel):
    source_type: SourceType


class UrlRequest(BaseModel):
    url: str


class ChatRequest(BaseModel):
    message: str


class ChatPanelRequest(BaseModel):
    open: bool


class SourcePreview(BaseModel):
    kind: str
    name: Optional[str] = None
    media_type: Optional[str] = None
    size: Optional[int] = None
    url: Optional[str] = None
    text_excerpt: Optional[str] = None


class SessionSnapshot(BaseModel):
    session_id: str
    source_type: SourceType
    source: Optional[SourcePreview] = None
    generation_status: GenerationStatus
    analysis: Optional[str] = None
    story: Optional[str] = None
    narration_status: NarrationStatus
    chat_status: ChatStatus
    chat_open: bool = False
    messages: List[ConversationEntry] = Field(default_factory=list)
