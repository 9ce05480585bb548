"""
Data models shared by the controller, the registry and the API client.
These define the shape of data flowing between llamadash and the server.
"""

from __future__ import annotations

import enum
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from uuid import uuid4

DEFAULT_TITLE = "New Chat"
ROLES = ("system", "user", "assistant")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class Message:
    """A single chat message. Immutable once appended to a conversation."""
    role: str
    content: str

    def __post_init__(self):
        if self.role not in ROLES:
            raise ValueError(f"Unknown message role: {self.role!r}")

    def to_openai_format(self) -> dict:
        return {"role": self.role, "content": self.content}


@dataclass
class Conversation:
    """A conversation against one model. Owned by ConversationController."""
    model: str
    id: str = field(default_factory=lambda: uuid4().hex)
    title: str = DEFAULT_TITLE
    messages: list[Message] = field(default_factory=list)
    created_at: str = field(default_factory=_now)

    def to_openai_format(self) -> list[dict]:
        return [m.to_openai_format() for m in self.messages]

    def user_message_count(self) -> int:
        return sum(1 for m in self.messages if m.role == "user")


class ModelStatus(str, enum.Enum):
    UNLOADED = "unloaded"
    LOADING = "loading"
    LOADED = "loaded"
    ERROR = "error"


# current status -> statuses it may move to
STATUS_TRANSITIONS: dict[ModelStatus, frozenset[ModelStatus]] = {
    ModelStatus.UNLOADED: frozenset({ModelStatus.LOADING}),
    ModelStatus.LOADING: frozenset({ModelStatus.LOADED, ModelStatus.ERROR}),
    ModelStatus.LOADED: frozenset({ModelStatus.UNLOADED}),
    ModelStatus.ERROR: frozenset({ModelStatus.LOADING}),
}


@dataclass
class ModelEntry:
    """A model file known to the server, plus its lifecycle status."""
    id: str
    filename: str = ""
    path: str = ""
    size: int = 0
    architecture: str | None = None
    parameters: str | None = None
    context_length: int | None = None
    file_type: str | None = None
    quantization: str | None = None
    chat_template: str | None = None
    status: ModelStatus = ModelStatus.UNLOADED
    favorite: bool = False
    alias: str | None = None
    loaded_at: str | None = None
    last_used: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "ModelEntry":
        """Build from an /api/models item. Unknown keys are ignored."""
        try:
            status = ModelStatus(data.get("status") or "unloaded")
        except ValueError:
            status = ModelStatus.UNLOADED
        return cls(
            id=data["id"],
            filename=data.get("filename", ""),
            path=data.get("path", ""),
            size=int(data.get("size") or 0),
            architecture=data.get("architecture"),
            parameters=data.get("parameters"),
            context_length=data.get("context_length"),
            file_type=data.get("file_type"),
            quantization=data.get("quantization"),
            chat_template=data.get("chat_template"),
            status=status,
            favorite=bool(data.get("favorite", False)),
            alias=data.get("alias"),
            loaded_at=data.get("loaded_at"),
            last_used=data.get("last_used"),
        )

    def to_dict(self) -> dict:
        d = asdict(self)
        d["status"] = self.status.value
        return d

    @property
    def display_name(self) -> str:
        return self.alias or self.id


@dataclass
class GenerationOptions:
    """Sampling knobs sent with every chat completion request."""
    max_tokens: int = 2048
    temperature: float = 0.7
    top_p: float = 0.9
    stop: list[str] | None = None
    seed: int | None = None
    frequency_penalty: float | None = None
    presence_penalty: float | None = None

    @classmethod
    def from_config(cls, cfg: dict) -> "GenerationOptions":
        gen = cfg.get("generation", {}) or {}
        defaults = cls()
        return cls(
            max_tokens=gen.get("max_tokens", defaults.max_tokens),
            temperature=gen.get("temperature", defaults.temperature),
            top_p=gen.get("top_p", defaults.top_p),
        )

    def to_request_fields(self) -> dict:
        """Request body fields; optional knobs are omitted when unset."""
        body = {
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "top_p": self.top_p,
        }
        for key in ("stop", "seed", "frequency_penalty", "presence_penalty"):
            value = getattr(self, key)
            if value is not None:
                body[key] = value
        return body


def build_chat_request(
    model: str | None,
    messages: list[Message],
    options: GenerationOptions | None = None,
    stream: bool = True,
) -> dict:
    """Assemble an OpenAI-compatible /v1/chat/completions body."""
    body: dict = {}
    if model:
        body["model"] = model
    body["messages"] = [m.to_openai_format() for m in messages]
    body.update((options or GenerationOptions()).to_request_fields())
    body["stream"] = stream
    return body


@dataclass
class ChatCompletion:
    """Result of a non-streaming chat completion."""
    id: str = ""
    model: str = ""
    content: str = ""
    finish_reason: str | None = None
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_dict(cls, data: dict) -> "ChatCompletion":
        choices = data.get("choices") or [{}]
        choice = choices[0]
        usage = data.get("usage") or {}
        return cls(
            id=data.get("id", ""),
            model=data.get("model", ""),
            content=(choice.get("message") or {}).get("content", "") or "",
            finish_reason=choice.get("finish_reason"),
            prompt_tokens=usage.get("prompt_tokens", 0),
            completion_tokens=usage.get("completion_tokens", 0),
            total_tokens=usage.get("total_tokens", 0),
        )
