"""Domain models for the chat relay and client.

Upstream events are plain frozen dataclasses: they live only for the time
it takes to translate one line. Everything that crosses the relay's HTTP
surface or the storage boundary is a pydantic model serialized with
camelCase keys.
"""

from dataclasses import dataclass
from typing import Literal

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

Role = Literal["user", "assistant", "system"]


class _WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        protected_namespaces=(),
    )


class GenerationStats(_WireModel):
    """Throughput and timing summary for one completed generation."""

    tokens_per_second: float | None = None
    prompt_tokens_per_second: float | None = None
    total_tokens: int | None = None
    prompt_tokens: int | None = None
    generation_time_seconds: float | None = None
    total_time_seconds: float | None = None


class ConversationTurn(_WireModel):
    """A single message in a conversation."""

    role: Role
    content: str
    model_id: str | None = None
    stats: GenerationStats | None = None
    interrupted: bool = False
    error: str | None = None

    def to_dict(self) -> dict:
        """Return the camelCase JSON-ready form, without unset fields."""
        return self.model_dump(by_alias=True, exclude_none=True, exclude_defaults=True)

    def to_upstream(self) -> dict:
        """Return the ``{role, content}`` pair the inference server expects."""
        return {"role": self.role, "content": self.content}


class RelayFrame(_WireModel):
    """One line of the relay's streaming response."""

    content: str
    stats: GenerationStats | None = None

    def to_line(self) -> bytes:
        """Encode as a newline-terminated JSON line."""
        return self.model_dump_json(by_alias=True, exclude_none=True).encode("utf-8") + b"\n"


@dataclass(frozen=True)
class ContentDelta:
    """An incremental piece of generated text."""

    text: str


@dataclass(frozen=True)
class Completion:
    """The upstream's final record. Every counter is optional."""

    eval_count: int | None = None
    eval_duration: int | None = None
    prompt_eval_count: int | None = None
    prompt_eval_duration: int | None = None
    total_duration: int | None = None


@dataclass(frozen=True)
class UpstreamFailure:
    """An in-band ``{"error": ...}`` record: the generation has failed."""

    message: str


@dataclass(frozen=True)
class Unrecognized:
    """A valid JSON object that carries neither content nor completion."""


UpstreamEvent = ContentDelta | Completion | UpstreamFailure | Unrecognized
