from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

Role = Literal["system", "user", "assistant"]


class Route(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"


class OutputShape(str, Enum):
    FREEFORM = "freeform"
    DOCUMENT = "document"
    JSON = "json"


@dataclass(frozen=True)
class ChatMessage:
    role: Role
    content: str

    def as_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class GenerationRequest:
    messages: list[ChatMessage]
    handler: str = "chat"
    force_primary: bool | None = None
    force_secondary: bool | None = None
    # Per-run framing for the assistant; never stored on the assistant itself.
    instructions: str | None = None
    # System framing used on the secondary route.
    system_prompt: str | None = None
    output_shape: OutputShape = OutputShape.FREEFORM
    subject: str | None = None
    title: str | None = None
    parameters: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CascadeResult:
    text: str
    used_secondary: bool
    route: Route
