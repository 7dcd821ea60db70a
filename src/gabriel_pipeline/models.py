from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

TERMINAL_RUN_STATUSES = frozenset({"completed", "failed", "cancelled", "expired"})


@dataclass(frozen=True)
class Run:
    id: str
    status: str
    thread_id: str | None = None
    last_error: dict[str, Any] | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_RUN_STATUSES

    @property
    def error_message(self) -> str | None:
        if not self.last_error:
            return None
        code = self.last_error.get("code")
        message = self.last_error.get("message")
        if code and message:
            return f"{code}: {message}"
        return message or code

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "Run":
        return cls(
            id=str(data["id"]),
            status=str(data["status"]),
            thread_id=data.get("thread_id"),
            last_error=data.get("last_error") or None,
        )


class ExtractionTier(str, Enum):
    STRICT = "strict"
    POSITIONAL = "positional"
    SYNTHESIZED = "synthesized"


class DocumentPoint(BaseModel):
    title: str
    content: str


class ExtractionWarning(BaseModel):
    field: str
    tier: ExtractionTier


class StructuredDocument(BaseModel):
    title: str
    introduction: str
    points: list[DocumentPoint]
    conclusion: str
    references: list[str]
    raw_text: str = ""
    extraction_warnings: list[ExtractionWarning] = Field(default_factory=list)

    def tier_for(self, field: str) -> ExtractionTier | None:
        for warning in self.extraction_warnings:
            if warning.field == field:
                return warning.tier
        return None
