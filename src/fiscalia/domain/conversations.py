"""Conversation log entries.

Turns are append-only. The assistant turn's metadata carries the action
that was proposed, so a follow-up message can complete it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class ConversationTurn:
    account_id: str
    role: Role
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
    id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role.value,
            "content": self.content,
            "metadata": self.metadata,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }

    def as_model_message(self) -> dict[str, str]:
        return {"role": self.role.value, "content": self.content}
