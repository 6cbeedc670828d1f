"""Data model for transcript turns and attachments."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    TOOL = "tool"
    ERROR = "error"


# Roles forwarded to the model; error turns stay local.
UPSTREAM_ROLES = frozenset({Role.USER, Role.ASSISTANT, Role.SYSTEM, Role.TOOL})


class AttachmentType(str, Enum):
    CODE = "code"
    CHART = "chart"
    TABLE = "table"


def new_id() -> str:
    """Return an opaque identifier that is unique for the process lifetime."""
    return uuid.uuid4().hex


@dataclass(frozen=True)
class OutputRef:
    """Grouping key naming the host output an attachment came from."""

    id: str
    title: Optional[str] = None


@dataclass(frozen=True)
class Attachment:
    """A typed payload waiting in the intake queue or owned by a turn."""

    type: AttachmentType
    data: str
    id: str = field(default_factory=new_id)
    metadata: Mapping[str, str] = field(default_factory=dict)
    output: Optional[OutputRef] = None
    initial_message: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "type", AttachmentType(self.type))
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    @property
    def is_chart(self) -> bool:
        return self.type is AttachmentType.CHART

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "data": self.data,
            "metadata": dict(self.metadata),
            "output": {"id": self.output.id, "title": self.output.title} if self.output else None,
            "initialMessage": self.initial_message,
        }


@dataclass
class Turn:
    """One transcript entry."""

    role: Role
    content: str = ""
    attachments: Tuple[Attachment, ...] = ()
    id: str = field(default_factory=new_id)
    display_raw: bool = False
    attachments_visible: bool = True

    def __post_init__(self) -> None:
        self.role = Role(self.role)
        self.attachments = tuple(self.attachments)

    def snapshot(self) -> "Turn":
        return replace(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role.value,
            "content": self.content,
            "attachments": [attachment.to_dict() for attachment in self.attachments],
            "displayRaw": self.display_raw,
            "attachmentsVisible": self.attachments_visible,
        }
