"""Queue for attachments delivered by the host before the next user turn."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .models import Attachment, AttachmentType, OutputRef

logger = logging.getLogger(__name__)

UNGROUPED_TITLE = "Attachments"


@dataclass
class AttachmentGroup:
    id: Optional[str]  # None is the shared bucket for attachments without an output
    title: str
    items: List[Attachment] = field(default_factory=list)


class AttachmentIntakeQueue:
    """Pending attachments plus the draft text of the next user turn."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._items: List[Attachment] = []
        self.draft = ""

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    @property
    def items(self) -> Tuple[Attachment, ...]:
        with self._lock:
            return tuple(self._items)

    def get(self, attachment_id: str) -> Optional[Attachment]:
        with self._lock:
            for item in self._items:
                if item.id == attachment_id:
                    return item
            return None

    def enqueue(self, event: Mapping[str, Any]) -> Optional[Attachment]:
        """Add a host event to the queue; returns None for a re-delivered id."""
        attachment = attachment_from_event(event)
        with self._lock:
            if self.get(attachment.id) is not None:
                logger.debug("Dropping duplicate attachment %s", attachment.id)
                return None
            if attachment.initial_message and not self._items and not self.draft:
                self.draft = attachment.initial_message
            self._items.append(attachment)
        logger.debug("Queued %s attachment %s", attachment.type.value, attachment.id)
        return attachment

    def remove(self, attachment_id: str) -> bool:
        with self._lock:
            before = len(self._items)
            self._items = [item for item in self._items if item.id != attachment_id]
            return len(self._items) != before

    def remove_group(self, output_id: Optional[str]) -> int:
        """Remove every item of one output; None removes the ungrouped items."""
        with self._lock:
            kept = [item for item in self._items if _group_id(item) != output_id]
            removed = len(self._items) - len(kept)
            self._items = kept
            return removed

    def clear(self) -> None:
        with self._lock:
            self._items = []

    def freeze(self) -> Tuple[Attachment, ...]:
        """Snapshot the queue for a new user turn and empty it."""
        with self._lock:
            frozen = tuple(self._items)
            self._items = []
            return frozen

    def groups(self) -> List[AttachmentGroup]:
        with self._lock:
            grouped: Dict[Optional[str], AttachmentGroup] = {}
            for item in self._items:
                group_id = _group_id(item)
                group = grouped.get(group_id)
                if group is None:
                    title = (item.output.title if item.output else None) or UNGROUPED_TITLE
                    group = grouped[group_id] = AttachmentGroup(id=group_id, title=title)
                group.items.append(item)
            return list(grouped.values())


def attachment_from_event(event: Mapping[str, Any]) -> Attachment:
    """Build an :class:`Attachment` from a host delivery payload."""
    try:
        attachment_type = AttachmentType(event.get("type"))
    except ValueError as exc:
        raise ValueError(f"Unsupported attachment type: {event.get('type')!r}") from exc
    data = event.get("data")
    if data is None:
        raise ValueError("Attachment event is missing data")

    output = event.get("output")
    output_ref = None
    if isinstance(output, Mapping) and output.get("id") is not None:
        output_ref = OutputRef(id=str(output["id"]), title=output.get("title"))

    metadata = {str(key): "" if value is None else str(value) for key, value in (event.get("metadata") or {}).items()}
    initial_message = event.get("initialMessage", event.get("initial_message"))
    kwargs: Dict[str, Any] = {}
    if event.get("id") is not None:
        kwargs["id"] = str(event["id"])
    return Attachment(
        type=attachment_type,
        data=str(data),
        metadata=metadata,
        output=output_ref,
        initial_message=initial_message or None,
        **kwargs,
    )


def _group_id(attachment: Attachment) -> Optional[str]:
    return attachment.output.id if attachment.output else None
