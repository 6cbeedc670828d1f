"""Render attachments into the chat-completions wire format.

Each attachment type maps to a template held in a :class:`TemplateRegistry`.
String templates use ``{{key}}`` placeholders: ``{{data}}`` is the attachment
payload and every other key is looked up in the attachment metadata. A
template may also be a callable taking the attachment and returning text.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from .models import Attachment, AttachmentType, Turn

logger = logging.getLogger(__name__)

Template = Union[str, Callable[[Attachment], str]]
WireContent = Union[str, List[Dict[str, Any]]]

DEFAULT_TEMPLATES: Dict[str, str] = {
    AttachmentType.CODE.value: "```{{language}}\n{{data}}\n```",
    AttachmentType.CHART.value: "![{{title}}]({{data}})",
    AttachmentType.TABLE.value: "{{data}}",
}

# Metadata used when the attachment does not carry the key itself.
METADATA_DEFAULTS: Dict[str, Dict[str, str]] = {
    AttachmentType.CHART.value: {"title": "Chart"},
}

_PLACEHOLDER = re.compile(r"\{\{\s*([A-Za-z0-9_.-]+)\s*\}\}")


def apply_template(template: str, attachment: Attachment, defaults: Optional[Mapping[str, str]] = None) -> str:
    """Substitute placeholders in one pass, inserting values literally."""
    defaults = defaults or {}

    def _lookup(match: "re.Match[str]") -> str:
        key = match.group(1)
        if key == "data":
            return attachment.data
        value = attachment.metadata.get(key) or defaults.get(key, "")
        return str(value)

    return _PLACEHOLDER.sub(_lookup, template)


class TemplateRegistry:
    """Per-type attachment templates, seeded from defaults and overridable."""

    def __init__(self, defaults: Optional[Mapping[str, Template]] = None) -> None:
        self._defaults: Dict[str, Template] = dict(DEFAULT_TEMPLATES if defaults is None else defaults)
        self._templates: Dict[str, Optional[Template]] = dict(self._defaults)

    def get(self, attachment_type: Union[str, AttachmentType]) -> Optional[Template]:
        return self._templates.get(_type_key(attachment_type))

    def register(self, attachment_type: Union[str, AttachmentType], template: Template) -> None:
        key = _type_key(attachment_type)
        self._templates[key] = template
        logger.debug("Registered template for attachment type %s", key)

    def clear(self, attachment_type: Union[str, AttachmentType]) -> None:
        """Drop the template for a type so its raw data is sent instead."""
        self._templates[_type_key(attachment_type)] = None

    def reset(self) -> None:
        self._templates = dict(self._defaults)

    def as_dict(self) -> Dict[str, Optional[Template]]:
        return dict(self._templates)


class AttachmentFormatter:
    """Turn transcript entries into chat-completions messages."""

    def __init__(self, registry: Optional[TemplateRegistry] = None, *, native_images: bool = True) -> None:
        self.registry = registry or TemplateRegistry()
        self.native_images = native_images

    def render(self, attachment: Attachment) -> str:
        template = self.registry.get(attachment.type)
        if template is None:
            return attachment.data
        if callable(template):
            return str(template(attachment))
        return apply_template(template, attachment, METADATA_DEFAULTS.get(attachment.type.value))

    def format_message(self, turn: Turn) -> Dict[str, Any]:
        return {"role": turn.role.value, "content": self.format_content(turn)}

    def format_content(self, turn: Turn) -> WireContent:
        if not turn.attachments:
            return turn.content

        if self.native_images and any(attachment.is_chart for attachment in turn.attachments):
            return self._as_parts(turn)

        rendered = [self.render(attachment) for attachment in turn.attachments]
        sections = [turn.content] if turn.content else []
        sections.extend(text for text in rendered if text)
        return "\n\n".join(sections)

    def _as_parts(self, turn: Turn) -> List[Dict[str, Any]]:
        parts: List[Dict[str, Any]] = []
        if turn.content:
            parts.append({"type": "text", "text": turn.content})
        for attachment in turn.attachments:
            if attachment.is_chart:
                parts.append({"type": "image_url", "image_url": {"url": attachment.data}})
            else:
                parts.append({"type": "text", "text": self.render(attachment)})
        return parts


def _type_key(attachment_type: Union[str, AttachmentType]) -> str:
    if isinstance(attachment_type, AttachmentType):
        return attachment_type.value
    return str(attachment_type)
