"""Configuration objects for the chat widget."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional

DEFAULT_ENDPOINT = "https://api.openai.com/v1/chat/completions"


@dataclass
class ModelConfig:
    """Connection details for one configured model."""

    name: str
    endpoint: str = DEFAULT_ENDPOINT
    api_key: Optional[str] = None

    @property
    def identity(self) -> str:
        return make_model_id(self.name, self.endpoint)

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {"name": self.name, "endpoint": self.endpoint, "apiKey": self.api_key}

    @classmethod
    def from_dict(cls, payload: Dict[str, Optional[str]]) -> "ModelConfig":
        api_key = payload.get("apiKey", payload.get("api_key"))
        return cls(
            name=str(payload.get("name") or ""),
            endpoint=str(payload.get("endpoint") or DEFAULT_ENDPOINT),
            api_key=api_key or None,
        )


def make_model_id(name: str, endpoint: str) -> str:
    """Identity key for a model record; changes whenever name or endpoint does."""
    return f"{name}-{endpoint}"


@dataclass
class WidgetConfig:
    """Runtime controls for the chat widget."""

    greeting: Optional[str] = "Hi, how can I help you?"
    native_images: bool = True
    request_timeout: Optional[int] = 60
    templates: Optional[Dict[str, str]] = None
    models_file: Optional[str] = None
    extra_headers: Dict[str, str] = field(default_factory=dict)
