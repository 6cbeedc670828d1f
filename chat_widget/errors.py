"""Error taxonomy for the chat widget."""

from __future__ import annotations

from typing import Optional


class ChatWidgetError(Exception):
    """Base class for all chat widget errors."""


class NoModelSelected(ChatWidgetError):
    """Raised when a message is sent with no model configured or selected."""


class TransportFailure(ChatWidgetError):
    """Non-2xx status, network error or timeout while talking to the model."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class MalformedEventFrame(ChatWidgetError):
    """A ``data:`` line in the response stream was not valid JSON."""


class StreamCancelled(ChatWidgetError):
    """The active stream was stopped by the user."""


class StorageFailure(ChatWidgetError):
    """The model storage collaborator failed to read or write."""


class StreamInProgress(ChatWidgetError):
    """A stream was started while another one is still active."""


class TranscriptError(ChatWidgetError):
    """An operation would break the transcript's streaming invariant."""
