"""Streaming session engine tying transcript, attachments and the model together."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional

from .config import ModelConfig, WidgetConfig
from .errors import ChatWidgetError, NoModelSelected, StreamCancelled, StreamInProgress, TransportFailure
from .formatters import AttachmentFormatter, TemplateRegistry
from .intake import AttachmentIntakeQueue
from .llm_client import CancellationToken, ChatLLMClient
from .models import Attachment, Role, Turn
from .registry import ModelRegistry
from .transcript import TranscriptStore

logger = logging.getLogger(__name__)

NO_MODEL_MESSAGE = "Please configure and select an AI model first"


class SessionOutcome(str, Enum):
    COMPLETED = "completed"
    ABORTED = "aborted"
    FAILED = "failed"


@dataclass(frozen=True)
class TranscriptEvent:
    """A transcript mutation produced while handling one user message."""

    kind: str  # "appended" or "updated"
    turn: Turn

    def to_dict(self) -> Dict[str, Any]:
        return {"event": self.kind, "turn": self.turn.to_dict()}


class ChatSession:
    """Core chat engine: one transcript, one pending queue, one stream at a time."""

    def __init__(
        self,
        registry: ModelRegistry,
        config: Optional[WidgetConfig] = None,
        *,
        client: Optional[ChatLLMClient] = None,
        formatter: Optional[AttachmentFormatter] = None,
        transcript: Optional[TranscriptStore] = None,
        intake: Optional[AttachmentIntakeQueue] = None,
    ) -> None:
        self.config = config or WidgetConfig()
        self.registry = registry
        self.client = client or ChatLLMClient(
            request_timeout=self.config.request_timeout,
            extra_headers=self.config.extra_headers,
        )
        self.formatter = formatter or AttachmentFormatter(
            TemplateRegistry(self.config.templates),
            native_images=self.config.native_images,
        )
        self.intake = intake or AttachmentIntakeQueue()
        if transcript is None:
            transcript = TranscriptStore()
            if self.config.greeting:
                transcript.append(Turn(role=Role.ASSISTANT, content=self.config.greeting))
        self.transcript = transcript
        self.last_outcome: Optional[SessionOutcome] = None
        self._lock = threading.Lock()
        self._streaming = False
        self._token: Optional[CancellationToken] = None

    @property
    def is_streaming(self) -> bool:
        return self._streaming

    def receive_attachment(self, event: Mapping[str, Any]) -> Optional[Attachment]:
        """Entry point for attachments delivered by the host application."""
        return self.intake.enqueue(event)

    def send(
        self,
        user_text: Optional[str] = None,
        *,
        on_event: Optional[Callable[[TranscriptEvent], None]] = None,
    ) -> SessionOutcome:
        """Run a full request/response cycle and return how it ended."""
        for event in self.stream(user_text):
            if on_event is not None:
                on_event(event)
        if self.last_outcome is None:
            raise RuntimeError("Stream ended without recording an outcome")
        return self.last_outcome

    def stream(self, user_text: Optional[str] = None) -> Iterator[TranscriptEvent]:
        """Validate the request and return a generator of transcript events.

        When ``user_text`` is None the intake queue's draft is sent.
        """
        text = (self.intake.draft if user_text is None else user_text or "").strip()
        if not text:
            raise ValueError("message is required")

        with self._lock:
            if self._streaming:
                raise StreamInProgress("A response is already streaming; stop it first")
            self._streaming = True
            self._token = CancellationToken()
        run = self._run(text, self._token)
        next(run)
        return run

    def stop(self) -> bool:
        """Cancel the active stream. Returns False when nothing is streaming."""
        with self._lock:
            token = self._token
        if token is None:
            return False
        logger.info("Stopping active stream")
        token.cancel()
        return True

    def _run(self, text: str, token: CancellationToken) -> Iterator[TranscriptEvent]:
        self.last_outcome = None
        try:
            yield None  # primed by stream() so cleanup always runs
            try:
                model = self._require_model()
            except NoModelSelected as exc:
                logger.warning("Cannot send message: %s", exc)
                self.last_outcome = SessionOutcome.FAILED
                yield self._append(Turn(role=Role.ERROR, content=str(exc)))
                return

            self.intake.draft = ""
            user_turn = Turn(role=Role.USER, content=text, attachments=self.intake.freeze())
            yield self._append(user_turn)
            messages = self.build_messages()

            placeholder = self.transcript.open_assistant_turn()
            yield TranscriptEvent("appended", placeholder)

            error: Optional[ChatWidgetError] = None
            accumulated = ""
            try:
                for delta in self.client.stream_completion(model, messages, token):
                    accumulated += delta
                    updated = self.transcript.update_open_turn(accumulated)
                    if updated is not None:
                        yield TranscriptEvent("updated", updated)
                self.last_outcome = SessionOutcome.COMPLETED
                logger.info("Stream completed with %d characters", len(accumulated))
            except StreamCancelled:
                self.last_outcome = SessionOutcome.ABORTED
                logger.info("Stream cancelled after %d characters", len(accumulated))
            except TransportFailure as exc:
                logger.error("Chat request to %s failed: %s", model.endpoint, exc)
                error = exc
            finally:
                self.transcript.close_open_turn()

            if error is not None:
                self.last_outcome = SessionOutcome.FAILED
                yield self._append(Turn(role=Role.ERROR, content=f"Error: {error}"))
        except GeneratorExit:
            if self.last_outcome is None:
                logger.info("Stream abandoned by consumer")
                token.cancel()
                self.last_outcome = SessionOutcome.ABORTED
            raise
        except Exception:
            self.last_outcome = SessionOutcome.FAILED
            raise
        finally:
            self.transcript.close_open_turn()
            token.release()
            with self._lock:
                self._streaming = False
                self._token = None

    def _require_model(self) -> ModelConfig:
        model = self.registry.selected
        if model is None:
            raise NoModelSelected(NO_MODEL_MESSAGE)
        return model

    def build_messages(self) -> List[Dict[str, Any]]:
        """Wire messages for every closed turn the model should see."""
        return [self.formatter.format_message(turn) for turn in self.transcript.upstream_turns()]

    def _append(self, turn: Turn) -> TranscriptEvent:
        return TranscriptEvent("appended", self.transcript.append(turn))
