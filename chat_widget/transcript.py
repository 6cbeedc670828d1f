"""Ordered conversation transcript with a single streaming slot."""

from __future__ import annotations

import logging
import threading
from typing import Iterable, List, Optional

from .errors import TranscriptError
from .models import UPSTREAM_ROLES, Role, Turn

logger = logging.getLogger(__name__)


class TranscriptStore:
    """Ordered log of turns.

    At most one assistant turn is open for streaming and it is always the last
    turn. Its content can only be changed through :meth:`update_open_turn`;
    every other turn is changed only by the display toggles or deleted.
    """

    def __init__(self, turns: Optional[Iterable[Turn]] = None) -> None:
        self._lock = threading.RLock()
        self._turns: List[Turn] = list(turns or [])
        self._open_id: Optional[str] = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._turns)

    @property
    def turns(self) -> List[Turn]:
        """Snapshot copies of every turn, oldest first."""
        with self._lock:
            return [turn.snapshot() for turn in self._turns]

    @property
    def open_turn_id(self) -> Optional[str]:
        with self._lock:
            return self._open_id

    def get(self, turn_id: str) -> Optional[Turn]:
        with self._lock:
            turn = self._find(turn_id)
            return turn.snapshot() if turn else None

    def append(self, turn: Turn) -> Turn:
        with self._lock:
            if self._open_id is not None:
                raise TranscriptError("Cannot append while an assistant turn is streaming")
            self._turns.append(turn)
            return turn.snapshot()

    def upstream_turns(self) -> List[Turn]:
        """Closed turns whose role is forwarded to the model."""
        with self._lock:
            return [
                turn.snapshot()
                for turn in self._turns
                if turn.role in UPSTREAM_ROLES and turn.id != self._open_id
            ]

    def open_assistant_turn(self) -> Turn:
        """Append an empty assistant turn and mark it as the streaming target."""
        with self._lock:
            turn = Turn(role=Role.ASSISTANT)
            self.append(turn)
            self._open_id = turn.id
            return turn.snapshot()

    def update_open_turn(self, content: str) -> Optional[Turn]:
        """Replace the open turn's content; None if it was closed or deleted."""
        with self._lock:
            if self._open_id is None:
                return None
            turn = self._find(self._open_id)
            if turn is None:
                return None
            turn.content = content
            return turn.snapshot()

    def close_open_turn(self) -> Optional[Turn]:
        with self._lock:
            if self._open_id is None:
                return None
            turn = self._find(self._open_id)
            self._open_id = None
            return turn.snapshot() if turn else None

    def delete(self, turn_id: str) -> bool:
        with self._lock:
            turn = self._find(turn_id)
            if turn is None:
                return False
            self._turns.remove(turn)
            if turn_id == self._open_id:
                # Remaining deltas for this stream are discarded.
                self._open_id = None
                logger.info("Deleted turn %s while it was streaming", turn_id)
            return True

    def toggle_raw(self, turn_id: str) -> Turn:
        with self._lock:
            turn = self._require(turn_id)
            turn.display_raw = not turn.display_raw
            return turn.snapshot()

    def toggle_attachments(self, turn_id: str) -> Turn:
        with self._lock:
            turn = self._require(turn_id)
            turn.attachments_visible = not turn.attachments_visible
            return turn.snapshot()

    def _find(self, turn_id: str) -> Optional[Turn]:
        for turn in self._turns:
            if turn.id == turn_id:
                return turn
        return None

    def _require(self, turn_id: str) -> Turn:
        turn = self._find(turn_id)
        if turn is None:
            raise KeyError(turn_id)
        return turn
