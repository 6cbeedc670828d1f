"""Configured models, the current selection, and their persistence."""

from __future__ import annotations

import json
import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from .config import ModelConfig
from .errors import StorageFailure

logger = logging.getLogger(__name__)


class ModelStorage(ABC):
    """Persistence collaborator for the model registry."""

    @abstractmethod
    def get_models(self) -> List[ModelConfig]:
        ...

    @abstractmethod
    def save_models(self, models: List[ModelConfig]) -> None:
        ...

    @abstractmethod
    def get_selected_model(self) -> Optional[str]:
        ...

    @abstractmethod
    def save_selected_model(self, identity: Optional[str]) -> None:
        ...


class InMemoryModelStorage(ModelStorage):
    def __init__(self, models: Optional[Iterable[ModelConfig]] = None, selected: Optional[str] = None) -> None:
        self._models = list(models or [])
        self._selected = selected

    def get_models(self) -> List[ModelConfig]:
        return list(self._models)

    def save_models(self, models: List[ModelConfig]) -> None:
        self._models = list(models)

    def get_selected_model(self) -> Optional[str]:
        return self._selected

    def save_selected_model(self, identity: Optional[str]) -> None:
        self._selected = identity


class JsonFileModelStorage(ModelStorage):
    """Store models and the selection in a single JSON document."""

    def __init__(self, path: str) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def get_models(self) -> List[ModelConfig]:
        payload = self._read()
        return [ModelConfig.from_dict(item) for item in payload.get("models") or [] if isinstance(item, dict)]

    def save_models(self, models: List[ModelConfig]) -> None:
        with self._lock:
            payload = self._read()
            payload["models"] = [model.to_dict() for model in models]
            self._write(payload)

    def get_selected_model(self) -> Optional[str]:
        return self._read().get("selected")

    def save_selected_model(self, identity: Optional[str]) -> None:
        with self._lock:
            payload = self._read()
            payload["selected"] = identity
            self._write(payload)

    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with self.path.open("r", encoding="utf-8") as f:
                payload = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            raise StorageFailure(f"Failed to read model storage at {self.path}: {exc}") from exc
        if not isinstance(payload, dict):
            raise StorageFailure(f"Model storage at {self.path} must contain a JSON object")
        return payload

    def _write(self, payload: Dict[str, Any]) -> None:
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tmp_path.open("w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
            tmp_path.replace(self.path)
        except OSError as exc:
            raise StorageFailure(f"Failed to write model storage at {self.path}: {exc}") from exc
        logger.debug("Saved model storage to %s", self.path)


class ModelRegistry:
    """CRUD over configured models and the currently selected one."""

    def __init__(self, storage: Optional[ModelStorage] = None) -> None:
        self.storage = storage or InMemoryModelStorage()
        self._models: List[ModelConfig] = []
        self._selected: Optional[ModelConfig] = None

    @property
    def models(self) -> List[ModelConfig]:
        return list(self._models)

    @property
    def selected(self) -> Optional[ModelConfig]:
        return self._selected

    def resolve(self, identity: Optional[str]) -> Optional[ModelConfig]:
        """Return the first model with this identity."""
        if identity is None:
            return None
        for model in self._models:
            if model.identity == identity:
                return model
        return None

    def load(self) -> Optional[ModelConfig]:
        """Restore models and the saved selection from storage."""
        models = self._call(self.storage.get_models)
        saved_id = self._call(self.storage.get_selected_model)
        self._models = list(models or [])
        logger.info("Loaded %d model(s) from storage", len(self._models))
        if not self._models:
            self._selected = None
            return None

        restored = self.resolve(saved_id)
        if restored is not None:
            self._selected = restored
            return restored

        if saved_id:
            logger.info("Saved model %s no longer exists; selecting %s", saved_id, self._models[0].identity)
        self._selected = self._models[0]
        self._call(self.storage.save_selected_model, self._selected.identity)
        return self._selected

    def select(self, identity: str) -> ModelConfig:
        model = self.resolve(identity)
        if model is None:
            raise KeyError(f"No model with identity '{identity}'")
        self._call(self.storage.save_selected_model, model.identity)
        self._selected = model
        return model

    def save_models(self, models: Iterable[ModelConfig]) -> Optional[ModelConfig]:
        """Replace the model list and re-resolve the selection against it."""
        new_models = list(models)
        self._call(self.storage.save_models, new_models)
        self._models = new_models

        previous = self._selected
        current = self.resolve(previous.identity) if previous else None
        if current is None:
            current = new_models[0] if new_models else None
            if previous is not None:
                logger.info(
                    "Selected model %s was removed; now %s",
                    previous.identity,
                    current.identity if current else None,
                )
        elif previous is not None and current.api_key != previous.api_key:
            logger.info("Credential for selected model %s changed", current.identity)

        self._selected = current
        self._call(self.storage.save_selected_model, current.identity if current else None)
        return current

    def add_model(self, model: ModelConfig) -> Optional[ModelConfig]:
        if not model.name or not model.endpoint:
            raise ValueError("Model name and endpoint are required")
        return self.save_models([*self._models, model])

    def remove_model(self, identity: str) -> Optional[ModelConfig]:
        if self.resolve(identity) is None:
            raise KeyError(f"No model with identity '{identity}'")
        return self.save_models(model for model in self._models if model.identity != identity)

    @staticmethod
    def _call(operation, *args):
        try:
            return operation(*args)
        except StorageFailure:
            raise
        except Exception as exc:
            logger.exception("Model storage operation %s failed", getattr(operation, "__name__", operation))
            raise StorageFailure(str(exc)) from exc
