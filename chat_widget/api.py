"""FastAPI entry point for the chat widget."""

from __future__ import annotations

import argparse
import json
import logging
from typing import Any, Dict, Iterator, List, Optional, Union

from fastapi import FastAPI, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field, validator
import uvicorn

from .config import DEFAULT_ENDPOINT, ModelConfig, WidgetConfig
from .errors import StorageFailure, StreamInProgress
from .registry import InMemoryModelStorage, JsonFileModelStorage, ModelRegistry, ModelStorage
from .service import ChatSession
from .utils import setup_logging

logger = logging.getLogger(__name__)


class ChatRequest(BaseModel):
    message: Optional[str] = Field(
        None, description="User message; the draft filled from attachments is used when omitted."
    )


class OutputRequest(BaseModel):
    id: str
    title: Optional[str] = None


class AttachmentEventRequest(BaseModel):
    id: Optional[Union[str, int]] = Field(None, description="Host-assigned identifier used to drop re-deliveries.")
    type: str = Field(..., description="One of code, chart or table.")
    data: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    output: Optional[OutputRequest] = None
    initialMessage: Optional[str] = None


class ModelRequest(BaseModel):
    name: str
    endpoint: str = DEFAULT_ENDPOINT
    apiKey: Optional[str] = None

    @validator("name", "endpoint")
    def _not_empty(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("field must not be empty")
        return value


class SelectModelRequest(BaseModel):
    identity: str


def create_app(
    config: Optional[WidgetConfig] = None,
    *,
    storage: Optional[ModelStorage] = None,
    session: Optional[ChatSession] = None,
    log_dir: Optional[str] = None,
) -> FastAPI:
    if log_dir:
        setup_logging(log_dir, logging.INFO)

    config = config or WidgetConfig()
    if session is None:
        if storage is None:
            storage = JsonFileModelStorage(config.models_file) if config.models_file else InMemoryModelStorage()
        registry = ModelRegistry(storage)
        registry.load()
        session = ChatSession(registry, config)

    app = FastAPI(title="Chat Widget", version="0.1.0")
    app.state.session = session

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok", "streaming": app.state.session.is_streaming}

    @app.get("/transcript")
    def transcript() -> List[Dict[str, Any]]:
        return [turn.to_dict() for turn in app.state.session.transcript.turns]

    @app.delete("/transcript/{turn_id}")
    def delete_turn(turn_id: str) -> dict:
        if not app.state.session.transcript.delete(turn_id):
            raise HTTPException(status_code=404, detail=f"No turn with id '{turn_id}'")
        return {"deleted": turn_id}

    @app.post("/transcript/{turn_id}/toggle-raw")
    def toggle_raw(turn_id: str) -> dict:
        try:
            return app.state.session.transcript.toggle_raw(turn_id).to_dict()
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=f"No turn with id '{turn_id}'") from exc

    @app.post("/transcript/{turn_id}/toggle-attachments")
    def toggle_attachments(turn_id: str) -> dict:
        try:
            return app.state.session.transcript.toggle_attachments(turn_id).to_dict()
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=f"No turn with id '{turn_id}'") from exc

    @app.post("/attachments")
    def receive_attachment(request: AttachmentEventRequest) -> dict:
        try:
            attachment = app.state.session.receive_attachment(request.dict())
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {
            "queued": attachment is not None,
            "attachment": attachment.to_dict() if attachment else None,
            "draft": app.state.session.intake.draft,
        }

    @app.get("/attachments")
    def pending_attachments() -> dict:
        intake = app.state.session.intake
        return {
            "draft": intake.draft,
            "groups": [
                {"id": group.id, "title": group.title, "items": [item.to_dict() for item in group.items]}
                for group in intake.groups()
            ],
        }

    @app.delete("/attachments/groups")
    def remove_ungrouped_attachments() -> dict:
        return {"removed": app.state.session.intake.remove_group(None)}

    @app.delete("/attachments/{attachment_id}")
    def remove_attachment(attachment_id: str) -> dict:
        if not app.state.session.intake.remove(attachment_id):
            raise HTTPException(status_code=404, detail=f"No pending attachment '{attachment_id}'")
        return {"removed": 1}

    @app.delete("/attachments/groups/{output_id}")
    def remove_attachment_group(output_id: str) -> dict:
        return {"removed": app.state.session.intake.remove_group(output_id)}

    @app.post("/chat")
    def chat(request: ChatRequest):
        try:
            events = app.state.session.stream(request.message)
        except StreamInProgress as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

        def ndjson() -> Iterator[str]:
            for event in events:
                yield json.dumps(event.to_dict()) + "\n"

        return StreamingResponse(ndjson(), media_type="application/x-ndjson")

    @app.post("/chat/stop")
    def stop() -> dict:
        return {"stopped": app.state.session.stop()}

    @app.get("/models")
    def list_models() -> dict:
        registry = app.state.session.registry
        selected = registry.selected
        return {
            "models": [_public_model(model) for model in registry.models],
            "selected": selected.identity if selected else None,
        }

    @app.put("/models")
    def save_models(models: List[ModelRequest]) -> dict:
        registry = app.state.session.registry
        try:
            registry.save_models(
                ModelConfig(name=m.name, endpoint=m.endpoint, api_key=m.apiKey or None) for m in models
            )
        except StorageFailure as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        return list_models()

    @app.post("/models/select")
    def select_model(request: SelectModelRequest) -> dict:
        try:
            app.state.session.registry.select(request.identity)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=f"No model with identity '{request.identity}'") from exc
        except StorageFailure as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        return list_models()

    return app


def _public_model(model: ModelConfig) -> Dict[str, Any]:
    return {
        "name": model.name,
        "endpoint": model.endpoint,
        "identity": model.identity,
        "hasApiKey": bool(model.api_key),
    }


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the chat widget service with streaming responses.")
    parser.add_argument("--host", default="0.0.0.0", help="Host interface to bind.")
    parser.add_argument("--port", type=int, default=8004, help="Port to bind.")
    parser.add_argument("--log_dir", help="Directory for application logs.")
    parser.add_argument("--models_file", help="JSON file persisting configured models and the selection.")
    parser.add_argument("--request_timeout", type=int, default=60, help="Timeout for LLM calls (seconds, 0 disables).")
    parser.add_argument("--no_greeting", action="store_true", help="Start with an empty transcript.")
    parser.add_argument("--text_only_charts", action="store_true", help="Send charts as markdown images instead of image parts.")
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> None:
    args = parse_args(argv)
    config = WidgetConfig(
        request_timeout=args.request_timeout or None,
        native_images=not args.text_only_charts,
        models_file=args.models_file,
    )
    if args.no_greeting:
        config.greeting = None

    app = create_app(config, log_dir=args.log_dir)
    logger.info("Starting chat widget service on %s:%d", args.host, args.port)
    uvicorn.run(app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
