import json
import sys
from pathlib import Path

import pytest
import requests

ROOT = Path(__file__).resolve().parents[1]
root_str = str(ROOT)
if root_str not in sys.path:
    sys.path.insert(0, root_str)

from chat_widget.config import ModelConfig, WidgetConfig  # noqa: E402
from chat_widget.llm_client import ChatLLMClient  # noqa: E402
from chat_widget.registry import InMemoryModelStorage, ModelRegistry  # noqa: E402
from chat_widget.service import ChatSession  # noqa: E402

ENDPOINT = "http://llm.test/v1/chat/completions"


def frame(content):
    """One SSE line carrying a content delta."""
    payload = {"choices": [{"delta": {"content": content}}]}
    return ("data: " + json.dumps(payload, ensure_ascii=False) + "\n").encode("utf-8")


class FakeRaw:
    """Stands in for urllib3's raw stream: hands out one chunk per read."""

    def __init__(self, chunks, on_read=None):
        self._chunks = list(chunks)
        self.closed = False
        self.reads = 0
        # Called before each read; lets a test stop the stream while a read is in flight.
        self.on_read = on_read

    def read(self, amt=None, **_kwargs):
        self.reads += 1
        if self.on_read is not None:
            self.on_read(self)
        if self.closed or not self._chunks:
            return b""
        return self._chunks.pop(0)

    def close(self):
        self.closed = True


def make_response(chunks=(), status=200):
    response = requests.Response()
    response.status_code = status
    response.reason = "OK" if status < 400 else "Error"
    response.url = ENDPOINT
    response.raw = FakeRaw(chunks)
    return response


class FakeHttp:
    """Records POSTs and replays a canned response or error."""

    def __init__(self, response=None, error=None):
        self.response = response if response is not None else make_response()
        self.error = error
        self.calls = []

    def post(self, url, json=None, headers=None, stream=False, timeout=None):
        self.calls.append({"url": url, "json": json, "headers": headers, "stream": stream, "timeout": timeout})
        if self.error is not None:
            raise self.error
        return self.response


@pytest.fixture
def model():
    return ModelConfig(name="gpt-test", endpoint=ENDPOINT, api_key="sk-test")


@pytest.fixture
def registry(model):
    registry = ModelRegistry(InMemoryModelStorage([model]))
    registry.load()
    return registry


@pytest.fixture
def make_session(registry):
    """Build a session whose client talks to a FakeHttp."""

    def _make(http, *, config=None, registry_override=None):
        config = config or WidgetConfig(greeting=None)
        client = ChatLLMClient(request_timeout=config.request_timeout, http_session=http)
        return ChatSession(registry_override or registry, config, client=client)

    return _make
