"""Client wrapper for streaming chat-completions requests."""

from __future__ import annotations

import codecs
import json
import logging
import threading
from typing import Any, Dict, Iterator, List, Optional

import requests

from .config import ModelConfig
from .errors import MalformedEventFrame, StreamCancelled, TransportFailure

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "
DONE_FRAME = "data: [DONE]"


class CancellationToken:
    """Cooperative cancellation for one streaming request.

    ``cancel`` may be called from any thread. It closes the attached HTTP
    response so a blocked read returns, and the read loop raises
    :class:`StreamCancelled` at its next check.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._response: Optional[requests.Response] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()
        with self._lock:
            response, self._response = self._response, None
        if response is not None:
            response.close()

    def attach(self, response: requests.Response) -> None:
        with self._lock:
            self._response = response
        if self.cancelled:
            self.cancel()

    def release(self) -> None:
        with self._lock:
            response, self._response = self._response, None
        if response is not None:
            response.close()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise StreamCancelled("Stream stopped by user")


class StreamDecoder:
    """Incrementally decode ``data:`` frames from raw response chunks.

    UTF-8 sequences and lines split across chunk boundaries are buffered until
    complete.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self.done = False

    def feed(self, chunk: bytes) -> List[str]:
        """Return the content deltas completed by this chunk."""
        if self.done:
            return []
        self._buffer += self._decoder.decode(chunk)
        *lines, self._buffer = self._buffer.split("\n")
        return self._consume(lines)

    def flush(self) -> List[str]:
        if self.done:
            return []
        self._buffer += self._decoder.decode(b"", final=True)
        lines, self._buffer = [self._buffer], ""
        return self._consume(lines)

    def _consume(self, lines: List[str]) -> List[str]:
        deltas: List[str] = []
        for raw_line in lines:
            line = raw_line.rstrip("\r")
            if not line.startswith(DATA_PREFIX):
                continue
            if line == DONE_FRAME:
                self.done = True
                break
            try:
                payload = parse_frame(line)
            except MalformedEventFrame:
                logger.debug("Skipping malformed stream line: %s", line, exc_info=True)
                continue
            token = extract_delta(payload)
            if token:
                deltas.append(token)
        return deltas


def parse_frame(line: str) -> Any:
    try:
        return json.loads(line[len(DATA_PREFIX):])
    except json.JSONDecodeError as exc:
        raise MalformedEventFrame(str(exc)) from exc


def extract_delta(payload: Any) -> str:
    """Return ``choices[0].delta.content`` or an empty string."""
    if not isinstance(payload, dict):
        return ""
    choices = payload.get("choices") or []
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return ""
    delta = choices[0].get("delta") or {}
    if not isinstance(delta, dict):
        return ""
    content = delta.get("content")
    return content if isinstance(content, str) else ""


class ChatLLMClient:
    """Thin wrapper around a chat-completions endpoint with streaming support."""

    def __init__(
        self,
        *,
        request_timeout: Optional[float] = 60,
        http_session: Optional[requests.Session] = None,
        extra_headers: Optional[Dict[str, str]] = None,
    ) -> None:
        self.request_timeout = request_timeout
        self.http = http_session or requests.Session()
        self.extra_headers = dict(extra_headers or {})

    def build_headers(self, model: ModelConfig) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", **self.extra_headers}
        if model.api_key:
            headers["Authorization"] = f"Bearer {model.api_key}"
        return headers

    def stream_completion(
        self,
        model: ModelConfig,
        messages: List[Dict[str, Any]],
        token: CancellationToken,
    ) -> Iterator[str]:
        """Yield content deltas as they arrive.

        Raises :class:`StreamCancelled` once ``token`` is cancelled and
        :class:`TransportFailure` for every other transport problem.
        """
        payload: Dict[str, Any] = {
            "messages": messages,
            "stream": True,
            "model": model.name,
        }

        logger.info("Streaming chat completion to %s using model %s", model.endpoint, model.name)
        try:
            response = self.http.post(
                model.endpoint,
                json=payload,
                headers=self.build_headers(model),
                stream=True,
                timeout=self.request_timeout,
            )
        except requests.RequestException as exc:
            token.raise_if_cancelled()
            raise TransportFailure(str(exc)) from exc

        token.attach(response)
        token.raise_if_cancelled()
        if not response.ok:
            token.release()
            raise TransportFailure(
                f"HTTP error! status: {response.status_code}", status_code=response.status_code
            )

        decoder = StreamDecoder()
        chunks = response.iter_content(chunk_size=None)
        while not decoder.done:
            try:
                chunk = next(chunks)
            except StopIteration:
                break
            except Exception as exc:
                token.raise_if_cancelled()
                if isinstance(exc, requests.RequestException):
                    raise TransportFailure(str(exc)) from exc
                raise TransportFailure(f"Stream read failed: {exc}") from exc
            token.raise_if_cancelled()
            for delta in decoder.feed(chunk):
                yield delta
                token.raise_if_cancelled()

        # A cancel that closes the response mid-read surfaces as a clean EOF.
        token.raise_if_cancelled()
        for delta in decoder.flush():
            yield delta
        logger.debug("Stream from %s finished", model.endpoint)
