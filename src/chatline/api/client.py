"""HTTP client for the chat service."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Iterator
from typing import Any, Protocol, TypeVar

import requests
from loguru import logger
from pydantic import BaseModel, ValidationError

from ..errors import InvalidResponseError, ServiceError
from .models import (
    AgentRunRequest,
    AgentRunResponse,
    ChatRequest,
    ChatResponse,
    StreamRequest,
    request_body,
)

CHAT_PATH = "/v1/agent/chat"
STREAM_PATH = "/v1/chat/completions/stream"
AGENT_RUN_PATH = "/v1/agent/run"
HEALTH_PATH = "/health"
MODELS_PATH = "/v1/models"

DEFAULT_TIMEOUT_SECONDS = 120.0
HEALTH_TIMEOUT_SECONDS = 5.0


class ChatClient(Protocol):
    """What the dispatcher needs from a transport."""

    async def chat(self, request: ChatRequest) -> ChatResponse: ...

    def stream_chat(self, request: StreamRequest) -> AsyncIterator[str]: ...

    async def run_agent(self, request: AgentRunRequest) -> AgentRunResponse: ...


def normalize_endpoint(url: str) -> str:
    value = url.strip()
    if not value:
        raise ValueError("service URL is required")
    if "://" not in value:
        value = f"http://{value}"
    return value.rstrip("/")


def error_message(response: requests.Response) -> str:
    """Describe a non-2xx response, preferring the service's ``error`` field."""
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        message = payload.get("error")
        if isinstance(message, str) and message.strip():
            return message.strip()
    return f"HTTP error: {response.status_code}"


class ServiceClient:
    """Blocking ``requests`` transport exposed as coroutines.

    Each blocking call runs in a worker thread so the event loop stays free.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = normalize_endpoint(base_url)
        self.timeout = timeout
        self._session = session or requests.Session()

    async def chat(self, request: ChatRequest) -> ChatResponse:
        payload = await asyncio.to_thread(self._post_json, CHAT_PATH, request)
        return _validate(ChatResponse, payload)

    async def run_agent(self, request: AgentRunRequest) -> AgentRunResponse:
        payload = await asyncio.to_thread(self._post_json, AGENT_RUN_PATH, request)
        return _validate(AgentRunResponse, payload)

    async def stream_chat(self, request: StreamRequest) -> AsyncIterator[str]:
        """Yield raw text fragments of the event-stream body as they arrive."""
        response = await asyncio.to_thread(self._open_stream, request)
        try:
            fragments = response.iter_content(chunk_size=None, decode_unicode=True)
            while True:
                fragment = await asyncio.to_thread(_next_fragment, fragments)
                if fragment is None:
                    break
                if fragment:
                    yield fragment
        finally:
            response.close()

    async def health(self) -> bool:
        """Return whether ``GET /health`` answers with a 2xx status."""
        return await asyncio.to_thread(self._check_health)

    async def list_models(self) -> Any:
        return await asyncio.to_thread(self._get_json, MODELS_PATH)

    def close(self) -> None:
        self._session.close()

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def _request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        url = self._url(path)
        logger.debug("client.request method={} url={}", method, url)
        try:
            response = self._session.request(method, url, timeout=kwargs.pop("timeout", self.timeout), **kwargs)
        except requests.Timeout as exc:
            raise ServiceError(f"Request timed out: {url}") from exc
        except requests.ConnectionError as exc:
            raise ServiceError(f"Could not connect to {self.base_url}") from exc
        except requests.RequestException as exc:
            raise ServiceError(f"Request failed: {exc}") from exc
        if not response.ok:
            message = error_message(response)
            response.close()
            logger.warning("client.http_error url={} status={} error={}", url, response.status_code, message)
            raise ServiceError(message, status_code=response.status_code)
        return response

    def _post_json(self, path: str, body: BaseModel) -> Any:
        response = self._request("POST", path, json=request_body(body))
        return _read_json(response)

    def _get_json(self, path: str) -> Any:
        return _read_json(self._request("GET", path))

    def _open_stream(self, request: StreamRequest) -> requests.Response:
        response = self._request(
            "POST",
            STREAM_PATH,
            json=request_body(request),
            headers={"Accept": "text/event-stream"},
            stream=True,
        )
        response.encoding = "utf-8"
        return response

    def _check_health(self) -> bool:
        try:
            self._request("GET", HEALTH_PATH, timeout=HEALTH_TIMEOUT_SECONDS).close()
        except ServiceError as exc:
            logger.info("client.health.unreachable url={} error={}", self.base_url, exc)
            return False
        return True


def _next_fragment(fragments: Iterator[str]) -> str | None:
    try:
        return next(fragments, None)
    except requests.RequestException as exc:
        raise ServiceError(f"Stream interrupted: {exc}") from exc


def _read_json(response: requests.Response) -> Any:
    try:
        return response.json()
    except ValueError as exc:
        raise InvalidResponseError("Invalid JSON in service response", status_code=response.status_code) from exc
    finally:
        response.close()


M = TypeVar("M", bound=BaseModel)


def _validate(model: type[M], payload: Any) -> M:
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise InvalidResponseError(f"Unexpected service response: {exc.error_count()} invalid field(s)") from exc
