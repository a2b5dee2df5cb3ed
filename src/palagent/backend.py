"""
Model Backends - where decisions come from.

The runtime depends on one narrow contract: send a request carrying the
newest turn (a user prompt or a batch of tool results) plus the history
before it, and get back either final text or a batch of tool calls.

Three implementations:
- RelayBackend: POSTs {prompt | toolResults, history} to a relay server
  at {url}/api/agent, which picks the model and holds the API keys
- ChatCompletionsBackend: talks to any OpenAI-compatible endpoint
  directly (vLLM, Ollama, OpenAI itself)
- ScriptedBackend: replays canned responses, for tests and demos

Both HTTP backends share the same timeout and retry behaviour.
"""

import json
import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from palagent.config import LLMConfig, RelayConfig
from palagent.primitives import PalAgentError
from palagent.types import Message, Role, ToolCall, ToolResult

logger = logging.getLogger(__name__)

# Default timeout configuration (in seconds)
DEFAULT_CONNECT_TIMEOUT = 10.0
DEFAULT_READ_TIMEOUT = 180.0  # model responses can take a while
DEFAULT_WRITE_TIMEOUT = 10.0
DEFAULT_POOL_TIMEOUT = 10.0

# Retry configuration
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY = 5.0

RESPONSE = "response"
TOOL_CALLS = "tool_calls"


class BackendError(PalAgentError):
    """The model backend could not produce a usable response."""
    pass


@dataclass
class BackendRequest:
    """
    One call to the model backend.

    Exactly one of prompt / tool_results carries the newest turn;
    history holds every turn before it.
    """
    history: list[Message]
    prompt: str | None = None
    tool_results: list[ToolResult] | None = None
    tools: list[dict[str, Any]] = field(default_factory=list)
    user_id: str | None = None
    system_prompt: str | None = None

    def to_payload(self) -> dict[str, Any]:
        """The relay wire format."""
        payload: dict[str, Any] = {
            "userId": self.user_id,
            "history": [message.to_dict() for message in self.history],
        }
        if self.tool_results is not None:
            payload["toolResults"] = [result.to_dict() for result in self.tool_results]
        else:
            payload["prompt"] = self.prompt or ""
        if self.tools:
            payload["tools"] = self.tools
        return payload

    def messages(self) -> list[Message]:
        """History with the newest turn appended."""
        newest = (
            Message(role=Role.TOOL, tool_results=self.tool_results)
            if self.tool_results is not None
            else Message(role=Role.USER, content=self.prompt or "")
        )
        return [*self.history, newest]


@dataclass
class BackendResponse:
    """Either final text (type "response") or a batch of tool calls."""
    type: str
    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    assistant_message: dict[str, Any] | None = None

    @property
    def is_tool_calls(self) -> bool:
        return self.type == TOOL_CALLS

    @classmethod
    def text(cls, content: str) -> "BackendResponse":
        return cls(type=RESPONSE, content=content)

    @classmethod
    def calls(cls, tool_calls: Iterable[ToolCall], content: str = "") -> "BackendResponse":
        return cls(type=TOOL_CALLS, content=content, tool_calls=list(tool_calls))

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "BackendResponse":
        """Parse a relay response body."""
        if not isinstance(data, dict):
            raise BackendError(f"Malformed backend response: {data!r}")
        kind = data.get("type")
        assistant = data.get("assistantMessage")
        if kind == TOOL_CALLS:
            raw_calls = data.get("tool_calls") or []
            if not raw_calls:
                raise BackendError("Backend returned tool_calls with an empty batch")
            return cls(
                type=TOOL_CALLS,
                content=(assistant or {}).get("content") or data.get("content") or "",
                tool_calls=_unique_ids([ToolCall.from_dict(tc) for tc in raw_calls]),
                assistant_message=assistant,
            )
        if kind == RESPONSE:
            return cls(type=RESPONSE, content=data.get("content") or "", assistant_message=assistant)
        raise BackendError(f"Unknown backend response type: {kind!r}")


def _unique_ids(calls: list[ToolCall]) -> list[ToolCall]:
    """Give every call in a batch a distinct, non-empty id."""
    original = {call.id for call in calls if call.id}
    seen: set[str] = set()
    for index, call in enumerate(calls):
        if not call.id or call.id in seen:
            candidate = f"call_{index}_{call.name}"
            suffix = 1
            while candidate in seen or candidate in original:
                candidate = f"call_{index}_{call.name}_{suffix}"
                suffix += 1
            call.id = candidate
        seen.add(call.id)
    return calls


class ModelBackend(Protocol):
    """Anything that can answer a BackendRequest."""
    def send(self, request: BackendRequest) -> BackendResponse: ...


class _HTTPBackend:
    """Shared httpx client with timeout and retry logic."""

    def __init__(
        self,
        base_url: str,
        headers: dict[str, str] | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        read_timeout: float = DEFAULT_READ_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.max_retries = max_retries
        self.retry_delay = retry_delay

        timeout = httpx.Timeout(
            connect=DEFAULT_CONNECT_TIMEOUT,
            read=read_timeout,
            write=DEFAULT_WRITE_TIMEOUT,
            pool=DEFAULT_POOL_TIMEOUT,
        )
        self._client = httpx.Client(
            base_url=base_url,
            headers={"Content-Type": "application/json", **(headers or {})},
            timeout=timeout,
            transport=transport,
        )

    def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        """
        POST with automatic retry on timeouts, network errors, 429 and 503.

        Raises:
            BackendError: if all retries are exhausted or a non-retryable error occurs
        """
        last_error: Exception | None = None

        for attempt in range(self.max_retries + 1):
            if attempt > 0:
                logger.info(f"Retry attempt {attempt}/{self.max_retries} after {self.retry_delay}s delay...")
                time.sleep(self.retry_delay)

            try:
                response = self._client.post(path, json=payload)
                response.raise_for_status()
                return response.json()

            except httpx.TimeoutException as e:
                logger.warning(f"Request timed out (attempt {attempt + 1}): {e}")
                last_error = e
                continue

            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                if status == 429:
                    wait_time = self.retry_delay
                    retry_after = e.response.headers.get("Retry-After")
                    if retry_after:
                        try:
                            wait_time = float(retry_after)
                        except ValueError:
                            pass
                    logger.warning(f"Rate limited. Waiting {wait_time}s")
                    time.sleep(wait_time)
                    last_error = e
                    continue

                if status == 503:
                    logger.warning(f"Service unavailable (attempt {attempt + 1}): {e}")
                    last_error = e
                    continue

                logger.error(f"HTTP error: {status} - {e.response.text}")
                raise BackendError(f"HTTP {status}: {e.response.text}") from e

            except httpx.RequestError as e:
                logger.warning(f"Request error (attempt {attempt + 1}): {e}")
                last_error = e
                continue

            except json.JSONDecodeError as e:
                raise BackendError(f"Backend returned invalid JSON: {e}") from e

        logger.error(f"All {self.max_retries + 1} attempts failed. Last error: {last_error}")
        raise BackendError(
            f"Request failed after {self.max_retries + 1} attempts: {last_error}"
        ) from last_error

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> "_HTTPBackend":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


class RelayBackend(_HTTPBackend):
    """Backend that forwards the conversation to a relay server."""

    def __init__(
        self,
        config: RelayConfig | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.config = config or RelayConfig.from_env()
        super().__init__(
            base_url=self.config.url,
            max_retries=max_retries,
            retry_delay=retry_delay,
            read_timeout=self.config.timeout_seconds,
            transport=transport,
        )

    def send(self, request: BackendRequest) -> BackendResponse:
        if request.user_id is None:
            request.user_id = self.config.user_id
        payload = request.to_payload()
        logger.debug(f"Sending relay request with {len(request.history)} history turns")
        return BackendResponse.from_payload(self._post("/api/agent", payload))


class ChatCompletionsBackend(_HTTPBackend):
    """
    Backend for OpenAI-compatible chat-completions APIs.

    The history is expanded into API messages; a tool turn becomes one
    "tool" message per result.
    """

    def __init__(
        self,
        config: LLMConfig | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.config = config or LLMConfig.from_env()
        super().__init__(
            base_url=self.config.base_url,
            headers={"Authorization": f"Bearer {self.config.api_key}"},
            max_retries=max_retries,
            retry_delay=retry_delay,
            transport=transport,
        )

    def send(self, request: BackendRequest) -> BackendResponse:
        messages = to_api_messages(request.messages(), request.system_prompt)
        payload: dict[str, Any] = {
            "model": self.config.model,
            "messages": messages,
            "temperature": self.config.temperature,
            "max_tokens": self.config.max_tokens,
        }
        if request.tools:
            payload["tools"] = [{"type": "function", "function": tool} for tool in request.tools]

        logger.debug(f"Sending chat request with {len(messages)} messages")
        data = self._post("/chat/completions", payload)
        return parse_chat_completion(data)


def to_api_messages(history: list[Message], system_prompt: str | None = None) -> list[dict[str, Any]]:
    """Convert conversation turns to OpenAI chat messages."""
    messages: list[dict[str, Any]] = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    for message in history:
        if message.role == Role.TOOL:
            for result in message.tool_results or []:
                messages.append({
                    "role": "tool",
                    "tool_call_id": result.tool_call_id,
                    "content": json.dumps(result.output.to_dict(), default=str),
                })
        elif message.is_tool_call_turn:
            messages.append({
                "role": "assistant",
                "content": message.content or None,
                "tool_calls": [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {
                            "name": call.name,
                            "arguments": json.dumps(call.arguments),
                        },
                    }
                    for call in message.tool_calls or []
                ],
            })
        else:
            messages.append({"role": message.role.value, "content": message.content})
    return messages


def parse_chat_completion(data: dict[str, Any]) -> BackendResponse:
    """Map a chat-completions response onto a BackendResponse."""
    try:
        message = data["choices"][0]["message"]
    except (KeyError, IndexError, TypeError) as e:
        raise BackendError(f"Malformed chat completion: {data!r}") from e

    raw_calls = message.get("tool_calls") or []
    if raw_calls:
        calls = _unique_ids([ToolCall.from_dict(tc) for tc in raw_calls])
        return BackendResponse(
            type=TOOL_CALLS,
            content=message.get("content") or "",
            tool_calls=calls,
            assistant_message=message,
        )
    return BackendResponse(type=RESPONSE, content=message.get("content") or "", assistant_message=message)


class ScriptedBackend:
    """
    Replays a fixed list of responses, recording every request.

    Entries may be BackendResponse objects, plain strings (final text),
    or callables taking the request and returning a BackendResponse.
    """

    def __init__(
        self,
        responses: Iterable["BackendResponse | str | Callable[[BackendRequest], BackendResponse]"],
        repeat_last: bool = False,
    ) -> None:
        self._responses = list(responses)
        self._index = 0
        self.repeat_last = repeat_last
        self.requests: list[BackendRequest] = []

    @property
    def call_count(self) -> int:
        return len(self.requests)

    def send(self, request: BackendRequest) -> BackendResponse:
        self.requests.append(request)
        if self._index >= len(self._responses):
            if not (self.repeat_last and self._responses):
                raise BackendError("Scripted backend has no more responses")
            entry = self._responses[-1]
        else:
            entry = self._responses[self._index]
            self._index += 1

        if callable(entry) and not isinstance(entry, BackendResponse):
            return entry(request)
        if isinstance(entry, str):
            return BackendResponse.text(entry)
        return entry


def create_backend(backend: str, llm: LLMConfig, relay: RelayConfig) -> ModelBackend:
    """Build the backend named by PAL_BACKEND."""
    if backend == "relay":
        return RelayBackend(relay)
    if backend in ("chat", "openai"):
        return ChatCompletionsBackend(llm)
    raise ValueError(f"Unknown backend '{backend}' (expected relay or chat)")
