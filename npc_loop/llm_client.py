"""
LLM_CLIENT
==========

Completion service client used by the Reason node.

The engine only needs one operation: send chat messages (optionally with
tool schemas) and get back text, tool calls and token usage. Any
OpenAI-compatible ``/chat/completions`` endpoint works (Mistral by default).

Architecture
------------
::

    CompletionClient (abstract)
    └── complete(messages, tools, temperature, max_tokens) → CompletionResponse

    HttpCompletionClient(CompletionClient)
    ├── requests.Session POST {base_url}/chat/completions
    ├── retries: max_retries per model, sleep backoff_multiplier ** attempt
    └── fallback: next model in the chain when one keeps failing

Usage::

    client = create_completion_client(get_config_manager().global_config.llm)
    response = client.complete([{"role": "user", "content": "hi"}], temperature=0.3)
    print(response.content, response.tool_calls)
"""

import json
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import requests

from .errors import CompletionError
from .observability import report_retry

logger = logging.getLogger(__name__)

# Status codes worth retrying on the same model
RETRYABLE_STATUS = {408, 409, 425, 429, 500, 502, 503, 504}


@dataclass
class ToolCall:
    """A tool invocation requested by the model."""
    id: str
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return {"id": self.id, "name": self.name, "arguments": self.arguments}


@dataclass
class CompletionResponse:
    """Normalised completion result."""
    content: str = ""
    tool_calls: List[ToolCall] = field(default_factory=list)
    model: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    finish_reason: Optional[str] = None

    @property
    def tokens_used(self) -> int:
        return self.input_tokens + self.output_tokens


class CompletionClient(ABC):
    """Anything that can answer a chat completion request."""

    model: str = ""

    @abstractmethod
    def complete(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
        temperature: float = 0.5,
        max_tokens: int = 1024,
    ) -> CompletionResponse:
        """Run one completion. Raises ``CompletionError`` when the service is unusable."""


def _parse_arguments(raw: Any) -> Dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("Unparseable tool call arguments: %s", str(raw)[:200])
        return {}
    return parsed if isinstance(parsed, dict) else {}


def parse_completion(body: Dict[str, Any], model: str) -> CompletionResponse:
    """Convert an OpenAI-style response body into a CompletionResponse."""
    choices = body.get("choices") or []
    if not choices:
        raise CompletionError("Completion response has no choices")
    choice = choices[0]
    message = choice.get("message") or {}

    tool_calls = []
    for index, call in enumerate(message.get("tool_calls") or []):
        function = call.get("function") or {}
        if not function.get("name"):
            continue
        tool_calls.append(ToolCall(
            id=call.get("id") or f"call_{index}",
            name=function["name"],
            arguments=_parse_arguments(function.get("arguments")),
        ))

    usage = body.get("usage") or {}
    return CompletionResponse(
        content=message.get("content") or "",
        tool_calls=tool_calls,
        model=body.get("model") or model,
        input_tokens=usage.get("prompt_tokens", 0) or 0,
        output_tokens=usage.get("completion_tokens", 0) or 0,
        finish_reason=choice.get("finish_reason"),
    )


class HttpCompletionClient(CompletionClient):
    """OpenAI-compatible HTTP client with retries and a model fallback chain."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str],
        model: str,
        fallback_models: Optional[List[str]] = None,
        timeout_seconds: int = 30,
        max_retries: int = 3,
        backoff_multiplier: float = 2.0,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.fallback_models = list(fallback_models or [])
        self.timeout_seconds = timeout_seconds
        self.max_retries = max(1, max_retries)
        self.backoff_multiplier = backoff_multiplier
        self.session = session or requests.Session()
        self._sleep = sleep

    def _model_chain(self) -> List[str]:
        chain = []
        for name in [self.model] + self.fallback_models:
            if name and name not in chain:
                chain.append(name)
        return chain

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def complete(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
        temperature: float = 0.5,
        max_tokens: int = 1024,
    ) -> CompletionResponse:
        last_error = "no models configured"

        for model in self._model_chain():
            payload: Dict[str, Any] = {
                "model": model,
                "messages": messages,
                "temperature": temperature,
                "max_tokens": max_tokens,
            }
            if tools:
                payload["tools"] = tools
                payload["tool_choice"] = "auto"

            for attempt in range(1, self.max_retries + 1):
                try:
                    resp = self.session.post(
                        f"{self.base_url}/chat/completions",
                        json=payload,
                        headers=self._headers(),
                        timeout=self.timeout_seconds,
                    )
                except requests.RequestException as e:
                    last_error = f"{model}: {e}"
                else:
                    if resp.status_code < 400:
                        try:
                            body = resp.json()
                        except ValueError as e:
                            last_error = f"{model}: unreadable response body: {e}"
                        else:
                            return parse_completion(body, model)
                    else:
                        last_error = f"{model}: HTTP {resp.status_code} {resp.text[:200]}"
                        if resp.status_code not in RETRYABLE_STATUS:
                            logger.warning("Completion rejected by %s, trying next model: %s", model, last_error)
                            break

                if attempt < self.max_retries:
                    delay = self.backoff_multiplier ** attempt
                    logger.info(
                        "Completion attempt %d/%d failed (%s), retrying in %.1fs",
                        attempt, self.max_retries, last_error, delay,
                    )
                    report_retry(last_error, attempt)
                    self._sleep(delay)

            logger.warning("Model %s exhausted, falling back", model)

        raise CompletionError(f"Completion failed for all models: {last_error}")


def create_completion_client(llm_config) -> HttpCompletionClient:
    """Build the HTTP client from an ``LLMConfig``."""
    return HttpCompletionClient(
        base_url=llm_config.base_url,
        api_key=llm_config.api_key,
        model=llm_config.model,
        fallback_models=llm_config.fallback_models,
        timeout_seconds=llm_config.timeout_seconds,
        max_retries=llm_config.max_retries,
        backoff_multiplier=llm_config.backoff_multiplier,
    )
