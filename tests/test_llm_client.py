"""Tests for the HTTP completion client, using a fake requests session."""
from __future__ import annotations

import pytest
import requests

from npc_loop.config import LLMConfig
from npc_loop.errors import CompletionError
from npc_loop.llm_client import HttpCompletionClient, create_completion_client, parse_completion


def body(content="hello", tool_calls=None, model="mistral-small-latest"):
    message = {"role": "assistant", "content": content}
    if tool_calls:
        message["tool_calls"] = tool_calls
    return {
        "model": model,
        "choices": [{"message": message, "finish_reason": "stop"}],
        "usage": {"prompt_tokens": 12, "completion_tokens": 5},
    }


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


class FakeSession:
    """Replays scripted responses (or raises scripted exceptions) and records every POST."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.posts = []

    def post(self, url, json=None, headers=None, timeout=None):
        self.posts.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def make_client(session, **kwargs):
    kwargs.setdefault("fallback_models", ["backup-model"])
    sleeps = []
    client = HttpCompletionClient(
        base_url="https://llm.example/v1/",
        api_key="secret",
        model="main-model",
        session=session,
        sleep=sleeps.append,
        **kwargs,
    )
    return client, sleeps


def test_parse_completion_reads_content_tools_and_usage():
    response = parse_completion(body(tool_calls=[
        {"id": "t1", "function": {"name": "get_my_stats", "arguments": "{}"}},
        {"function": {"name": "check_relationship", "arguments": '{"userId": "user-9"}'}},
        {"function": {"arguments": "{}"}},
    ]), "fallback")

    assert response.content == "hello"
    assert [(c.id, c.name) for c in response.tool_calls] == [("t1", "get_my_stats"), ("call_1", "check_relationship")]
    assert response.tool_calls[1].arguments == {"userId": "user-9"}
    assert response.tokens_used == 17
    assert response.finish_reason == "stop"
    assert response.model == "mistral-small-latest"


def test_parse_completion_tolerates_bad_arguments():
    response = parse_completion(body(tool_calls=[{"function": {"name": "x", "arguments": "{not json"}}]), "m")
    assert response.tool_calls[0].arguments == {}


def test_parse_completion_without_choices():
    with pytest.raises(CompletionError):
        parse_completion({"choices": []}, "m")


def test_request_shape():
    session = FakeSession(FakeResponse(payload=body()))
    client, _ = make_client(session)
    tools = [{"type": "function", "function": {"name": "get_my_stats"}}]
    client.complete([{"role": "user", "content": "hi"}], tools=tools, temperature=0.2, max_tokens=64)

    post = session.posts[0]
    assert post["url"] == "https://llm.example/v1/chat/completions"
    assert post["headers"]["Authorization"] == "Bearer secret"
    assert post["json"]["model"] == "main-model"
    assert post["json"]["tools"] == tools
    assert post["json"]["tool_choice"] == "auto"
    assert post["json"]["temperature"] == 0.2
    assert post["json"]["max_tokens"] == 64
    assert post["timeout"] == 30


def test_no_tools_means_no_tool_choice():
    session = FakeSession(FakeResponse(payload=body()))
    client, _ = make_client(session)
    client.complete([{"role": "user", "content": "hi"}])
    assert "tools" not in session.posts[0]["json"]
    assert "tool_choice" not in session.posts[0]["json"]


def test_retryable_status_is_retried_with_backoff():
    session = FakeSession(
        FakeResponse(status_code=429, text="slow down"),
        requests.ConnectionError("reset"),
        FakeResponse(payload=body("third time")),
    )
    client, sleeps = make_client(session)
    assert client.complete([{"role": "user", "content": "hi"}]).content == "third time"
    assert sleeps == [2.0, 4.0]
    assert len(session.posts) == 3


def test_rejected_model_falls_back_immediately():
    session = FakeSession(
        FakeResponse(status_code=400, text="unknown model"),
        FakeResponse(payload=body("from backup", model="")),
    )
    client, sleeps = make_client(session)
    response = client.complete([{"role": "user", "content": "hi"}])
    assert response.content == "from backup"
    assert response.model == "backup-model"
    assert sleeps == []
    assert [p["json"]["model"] for p in session.posts] == ["main-model", "backup-model"]


def test_all_models_exhausted_raises():
    session = FakeSession(*[FakeResponse(status_code=503, text="down") for _ in range(4)])
    client, _ = make_client(session, max_retries=2)
    with pytest.raises(CompletionError, match="backup-model: HTTP 503"):
        client.complete([{"role": "user", "content": "hi"}])
    assert len(session.posts) == 4


def test_non_json_success_body_is_retried():
    session = FakeSession(
        FakeResponse(payload=ValueError("Expecting value"), text="<html>gateway</html>"),
        FakeResponse(payload=body("recovered")),
    )
    client, sleeps = make_client(session)
    assert client.complete([{"role": "user", "content": "hi"}]).content == "recovered"
    assert sleeps == [2.0]


def test_non_json_bodies_end_in_completion_error():
    session = FakeSession(*[FakeResponse(payload=ValueError("Expecting value")) for _ in range(2)])
    client, _ = make_client(session, max_retries=1)
    with pytest.raises(CompletionError, match="backup-model: unreadable response body"):
        client.complete([{"role": "user", "content": "hi"}])
    assert len(session.posts) == 2


def test_model_chain_skips_duplicates():
    client, _ = make_client(FakeSession(), fallback_models=["main-model", "", "other"])
    assert client._model_chain() == ["main-model", "other"]


def test_client_from_config(monkeypatch):
    monkeypatch.setenv("NPC_TEST_KEY", "k-123")
    config = LLMConfig(base_url="http://localhost:9000/v1", api_key_env="NPC_TEST_KEY", model="m1",
                       fallback_models=["m2"], max_retries=5)
    client = create_completion_client(config)
    assert client.base_url == "http://localhost:9000/v1"
    assert client.api_key == "k-123"
    assert client.max_retries == 5
    assert client._model_chain() == ["m1", "m2"]
