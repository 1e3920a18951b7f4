from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

import pytest
import requests

from src.megachat.domain.chat_models import ChatTurn
from src.megachat.domain.errors import UpstreamUnavailable
from src.megachat.services import generation
from src.megachat.services.generation import HuggingFaceClient, build_prompt, messages_to_prompt


class FakeResponse:
    def __init__(self, status: int = 200, payload: Any = None, lines: Optional[List[bytes]] = None, body: Optional[str] = None):
        self.status_code = status
        self._payload = payload
        self._lines = lines or []
        self._body = body

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code} error")

    def json(self):
        if self._body is not None:
            return json.loads(self._body)
        return self._payload

    def iter_lines(self):
        yield from self._lines

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


class FakeSession:
    def __init__(self, response: Optional[FakeResponse] = None, error: Optional[Exception] = None):
        self.response = response
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    def post(self, url, **kwargs):
        self.calls.append({"url": url, **kwargs})
        if self.error:
            raise self.error
        return self.response


def _client(session: FakeSession, api_key: Optional[str] = "hf_token") -> HuggingFaceClient:
    return HuggingFaceClient(model="org/model", api_key=api_key, session=session)


def test_generate_posts_inputs_and_returns_generated_text():
    session = FakeSession(FakeResponse(payload=[{"generated_text": "hello world"}]))
    text = _client(session).generate("hi")

    assert text == "hello world"
    call = session.calls[0]
    assert call["url"] == "https://api-inference.huggingface.co/models/org/model"
    assert call["json"] == {"inputs": "hi", "parameters": {"max_new_tokens": 1024}}
    assert call["headers"]["Authorization"] == "Bearer hf_token"


def test_generate_without_api_key_sends_no_auth_header():
    session = FakeSession(FakeResponse(payload={"generated_text": "ok"}))
    assert _client(session, api_key=None).generate("hi") == "ok"
    assert "Authorization" not in session.calls[0]["headers"]


@pytest.mark.parametrize(
    "response",
    [
        FakeResponse(status=503, payload={"error": "loading"}),
        FakeResponse(payload=[]),
        FakeResponse(payload=[{"generated_text": ""}]),
        FakeResponse(payload={"error": "Model is overloaded"}),
        FakeResponse(body="<html>not json</html>"),
    ],
)
def test_generate_maps_bad_responses_to_upstream_unavailable(response):
    with pytest.raises(UpstreamUnavailable):
        _client(FakeSession(response)).generate("hi")


def test_missing_api_key_warning_goes_to_megachat_logger(caplog):
    with caplog.at_level(logging.WARNING, logger="megachat.llm"):
        _client(FakeSession(), api_key=None)
    records = [r for r in caplog.records if "HF_API_KEY" in r.getMessage()]
    assert records and records[0].name == "megachat.llm"


def test_generate_maps_transport_errors():
    session = FakeSession(error=requests.exceptions.ConnectTimeout("slow"))
    with pytest.raises(UpstreamUnavailable):
        _client(session).generate("hi")


def test_stream_yields_token_text_and_skips_special_tokens():
    lines = [
        b'data:{"token": {"text": "Hel", "special": false}}',
        b"",
        b": keep-alive",
        b'data:{"token": {"text": "lo", "special": false}}',
        b"data: not-json",
        b'data:{"token": {"text": "</s>", "special": true}, "generated_text": "Hello"}',
    ]
    session = FakeSession(FakeResponse(lines=lines))
    assert list(_client(session).stream("hi")) == ["Hel", "lo"]
    call = session.calls[0]
    assert call["stream"] is True
    assert call["json"]["stream"] is True


def test_stream_error_event_raises():
    lines = [b'data:{"token": {"text": "a"}}', b'data:{"error": "Input validation error"}']
    tokens = _client(FakeSession(FakeResponse(lines=lines))).stream("hi")
    assert next(tokens) == "a"
    with pytest.raises(UpstreamUnavailable):
        next(tokens)


def test_stream_http_error_raises():
    with pytest.raises(UpstreamUnavailable):
        list(_client(FakeSession(FakeResponse(status=500))).stream("hi"))


def test_session_retries_transient_statuses():
    session = generation._build_session()
    adapter = session.get_adapter("https://api-inference.huggingface.co")
    assert adapter.max_retries.total == 2
    assert 503 in adapter.max_retries.status_forcelist


def test_prompt_building():
    turns = [ChatTurn(role="system", content="Be brief"), ChatTurn(role="user", content="Hi")]
    assert build_prompt(turns) == "Hi"
    assert build_prompt([]) == ""
    prompt = messages_to_prompt(turns)
    assert prompt.splitlines()[0] == "SYSTEM: Be brief"
    assert prompt.endswith("ASSISTANT:")
