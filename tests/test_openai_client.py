import asyncio

import httpx
import pytest

from baya_agent.config import Settings
from baya_agent.openai_client import OpenAIClient, OpenAIClientError


def _client(handler, **overrides) -> OpenAIClient:
    settings = Settings(openai_api_key=overrides.pop("api_key", "sk-test"), **overrides)
    return OpenAIClient(settings, transport=httpx.MockTransport(handler))


def test_chat_completion_posts_model_and_messages(recording_transport, completion_body):
    recorder = recording_transport(body=completion_body("  Hello there  "))
    client = _client(recorder, openai_model="gpt-test")
    text = asyncio.run(client.chat_completion([{"role": "user", "content": "hi"}]))
    assert text == "Hello there"
    request = recorder.requests[-1]
    assert request.url.path.endswith("/chat/completions")
    assert request.headers["Authorization"] == "Bearer sk-test"
    payload = recorder.last_json()
    assert payload["model"] == "gpt-test"
    assert payload["messages"] == [{"role": "user", "content": "hi"}]


@pytest.mark.parametrize(
    "kwargs",
    [
        {"status": 502, "body": {"error": "bad gateway"}},
        {"status": 200, "text": "<html>not json</html>"},
        {"status": 200, "body": {"choices": []}},
        {"status": 200, "body": ["not", "an", "object"]},
        {"error": httpx.ConnectError("refused")},
    ],
)
def test_chat_completion_failures_raise_client_error(recording_transport, kwargs):
    recorder = recording_transport(**kwargs)
    with pytest.raises(OpenAIClientError):
        asyncio.run(_client(recorder).chat_completion([{"role": "user", "content": "hi"}]))


def test_missing_key_raises_without_calling_out(recording_transport):
    recorder = recording_transport(body={})
    client = _client(recorder, api_key="")
    assert client.has_credential is False
    with pytest.raises(OpenAIClientError):
        asyncio.run(client.create_realtime_session())
    assert recorder.requests == []


def test_realtime_session_sends_fixed_shape_and_returns_body(recording_transport):
    body = {"id": "sess_1", "client_secret": {"value": "ek_123"}}
    recorder = recording_transport(body=body)
    client = _client(recorder, openai_realtime_model="rt-model", openai_realtime_voice="verse")
    data = asyncio.run(client.create_realtime_session("be nice"))
    assert data == body
    payload = recorder.last_json()
    assert payload == {"model": "rt-model", "voice": "verse", "modalities": ["audio", "text"], "instructions": "be nice"}
    assert recorder.requests[-1].url.path.endswith("/realtime/sessions")


def test_probe_reports_status_and_never_raises(recording_transport):
    unauthorized = recording_transport(status=401, body={"error": "no"})
    assert asyncio.run(_client(unauthorized).probe()) == (True, 401)
    down = recording_transport(error=httpx.ConnectError("down"))
    assert asyncio.run(_client(down).probe()) == (False, None)
