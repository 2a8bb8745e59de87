# Tests for the OpenRouter transport.
#
# Tests cover:
#   - successful calls: text, usage, json_schema payload
#   - retry policy: 5xx and 429 retried, 4xx raised immediately
#   - streaming: SSE deltas, keep-alive comments, error statuses and in-band errors
#   - missing API key

import json
from unittest.mock import MagicMock, patch

import pytest
import requests
from pydantic import BaseModel

from src.shared.openrouter_client import (
    APIError,
    OpenRouterError,
    RateLimitError,
    call_simple_prompt,
    invoke_model,
    stream_model,
    stream_text,
)

MODULE = "src.shared.openrouter_client"


class Verdict(BaseModel):
    approved: bool


def _response(status_code=200, body=None, headers=None, text=""):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = body if body is not None else {}
    response.headers = headers or {}
    response.text = text
    return response


def _ok(content, usage=None):
    body = {"choices": [{"message": {"content": content}}]}
    if usage is not None:
        body["usage"] = usage
    return _response(body=body)


def _delta(content):
    return ("data: " + json.dumps({"choices": [{"delta": {"content": content}}]})).encode()


def _sse(*lines, status_code=200):
    response = _response(status_code=status_code)
    response.iter_lines.return_value = iter(lines)
    return response


@pytest.fixture(autouse=True)
def api_key():
    with patch(f"{MODULE}.OPENROUTER_API_KEY", "test-key"), patch(f"{MODULE}.time.sleep"):
        yield


class TestSuccessfulCalls:
    def test_invoke_returns_text_and_usage(self):
        with patch(f"{MODULE}.requests.post", return_value=_ok("hello", {"prompt_tokens": 3, "completion_tokens": 1})) as post:
            result = invoke_model("openai/gpt-4o-mini", "Say hello")

        assert result.text == "hello"
        assert result.usage.total_tokens == 4
        payload = post.call_args.kwargs["json"]
        assert payload["messages"] == [{"role": "user", "content": "Say hello"}]
        assert "response_format" not in payload

    def test_invoke_with_schema_sends_json_schema(self):
        with patch(f"{MODULE}.requests.post", return_value=_ok('{"approved": true}')) as post:
            invoke_model("openai/gpt-4o-mini", "Approve?", response_model=Verdict)

        response_format = post.call_args.kwargs["json"]["response_format"]
        assert response_format["type"] == "json_schema"
        assert response_format["json_schema"]["name"] == "Verdict"

    def test_simple_prompt_returns_string(self):
        with patch(f"{MODULE}.requests.post", return_value=_ok("plain text")):
            assert call_simple_prompt("Hi", model="openai/gpt-4o-mini") == "plain text"


class TestRetryPolicy:
    def test_server_error_retried_then_succeeds(self):
        responses = [_response(status_code=502), _ok("recovered")]
        with patch(f"{MODULE}.requests.post", side_effect=responses) as post:
            result = invoke_model("openai/gpt-4o-mini", "Hi")
        assert result.text == "recovered"
        assert post.call_count == 2

    def test_server_error_exhausted(self):
        with patch(f"{MODULE}.requests.post", return_value=_response(status_code=500)) as post:
            with pytest.raises(APIError, match="Server error 500"):
                invoke_model("openai/gpt-4o-mini", "Hi")
        assert post.call_count == 4

    def test_rate_limit_exhausted(self):
        limited = _response(status_code=429, headers={"retry-after": "2"})
        with patch(f"{MODULE}.requests.post", return_value=limited):
            with pytest.raises(RateLimitError):
                invoke_model("openai/gpt-4o-mini", "Hi")

    def test_client_error_not_retried(self):
        denied = _response(status_code=401, body={"error": {"message": "Invalid API key"}})
        with patch(f"{MODULE}.requests.post", return_value=denied) as post:
            with pytest.raises(APIError, match="401"):
                invoke_model("openai/gpt-4o-mini", "Hi")
        assert post.call_count == 1

    def test_missing_choices_retried(self):
        responses = [_response(body={"error": {"message": "overloaded"}}), _ok("ok")]
        with patch(f"{MODULE}.requests.post", side_effect=responses):
            assert invoke_model("openai/gpt-4o-mini", "Hi").text == "ok"

    def test_network_error_exhausted(self):
        with patch(f"{MODULE}.requests.post", side_effect=requests.ConnectionError("reset")):
            with pytest.raises(OpenRouterError, match="Request failed"):
                invoke_model("openai/gpt-4o-mini", "Hi")


class TestStreaming:
    def test_deltas_yielded_in_order(self):
        response = _sse(
            b": OPENROUTER PROCESSING",
            b"",
            _delta("Hel"),
            _delta("lo"),
            b'data: {"choices": [{"delta": {}}]}',
            b"data: [DONE]",
            _delta("ignored"),
        )
        with patch(f"{MODULE}.requests.post", return_value=response) as post:
            chunks = list(stream_text("Say hello", model="openai/gpt-4o-mini"))

        assert chunks == ["Hel", "lo"]
        assert post.call_args.kwargs["json"]["stream"] is True
        assert post.call_args.kwargs["stream"] is True
        response.close.assert_called_once()

    def test_stream_model_sends_json_schema(self):
        with patch(f"{MODULE}.requests.post", return_value=_sse(_delta("{}"))) as post:
            list(stream_model("openai/gpt-4o-mini", "Approve?", response_model=Verdict))

        response_format = post.call_args.kwargs["json"]["response_format"]
        assert response_format["json_schema"]["name"] == "Verdict"

    def test_error_status_raised_before_first_chunk(self):
        denied = _sse(status_code=401)
        denied.text = "Invalid API key"
        with patch(f"{MODULE}.requests.post", return_value=denied):
            with pytest.raises(APIError, match="401"):
                list(stream_text("Hi", model="openai/gpt-4o-mini"))

    def test_rate_limited_stream(self):
        with patch(f"{MODULE}.requests.post", return_value=_sse(status_code=429)) as post:
            with pytest.raises(RateLimitError):
                list(stream_text("Hi", model="openai/gpt-4o-mini"))
        assert post.call_count == 1

    def test_error_sent_mid_stream(self):
        response = _sse(_delta('{"a": '), b'data: {"error": {"message": "provider overloaded"}}')
        with patch(f"{MODULE}.requests.post", return_value=response):
            chunks = stream_text("Hi", model="openai/gpt-4o-mini")
            assert next(chunks) == '{"a": '
            with pytest.raises(APIError, match="provider overloaded"):
                next(chunks)

    def test_connection_failure(self):
        with patch(f"{MODULE}.requests.post", side_effect=requests.ConnectionError("reset")):
            with pytest.raises(OpenRouterError, match="Stream request failed"):
                list(stream_text("Hi", model="openai/gpt-4o-mini"))


def test_missing_api_key():
    with patch(f"{MODULE}.OPENROUTER_API_KEY", None):
        with pytest.raises(OpenRouterError, match="OPENROUTER_API_KEY"):
            invoke_model("openai/gpt-4o-mini", "Hi")
