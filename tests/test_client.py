import json
import logging
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import httpx
import pytest

from a11yscan.cancel import CancellationToken
from a11yscan.client import ChatCompletionsClient, classify_error_message
from a11yscan.config import ScanSettings
from a11yscan.job import ScanTask
from a11yscan.outcomes import (
    AuthFailure,
    Cancelled,
    RateLimited,
    Success,
    Timeout,
    TransientFailure,
)
from a11yscan.prompt import build_prompt

PAYLOAD = build_prompt(ScanTask(file_path="Menu.cs", content="Color c;"), {"WCAG 1.4.3"})


def _completion(content):
    return {
        "id": "chatcmpl-1",
        "object": "chat.completion",
        "created": 0,
        "model": "gpt-4o",
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": content},
                "finish_reason": "stop",
            }
        ],
    }


def _client(handler, seen=None):
    def _wrapped(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        return handler(request)

    http_client = httpx.Client(transport=httpx.MockTransport(_wrapped))
    return ChatCompletionsClient(ScanSettings(max_output_tokens=2500), http_client=http_client)


def _error(status, message):
    return lambda request: httpx.Response(status, json={"error": {"message": message, "type": "x"}})


def test_success_returns_message_content():
    seen = []
    client = _client(lambda r: httpx.Response(200, json=_completion('[{"line": 1}]')), seen)

    outcome = client.send(PAYLOAD, "sk-test")

    assert outcome == Success('[{"line": 1}]')
    assert len(seen) == 1
    body = json.loads(seen[0].content)
    assert body["model"] == "gpt-4o"
    assert body["max_tokens"] == 2500
    assert body["temperature"] == 0.0
    assert body["messages"] == [{"role": "user", "content": PAYLOAD.text}]
    assert seen[0].headers["authorization"] == "Bearer sk-test"


def test_401_is_auth_failure():
    outcome = _client(_error(401, "Incorrect API key provided: sk-***")).send(PAYLOAD, "sk-bad")
    assert isinstance(outcome, AuthFailure)


def test_429_rate_limit_message_is_rate_limited():
    outcome = _client(_error(429, "Rate limit reached for gpt-4o")).send(PAYLOAD, "k")
    assert isinstance(outcome, RateLimited)


def test_other_errors_are_transient():
    outcome = _client(_error(500, "The server had an error")).send(PAYLOAD, "k")
    assert outcome == TransientFailure("The server had an error")


def test_unparsable_error_body_is_transient():
    outcome = _client(lambda r: httpx.Response(503, text="<html>bad gateway</html>")).send(PAYLOAD, "k")
    assert isinstance(outcome, TransientFailure)


def test_timeout_is_classified():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    assert isinstance(_client(handler).send(PAYLOAD, "k"), Timeout)


def test_connection_error_is_transient():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    assert isinstance(_client(handler).send(PAYLOAD, "k"), TransientFailure)


@pytest.mark.parametrize("content", ["", "   ", None])
def test_empty_answer_is_transient(content):
    outcome = _client(lambda r: httpx.Response(200, json=_completion(content))).send(PAYLOAD, "k")
    assert outcome == TransientFailure("empty answer")


def test_empty_key_fails_without_request():
    seen = []
    outcome = _client(lambda r: httpx.Response(200, json=_completion("[]")), seen).send(PAYLOAD, "  ")
    assert isinstance(outcome, AuthFailure)
    assert seen == []


def test_cancelled_token_short_circuits():
    seen = []
    token = CancellationToken()
    token.cancel()
    outcome = _client(lambda r: httpx.Response(200, json=_completion("[]")), seen).send(PAYLOAD, "k", cancel=token)
    assert isinstance(outcome, Cancelled)
    assert seen == []


def test_cancel_during_call_discards_answer():
    token = CancellationToken()

    def handler(request):
        token.cancel()
        return httpx.Response(200, json=_completion("[]"))

    assert isinstance(_client(handler).send(PAYLOAD, "k", cancel=token), Cancelled)


@pytest.mark.parametrize(
    "message,kind",
    [
        ("Invalid API key", AuthFailure),
        ("Authentication required", AuthFailure),
        ("You hit the RATE LIMIT", RateLimited),
        ("model overloaded", TransientFailure),
        ("", TransientFailure),
        (None, TransientFailure),
    ],
)
def test_classify_error_message(message, kind):
    assert isinstance(classify_error_message(message), kind)


# -------------------------------------------------------------------
# Wall-clock deadline
# -------------------------------------------------------------------


class _TricklingHandler(BaseHTTPRequestHandler):
    """Answers 200 at once, then sends the body 20 bytes every 0.6s."""

    def do_POST(self):
        self.rfile.read(int(self.headers.get("Content-Length", 0)))
        body = json.dumps(_completion("[]")).encode("utf-8")
        self.send_response(200)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        try:
            for i in range(0, len(body), 20):
                self.wfile.write(body[i : i + 20])
                self.wfile.flush()
                time.sleep(0.6)
        except (BrokenPipeError, ConnectionResetError):
            return

    def log_message(self, format, *args):
        return


@pytest.fixture
def trickling_base_url(monkeypatch):
    for name in ("HTTP_PROXY", "HTTPS_PROXY", "ALL_PROXY", "http_proxy", "https_proxy", "all_proxy"):
        monkeypatch.delenv(name, raising=False)
    server = ThreadingHTTPServer(("127.0.0.1", 0), _TricklingHandler)
    server.daemon_threads = True
    t = threading.Thread(target=server.serve_forever, daemon=True)
    t.start()
    yield f"http://127.0.0.1:{server.server_address[1]}/v1"
    server.shutdown()
    server.server_close()


def test_slow_body_times_out_at_wall_clock_deadline(trickling_base_url):
    client = ChatCompletionsClient(ScanSettings(base_url=trickling_base_url))
    try:
        t0 = time.monotonic()
        outcome = client.send(PAYLOAD, "sk-test", timeout=1.0)
        elapsed = time.monotonic() - t0
    finally:
        client.close()

    assert isinstance(outcome, Timeout)
    assert elapsed < 2.0


def test_deadline_also_bounds_injected_http_client():
    release = threading.Event()

    def handler(request):
        release.wait(5)
        return httpx.Response(200, json=_completion("[]"))

    t0 = time.monotonic()
    outcome = _client(handler).send(PAYLOAD, "k", timeout=0.3)
    elapsed = time.monotonic() - t0
    release.set()

    assert isinstance(outcome, Timeout)
    assert elapsed < 3


def test_cancel_interrupts_blocked_call():
    token = CancellationToken()
    release = threading.Event()

    def handler(request):
        release.wait(5)
        return httpx.Response(200, json=_completion("[]"))

    threading.Timer(0.1, token.cancel).start()
    t0 = time.monotonic()
    outcome = _client(handler).send(PAYLOAD, "k", timeout=10, cancel=token)
    elapsed = time.monotonic() - t0
    release.set()

    assert isinstance(outcome, Cancelled)
    assert elapsed < 3


# -------------------------------------------------------------------
# API key preflight
# -------------------------------------------------------------------

VALID_KEY = "sk-" + "a" * 45


def _models(request):
    return httpx.Response(200, json={"object": "list", "data": [{"id": "gpt-4o", "object": "model", "created": 0, "owned_by": "openai"}]})


def test_key_check_lists_models():
    seen = []
    outcome = _client(_models, seen).check_api_key(VALID_KEY)

    assert outcome == Success("ok")
    assert len(seen) == 1
    assert seen[0].method == "GET"
    assert seen[0].url.path == "/v1/models"
    assert seen[0].headers["authorization"] == f"Bearer {VALID_KEY}"


@pytest.mark.parametrize("status", [401, 403])
def test_key_check_rejected_key_is_auth_failure(status):
    outcome = _client(_error(status, "Incorrect API key provided")).check_api_key(VALID_KEY)
    assert outcome == AuthFailure("Incorrect API key provided")


def test_key_check_forbidden_without_body_is_auth_failure():
    outcome = _client(lambda r: httpx.Response(403, text="forbidden")).check_api_key(VALID_KEY)
    assert outcome == AuthFailure("HTTP 403")


def test_key_check_server_error_is_transient():
    outcome = _client(_error(500, "The server had an error")).check_api_key(VALID_KEY)
    assert outcome == TransientFailure("The server had an error")


def test_key_check_connection_error_is_transient():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    assert isinstance(_client(handler).check_api_key(VALID_KEY), TransientFailure)


@pytest.mark.parametrize("key", ["", "   ", "abc-123", "SK-uppercase-prefix"])
def test_key_check_rejects_bad_format_without_request(key):
    seen = []
    outcome = _client(_models, seen).check_api_key(key)
    assert isinstance(outcome, AuthFailure)
    assert seen == []


@pytest.mark.parametrize("key,warning", [("sk-short", "too short"), ("sk-" + "x" * 300, "too long")])
def test_key_check_warns_on_unusual_length(caplog, key, warning):
    with caplog.at_level(logging.WARNING, logger="a11yscan.client"):
        outcome = _client(_models).check_api_key(key)
    assert outcome == Success("ok")
    assert warning in caplog.text


def test_key_check_has_its_own_deadline():
    release = threading.Event()

    def handler(request):
        release.wait(5)
        return _models(request)

    http_client = httpx.Client(transport=httpx.MockTransport(handler))
    client = ChatCompletionsClient(ScanSettings(key_check_timeout_s=0.3), http_client=http_client)
    t0 = time.monotonic()
    outcome = client.check_api_key(VALID_KEY)
    elapsed = time.monotonic() - t0
    release.set()

    assert isinstance(outcome, Timeout)
    assert elapsed < 3
