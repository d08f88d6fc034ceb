# src/a11yscan/client.py
from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from typing import Any, Callable

import httpx
import openai
from openai import OpenAI

from a11yscan.cancel import CancellationToken
from a11yscan.config import ScanSettings
from a11yscan.outcomes import (
    CANCELLED,
    AuthFailure,
    CallOutcome,
    RateLimited,
    Success,
    Timeout,
    TransientFailure,
)
from a11yscan.prompt import PromptPayload

logger = logging.getLogger(__name__)

# Matched against the lowercased provider error message. Wording changes upstream
# silently turn these into TransientFailure.
AUTH_MARKERS: tuple[str, ...] = ("invalid api key", "authentication", "incorrect api key")
RATE_LIMIT_MARKERS: tuple[str, ...] = ("rate limit",)

API_KEY_PREFIX = "sk-"
API_KEY_MIN_LEN = 40
API_KEY_MAX_LEN = 250


def classify_error_message(message: str | None) -> CallOutcome:
    text = (message or "").strip()
    low = text.lower()
    if not low:
        return TransientFailure("unparsable error body")
    if any(m in low for m in AUTH_MARKERS):
        return AuthFailure(text)
    if any(m in low for m in RATE_LIMIT_MARKERS):
        return RateLimited(text)
    return TransientFailure(text)


def _error_message(err: openai.APIStatusError) -> str | None:
    """
    Pull `error.message` out of a non-2xx response.
    The SDK hands us either the inner error object or the whole body depending on shape.
    """
    body: Any = err.body
    if isinstance(body, dict):
        inner = body.get("error")
        if isinstance(inner, dict):
            body = inner
        msg = body.get("message")
        if isinstance(msg, str) and msg.strip():
            return msg

    try:
        data = err.response.json()
    except ValueError:
        return None
    if isinstance(data, dict):
        inner = data.get("error")
        if isinstance(inner, dict) and isinstance(inner.get("message"), str):
            return inner["message"]
    return None


def _extract_content(resp: Any) -> str:
    choices = getattr(resp, "choices", None)
    if not choices:
        return ""
    message = getattr(choices[0], "message", None)
    content = getattr(message, "content", None)
    return content if isinstance(content, str) else ""


class ChatCompletionsClient:
    """
    One HTTPS chat-completions call per `send`, classified into a CallOutcome.

    The OpenAI SDK's own retries are disabled; retrying belongs to RetryController.
    The SDK timeout only bounds each connect/read phase, so a server that keeps
    trickling bytes would hold a call open forever. Every request therefore runs on a
    worker thread and the caller waits at most `timeout` seconds of wall-clock time
    for it: past that the call is reported as Timeout, and a cancelled token reports
    Cancelled. Either way the request's own httpx.Client is closed so the abandoned
    worker unwinds. An injected http_client is shared and never closed here.
    """

    def __init__(
            self,
            settings: ScanSettings | None = None,
            *,
            http_client: httpx.Client | None = None,
    ):
        self.settings = settings or ScanSettings()
        self._http_client = http_client
        self._lock = threading.Lock()
        self._executor: ThreadPoolExecutor | None = None

    # -------------------------------------------------------------------
    # Plumbing
    # -------------------------------------------------------------------

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=max(4, self.settings.max_concurrent_calls * 2),
                    thread_name_prefix="a11yscan-call",
                )
            return self._executor

    def _open_http_client(self) -> httpx.Client:
        return self._http_client if self._http_client is not None else httpx.Client()

    def _release_http_client(self, http_client: httpx.Client) -> None:
        if http_client is not self._http_client:
            http_client.close()

    def _openai(self, api_key: str, timeout: float, http_client: httpx.Client) -> OpenAI:
        return OpenAI(
            api_key=api_key,
            base_url=self.settings.base_url,
            timeout=timeout,
            max_retries=0,
            http_client=http_client,
        )

    def _bounded(
            self,
            fn: Callable[[], CallOutcome],
            http_client: httpx.Client,
            deadline_s: float,
            cancel: CancellationToken | None,
            label: str,
    ) -> CallOutcome:
        settled = threading.Event()
        future = self._get_executor().submit(fn)
        future.add_done_callback(lambda _f: settled.set())
        unregister = cancel.register(settled.set) if cancel is not None else (lambda: None)
        try:
            settled.wait(timeout=deadline_s)
        finally:
            unregister()
            # closing the request's own pool makes an abandoned worker fail fast
            self._release_http_client(http_client)

        if cancel is not None and cancel.cancelled:
            return CANCELLED
        if not future.done():
            logger.error("%s got no complete answer within %gs", label, deadline_s)
            return Timeout(f"no complete answer within {deadline_s:g}s")
        return future.result()

    def close(self) -> None:
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=False)

    # -------------------------------------------------------------------
    # Chat completions
    # -------------------------------------------------------------------

    def request_body(self, payload: PromptPayload) -> dict[str, Any]:
        return {
            "model": self.settings.model,
            "messages": [{"role": "user", "content": payload.text}],
            "max_tokens": self.settings.max_output_tokens,
            "temperature": self.settings.temperature,
        }

    def _complete(self, client: OpenAI, payload: PromptPayload) -> CallOutcome:
        try:
            resp = client.chat.completions.create(**self.request_body(payload))
        except openai.APITimeoutError as e:
            return Timeout(str(e))
        except openai.APIStatusError as e:
            message = _error_message(e)
            logger.error("Model API error (%s) for %s: %s", e.status_code, payload.file_path, message or e)
            return classify_error_message(message)
        except openai.APIConnectionError as e:
            return TransientFailure(f"connection error: {e}")
        except (openai.OpenAIError, httpx.HTTPError, RuntimeError) as e:
            # a pool closed under an abandoned request surfaces as RuntimeError from httpx
            return TransientFailure(f"{type(e).__name__}: {e}")

        content = _extract_content(resp)
        if not content.strip():
            logger.error("Empty response from model API for %s", payload.file_path)
            return TransientFailure("empty answer")
        logger.debug("Raw model answer for %s: %s", payload.file_path, content[:400])
        return Success(content)

    def send(
            self,
            payload: PromptPayload,
            api_key: str,
            timeout: float | None = None,
            cancel: CancellationToken | None = None,
    ) -> CallOutcome:
        if not (api_key or "").strip():
            return AuthFailure("API key is empty")
        if cancel is not None and cancel.cancelled:
            return CANCELLED

        deadline_s = timeout if timeout is not None else self.settings.call_timeout_s
        http_client = self._open_http_client()
        client = self._openai(api_key, deadline_s, http_client)
        return self._bounded(
            partial(self._complete, client, payload),
            http_client,
            deadline_s,
            cancel,
            f"Model call for {payload.file_path}",
        )

    # -------------------------------------------------------------------
    # API key preflight
    # -------------------------------------------------------------------

    def _list_models(self, client: OpenAI) -> CallOutcome:
        try:
            client.models.list()
        except openai.APITimeoutError as e:
            return Timeout(str(e))
        except openai.APIStatusError as e:
            message = _error_message(e)
            logger.error("API key test failed. Status: %s, message: %s", e.status_code, message or e)
            if e.status_code in (401, 403):
                return AuthFailure(message or f"HTTP {e.status_code}")
            return classify_error_message(message)
        except openai.APIConnectionError as e:
            return TransientFailure(f"connection error: {e}")
        except (openai.OpenAIError, httpx.HTTPError, RuntimeError) as e:
            return TransientFailure(f"{type(e).__name__}: {e}")
        logger.info("API key test successful")
        return Success("ok")

    def check_api_key(
            self,
            api_key: str,
            timeout: float | None = None,
            cancel: CancellationToken | None = None,
    ) -> CallOutcome:
        """
        Cheap authenticated GET /models before any scan traffic.

        Format problems (blank key, missing "sk-" prefix) fail without a request;
        an unusual length only warns. Returns Success, AuthFailure for a rejected key,
        or Timeout/RateLimited/TransientFailure when the provider could not be asked.
        """
        key = (api_key or "").strip()
        if not key:
            logger.error("API key is empty")
            return AuthFailure("API key is empty")
        if not key.startswith(API_KEY_PREFIX):
            logger.error("API key format appears invalid. OpenAI keys typically start with %r", API_KEY_PREFIX)
            return AuthFailure(f"API key format appears invalid; expected prefix {API_KEY_PREFIX!r}")
        if len(key) < API_KEY_MIN_LEN:
            logger.warning("API key appears too short. Please verify your key.")
        elif len(key) > API_KEY_MAX_LEN:
            logger.warning("API key appears too long. Please verify your key.")
        if cancel is not None and cancel.cancelled:
            return CANCELLED

        deadline_s = timeout if timeout is not None else self.settings.key_check_timeout_s
        http_client = self._open_http_client()
        client = self._openai(key, deadline_s, http_client)
        return self._bounded(partial(self._list_models, client), http_client, deadline_s, cancel, "API key test")
