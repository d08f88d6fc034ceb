# src/a11yscan/config.py
from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_MODEL = "gpt-4o"
DEFAULT_BASE_URL = "https://api.openai.com/v1"


@dataclass(frozen=True)
class ScanSettings:
    model: str = DEFAULT_MODEL
    base_url: str = DEFAULT_BASE_URL
    max_output_tokens: int = 2500
    temperature: float = 0.0
    call_timeout_s: float = 45.0

    # GET /models preflight before a run
    verify_api_key: bool = True
    key_check_timeout_s: float = 10.0

    # rate gate (shared by every run of one Scanner)
    max_concurrent_calls: int = 3
    min_call_interval_s: float = 1.5

    # retry backoff, multiplied by the 1-based attempt number
    rate_limit_backoff_s: float = 10.0
    transient_backoff_s: float = 5.0


def _bool_from_env(name: str, default: bool) -> bool:
    v = os.environ.get(name, "").strip()
    if not v:
        return default
    return v not in ("0", "false", "False", "no", "NO", "off", "OFF")


def _int_from_env(name: str, default: int) -> int:
    v = os.environ.get(name, "").strip()
    if not v:
        return default
    try:
        return int(v)
    except ValueError:
        return default


def _float_from_env(name: str, default: float) -> float:
    v = os.environ.get(name, "").strip()
    if not v:
        return default
    try:
        return float(v)
    except ValueError:
        return default


def settings_from_env() -> ScanSettings:
    model = os.environ.get("A11YSCAN_LLM_MODEL", DEFAULT_MODEL).strip() or DEFAULT_MODEL
    base_url = os.environ.get("A11YSCAN_LLM_BASE_URL", DEFAULT_BASE_URL).strip() or DEFAULT_BASE_URL

    return ScanSettings(
        model=model,
        base_url=base_url,
        max_output_tokens=_int_from_env("A11YSCAN_LLM_MAX_TOKENS", 2500),
        temperature=_float_from_env("A11YSCAN_LLM_TEMPERATURE", 0.0),
        call_timeout_s=_float_from_env("A11YSCAN_LLM_TIMEOUT_S", 45.0),
        verify_api_key=_bool_from_env("A11YSCAN_VERIFY_API_KEY", True),
        key_check_timeout_s=_float_from_env("A11YSCAN_KEY_CHECK_TIMEOUT_S", 10.0),
        max_concurrent_calls=max(1, _int_from_env("A11YSCAN_MAX_CONCURRENT_CALLS", 3)),
        min_call_interval_s=max(0.0, _float_from_env("A11YSCAN_MIN_CALL_INTERVAL_S", 1.5)),
        rate_limit_backoff_s=max(0.0, _float_from_env("A11YSCAN_RATE_LIMIT_BACKOFF_S", 10.0)),
        transient_backoff_s=max(0.0, _float_from_env("A11YSCAN_TRANSIENT_BACKOFF_S", 5.0)),
    )


def verbose_from_env() -> bool:
    return _bool_from_env("A11YSCAN_VERBOSE", False)
