# src/a11yscan/utils.py
from __future__ import annotations

import hashlib
import json
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


def utc_ts() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%SZ")


def sha256_text(s: str) -> str:
    h = hashlib.sha256()
    h.update(s.encode("utf-8"))
    return h.hexdigest()


# -----------------------------
# Stable fingerprint helpers
# -----------------------------
# Used to derive deterministic run ids from the job payload.
# They MUST be stable across processes/reruns for the same logical input.

VOLATILE_KEYS_DEFAULT: set[str] = {
    "run_id",
    "started_at",
    "finished_at",
}


def _strip_volatile(obj: Any, volatile_keys: set[str]) -> Any:
    if isinstance(obj, dict):
        out: dict[str, Any] = {}
        for k, v in obj.items():
            if k in volatile_keys:
                continue
            out[k] = _strip_volatile(v, volatile_keys)
        return out
    if isinstance(obj, list):
        return [_strip_volatile(x, volatile_keys) for x in obj]
    return obj


def stable_json_dumps(obj: Any) -> str:
    """
    Deterministic JSON serialization for JSON-like objects.
    - sort keys
    - stable separators
    - no ASCII-forcing (keep unicode stable)
    """
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def stable_json_fingerprint_sha256(obj: Any, volatile_keys: set[str] | None = None) -> str:
    vk = set(VOLATILE_KEYS_DEFAULT) if volatile_keys is None else set(volatile_keys)
    return sha256_text(stable_json_dumps(_strip_volatile(obj, vk)))


# -----------------------------
# Paths and file content
# -----------------------------

_PATH_SEP_RE = re.compile(r"[\\]+")


def norm_relpath(path: str) -> str:
    """
    Deterministic path normalization for report paths and dependency lookups.
    - converts backslashes to forward slashes
    - strips leading "./"
    - collapses duplicate slashes
    - does NOT resolve ".."
    """
    p = (path or "").strip()
    p = _PATH_SEP_RE.sub("/", p)
    while p.startswith("./"):
        p = p[2:]
    p = re.sub(r"/{2,}", "/", p)
    return p


def file_extension(path: str) -> str:
    # ".CS" and ".cs" group together; extensionless paths map to "".
    return Path(norm_relpath(path)).suffix.lower()


def read_text_file(path: str | Path) -> str:
    """
    Read the whole file as UTF-8 with replacement characters.
    Content is never truncated: the model has to see every line to report line numbers.
    """
    return Path(path).read_text(encoding="utf-8", errors="replace")
