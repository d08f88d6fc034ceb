# src/a11yscan/cli.py
from __future__ import annotations

import argparse
import json
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Any

from . import __version__
from . import main as main_module
from .cancel import CancellationToken
from .config import verbose_from_env
from .deps import StaticDependencyGraph
from .graph import STAGE_PARSE_JOB, ScanStageError

JOB_ENV = "A11YSCAN_JOB_JSON"
API_KEY_ENV = "OPENAI_API_KEY"

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CANCELLED = 130


def _parse_dotenv_line(line: str) -> tuple[str, str] | None:
    """
    Minimal .env parser.
    Supports KEY=VALUE, `export KEY=VALUE`, comments outside quotes and '...' / "..." values.
    No variable expansion.
    """
    s = line.strip()
    if not s or s.startswith("#"):
        return None

    if s.startswith("export "):
        s = s[len("export ") :].lstrip()

    if "=" not in s:
        return None

    key, rest = s.split("=", 1)
    key = key.strip()
    if not key:
        return None

    val = rest.strip()
    if not val:
        return key, ""

    if val[0] in ("'", '"'):
        quote = val[0]
        out = []
        escaped = False
        for ch in val[1:]:
            if escaped:
                out.append(ch)
                escaped = False
            elif quote == '"' and ch == "\\":
                escaped = True
            elif ch == quote:
                break
            else:
                out.append(ch)
        return key, "".join(out)

    return key, val.split("#", 1)[0].strip()


def _load_dotenv_file(path: str, *, override: bool = False) -> bool:
    """Returns True if the file existed and was read."""
    p = Path(path)
    if not p.is_file():
        return False

    for raw_line in p.read_text(encoding="utf-8").splitlines():
        parsed = _parse_dotenv_line(raw_line)
        if not parsed:
            continue
        k, v = parsed
        if not override and k in os.environ:
            continue
        os.environ[k] = v
    return True


def _configure_logging(verbose: bool) -> None:
    # stdout carries the JSON result only
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _read_job_payload(args: argparse.Namespace) -> tuple[dict[str, Any], str]:
    """
    Paths on the command line win; otherwise the job comes from A11YSCAN_JOB_JSON.
    CLI option flags override the payload's options either way.
    """
    if args.paths:
        payload: dict[str, Any] = {"files": list(args.paths)}
        src = "argv"
    else:
        raw = os.environ.get(JOB_ENV)
        if not raw or not raw.strip():
            raise RuntimeError(f"Nothing to scan: pass file paths or set {JOB_ENV} to a JSON object string.")
        payload = json.loads(raw)
        if not isinstance(payload, dict):
            raise TypeError(f"{JOB_ENV} must decode to a JSON object (dict).")
        src = f"env:{JOB_ENV}"

    overrides = {
        "batch_size": args.batch_size,
        "inter_batch_delay_s": args.inter_batch_delay,
        "max_retries": args.max_retries,
    }
    options = dict(payload.get("options") or {})
    options.update({k: v for k, v in overrides.items() if v is not None})
    payload["options"] = options
    return payload, src


def _print_success(obj: dict[str, Any]) -> None:
    print(json.dumps(obj, separators=(",", ":")), file=sys.stdout)


def _print_failure(stage: str, err: Exception) -> None:
    out = {
        "ok": False,
        "stage": stage,
        "error_code": f"A11YSCAN_FAILED_{stage.upper()}",
        "error_message": str(err),
    }
    print(json.dumps(out, separators=(",", ":")), file=sys.stdout)


def _exit_code(result: dict[str, Any]) -> int:
    reason = result.get("abort_reason")
    if reason is None:
        return EXIT_OK
    if reason == "cancelled":
        return EXIT_CANCELLED
    return EXIT_FAILED


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="a11yscan",
        description="LLM-assisted accessibility scan of source files",
    )
    parser.add_argument(
        "paths",
        nargs="*",
        metavar="PATH",
        help=f"Files to scan. Without paths the job is read from {JOB_ENV}.",
    )
    parser.add_argument(
        "--deps-json",
        metavar="FILE",
        help="Optional: JSON object mapping each file to its related files.",
    )
    parser.add_argument("--batch-size", type=int, metavar="N", help="Files scanned concurrently per batch.")
    parser.add_argument(
        "--inter-batch-delay",
        type=float,
        metavar="SECONDS",
        help="Pause between batches.",
    )
    parser.add_argument("--max-retries", type=int, metavar="N", help="Call attempts per file.")
    parser.add_argument(
        "--dotenv",
        nargs="?",
        const=".env",
        default=None,
        metavar="PATH",
        help="Optional: load env vars from a local .env file (default: ./.env).",
    )
    parser.add_argument(
        "--dotenv-override",
        action="store_true",
        help="Optional: allow .env values to override already-set environment variables.",
    )
    parser.add_argument(
        "--skip-key-check",
        action="store_true",
        help="Do not test the API key against the provider before scanning.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging on stderr.")
    parser.add_argument(
        "--version",
        action="version",
        version=f"a11yscan {__version__}",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    if args.dotenv:
        _load_dotenv_file(str(args.dotenv), override=bool(args.dotenv_override))

    _configure_logging(bool(args.verbose) or verbose_from_env())

    token = CancellationToken()
    previous_handler = signal.signal(signal.SIGINT, lambda signum, frame: token.cancel())

    try:
        payload, payload_src = _read_job_payload(args)

        api_key = os.environ.get(API_KEY_ENV, "").strip()
        if not api_key:
            raise RuntimeError(f"Missing API key: set {API_KEY_ENV}.")

        dependency_graph = StaticDependencyGraph.from_json_file(args.deps_json) if args.deps_json else None

        result = main_module.run(
            job_payload=payload,
            api_key=api_key,
            payload_src=payload_src,
            dependency_graph=dependency_graph,
            cancel=token,
            verify_key=False if args.skip_key_check else None,
        )
        _print_success(result)
        return _exit_code(result)

    except Exception as e:  # noqa: BLE001 - top-level CLI error handler
        if isinstance(e, ScanStageError):
            _print_failure(e.stage, e)
            return EXIT_FAILED

        # Payload / argument issues are parse_job
        if isinstance(e, (json.JSONDecodeError, OSError, RuntimeError, TypeError)):
            _print_failure(STAGE_PARSE_JOB, e)
            return EXIT_FAILED

        _print_failure("unknown", e)
        return EXIT_FAILED

    finally:
        signal.signal(signal.SIGINT, previous_handler)


if __name__ == "__main__":
    raise SystemExit(main())
