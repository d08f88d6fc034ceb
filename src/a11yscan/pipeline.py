# src/a11yscan/pipeline.py
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import PurePosixPath
from typing import Callable, Mapping

from a11yscan.cancel import CancellationToken
from a11yscan.deps import DependencyGraph, NullDependencyGraph
from a11yscan.findings import Finding, parse_response
from a11yscan.job import ScanFile, ScanTask
from a11yscan.knowledge import GUIDELINE_CATALOG, GuidelineEntry, select_rules
from a11yscan.outcomes import AuthFailure, CallOutcome, Cancelled, Exhausted, Success, describe
from a11yscan.prompt import build_prompt
from a11yscan.retry import RetryController

logger = logging.getLogger(__name__)


class AbortReason(str, Enum):
    CANCELLED = "cancelled"
    AUTH_FAILURE = "auth_failure"
    UNEXPECTED = "unexpected"


class FileStatus(str, Enum):
    OK = "ok"
    EXHAUSTED = "exhausted"
    UNREADABLE = "unreadable"
    AUTH_FAILED = "auth_failed"
    CANCELLED = "cancelled"
    FAILED = "failed"


# statuses whose file counts as scanned (exhausted = scanned with zero findings)
SCANNED_STATUSES = frozenset({FileStatus.OK, FileStatus.EXHAUSTED})


@dataclass(frozen=True)
class FileResult:
    path: str
    status: FileStatus
    findings: tuple[Finding, ...] = ()
    detail: str = ""

    @property
    def scanned(self) -> bool:
        return self.status in SCANNED_STATUSES


@dataclass
class ScanContext:
    """Everything a file pipeline needs, shared by all pipelines of one run."""

    retry: RetryController
    api_key: str
    cancel: CancellationToken
    max_attempts: int = 3
    dependency_graph: DependencyGraph = field(default_factory=NullDependencyGraph)
    catalog: Mapping[str, GuidelineEntry] = field(default_factory=lambda: GUIDELINE_CATALOG)
    # called as key_check(api_key, cancel=token) before the first batch; None skips it
    key_check: Callable[..., CallOutcome] | None = None

    _abort_reason: AbortReason | None = field(default=None, init=False)
    _abort_detail: str = field(default="", init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    @property
    def abort_reason(self) -> AbortReason | None:
        with self._lock:
            return self._abort_reason

    @property
    def abort_detail(self) -> str:
        with self._lock:
            return self._abort_detail

    def abort(self, reason: AbortReason, detail: str = "") -> None:
        """Stop the run: first reason wins, then the run token is cancelled."""
        with self._lock:
            if self._abort_reason is None:
                self._abort_reason = reason
                self._abort_detail = detail
        self.cancel.cancel()


def build_task(scan_file: ScanFile, content: str, graph: DependencyGraph) -> ScanTask:
    related = tuple(graph.get_dependency_paths(scan_file.path))
    return ScanTask(file_path=scan_file.path, content=content, related_paths=related)


def scan_file(scan_file: ScanFile, ctx: ScanContext) -> FileResult:
    """
    One file through the whole pipeline:
    load -> select rules -> build prompt -> rate-gated retried call -> extract -> normalize.

    Per-file failures (unreadable content, exhausted retries, malformed answers) are
    contained in the returned FileResult. An AuthFailure aborts the whole run.
    """
    path = scan_file.path
    if ctx.cancel.cancelled:
        return FileResult(path, FileStatus.CANCELLED)

    try:
        content = scan_file.load()
    except (OSError, UnicodeDecodeError) as e:
        logger.error("Could not read %s: %s", path, e)
        return FileResult(path, FileStatus.UNREADABLE, detail=str(e))

    task = build_task(scan_file, content, ctx.dependency_graph)
    rules = select_rules(task.content, PurePosixPath(path).name)
    payload = build_prompt(task, rules, ctx.catalog)
    if task.related_paths:
        logger.debug("Using %d related files as context for %s", len(task.related_paths), path)

    result = ctx.retry.call(task, payload, ctx.api_key, ctx.cancel, max_attempts=ctx.max_attempts)
    outcome = result.outcome

    if isinstance(outcome, Success):
        findings = parse_response(outcome.text, path)
        if findings:
            logger.info("Found %d issues in %s", len(findings), path)
        return FileResult(path, FileStatus.OK, tuple(findings))
    if isinstance(outcome, AuthFailure):
        ctx.abort(AbortReason.AUTH_FAILURE, outcome.detail)
        return FileResult(path, FileStatus.AUTH_FAILED, detail=outcome.detail)
    if isinstance(outcome, Cancelled):
        return FileResult(path, FileStatus.CANCELLED)
    if isinstance(outcome, Exhausted):
        return FileResult(path, FileStatus.EXHAUSTED, detail=describe(outcome))

    raise RuntimeError(f"Unhandled call outcome for {path}: {outcome!r}")
