# src/a11yscan/graph.py
from __future__ import annotations

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, TypedDict

from a11yscan.cancel import WaitResult
from a11yscan.findings import Finding, Severity
from a11yscan.job import ScanFile, ScanOptions
from a11yscan.outcomes import Cancelled, Success, describe
from a11yscan.pipeline import AbortReason, FileResult, FileStatus, ScanContext, scan_file
from a11yscan.utils import utc_ts

try:
    from langgraph.graph import END, StateGraph
except Exception as e:  # pragma: no cover
    raise RuntimeError("LangGraph is required. Install 'langgraph'.") from e

logger = logging.getLogger(__name__)


# -----------------------------
# Stages (canonical)
# -----------------------------
STAGE_INIT = "init"
STAGE_PARSE_JOB = "parse_job"
STAGE_PLAN_BATCHES = "plan_batches"
STAGE_CHECK_API_KEY = "check_api_key"
STAGE_SCAN_BATCH = "scan_batch"
STAGE_PAUSE = "pause"
STAGE_EMIT_RESULT = "emit_result"
STAGE_DONE = "done"
STAGE_ABORTED = "aborted"

ProgressCallback = Callable[[int, int, int, int], None]


class ScanStageError(RuntimeError):
    def __init__(self, stage: str, inner: Exception):
        super().__init__(str(inner))
        self.stage = stage
        self.inner = inner


@dataclass
class ScanReport:
    run_id: str
    started_at: str
    finished_at: str
    files_total: int
    scanned_files: list[str] = field(default_factory=list)
    findings: list[Finding] = field(default_factory=list)
    file_errors: list[dict[str, str]] = field(default_factory=list)
    abort_reason: AbortReason | None = None
    error_message: str = ""

    @property
    def completed(self) -> bool:
        return self.abort_reason is None

    @property
    def severity_counts(self) -> dict[str, int]:
        counts = {s.value: 0 for s in Severity}
        for f in self.findings:
            counts[f.severity.value] += 1
        return counts

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.completed,
            "stage": STAGE_DONE if self.completed else STAGE_ABORTED,
            "run_id": self.run_id,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "abort_reason": self.abort_reason.value if self.abort_reason else None,
            "error_message": self.error_message or None,
            "files_total": self.files_total,
            "files_scanned": len(self.scanned_files),
            "findings_total": len(self.findings),
            "severity_counts": self.severity_counts,
            "scanned_files": list(self.scanned_files),
            "file_errors": list(self.file_errors),
            "findings": [f.model_dump(mode="json") for f in self.findings],
        }


class ScanState(TypedDict, total=False):
    run_id: str
    started_at: str
    stage: str

    files: list[ScanFile]
    options: ScanOptions
    context: ScanContext
    on_progress: Optional[ProgressCallback]

    # batch loop
    batches: list[list[ScanFile]]
    batch_index: int
    files_done: int

    # aggregation, in (batch index, submission index) order
    file_results: list[FileResult]
    scanned_files: list[str]
    findings: list[Finding]

    report: ScanReport


def partition(files: list[ScanFile], batch_size: int) -> list[list[ScanFile]]:
    if batch_size < 1:
        raise ValueError("batch_size must be >= 1")
    return [files[i : i + batch_size] for i in range(0, len(files), batch_size)]


def _resolve_abort(ctx: ScanContext) -> AbortReason | None:
    reason = ctx.abort_reason
    if reason is None and ctx.cancel.cancelled:
        ctx.abort(AbortReason.CANCELLED)
        reason = ctx.abort_reason
    return reason


def _run_batch(batch: list[ScanFile], ctx: ScanContext) -> list[FileResult]:
    """All pipelines of the batch run concurrently; results come back in submission order."""
    results: list[FileResult] = []
    with ThreadPoolExecutor(max_workers=len(batch), thread_name_prefix="a11yscan-file") as ex:
        futures = [ex.submit(scan_file, f, ctx) for f in batch]
        for f, fut in zip(batch, futures):
            try:
                results.append(fut.result())
            except Exception as e:
                logger.exception("Unexpected error while scanning %s", f.path)
                ctx.abort(AbortReason.UNEXPECTED, f"{f.path}: {type(e).__name__}: {e}")
                results.append(FileResult(f.path, FileStatus.FAILED, detail=str(e)))
    return results


# -----------------------------
# Nodes
# -----------------------------


def node_plan_batches(state: ScanState) -> ScanState:
    stage = STAGE_PLAN_BATCHES
    try:
        files = state["files"]
        options = state["options"]
        batches = partition(files, options.batch_size)

        logger.info(
            "Starting scan %s of %d files in %d batches of up to %d",
            state["run_id"],
            len(files),
            len(batches),
            options.batch_size,
        )

        state["stage"] = stage
        state["batches"] = batches
        state["batch_index"] = 0
        state["files_done"] = 0
        state["file_results"] = []
        state["scanned_files"] = []
        state["findings"] = []
        return state
    except Exception as e:
        raise ScanStageError(stage, e) from e


def node_check_api_key(state: ScanState) -> ScanState:
    stage = STAGE_CHECK_API_KEY
    try:
        ctx = state["context"]
        state["stage"] = stage
        if ctx.key_check is None:
            return state

        outcome = ctx.key_check(ctx.api_key, cancel=ctx.cancel)
        if isinstance(outcome, Success):
            logger.info("API key accepted; scanning")
        elif not isinstance(outcome, Cancelled):
            logger.error("API key check failed: %s", describe(outcome))
            ctx.abort(AbortReason.AUTH_FAILURE, describe(outcome))
        return state
    except Exception as e:
        raise ScanStageError(stage, e) from e


def node_scan_batch(state: ScanState) -> ScanState:
    stage = STAGE_SCAN_BATCH
    try:
        ctx = state["context"]
        batches = state["batches"]
        idx = state["batch_index"]
        state["stage"] = stage

        if ctx.cancel.cancelled:
            logger.info("Scan cancelled before batch %d/%d", idx + 1, len(batches))
            return state

        batch = batches[idx]
        logger.info(
            "Scanning batch %d/%d (%d files)",
            idx + 1,
            len(batches),
            len(batch),
        )

        for r in _run_batch(batch, ctx):
            state["file_results"].append(r)
            if r.scanned:
                state["scanned_files"].append(r.path)
                state["findings"].extend(r.findings)

        state["batch_index"] = idx + 1
        state["files_done"] += len(batch)

        cb = state.get("on_progress")
        if cb is not None:
            cb(idx + 1, len(batches), state["files_done"], len(state["files"]))
        return state
    except Exception as e:
        raise ScanStageError(stage, e) from e


def node_pause(state: ScanState) -> ScanState:
    stage = STAGE_PAUSE
    try:
        ctx = state["context"]
        delay = state["options"].inter_batch_delay_s
        state["stage"] = stage

        if ctx.cancel.cancelled:
            return state
        if ctx.cancel.sleep(delay) is WaitResult.CANCELLED:
            logger.info("Scan cancelled during inter-batch pause")
        return state
    except Exception as e:
        raise ScanStageError(stage, e) from e


def node_emit_result(state: ScanState) -> ScanState:
    stage = STAGE_EMIT_RESULT
    try:
        ctx = state["context"]
        reason = _resolve_abort(ctx)

        file_errors = [
            {"path": r.path, "status": r.status.value, "detail": r.detail}
            for r in state["file_results"]
            if r.status not in (FileStatus.OK, FileStatus.CANCELLED)
        ]

        report = ScanReport(
            run_id=state["run_id"],
            started_at=state["started_at"],
            finished_at=utc_ts(),
            files_total=len(state["files"]),
            scanned_files=list(state["scanned_files"]),
            findings=list(state["findings"]),
            file_errors=file_errors,
            abort_reason=reason,
            error_message=ctx.abort_detail if reason is not None else "",
        )

        if reason is None:
            logger.info(
                "Scan completed: %d files scanned, %d issues found",
                len(report.scanned_files),
                len(report.findings),
            )
        else:
            logger.warning(
                "Scan aborted (%s) after %d files scanned, %d issues kept",
                reason.value,
                len(report.scanned_files),
                len(report.findings),
            )

        state["stage"] = stage
        state["report"] = report
        return state
    except Exception as e:
        raise ScanStageError(stage, e) from e


# -----------------------------
# Routing
# -----------------------------


def route_after_plan(state: ScanState) -> str:
    return "check_api_key" if state["batches"] else "emit_result"


def route_after_key_check(state: ScanState) -> str:
    return "emit_result" if state["context"].cancel.cancelled else "scan_batch"


def route_after_batch(state: ScanState) -> str:
    if state["context"].cancel.cancelled:
        return "emit_result"
    if state["batch_index"] >= len(state["batches"]):
        return "emit_result"
    return "pause"


def route_after_pause(state: ScanState) -> str:
    return "emit_result" if state["context"].cancel.cancelled else "scan_batch"


def build_scan_graph():
    g = StateGraph(ScanState)

    g.add_node("plan_batches", node_plan_batches)
    g.add_node("check_api_key", node_check_api_key)
    g.add_node("scan_batch", node_scan_batch)
    g.add_node("pause", node_pause)
    g.add_node("emit_result", node_emit_result)

    g.set_entry_point("plan_batches")
    g.add_conditional_edges(
        "plan_batches",
        route_after_plan,
        {"check_api_key": "check_api_key", "emit_result": "emit_result"},
    )
    g.add_conditional_edges(
        "check_api_key",
        route_after_key_check,
        {"scan_batch": "scan_batch", "emit_result": "emit_result"},
    )
    g.add_conditional_edges(
        "scan_batch",
        route_after_batch,
        {"pause": "pause", "emit_result": "emit_result"},
    )
    g.add_conditional_edges(
        "pause",
        route_after_pause,
        {"scan_batch": "scan_batch", "emit_result": "emit_result"},
    )
    g.add_edge("emit_result", END)

    return g.compile()


def run_scan_graph(
        *,
        files: list[ScanFile],
        options: ScanOptions,
        context: ScanContext,
        run_id: str,
        started_at: str | None = None,
        on_progress: ProgressCallback | None = None,
) -> ScanReport:
    app = build_scan_graph()
    state: ScanState = {
        "run_id": run_id,
        "started_at": started_at or utc_ts(),
        "stage": STAGE_INIT,
        "files": list(files),
        "options": options,
        "context": context,
        "on_progress": on_progress,
    }
    # each batch visits scan_batch and pause once
    n_batches = math.ceil(len(files) / options.batch_size) if files else 0
    final_state = app.invoke(state, config={"recursion_limit": 2 * n_batches + 10})
    return final_state["report"]
