# src/a11yscan/main.py
from __future__ import annotations

import logging
import threading
from functools import partial
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple, Union

from pydantic import ValidationError

from a11yscan.cancel import CancellationToken
from a11yscan.client import ChatCompletionsClient
from a11yscan.config import ScanSettings, settings_from_env
from a11yscan.deps import DependencyGraph, NullDependencyGraph, StaticDependencyGraph
from a11yscan.graph import STAGE_PARSE_JOB, ProgressCallback, ScanReport, ScanStageError, run_scan_graph
from a11yscan.job import ScanFile, ScanJob, ScanOptions
from a11yscan.knowledge import GUIDELINE_CATALOG, GuidelineEntry
from a11yscan.pipeline import ScanContext
from a11yscan.rate_gate import RateGate
from a11yscan.retry import BackoffPolicy, RetryController, SendFn
from a11yscan.utils import norm_relpath, read_text_file, stable_json_fingerprint_sha256

logger = logging.getLogger(__name__)

FileLike = Union[ScanFile, str, Tuple[str, Any]]


class ScanInProgressError(RuntimeError):
    pass


def _inline(content: str) -> str:
    return content


def _as_scan_file(item: FileLike) -> ScanFile:
    """
    Accepts a ScanFile, a path (read from disk when the pipeline gets to it) or a
    (path, loader-or-content) pair.
    """
    if isinstance(item, ScanFile):
        return item
    if isinstance(item, str):
        return ScanFile(path=norm_relpath(item), load=partial(read_text_file, item))
    path, source = item
    if callable(source):
        return ScanFile(path=norm_relpath(path), load=source)
    return ScanFile(path=norm_relpath(path), load=partial(_inline, str(source)))


class Scanner:
    """
    Long-lived entry point: owns the API client and the RateGate shared by every run.

    At most one run is active at a time; `cancel()` stops the active run at its next
    suspension point and the partial report is still returned by `start_scan`.
    """

    def __init__(
            self,
            settings: ScanSettings | None = None,
            *,
            api_client: Any = None,
            rate_gate: RateGate | None = None,
            dependency_graph: DependencyGraph | None = None,
            catalog: Mapping[str, GuidelineEntry] | None = None,
    ):
        self.settings = settings or settings_from_env()
        self._owns_api_client = api_client is None
        self.api_client = api_client or ChatCompletionsClient(self.settings)
        self.rate_gate = rate_gate or RateGate(
            self.settings.max_concurrent_calls,
            self.settings.min_call_interval_s,
        )
        self.dependency_graph = dependency_graph or NullDependencyGraph()
        self.catalog = catalog or GUIDELINE_CATALOG

        self._lock = threading.Lock()
        self._active: CancellationToken | None = None

    @property
    def running(self) -> bool:
        with self._lock:
            return self._active is not None

    def cancel(self) -> None:
        with self._lock:
            token = self._active
        if token is not None:
            logger.info("Cancelling active scan")
            token.cancel()

    def close(self) -> None:
        if self._owns_api_client:
            self.api_client.close()

    def _retry_controller(self, options: ScanOptions) -> RetryController:
        send: SendFn = self.api_client.send
        return RetryController(
            send,
            self.rate_gate,
            max_attempts=options.max_retries,
            backoff=BackoffPolicy(self.settings.rate_limit_backoff_s, self.settings.transient_backoff_s),
            call_timeout_s=self.settings.call_timeout_s,
        )

    def start_scan(
            self,
            files: Iterable[FileLike],
            api_key: str,
            options: ScanOptions | None = None,
            *,
            cancel: CancellationToken | None = None,
            on_progress: ProgressCallback | None = None,
            run_id: str | None = None,
            verify_key: bool | None = None,
    ) -> ScanReport:
        """
        Scan `files` and return the report, partial when the run was cancelled or aborted.
        With `verify_key` (default: settings.verify_api_key) the key is tested against
        the provider before any file is read.
        """
        options = options or ScanOptions()
        if verify_key is None:
            verify_key = self.settings.verify_api_key
        scan_files = [_as_scan_file(f) for f in files]

        with self._lock:
            if self._active is not None:
                raise ScanInProgressError("A scan is already running on this scanner.")
            # run-level aborts (auth failure) cancel this child only, never the caller's token
            run_token = cancel.child() if cancel is not None else CancellationToken()
            self._active = run_token

        try:
            ctx = ScanContext(
                retry=self._retry_controller(options),
                api_key=api_key,
                cancel=run_token,
                max_attempts=options.max_retries,
                dependency_graph=self.dependency_graph,
                catalog=self.catalog,
                key_check=self.api_client.check_api_key if verify_key else None,
            )
            rid = run_id or stable_json_fingerprint_sha256([f.path for f in scan_files])[:12]
            return run_scan_graph(
                files=scan_files,
                options=options,
                context=ctx,
                run_id=rid,
                on_progress=on_progress,
            )
        finally:
            run_token.detach()
            with self._lock:
                self._active = None


def _job_files(job: ScanJob) -> list[ScanFile]:
    out: list[ScanFile] = []
    for entry in job.files:
        if entry.content is not None:
            out.append(_as_scan_file((entry.path, entry.content)))
        else:
            out.append(_as_scan_file(entry.path))
    return out


def run(
        job_payload: Dict[str, Any],
        *,
        api_key: str,
        payload_src: str = "unknown",
        settings: Optional[ScanSettings] = None,
        dependency_graph: Optional[DependencyGraph] = None,
        cancel: Optional[CancellationToken] = None,
        on_progress: Optional[ProgressCallback] = None,
        api_client: Any = None,
        verify_key: Optional[bool] = None,
) -> Dict[str, Any]:
    """
    Core entrypoint used by a11yscan.cli.

    Validates the job payload, then hands the files to a Scanner whose graph owns the
    batch loop (plan -> check key -> scan batch -> pause -> ... -> emit result).
    Returns the report as a JSON-ready dict; ScanStageError bubbles up for the CLI.
    """
    try:
        job = ScanJob.model_validate(job_payload).finalize()
    except (ValidationError, TypeError, ValueError) as e:
        raise ScanStageError(STAGE_PARSE_JOB, e) from e

    logger.info("Loaded scan job from %s: %d files", payload_src, len(job.files))

    if job.dependencies:
        dependency_graph = StaticDependencyGraph(job.dependencies)

    scanner = Scanner(settings, api_client=api_client, dependency_graph=dependency_graph)
    try:
        report = scanner.start_scan(
            _job_files(job),
            api_key,
            job.options,
            cancel=cancel,
            on_progress=on_progress,
            run_id=job.run_id,
            verify_key=verify_key,
        )
    finally:
        scanner.close()
    out = report.to_dict()
    out["payload_src"] = payload_src
    return out
