# src/a11yscan/job.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

from pydantic import BaseModel, Field, field_validator

from a11yscan.utils import norm_relpath, stable_json_fingerprint_sha256


@dataclass(frozen=True)
class ScanFile:
    """A file handed to the scheduler: its path plus a loader for its content."""

    path: str
    load: Callable[[], str]


@dataclass(frozen=True)
class ScanTask:
    """One file's unit of work, consumed exactly once by the pipeline."""

    file_path: str
    content: str
    related_paths: tuple[str, ...] = ()


class ScanOptions(BaseModel):
    batch_size: int = Field(default=2, ge=1)
    inter_batch_delay_s: float = Field(default=2.0, ge=0)
    max_retries: int = Field(default=3, ge=1)


class FileEntry(BaseModel):
    path: str
    # Inline content for payload-driven runs; when absent the file is read from disk.
    content: str | None = None

    @field_validator("path")
    @classmethod
    def _path_not_blank(cls, v: str) -> str:
        v = norm_relpath(v)
        if not v:
            raise ValueError("file path must not be empty")
        return v


class ScanJob(BaseModel):
    run_id: str | None = None
    files: list[FileEntry]
    options: ScanOptions = Field(default_factory=ScanOptions)
    # {path: [related paths]} handed to StaticDependencyGraph
    dependencies: dict[str, list[str]] = Field(default_factory=dict)

    @field_validator("files", mode="before")
    @classmethod
    def _coerce_paths(cls, v: Any) -> Any:
        if isinstance(v, list):
            return [{"path": x} if isinstance(x, str) else x for x in v]
        return v

    @field_validator("files")
    @classmethod
    def _files_not_empty(cls, v: list[FileEntry]) -> list[FileEntry]:
        if not v:
            raise ValueError("scan job has no files")
        return v

    def finalize(self) -> "ScanJob":
        """
        Contract:
        - If run_id is not provided, derive a deterministic id from the job's canonical content.
        """
        if not self.run_id:
            fp = stable_json_fingerprint_sha256(self.model_dump(mode="python", exclude={"run_id"}))
            self.run_id = fp[:12]
        return self
