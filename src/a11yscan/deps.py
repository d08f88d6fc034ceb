# src/a11yscan/deps.py
from __future__ import annotations

import json
from pathlib import Path
from typing import Mapping, Protocol, Sequence

from a11yscan.utils import norm_relpath


class DependencyGraph(Protocol):
    """
    Collaborator that knows which files are transitively reachable from a file.
    Paths must stay stable and readable for the duration of one scan run.
    """

    def get_dependency_paths(self, path: str) -> list[str]: ...

    def has_dependencies(self, path: str) -> bool: ...


class NullDependencyGraph:
    def get_dependency_paths(self, path: str) -> list[str]:
        return []

    def has_dependencies(self, path: str) -> bool:
        return False


class StaticDependencyGraph:
    """
    Dependency graph backed by a precomputed {path: [related paths]} mapping,
    e.g. exported from an asset database.

    Lookups normalize paths; results exclude the file itself, drop duplicates
    and keep the mapping's order.
    """

    def __init__(self, edges: Mapping[str, Sequence[str]] | None = None):
        self._edges: dict[str, list[str]] = {}
        for src, targets in (edges or {}).items():
            key = norm_relpath(src)
            if not key:
                continue
            bucket = self._edges.setdefault(key, [])
            for t in targets or []:
                if isinstance(t, str) and norm_relpath(t):
                    bucket.append(norm_relpath(t))

    @classmethod
    def from_json_file(cls, path: str | Path) -> "StaticDependencyGraph":
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise TypeError(f"Dependency file {path} must contain a JSON object of path -> [paths].")
        return cls(data)

    def get_dependency_paths(self, path: str) -> list[str]:
        key = norm_relpath(path)
        out: list[str] = []
        seen = {key}
        for p in self._edges.get(key, []):
            if p in seen:
                continue
            seen.add(p)
            out.append(p)
        return out

    def has_dependencies(self, path: str) -> bool:
        return bool(self.get_dependency_paths(path))
