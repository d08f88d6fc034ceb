# src/a11yscan/prompt.py
from __future__ import annotations

from dataclasses import dataclass
from itertools import groupby
from pathlib import PurePosixPath
from typing import Iterable, Mapping

from a11yscan.job import ScanTask
from a11yscan.knowledge import GUIDELINE_CATALOG, GuidelineEntry, ordered_rules, render_knowledge
from a11yscan.utils import file_extension, norm_relpath

# (defect category, rule id) in the order the model is asked to check them.
CHECKLIST: tuple[tuple[str, str], ...] = (
    ("Low Contrast Text or Objects", "WCAG 1.4.3"),
    ("No Subtitles or Captions for Audio", "WCAG 1.2.2"),
    ("No Audio Description / Visual-only Info", "WCAG 1.2.5"),
    ("Time-Limited Interactions", "WCAG 2.2.1"),
    ("Fast / Jerky Object Motion", "WCAG 2.3.3"),
    ("Camera Movement / Disorientation", "WCAG 2.3.3"),
    ("Excessive Motion Blur / Flashing Effects", "WCAG 2.3.1"),
    ("No Focus Indicators / Keyboard Trap", "WCAG 2.4.7"),
    ("Poor UI Structure or Navigation", "WCAG 2.4.6"),
    ("Missing Alternative Text for Objects", "WCAG 1.1.1"),
    ("No Feedback for Interactions", "WCAG 3.2.2"),
    ("Lack of Customization (text size, contrast)", "WCAG 1.4.4"),
    ("Lack of Input Alternatives (e.g., no mouse)", "WCAG 2.1.1"),
    ("Keyboard Trap (cannot escape with keyboard)", "WCAG 2.1.2"),
    ("Complex Pointer Gestures without alternatives", "WCAG 2.5.1"),
)

FILE_TYPE_DESCRIPTIONS: dict[str, str] = {
    ".cs": "Scripts",
    ".unity": "Scenes",
    ".prefab": "Prefabs",
    ".shader": "Shaders",
    ".anim": "Animations",
    ".mat": "Materials",
    ".asset": "Assets",
    ".png": "Textures",
    ".jpg": "Textures",
    ".fbx": "3D Models",
    ".wav": "Audio Files",
    ".mp3": "Audio Files",
}

MAX_NAMES_PER_TYPE = 5

DEPENDENCY_CHECKS: tuple[str, ...] = (
    "Check for accessibility issues that propagate between files",
    "Verify consistent UI patterns across dependent components",
    "Ensure shared color schemes meet contrast requirements",
    "Confirm navigation works across file boundaries",
    "Validate input alternatives are available in all dependent files",
)

CROSS_FILE_ISSUES: tuple[str, ...] = (
    "Inconsistent focus management between components",
    "Color scheme inconsistencies causing contrast violations",
    "Missing audio feedback in some dependent files",
    "Keyboard traps when navigating between components",
    "Incomplete alternative text propagation",
)


@dataclass(frozen=True)
class PromptPayload:
    file_path: str
    rule_ids: tuple[str, ...]
    text: str


def file_type_description(extension: str) -> str:
    return FILE_TYPE_DESCRIPTIONS.get(extension.lower(), "Other Files")


def _instruction_header() -> str:
    checks = "\n".join(f"{i}. {name} - {rule}" for i, (name, rule) in enumerate(CHECKLIST, start=1))
    return (
            "You are an accessibility auditor for game and application source assets.\n"
            "Refer to WCAG 2.2 standards: https://www.w3.org/WAI/WCAG22/quickref/\n\n"
            "Check ONLY for these specific accessibility issues and their WCAG rules:\n\n"
            + checks
            + "\n\n"
            "Return ONLY a JSON array. Each element must have:\n"
            "- line (integer, line number where the issue occurs or 0 if unknown)\n"
            "- severity (Critical | Warning | Info)\n"
            "- description (short explanation of the detected issue)\n"
            "- recommendation (very short fix suggestion, max 15 words)\n"
            "- wcag_rule (WCAG code as listed above)\n\n"
            "CRITICAL severity for: Flashing effects, keyboard traps, no focus indicators, contrast below 3:1\n"
            "WARNING severity for: Missing captions, no audio description, time limits, complex gestures\n"
            "INFO severity for: Minor UI issues, missing feedback, customization options\n\n"
            "If no issues found, return [].\n"
    )


def build_dependency_context(related_paths: Iterable[str]) -> str:
    """
    Describe related files grouped by type. Empty string when there are none.
    Groups are ordered by extension; at most MAX_NAMES_PER_TYPE names are listed per group.
    """
    paths = [norm_relpath(p) for p in related_paths if p]
    if not paths:
        return ""

    lines = [
        "DEPENDENCY CONTEXT:",
        "This file is part of a larger system with these related files:",
    ]

    # stable sort keeps the collaborator's order inside each group
    by_ext = sorted(paths, key=file_extension)
    for ext, group_iter in groupby(by_ext, key=file_extension):
        group = list(group_iter)
        lines.append("")
        lines.append(f"{file_type_description(ext)}:")
        for p in group[:MAX_NAMES_PER_TYPE]:
            lines.append(f"   - {PurePosixPath(p).name}")
        if len(group) > MAX_NAMES_PER_TYPE:
            lines.append(f"   - ... and {len(group) - MAX_NAMES_PER_TYPE} more")

    lines.append("")
    lines.append("DEPENDENCY-SPECIFIC CHECKS:")
    lines += [f"{i}. {c}" for i, c in enumerate(DEPENDENCY_CHECKS, start=1)]
    lines.append("")
    lines.append("COMMON CROSS-FILE ACCESSIBILITY ISSUES:")
    lines += [f"- {c}" for c in CROSS_FILE_ISSUES]

    return "\n".join(lines) + "\n"


def build_prompt(
        task: ScanTask,
        selected_rules: Iterable[str],
        catalog: Mapping[str, GuidelineEntry] = GUIDELINE_CATALOG,
) -> PromptPayload:
    """
    Assemble the single user message sent for one file:
    instruction header, guideline text, dependency context (if any), file content last.

    File content is included verbatim; it is never truncated.
    """
    rules = ordered_rules(selected_rules, catalog)
    has_deps = bool(task.related_paths)

    parts = [
        _instruction_header(),
        render_knowledge(rules, catalog, has_dependencies=has_deps),
    ]
    dep_block = build_dependency_context(task.related_paths)
    if dep_block:
        parts.append(dep_block)

    file_name = PurePosixPath(norm_relpath(task.file_path)).name
    parts.append(f"Analyze the following file: '{file_name}'\n\nFile content:\n" + task.content)

    return PromptPayload(file_path=task.file_path, rule_ids=tuple(rules), text="\n".join(parts))
