# src/a11yscan/findings.py
from __future__ import annotations

import json
import logging
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from a11yscan.extract import extract_json_array

logger = logging.getLogger(__name__)

SHORT_RECOMMENDATION_WORDS = 15


class Severity(str, Enum):
    CRITICAL = "Critical"
    WARNING = "Warning"
    INFO = "Info"


SEVERITY_MAP: dict[str, Severity] = {
    "critical": Severity.CRITICAL,
    "error": Severity.CRITICAL,
    "high": Severity.CRITICAL,
    "warning": Severity.WARNING,
    "medium": Severity.WARNING,
    "low": Severity.INFO,
    "info": Severity.INFO,
}


def map_severity(value: Any) -> Severity:
    """Total mapping: anything unknown or missing is Info."""
    if isinstance(value, Severity):
        return value
    if not isinstance(value, str) or not value.strip():
        return Severity.INFO
    return SEVERITY_MAP.get(value.strip().lower(), Severity.INFO)


def truncate_words(text: str, max_words: int = SHORT_RECOMMENDATION_WORDS) -> str:
    if not text or not text.strip():
        return ""
    words = text.split()
    if len(words) <= max_words:
        return text.strip()
    return " ".join(words[:max_words]) + "..."


def _coerce_text(v: Any) -> str:
    if v is None or isinstance(v, bool):
        return ""
    if isinstance(v, str):
        return v.strip()
    if isinstance(v, (int, float)):
        return str(v)
    return ""


def _coerce_line(v: Any) -> int:
    if isinstance(v, bool):
        return 0
    if isinstance(v, int):
        return v if v > 0 else 0
    if isinstance(v, float) and v.is_integer():
        return int(v) if v > 0 else 0
    if isinstance(v, str) and v.strip().isdigit():
        return int(v.strip())
    return 0


class RawFinding(BaseModel):
    """
    Tolerant view of one element of the model's JSON array.

    Every field is optional:
      line           -> 0 (unknown) when absent, negative or not an integer
      severity       -> Info when absent or unrecognized
      description    -> "" (the element is then dropped by the normalizer)
      recommendation -> ""
      wcag_rule      -> ""
    """

    model_config = ConfigDict(extra="ignore")

    line: int = 0
    severity: Severity = Severity.INFO
    description: str = ""
    recommendation: str = ""
    wcag_rule: str = ""

    @field_validator("line", mode="before")
    @classmethod
    def _line(cls, v: Any) -> int:
        return _coerce_line(v)

    @field_validator("severity", mode="before")
    @classmethod
    def _severity(cls, v: Any) -> Severity:
        return map_severity(v)

    @field_validator("description", "recommendation", "wcag_rule", mode="before")
    @classmethod
    def _text(cls, v: Any) -> str:
        return _coerce_text(v)


class Finding(BaseModel):
    model_config = ConfigDict(frozen=True)

    file_path: str
    line_number: int = Field(default=0, ge=0)
    severity: Severity
    description: str = Field(min_length=1)
    short_recommendation: str = ""
    full_recommendation: str = ""
    rule_id: str = ""

    @classmethod
    def from_raw(cls, raw: RawFinding, file_path: str) -> "Finding":
        return cls(
            file_path=file_path,
            line_number=raw.line,
            severity=raw.severity,
            description=raw.description,
            short_recommendation=truncate_words(raw.recommendation),
            full_recommendation=raw.recommendation,
            rule_id=raw.wcag_rule,
        )


def normalize_findings(json_array_text: str, file_path: str) -> list[Finding]:
    try:
        data = json.loads(json_array_text)
    except (TypeError, ValueError, RecursionError) as e:
        logger.warning("Finding array for %s is not valid JSON: %s", file_path, e)
        return []
    if not isinstance(data, list):
        logger.warning("Finding payload for %s is %s, expected a JSON array", file_path, type(data).__name__)
        return []

    out: list[Finding] = []
    for idx, item in enumerate(data):
        if not isinstance(item, dict):
            logger.warning("Skipping finding #%d for %s: not a JSON object (%r)", idx, file_path, item)
            continue
        try:
            raw = RawFinding.model_validate(item)
            if not raw.description:
                logger.warning("Skipping finding #%d for %s: empty description", idx, file_path)
                continue
            out.append(Finding.from_raw(raw, file_path))
        except ValidationError as e:
            logger.warning("Skipping finding #%d for %s: %s\nItem: %r", idx, file_path, e, item)
    return out


def parse_response(raw_text: str | None, file_path: str) -> list[Finding]:
    """
    Model answer -> findings. Extraction failures are a per-file MalformedResponse:
    logged, zero findings, never an exception.
    """
    if not raw_text or not raw_text.strip():
        logger.warning("Empty model answer for %s", file_path)
        return []

    array_text = extract_json_array(raw_text)
    if array_text is None:
        logger.warning("No JSON array found in model answer for %s. Answer was: %s", file_path, raw_text[:400])
        return []

    findings = normalize_findings(array_text, file_path)
    logger.info("Parsed %d findings for %s", len(findings), file_path)
    return findings
