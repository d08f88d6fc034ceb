import json

import pytest
from pydantic import ValidationError

from a11yscan.findings import (
    Finding,
    Severity,
    map_severity,
    normalize_findings,
    parse_response,
    truncate_words,
)


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("Critical", Severity.CRITICAL),
        ("ERROR", Severity.CRITICAL),
        ("high", Severity.CRITICAL),
        ("Warning", Severity.WARNING),
        ("medium", Severity.WARNING),
        ("low", Severity.INFO),
        ("Info", Severity.INFO),
        ("catastrophic", Severity.INFO),
        ("", Severity.INFO),
        (None, Severity.INFO),
        (3, Severity.INFO),
    ],
)
def test_map_severity_is_total(raw, expected):
    assert map_severity(raw) is expected


def test_truncate_words():
    text = " ".join(f"w{i}" for i in range(20))
    short = truncate_words(text)
    assert short == " ".join(f"w{i}" for i in range(15)) + "..."
    assert truncate_words("Use darker text color") == "Use darker text color"
    assert truncate_words("   ") == ""


def test_normalize_full_element():
    arr = json.dumps(
        [
            {
                "line": 5,
                "severity": "Critical",
                "description": "Low contrast button",
                "recommendation": "Use darker text color",
                "wcag_rule": "WCAG 1.4.3",
            }
        ]
    )
    [f] = normalize_findings(arr, "Assets/Menu.cs")
    assert f.file_path == "Assets/Menu.cs"
    assert f.line_number == 5
    assert f.severity is Severity.CRITICAL
    assert f.short_recommendation == "Use darker text color"
    assert f.full_recommendation == "Use darker text color"
    assert f.rule_id == "WCAG 1.4.3"


def test_normalize_applies_defaults_for_missing_or_bad_fields():
    arr = json.dumps(
        [
            {"description": "no line"},
            {"description": "negative line", "line": -4, "severity": "weird"},
            {"description": "string line", "line": "12"},
            {"description": "float line", "line": 7.0},
            {"description": "bool line", "line": True},
        ]
    )
    found = normalize_findings(arr, "a.cs")
    assert [f.line_number for f in found] == [0, 0, 12, 7, 0]
    assert all(f.severity is Severity.INFO for f in found)
    assert all(f.rule_id == "" and f.short_recommendation == "" for f in found)


def test_normalize_skips_malformed_elements():
    arr = json.dumps(
        [
            "just a string",
            42,
            {"line": 1},
            {"description": "   "},
            {"description": "kept", "extra": {"ignored": True}},
        ]
    )
    found = normalize_findings(arr, "a.cs")
    assert [f.description for f in found] == ["kept"]


def test_normalize_rejects_non_array_payload():
    assert normalize_findings('{"line": 1}', "a.cs") == []
    assert normalize_findings("not json", "a.cs") == []


def test_parse_response_tolerates_garbage():
    assert parse_response("", "a.cs") == []
    assert parse_response(None, "a.cs") == []
    assert parse_response("I could not find anything.", "a.cs") == []
    assert parse_response('[{"description": "cut', "a.cs") == []


def test_parse_response_with_prose():
    found = parse_response('Findings:\n[{"description": "Keyboard trap", "severity": "high"}]', "b.cs")
    assert len(found) == 1
    assert found[0].severity is Severity.CRITICAL
    assert found[0].line_number == 0


def test_finding_is_immutable_and_validated():
    f = Finding(file_path="a.cs", severity=Severity.INFO, description="x")
    with pytest.raises(ValidationError):
        f.description = "y"
    with pytest.raises(ValidationError):
        Finding(file_path="a.cs", severity=Severity.INFO, description="")
