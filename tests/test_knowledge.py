import pytest

from a11yscan.knowledge import (
    CATEGORIES,
    GUIDELINE_CATALOG,
    matched_categories,
    ordered_rules,
    render_all_guidelines,
    render_knowledge,
    select_rules,
)


def test_catalog_covers_every_category_rule():
    for _, _, rule_ids in CATEGORIES:
        for rid in rule_ids:
            assert rid in GUIDELINE_CATALOG
    assert len(GUIDELINE_CATALOG) == 14


def test_catalog_is_read_only():
    entry = GUIDELINE_CATALOG["WCAG 1.4.3"]
    with pytest.raises(TypeError):
        GUIDELINE_CATALOG["WCAG 1.4.3"] = None
    with pytest.raises(TypeError):
        del GUIDELINE_CATALOG["WCAG 1.4.3"]
    assert GUIDELINE_CATALOG["WCAG 1.4.3"] is entry


def test_select_rules_is_case_insensitive_substring_match():
    rules = select_rules("public Color ButtonColor = new Color(0.5f, 0.5f, 0.5f);", "Button.cs")
    assert "WCAG 1.4.3" in rules
    # "button" is a ui marker
    assert {"WCAG 2.4.7", "WCAG 2.4.6"} <= rules


def test_select_rules_unions_categories():
    rules = select_rules("AudioSource plays a sound while the Timer counts down")
    assert {"WCAG 1.2.2", "WCAG 1.2.5", "WCAG 2.2.1"} <= rules


def test_select_rules_empty_for_unmatched_content():
    assert select_rules("x = 1") == set()
    assert select_rules("") == set()
    assert matched_categories("") == []


def test_select_rules_ignores_file_name():
    content = "var speed = 3;"
    assert select_rules(content, "ColorContrastTimer.cs") == select_rules(content, "other.txt")


def test_ordered_rules_follow_catalog_and_drop_unknown():
    assert ordered_rules({"WCAG 2.5.1", "WCAG 1.4.3", "WCAG 9.9.9"}) == ["WCAG 1.4.3", "WCAG 2.5.1"]


def test_render_knowledge_includes_selected_guidelines():
    text = render_knowledge({"WCAG 1.4.3"})
    assert "=== WCAG 1.4.3 ===" in text
    assert "MINIMUM CONTRAST" in text
    assert "=== WCAG 2.5.1 ===" not in text
    assert "GENERAL ACCESSIBILITY BEST PRACTICES:" in text
    assert "DEPENDENCY-RELATED" not in text


def test_render_knowledge_falls_back_when_nothing_selected():
    text = render_knowledge(set(), has_dependencies=True)
    assert "No specific accessibility rules detected" in text
    assert "DEPENDENCY-RELATED ACCESSIBILITY CONCERNS:" in text


def test_render_all_guidelines_lists_whole_catalog():
    text = render_all_guidelines()
    for rid in GUIDELINE_CATALOG:
        assert f"=== {rid} ===" in text
