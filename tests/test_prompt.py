from a11yscan.job import ScanTask
from a11yscan.prompt import (
    CHECKLIST,
    build_dependency_context,
    build_prompt,
    file_type_description,
)


def test_prompt_order_header_knowledge_content_last():
    task = ScanTask(file_path="Assets/Scripts/Menu.cs", content="void Update() { }\n")
    p = build_prompt(task, {"WCAG 1.4.3"})

    assert p.file_path == "Assets/Scripts/Menu.cs"
    assert p.rule_ids == ("WCAG 1.4.3",)
    assert p.text.index("Return ONLY a JSON array") < p.text.index("=== WCAG 1.4.3 ===")
    assert p.text.index("=== WCAG 1.4.3 ===") < p.text.index("Analyze the following file: 'Menu.cs'")
    assert p.text.endswith("File content:\nvoid Update() { }\n")
    assert "DEPENDENCY CONTEXT:" not in p.text


def test_prompt_lists_full_checklist():
    p = build_prompt(ScanTask(file_path="a.cs", content=""), set())
    assert len(CHECKLIST) == 15
    assert "15. Complex Pointer Gestures without alternatives - WCAG 2.5.1" in p.text


def test_prompt_never_truncates_content():
    content = "\n".join(f"line {i}" for i in range(5000))
    p = build_prompt(ScanTask(file_path="big.cs", content=content), set())
    assert p.text.endswith(content)


def test_prompt_includes_dependency_context_when_related():
    task = ScanTask(file_path="Menu.cs", content="x", related_paths=("Assets/Menu.prefab",))
    p = build_prompt(task, set())
    assert "DEPENDENCY CONTEXT:" in p.text
    assert "DEPENDENCY-RELATED ACCESSIBILITY CONCERNS:" in p.text
    assert p.text.index("DEPENDENCY CONTEXT:") < p.text.index("Analyze the following file")


def test_dependency_context_empty_without_related_files():
    assert build_dependency_context([]) == ""


def test_dependency_context_groups_by_type_and_caps_names():
    related = [f"Assets/Scripts/S{i}.cs" for i in range(7)] + ["Assets/UI/Main.prefab", "Assets/readme"]
    text = build_dependency_context(related)

    assert "Scripts:" in text
    assert "Prefabs:" in text
    assert "Other Files:" in text
    for i in range(5):
        assert f"   - S{i}.cs" in text
    assert "S5.cs" not in text
    assert "   - ... and 2 more" in text
    assert "DEPENDENCY-SPECIFIC CHECKS:" in text
    assert "COMMON CROSS-FILE ACCESSIBILITY ISSUES:" in text


def test_file_type_description_defaults():
    assert file_type_description(".CS") == "Scripts"
    assert file_type_description(".xyz") == "Other Files"
