# src/a11yscan/knowledge.py
from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Iterable, Mapping


@dataclass(frozen=True)
class GuidelineEntry:
    rule_id: str
    text: str


def _entry(rule_id: str, principle: str, defects: list[str], fixes: list[str]) -> GuidelineEntry:
    lines = [principle, "", "DEFECT EXAMPLES:"]
    lines += [f"- {d}" for d in defects]
    lines += ["", "FIX EXAMPLES:"]
    lines += [f"- {f}" for f in fixes]
    return GuidelineEntry(rule_id=rule_id, text="\n".join(lines))


# -------------------------------------------------------------------
# Guideline catalog (loaded once, never mutated)
# -------------------------------------------------------------------

_ENTRIES: tuple[GuidelineEntry, ...] = (
    _entry(
        "WCAG 1.4.3",
        "MINIMUM CONTRAST: Text must have a contrast ratio of at least 4.5:1. "
        "For large text (18pt+ or 14pt+ bold): at least 3:1.",
        [
            "Button with #888888 text on #FFFFFF background (contrast 2.8:1)",
            "Gray text (#CCCCCC) on white background",
            "Light blue links on light gray background",
        ],
        [
            "Change text color to #666666 (contrast 5.7:1)",
            "Use darker background or lighter text",
            "Implement contrast ratio validation in UI system",
            "Add high contrast mode in game settings",
        ],
    ),
    _entry(
        "WCAG 1.2.2",
        "CAPTIONS: Provide synchronized captions for all pre-recorded audio content. "
        "Captions must include dialogue, sound effects, and meaningful music.",
        [
            "Cutscenes without subtitle options",
            "Voice instructions without text alternatives",
            "Important audio cues without visual indicators",
        ],
        [
            "Add .srt subtitle support for videos",
            "Implement in-game captioning system",
            "Provide toggle for subtitles in settings",
            "Add visual indicators for important sounds",
        ],
    ),
    _entry(
        "WCAG 1.2.5",
        "AUDIO DESCRIPTION: Provide audio description for all pre-recorded video content. "
        "Describe important visual information not contained in the main audio track.",
        [
            "Visual storytelling without audio description",
            "Cutscenes showing visual clues only",
            "Text-based information shown on screen without narration",
        ],
        [
            "Add optional audio description track",
            "Provide text alternatives for visual information",
            "Implement descriptive audio mode in settings",
            "Use narrator for important visual events",
        ],
    ),
    _entry(
        "WCAG 2.2.1",
        "TIMING: If a time limit is imposed, give users option to turn off, adjust, or extend it. "
        "Minimum 20 seconds for alerts and notifications.",
        [
            "5-second timeout for puzzle solutions",
            "Quick-time events without pause option",
            "Auto-dismissing notifications without user control",
        ],
        [
            "Add pause button for timed sections",
            "Provide settings to adjust/disable time limits",
            "Implement grace periods for time-sensitive actions",
            "Allow users to request time extensions",
        ],
    ),
    _entry(
        "WCAG 2.3.3",
        "ANIMATION: Avoid excessive animations and movements that could cause dizziness or seizures. "
        "Provide way to disable animations. Limit automatic animations to 3 seconds maximum.",
        [
            "Constant camera shaking effects",
            "Rapid flashing lights (more than 3 flashes per second)",
            "Spinning objects that could cause vertigo",
            "Excessive particle effects with rapid movement",
        ],
        [
            "Add reduced motion option in settings",
            "Limit flash frequency to safe levels",
            "Provide toggle for screen shake effects",
            "Use subtle animations instead of intense ones",
        ],
    ),
    _entry(
        "WCAG 2.3.1",
        "FLASHING: Content must not flash more than 3 times per second. "
        "Avoid flashing that could trigger photosensitive epilepsy.",
        [
            "Strobe light effects in horror games",
            "Rapid flashing during explosion sequences",
            "UI elements that blink rapidly for attention",
        ],
        [
            "Limit flash frequency to safe levels",
            "Add warning for flashing content",
            "Provide option to disable flashing effects",
            "Use alternative visual cues instead of flashing",
        ],
    ),
    _entry(
        "WCAG 2.4.7",
        "FOCUS INDICATOR: All interactive elements must have visible focus indicator during keyboard navigation. "
        "Focus indicator contrast must be at least 3:1 with background.",
        [
            "Buttons with no visual focus state",
            "Hidden focus indicators that disappear",
            "Low contrast focus outlines",
            "Keyboard traps where focus gets stuck",
        ],
        [
            "Add outline: 2px solid #007ACC with good contrast",
            "Implement clear focus highlighting",
            "Ensure proper focus management in UI",
            "Test complete keyboard navigation flow",
        ],
    ),
    _entry(
        "WCAG 2.4.6",
        "NAVIGATION: Navigation structure must be logical and predictable. "
        "Use hierarchical headings, descriptive labels, and consistent organization.",
        [
            "Inconsistent menu structures between screens",
            "Hidden navigation options",
            "No clear way to navigate back",
            "Complex nested menus without clear hierarchy",
        ],
        [
            "Standardize menu layout across all screens",
            "Use clear headings and section labels",
            "Provide breadcrumb navigation",
            "Implement consistent back button behavior",
        ],
    ),
    _entry(
        "WCAG 1.1.1",
        "ALT TEXT: All non-text content must have equivalent text alternative. "
        'For decorative images, use alt="" (empty).',
        [
            "Icons without tooltips or labels",
            "Images without alt text for screen readers",
            "Decorative images that aren't marked as such",
            "UI elements without proper ARIA labels",
        ],
        [
            'Add alt="Warning: Low health" for important images',
            "Use ARIA labels for interactive elements",
            "Mark decorative images with empty alt text",
            "Provide text alternatives for all visual information",
        ],
    ),
    _entry(
        "WCAG 3.2.2",
        "FEEDBACK: Provide immediate feedback for all user actions. "
        "Confirmation messages, progress indicators, audio/visual feedback.",
        [
            "Button clicks with no visual/audio confirmation",
            "Actions that don't provide success/failure feedback",
            "Loading states without progress indication",
            "Form submissions without confirmation",
        ],
        [
            "Add hover effects and click animations",
            "Implement audio feedback for actions",
            "Provide loading spinners for async operations",
            "Show confirmation messages for important actions",
        ],
    ),
    _entry(
        "WCAG 1.4.4",
        "CUSTOMIZATION: Allow text resizing up to 200% without loss of functionality. "
        "Support system preferences for text size and contrast.",
        [
            "Fixed font sizes that don't scale",
            "Text that gets cut off when enlarged",
            "UI elements that break with larger text",
            "Ignoring system accessibility settings",
        ],
        [
            "Use relative units (em, rem, %) instead of fixed pixels",
            "Test UI with 200% text enlargement",
            "Respect system accessibility settings",
            "Implement text size slider in options",
        ],
    ),
    _entry(
        "WCAG 2.1.1",
        "INPUT ALTERNATIVES: All functionality must be keyboard accessible. "
        "Avoid mouse-only interactions. Support assistive technologies.",
        [
            "Drag-and-drop puzzles requiring mouse",
            "Hover-based menus without keyboard alternative",
            "Touchscreen-only interactions",
            "Game mechanics requiring precise mouse control",
        ],
        [
            "Add keyboard alternative (arrow keys + spacebar)",
            "Provide toggle/button alternatives for hover actions",
            "Support game controllers and keyboard navigation",
            "Ensure all functions work without mouse",
        ],
    ),
    _entry(
        "WCAG 2.1.2",
        "NO KEYBOARD TRAP: Keyboard focus should never get trapped in a component. "
        "Users must be able to navigate away using keyboard only.",
        [
            "Modal dialogs that can't be closed with keyboard",
            "Focus loops that can't be escaped",
            "Components that don't respond to escape key",
            "Custom controls that break tab navigation",
        ],
        [
            "Ensure escape key closes all dialogs",
            "Implement proper focus trapping and release",
            "Test tab navigation through all components",
            "Provide clear keyboard exit strategies",
        ],
    ),
    _entry(
        "WCAG 2.5.1",
        "POINTER GESTURES: Provide simple alternatives for complex gestures. "
        "Not all users can perform precise pointer movements.",
        [
            "Multi-finger touch gestures required",
            "Precise swiping motions without alternatives",
            "Gesture-based controls without button options",
        ],
        [
            "Provide button alternatives for complex gestures",
            "Allow customization of gesture sensitivity",
            "Support multiple input methods for same action",
            "Add tutorial with alternative control methods",
        ],
    ),
)

GUIDELINE_CATALOG: Mapping[str, GuidelineEntry] = MappingProxyType({e.rule_id: e for e in _ENTRIES})


# -------------------------------------------------------------------
# Lexical categories -> rule ids
# -------------------------------------------------------------------

# (category, markers, rule ids); markers are matched as lowercase substrings.
CATEGORIES: tuple[tuple[str, tuple[str, ...], tuple[str, ...]], ...] = (
    ("contrast", ("color", "contrast", "hex", "rgb", "gui.color", "guistyle"), ("WCAG 1.4.3",)),
    (
        "audio_video",
        ("audio", "sound", "video", "subtitle", "audioclip", "videoplayer"),
        ("WCAG 1.2.2", "WCAG 1.2.5"),
    ),
    ("timing", ("time", "timer", "delay", "timeout", "invoke", "coroutine"), ("WCAG 2.2.1",)),
    (
        "motion",
        ("animation", "move", "transform", "shake", "particle", "flash"),
        ("WCAG 2.3.3", "WCAG 2.3.1"),
    ),
    (
        "ui_focus",
        ("button", "input", "selectable", "focus", "ui", "interface"),
        ("WCAG 2.4.7", "WCAG 2.4.6"),
    ),
    ("image", ("image", "sprite", "texture", "alt", "texture2d", "rawimage"), ("WCAG 1.1.1",)),
    ("feedback", ("feedback", "message", "alert", "debug.log", "console", "toast"), ("WCAG 3.2.2",)),
    ("text_scaling", ("font", "textsize", "scale", "textmesh", "guiskin", "dynamicfont"), ("WCAG 1.4.4",)),
    (
        "input_devices",
        ("keyboard", "input", "mouse", "controller", "input.getkey", "input.getaxis"),
        ("WCAG 2.1.1", "WCAG 2.1.2"),
    ),
    ("gestures", ("touch", "gesture", "swipe", "pinch", "input.touch", "touchphase"), ("WCAG 2.5.1",)),
)


def matched_categories(content: str) -> list[str]:
    lowered = (content or "").lower()
    if not lowered:
        return []
    return [name for name, markers, _ in CATEGORIES if any(m in lowered for m in markers)]


def select_rules(content: str, file_name: str = "") -> set[str]:
    """
    Rule ids relevant to `content`: the union of the rules of every category
    whose markers occur in the text (case-insensitive substring match).

    `file_name` is part of the selector contract but does not influence the match;
    selection depends on content only so fixtures stay reproducible.
    """
    matched = set(matched_categories(content))
    rules: set[str] = set()
    for name, _, rule_ids in CATEGORIES:
        if name in matched:
            rules.update(rule_ids)
    return rules


# -------------------------------------------------------------------
# Rendering
# -------------------------------------------------------------------

GENERAL_BEST_PRACTICES: tuple[str, ...] = (
    "Test with screen readers and keyboard navigation",
    "Provide multiple ways to complete actions",
    "Use semantic HTML and proper ARIA attributes",
    "Ensure color is not the only means of conveying information",
    "Provide clear error messages and recovery options",
)

DEPENDENCY_CONCERNS: tuple[str, ...] = (
    "Accessibility issues can propagate through dependencies",
    "Changes in one file may affect accessibility in dependent files",
    "Consider cross-file accessibility impact analysis",
    "Shared components should maintain consistent accessibility standards",
    "Test accessibility across the entire dependency chain",
)


def ordered_rules(rule_ids: Iterable[str], catalog: Mapping[str, GuidelineEntry] = GUIDELINE_CATALOG) -> list[str]:
    """Catalog order first, unknown ids (no guideline text) dropped."""
    wanted = set(rule_ids)
    return [rid for rid in catalog if rid in wanted]


def render_knowledge(
        rule_ids: Iterable[str],
        catalog: Mapping[str, GuidelineEntry] = GUIDELINE_CATALOG,
        *,
        has_dependencies: bool = False,
) -> str:
    lines = [
        "ACCESSIBILITY CONTEXT:",
        "Detailed WCAG guidelines with specific defect examples and fixes:",
        "",
    ]

    selected = ordered_rules(rule_ids, catalog)
    for rid in selected:
        lines.append(f"=== {rid} ===")
        lines.append(catalog[rid].text)
        lines.append("")

    if not selected:
        # never an error: fall back to a generic instruction block
        lines.append("No specific accessibility rules detected in file content.")
        lines.append("Apply general accessibility principles and check for common issues.")
        lines.append("")

    lines.append("GENERAL ACCESSIBILITY BEST PRACTICES:")
    lines += [f"- {p}" for p in GENERAL_BEST_PRACTICES]

    if has_dependencies:
        lines.append("")
        lines.append("DEPENDENCY-RELATED ACCESSIBILITY CONCERNS:")
        lines += [f"- {c}" for c in DEPENDENCY_CONCERNS]

    return "\n".join(lines) + "\n"


def render_all_guidelines(catalog: Mapping[str, GuidelineEntry] = GUIDELINE_CATALOG) -> str:
    lines = ["COMPLETE ACCESSIBILITY GUIDELINES DATABASE:", ""]
    for rid, entry in catalog.items():
        lines.append(f"=== {rid} ===")
        lines.append(entry.text)
        lines.append("")
    return "\n".join(lines)
