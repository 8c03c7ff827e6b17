"""Tests for the rule-based polish engine."""

import asyncio
import time
from unittest.mock import patch

import pytest

from codepolish.polish.engine import PolishEngine
from codepolish.polish.heuristic import (
    HeuristicPolishEngine,
    find_issues,
    polish_code,
    score_code,
    strip_console_logs,
)

pytestmark = pytest.mark.unit


# ──────────────────────────────────────────────────────────────────────────────
# score_code
# ──────────────────────────────────────────────────────────────────────────────


def test_plain_code_scores_base():
    assert score_code("const a = 1;") == 50


def test_quality_markers_raise_score():
    code = """
/** Greets a user. @param name the name */
function greet(name: string) {
  try { return <div role="heading" aria-label="greeting">{name}</div>; } catch (e) { return null; }
}
"""
    assert score_code(code) == 90


def test_inline_styles_and_magic_numbers_lower_score():
    code = 'const x = <div style={{ width: 100, height: 200, top: 300, left: 400, margin: 500, padding: 600 }} />;'
    assert score_code(code) == 35


@pytest.mark.parametrize(
    "code",
    [
        "",
        "x" * 10_000,
        "11 22 33 44 55 66 77 88 99 style={{}}",
        "/** */ @param @returns : string interface type aria- role= try { catch (",
    ],
)
def test_score_is_always_within_bounds(code):
    assert 0 <= score_code(code) <= 100


# ──────────────────────────────────────────────────────────────────────────────
# find_issues
# ──────────────────────────────────────────────────────────────────────────────


def test_inline_style_reported_as_maintainability_issue():
    issues = find_issues('<div style={{ color: "red" }}>hi</div>')
    assert len(issues) == 1
    assert issues[0].type == "maintainability"
    assert issues[0].severity == "medium"
    assert issues[0].message == "Inline styles detected"


def test_inner_html_reported_as_critical_security_issue():
    issues = find_issues("el.innerHTML = userInput;")
    assert [(i.type, i.severity, i.message) for i in issues] == [
        ("security", "critical", "Potential XSS vulnerability with innerHTML")
    ]


def test_image_without_alt_and_unhandled_async():
    code = 'async function load() { await fetch("/x"); }\nconst img = <img src="a.png" />;'
    messages = [i.message for i in find_issues(code)]
    assert "Images missing alt text" in messages
    assert "Missing error handling for async operations" in messages


def test_clean_code_has_no_issues():
    assert find_issues("export const add = (a: number, b: number) => a + b;") == []


# ──────────────────────────────────────────────────────────────────────────────
# Transformations
# ──────────────────────────────────────────────────────────────────────────────


def test_strip_console_logs_handles_nested_parentheses():
    code = 'const a = 1;\nconsole.log(fmt("x(%s)", a));\nconsole.log("done");\nreturn a;'
    assert strip_console_logs(code) == "const a = 1;\nreturn a;"


def test_strip_console_logs_handles_bare_reference():
    assert strip_console_logs("const log = console.log\nlog(1);") == "const log = \nlog(1);"


def test_strip_console_logs_removes_multiline_call():
    code = "a();\nconsole.log(\n  'x',\n  y\n);\nb();"
    assert strip_console_logs(code) == "a();\nb();"


def test_unterminated_string_only_drops_its_line():
    assert strip_console_logs("console.log('oops\nconst a = 1;") == "\nconst a = 1;"


def test_strip_console_logs_removes_token_joined_by_removal():
    assert strip_console_logs("consoleconsole.log(1).log(2);") == ""


@pytest.mark.parametrize(
    "line",
    ["console.log('\n", "console.log(\n", "  console.log(`x\n", "console.log(1);\n"],
)
def test_strip_console_logs_large_input_is_fast(line):
    code = line * (400_000 // len(line))

    started = time.perf_counter()
    result = strip_console_logs(code)
    elapsed = time.perf_counter() - started

    assert "console.log" not in result
    assert elapsed < 5.0


async def test_transform_runs_off_the_event_loop():
    def slow_polish(code, framework):
        time.sleep(0.5)
        return code

    with patch("codepolish.polish.heuristic.polish_code", side_effect=slow_polish):
        with pytest.raises(TimeoutError):
            await asyncio.wait_for(HeuristicPolishEngine().transform("x", "react", []), timeout=0.05)


def test_react_default_export_gets_return_type():
    code = "export default function Button() {\n  console.log('render');\n  return <button />;\n}"
    assert polish_code(code, "react") == "export default function Button(): JSX.Element {\n  return <button />;\n}"


def test_react_fc_components_left_alone():
    code = "const Button: React.FC = () => <button />;\nexport default function App() { return <Button />; }"
    assert polish_code(code, "react") == code


def test_vue_code_is_not_annotated():
    code = "export default function setup() { return {}; }"
    assert polish_code(code, "vue") == code


# ──────────────────────────────────────────────────────────────────────────────
# Engine
# ──────────────────────────────────────────────────────────────────────────────


def test_engine_satisfies_protocol():
    assert isinstance(HeuristicPolishEngine(), PolishEngine)


async def test_analyze_then_transform():
    engine = HeuristicPolishEngine()
    code = 'export default function Card(props: any) {\n  console.log(props);\n  return <div innerHTML={props.html} />;\n}'

    analysis = await engine.analyze(code, "react")
    result = await engine.transform(code, "react", analysis.issues)

    assert 0 <= analysis.score <= 100
    assert "console.log" not in result.polished_code
    assert result.score_after is None
    assert result.summary.types_added == 3
    assert result.summary.security_fixes == 1
    assert result.summary.documentation_added is True
