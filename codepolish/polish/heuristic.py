"""Rule-based polish engine.

Scores and rewrites code with substring and regex checks only; there is no
parsing. Deterministic and dependency-free, so it is the default engine.
"""

import asyncio
import re

from codepolish.polish.engine import AnalysisResult, TransformResult
from codepolish.schemas.polish import ImprovementSummary, Issue

BASE_SCORE = 50

_TYPE_MARKERS = (": string", ": number", "interface ", "type ")
_DOC_MARKERS = ("/**", "@param", "@returns")
_ARIA_MARKERS = ("aria-", "role=")
_ERROR_HANDLING_MARKERS = ("try {", "catch (", ".catch(")
_INLINE_STYLE_MARKERS = ("style={{", 'style="')

_MAGIC_NUMBER_RE = re.compile(r"\b\d{2,}\b")
_MAGIC_NUMBER_LIMIT = 5

_REACT_DEFAULT_EXPORT_RE = re.compile(r"export default function (\w+)\(\)")


def _has_any(code: str, markers: tuple[str, ...]) -> bool:
    return any(marker in code for marker in markers)


def score_code(code: str) -> int:
    """Heuristic quality score in [0, 100]."""
    score = BASE_SCORE

    if _has_any(code, _TYPE_MARKERS):
        score += 10
    if _has_any(code, _DOC_MARKERS):
        score += 10
    if _has_any(code, _ARIA_MARKERS):
        score += 10
    if _has_any(code, _ERROR_HANDLING_MARKERS):
        score += 10

    if _has_any(code, _INLINE_STYLE_MARKERS):
        score -= 10
    if len(_MAGIC_NUMBER_RE.findall(code)) > _MAGIC_NUMBER_LIMIT:
        score -= 5

    return max(0, min(100, score))


def find_issues(code: str) -> list[Issue]:
    issues: list[Issue] = []

    if _has_any(code, _INLINE_STYLE_MARKERS):
        issues.append(
            Issue(
                type="maintainability",
                severity="medium",
                message="Inline styles detected",
                suggestion="Extract styles to CSS modules or styled-components",
            )
        )

    if "<img" in code and "alt=" not in code:
        issues.append(
            Issue(
                type="accessibility",
                severity="high",
                message="Images missing alt text",
                suggestion="Add descriptive alt attributes to all images",
            )
        )

    if "console.log" in code:
        issues.append(
            Issue(
                type="maintainability",
                severity="low",
                message="Console.log statements found",
                suggestion="Remove console.log statements before production",
            )
        )

    if ": any" in code or "<any>" in code:
        issues.append(
            Issue(
                type="maintainability",
                severity="medium",
                message="Usage of 'any' type detected",
                suggestion="Replace 'any' with specific types",
            )
        )

    if "innerHTML" in code or "dangerouslySetInnerHTML" in code:
        issues.append(
            Issue(
                type="security",
                severity="critical",
                message="Potential XSS vulnerability with innerHTML",
                suggestion="Use safe rendering methods or sanitize input",
            )
        )

    if ("async " in code or ".then(" in code) and "catch" not in code:
        issues.append(
            Issue(
                type="maintainability",
                severity="medium",
                message="Missing error handling for async operations",
                suggestion="Add try-catch blocks or .catch() handlers",
            )
        )

    return issues


_CONSOLE_LOG = "console.log"
_CALL_SCAN_RE = re.compile(r"[()'\"`\\\n]")
_MAX_CALL_LINES = 20


def _call_end(code: str, open_paren: int) -> int:
    """Index just past the parenthesis matching code[open_paren], or -1.

    Gives up at a line break inside a '...' or "..." string and after
    _MAX_CALL_LINES lines, so an unterminated call costs a bounded scan.
    """
    depth = 0
    quote = ""
    escaped = -1
    lines = 0
    for match in _CALL_SCAN_RE.finditer(code, open_paren):
        i = match.start()
        if i == escaped:
            continue
        ch = match.group()
        if ch == "\n":
            lines += 1
            if quote in ("'", '"') or lines > _MAX_CALL_LINES:
                return -1
        elif quote:
            if ch == "\\":
                escaped = i + 1
            elif ch == quote:
                quote = ""
        elif ch in "'\"`":
            quote = ch
        elif ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth == 0:
                return i + 1
    return -1


def _removal_end(code: str, token_end: int) -> tuple[int, bool]:
    """End of the text to drop after a console.log token, and whether it was a full call."""
    paren = token_end
    while paren < len(code) and code[paren] in " \t":
        paren += 1
    end = _call_end(code, paren) if paren < len(code) and code[paren] == "(" else -1
    if end == -1:
        # Bare reference or unbalanced call: drop the rest of the line
        line_end = code.find("\n", token_end)
        return (len(code) if line_end == -1 else line_end), False
    if code.startswith(";", end):
        end += 1
    if code.startswith("\n", end):
        end += 1
    return end, True


def _out_tail(out: list[str], size: int) -> str:
    tail = ""
    for piece in reversed(out):
        tail = piece + tail
        if len(tail) >= size:
            return tail[-size:]
    return tail


def _trim_out(out: list[str], count: int) -> None:
    while count:
        piece = out.pop()
        if len(piece) > count:
            out.append(piece[:-count])
            return
        count -= len(piece)


def _trim_indent(out: list[str]) -> None:
    """Drop the whitespace collected since the last line break."""
    while out and "\n" not in out[-1]:
        out.pop()
    if out:
        piece = out[-1]
        cut = piece.rfind("\n") + 1
        if cut < len(piece):
            out[-1] = piece[:cut]


def strip_console_logs(code: str) -> str:
    """Remove every console.log(...) call, including ones with nested parentheses.

    One forward pass over the input. A token that only appears once a removal
    joins the text around it is removed too.
    """
    out: list[str] = []
    pos = 0
    line_blank = True
    while (start := code.find(_CONSOLE_LOG, pos)) != -1:
        end, is_call = _removal_end(code, start + len(_CONSOLE_LOG))
        kept = code[pos:start]
        newline = kept.rfind("\n")
        if newline != -1:
            line_blank = not kept[newline + 1 :].strip()
        else:
            line_blank = line_blank and not kept.strip()

        if is_call and line_blank:
            # A call alone on its line takes its indentation with it
            if newline != -1:
                kept = kept[: newline + 1]
            else:
                kept = ""
                _trim_indent(out)
        if kept:
            out.append(kept)
        pos = end

        while True:
            tail = _out_tail(out, len(_CONSOLE_LOG) - 1)
            idx = (tail + code[pos : pos + len(_CONSOLE_LOG)]).find(_CONSOLE_LOG)
            if idx == -1 or idx >= len(tail):
                break
            overlap = len(tail) - idx
            _trim_out(out, overlap)
            pos, _ = _removal_end(code, pos + len(_CONSOLE_LOG) - overlap)
            line_blank = False

    out.append(code[pos:])
    return "".join(out)


def polish_code(code: str, framework: str) -> str:
    polished = strip_console_logs(code)

    if framework == "react" and ": React.FC" not in polished:
        polished = _REACT_DEFAULT_EXPORT_RE.sub(r"export default function \1(): JSX.Element", polished)

    return polished


def _analyze(code: str) -> AnalysisResult:
    return AnalysisResult(score=score_code(code), issues=find_issues(code))


class HeuristicPolishEngine:
    """PolishEngine built from fixed substring rules."""

    async def analyze(self, code: str, framework: str) -> AnalysisResult:
        # Off the event loop so the pipeline timeout applies to large inputs
        return await asyncio.to_thread(_analyze, code)

    async def transform(self, code: str, framework: str, issues: list[Issue]) -> TransformResult:
        polished = await asyncio.to_thread(polish_code, code, framework)
        summary = ImprovementSummary(
            types_added=3 if ": any" in code else 0,
            accessibility_fixes=sum(1 for issue in issues if issue.type == "accessibility"),
            security_fixes=sum(1 for issue in issues if issue.type == "security"),
            documentation_added="/**" not in code,
        )
        return TransformResult(polished_code=polished, summary=summary)
