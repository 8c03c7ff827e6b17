"""PolishEngine Protocol: the pluggable analysis and transformation step.

Every engine provides two coroutines:
- analyze: score the original code and list the issues found
- transform: produce the polished code and an improvement summary

The pipeline treats engines as opaque and only relies on the result shapes
below. A score is an integer in [0, 100].
"""

from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from codepolish.core.config import Settings
from codepolish.schemas.polish import ImprovementSummary, Issue


@dataclass
class AnalysisResult:
    score: int
    issues: list[Issue] = field(default_factory=list)


@dataclass
class TransformResult:
    polished_code: str
    summary: ImprovementSummary
    score_after: int | None = None  # None = re-score the polished code with analyze()


@runtime_checkable
class PolishEngine(Protocol):
    """Protocol for the analysis/transformation step of a polish job."""

    async def analyze(self, code: str, framework: str) -> AnalysisResult:
        """Score code quality and collect issues.

        Args:
            code: Original source code
            framework: react, vue or svelte

        Returns:
            AnalysisResult with a score in [0, 100]
        """
        ...

    async def transform(self, code: str, framework: str, issues: list[Issue]) -> TransformResult:
        """Produce the polished version of code.

        Args:
            code: Original source code
            framework: react, vue or svelte
            issues: Issues returned by analyze() for the same code

        Returns:
            TransformResult with non-empty polished_code
        """
        ...


def build_engine(settings: Settings) -> PolishEngine:
    """Construct the engine selected by POLISH_ENGINE.

    Raises:
        ValueError: If the setting names an unknown engine
    """
    if settings.polish_engine == "heuristic":
        from codepolish.polish.heuristic import HeuristicPolishEngine

        return HeuristicPolishEngine()

    if settings.polish_engine == "anthropic":
        from anthropic import AsyncAnthropic

        from codepolish.polish.anthropic_engine import AnthropicPolishEngine

        client = AsyncAnthropic(api_key=settings.anthropic_api_key)
        return AnthropicPolishEngine(client, model=settings.polish_model, max_tokens=settings.polish_max_tokens)

    raise ValueError(f"Unknown polish engine: {settings.polish_engine}")
