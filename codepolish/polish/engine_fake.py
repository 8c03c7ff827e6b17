"""PolishEngineFake: scenario-based test double for the PolishEngine protocol.

Deterministic, instant responses for three named scenarios:
- happy_path: plausible analysis and a polished rewrite
- malformed_response: the engine fails the way a bad LLM reply does
- timeout: the engine hangs until cancelled by the pipeline timeout
"""

import asyncio

from codepolish.core.exceptions import PolishEngineError
from codepolish.polish.engine import AnalysisResult, TransformResult
from codepolish.schemas.polish import ImprovementSummary, Issue


class PolishEngineFake:
    """Scenario-based PolishEngine with call recording."""

    VALID_SCENARIOS = {"happy_path", "malformed_response", "timeout"}

    def __init__(self, scenario: str = "happy_path", fail_at: str = "analyze"):
        """
        Args:
            scenario: One of 'happy_path', 'malformed_response', 'timeout'
            fail_at: Step that misbehaves for failing scenarios ('analyze' or 'transform')

        Raises:
            ValueError: If scenario or fail_at is not recognized
        """
        if scenario not in self.VALID_SCENARIOS:
            raise ValueError(f"Unknown scenario: {scenario}. Valid scenarios: {self.VALID_SCENARIOS}")
        if fail_at not in ("analyze", "transform"):
            raise ValueError(f"Invalid fail_at: {fail_at}")
        self.scenario = scenario
        self.fail_at = fail_at
        self.calls: list[str] = []

    async def _misbehave(self, step: str) -> None:
        if self.scenario == "happy_path" or self.fail_at != step:
            return
        if self.scenario == "malformed_response":
            raise PolishEngineError("Polish engine returned malformed JSON: Expecting value")
        # timeout: wait to be cancelled
        await asyncio.Event().wait()

    async def analyze(self, code: str, framework: str) -> AnalysisResult:
        self.calls.append("analyze")
        await self._misbehave("analyze")
        return AnalysisResult(
            score=62,
            issues=[
                Issue(
                    type="maintainability",
                    severity="medium",
                    message="Inline styles detected",
                    suggestion="Extract styles to CSS modules",
                )
            ],
        )

    async def transform(self, code: str, framework: str, issues: list[Issue]) -> TransformResult:
        self.calls.append("transform")
        await self._misbehave("transform")
        return TransformResult(
            polished_code=f"/** Polished {framework} component. */\n{code}",
            summary=ImprovementSummary(tokens_extracted=2, types_added=1, documentation_added=True),
            score_after=88,
        )
