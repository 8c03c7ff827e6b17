"""AnthropicPolishEngine: Claude-backed analysis and refactoring.

One Messages API call per step, each with a fixed system prompt that demands a
JSON object. Responses are fence-stripped, parsed and validated with pydantic;
anything unusable raises PolishEngineError so the pipeline fails the job and
refunds the credit.
"""

from typing import Any

import structlog
from pydantic import BaseModel, Field, ValidationError

from codepolish.core.exceptions import PolishEngineError
from codepolish.polish.engine import AnalysisResult, TransformResult
from codepolish.polish.llm import invoke_with_retry, parse_json_object
from codepolish.schemas.polish import ImprovementSummary, Issue

logger = structlog.get_logger(__name__)

_ANALYZE_SYSTEM_PROMPT = """You are an expert code reviewer for front-end code. Score the quality of the code you are given from 0 to 100 based on structure and organization, naming, error handling, accessibility, type safety, documentation and framework best practices, and list the specific issues you find.

Respond with a single JSON object and nothing else:
{
  "score": integer 0-100,
  "issues": [
    {
      "type": "security" | "performance" | "accessibility" | "maintainability" | "style",
      "severity": "low" | "medium" | "high" | "critical",
      "message": "string",
      "suggestion": "string or null",
      "line": integer or null
    }
  ]
}"""

_TRANSFORM_SYSTEM_PROMPT = """You are an expert refactoring specialist for front-end code. Rewrite the code you are given to production quality: extract hardcoded values to design tokens or constants, add proper TypeScript types, improve component structure, add error handling and accessibility attributes, add JSDoc documentation, and follow the framework's best practices. Address every issue listed. Preserve behaviour.

Respond with a single JSON object and nothing else:
{
  "polished_code": "string",
  "score_after": integer 0-100,
  "summary": {
    "tokens_extracted": integer,
    "components_created": integer,
    "types_added": integer,
    "accessibility_fixes": integer,
    "security_fixes": integer,
    "performance_improvements": integer,
    "documentation_added": boolean,
    "tests_generated": boolean
  }
}"""


class _AnalysisPayload(BaseModel):
    score: int = Field(..., ge=0, le=100)
    issues: list[Issue] = Field(default_factory=list)


class _TransformPayload(BaseModel):
    polished_code: str = Field(..., min_length=1)
    score_after: int = Field(..., ge=0, le=100)
    summary: ImprovementSummary


def _format_issues(issues: list[Issue]) -> str:
    if not issues:
        return "No issues were reported."
    return "\n".join(f"- [{issue.severity}] {issue.type}: {issue.message}" for issue in issues)


class AnthropicPolishEngine:
    """PolishEngine backed by the Anthropic Messages API."""

    def __init__(self, client: Any, model: str, max_tokens: int = 8192):
        """
        Args:
            client: AsyncAnthropic instance (or any object with .messages.create())
            model: Claude model identifier
            max_tokens: Response token ceiling per call
        """
        self.client = client
        self.model = model
        self.max_tokens = max_tokens

    async def _call(self, system: str, prompt: str) -> dict:
        text = await invoke_with_retry(
            self.client,
            self.model,
            system,
            [{"role": "user", "content": prompt}],
            max_tokens=self.max_tokens,
        )
        return parse_json_object(text)

    async def analyze(self, code: str, framework: str) -> AnalysisResult:
        data = await self._call(
            _ANALYZE_SYSTEM_PROMPT,
            f"Framework: {framework}\n\nCode:\n```\n{code}\n```",
        )
        try:
            payload = _AnalysisPayload.model_validate(data)
        except ValidationError as e:
            logger.warning("polish_engine_invalid_analysis", model=self.model, errors=e.error_count())
            raise PolishEngineError("Polish engine returned an invalid analysis") from e

        return AnalysisResult(score=payload.score, issues=payload.issues)

    async def transform(self, code: str, framework: str, issues: list[Issue]) -> TransformResult:
        data = await self._call(
            _TRANSFORM_SYSTEM_PROMPT,
            f"Framework: {framework}\n\nIssues:\n{_format_issues(issues)}\n\nCode:\n```\n{code}\n```",
        )
        try:
            payload = _TransformPayload.model_validate(data)
        except ValidationError as e:
            logger.warning("polish_engine_invalid_transform", model=self.model, errors=e.error_count())
            raise PolishEngineError("Polish engine returned an invalid transformation") from e

        return TransformResult(
            polished_code=payload.polished_code,
            summary=payload.summary,
            score_after=payload.score_after,
        )
