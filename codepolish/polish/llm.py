"""Shared LLM utilities for retry, fence-stripping, and JSON parsing.

- strip_json_fences: Remove markdown code fences from LLM output
- parse_json_object: Parse a JSON object from an LLM response after stripping fences
- invoke_with_retry: Retry messages.create() on Claude 529 OverloadedError and 429s
"""

import json
from typing import Any

import structlog
from anthropic import RateLimitError
from anthropic._exceptions import OverloadedError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from codepolish.core.exceptions import PolishEngineError

logger = structlog.get_logger(__name__)


def strip_json_fences(content: str) -> str:
    """Remove markdown code fences wrapping JSON output."""
    content = content.strip()
    if content.startswith("```"):
        first_newline = content.find("\n")
        if first_newline != -1:
            content = content[first_newline + 1 :]
        if content.endswith("```"):
            content = content[:-3].rstrip()
    return content


def parse_json_object(content: str) -> dict:
    """Parse a JSON object from an LLM response, stripping fences first.

    Raises:
        PolishEngineError: Content is not valid JSON or not an object
    """
    try:
        data = json.loads(strip_json_fences(content))
    except json.JSONDecodeError as e:
        raise PolishEngineError(f"Polish engine returned malformed JSON: {e.msg}") from e
    if not isinstance(data, dict):
        raise PolishEngineError("Polish engine returned JSON that is not an object")
    return data


@retry(
    retry=retry_if_exception_type((OverloadedError, RateLimitError)),
    stop=stop_after_attempt(4),
    wait=wait_exponential(multiplier=2, min=2, max=30),
    reraise=True,
    before_sleep=lambda rs: logger.warning(
        "claude_overloaded_retrying",
        attempt=rs.attempt_number,
        sleep_seconds=rs.next_action.sleep,
    ),
)
async def invoke_with_retry(
    client: Any, model: str, system: str, messages: list[dict], max_tokens: int = 4096
) -> str:
    """Invoke Anthropic messages.create() with retry on overload.

    Retries up to 3 times with exponential backoff (2s, 4s, 8s max 30s).
    All other exceptions propagate immediately.

    Args:
        client: AsyncAnthropic (or any object with .messages.create())
        model: Model identifier
        system: System prompt string
        messages: List of message dicts (role/content format)
        max_tokens: Maximum tokens for the response

    Returns:
        Text content of the first response block
    """
    response = await client.messages.create(
        model=model,
        system=system,
        messages=messages,
        max_tokens=max_tokens,
    )
    return response.content[0].text
