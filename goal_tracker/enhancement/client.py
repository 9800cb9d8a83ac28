"""Enhancement service client.

``EnhancementClient`` is the single capability object through which the
application talks to the LLM. It is built once at startup
(``main.lifespan``), stored on ``app.state`` and handed to services through
a FastAPI dependency; nothing in this package constructs one on import.

Every call:

1. renders a prompt (``enhancement.prompts``),
2. runs the completion under ``asyncio.wait_for`` with the configured
   timeout,
3. parses the reply as one JSON object (a markdown code fence around it is
   tolerated),
4. validates it against the matching schema.

Any failure along the way raises a subclass of ``EnhancementError``. Raw
parse or validation exceptions never escape. Callers decide whether to
degrade to ``enhancement.fallback`` or to report the failure.
"""

from __future__ import annotations

import asyncio
import json
import re
from typing import Any, TypeVar

import structlog
from pydantic import BaseModel, ValidationError

from goal_tracker.config import Settings
from goal_tracker.enhancement import prompts
from goal_tracker.enhancement.llm import LLMClient, LLMError
from goal_tracker.enhancement.schemas import (
    ActionBreakdown,
    BreakdownRequest,
    EnhancementKind,
    GoalEnhancement,
    GoalEnhancementRequest,
    TaskAnalysis,
    TaskAnalysisRequest,
    TimeEstimate,
    TimeEstimateRequest,
    ToolBundle,
    ToolsRequest,
)

log = structlog.get_logger(__name__)

SchemaT = TypeVar("SchemaT", bound=BaseModel)

_FENCED_JSON = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")


class EnhancementError(Exception):
    """Base class for every enhancement failure."""


class EnhancementUnavailableError(EnhancementError):
    """The service is disabled, unreachable, or failed upstream."""


class EnhancementTimeoutError(EnhancementError):
    """The call did not finish within the configured timeout."""


class EnhancementParseError(EnhancementError):
    """The reply was empty or not a JSON object."""


class EnhancementSchemaError(EnhancementError):
    """The reply was JSON but did not match the expected schema."""


def parse_json_reply(text: str) -> dict[str, Any]:
    """Parse an LLM reply into a JSON object.

    Accepts bare JSON or JSON wrapped in a markdown code fence.

    Raises:
        EnhancementParseError: If no JSON object can be extracted.
    """
    stripped = text.strip()
    if not stripped:
        raise EnhancementParseError("Empty reply from enhancement service")

    try:
        data = json.loads(stripped)
    except json.JSONDecodeError:
        match = _FENCED_JSON.search(stripped)
        if match is None:
            raise EnhancementParseError("Reply is not valid JSON") from None
        try:
            data = json.loads(match.group(1))
        except json.JSONDecodeError as exc:
            raise EnhancementParseError(f"Fenced reply is not valid JSON: {exc}") from exc

    if not isinstance(data, dict):
        raise EnhancementParseError(f"Expected a JSON object, got {type(data).__name__}")
    return data


class EnhancementClient:
    """Structured, validated access to the enhancement service."""

    def __init__(
        self,
        llm: LLMClient | None,
        *,
        timeout_seconds: float = 30.0,
        model: str | None = None,
    ) -> None:
        self._llm = llm
        self._timeout = timeout_seconds
        self._model = model

    @classmethod
    def from_settings(cls, settings: Settings) -> EnhancementClient:
        llm = LLMClient(settings) if settings.enhancement_enabled else None
        return cls(
            llm,
            timeout_seconds=settings.enhancement_timeout_seconds,
            model=settings.litellm_default_model,
        )

    @property
    def enabled(self) -> bool:
        return self._llm is not None

    async def _request(
        self,
        kind: EnhancementKind,
        messages: list[dict[str, str]],
        schema: type[SchemaT],
        *,
        unwrap: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 2000,
    ) -> SchemaT:
        if self._llm is None:
            raise EnhancementUnavailableError("Enhancement service is disabled")

        try:
            response = await asyncio.wait_for(
                self._llm.complete(
                    messages=messages,
                    model=self._model,
                    temperature=temperature,
                    max_tokens=max_tokens,
                ),
                timeout=self._timeout,
            )
        except TimeoutError as exc:
            log.warning("enhancement.timeout", kind=str(kind), timeout_seconds=self._timeout)
            raise EnhancementTimeoutError(
                f"{kind} call exceeded {self._timeout}s"
            ) from exc
        except LLMError as exc:
            log.warning("enhancement.unavailable", kind=str(kind), error=str(exc))
            raise EnhancementUnavailableError(str(exc)) from exc

        data = parse_json_reply(self._llm.extract_text(response))
        if unwrap is not None and isinstance(data.get(unwrap), dict):
            data = data[unwrap]

        try:
            result = schema.model_validate(data)
        except ValidationError as exc:
            log.warning(
                "enhancement.schema_mismatch",
                kind=str(kind),
                errors=exc.error_count(),
            )
            raise EnhancementSchemaError(f"{kind} reply does not match schema") from exc

        log.debug("enhancement.completed", kind=str(kind))
        return result

    async def enhance_goal(self, request: GoalEnhancementRequest) -> GoalEnhancement:
        return await self._request(
            EnhancementKind.GOAL_ENHANCEMENT,
            prompts.goal_enhancement_messages(request),
            GoalEnhancement,
            max_tokens=1000,
        )

    async def break_down_action(self, request: BreakdownRequest) -> ActionBreakdown:
        return await self._request(
            EnhancementKind.ACTION_BREAKDOWN,
            prompts.breakdown_messages(request),
            ActionBreakdown,
            max_tokens=1000,
        )

    async def estimate_time(self, request: TimeEstimateRequest) -> int:
        """Return an estimate in minutes. There is no fallback value."""
        result = await self._request(
            EnhancementKind.TIME_ESTIMATE,
            prompts.time_estimate_messages(request),
            TimeEstimate,
            temperature=0.2,
            max_tokens=100,
        )
        return result.estimated_minutes

    async def analyze_task(self, request: TaskAnalysisRequest) -> TaskAnalysis:
        return await self._request(
            EnhancementKind.TASK_ANALYSIS,
            prompts.task_analysis_messages(request),
            TaskAnalysis,
            max_tokens=2000,
        )

    async def generate_tools(self, request: ToolsRequest) -> ToolBundle:
        return await self._request(
            EnhancementKind.TOOL_BUNDLE,
            prompts.tools_messages(request),
            ToolBundle,
            unwrap="tools",
            temperature=0.8,
            max_tokens=2000,
        )
