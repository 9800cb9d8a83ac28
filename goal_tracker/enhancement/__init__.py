"""Enhancement service: LLM-backed suggestions with deterministic fallbacks."""

from __future__ import annotations

from goal_tracker.enhancement.client import (
    EnhancementClient,
    EnhancementError,
    EnhancementParseError,
    EnhancementSchemaError,
    EnhancementTimeoutError,
    EnhancementUnavailableError,
)

__all__ = [
    "EnhancementClient",
    "EnhancementError",
    "EnhancementParseError",
    "EnhancementSchemaError",
    "EnhancementTimeoutError",
    "EnhancementUnavailableError",
]
