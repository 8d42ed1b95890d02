"""Structured success/failure results for interactive callers."""

from collections.abc import Awaitable
from dataclasses import dataclass, field
from typing import Any

import structlog

from subtrack.exceptions import SubTrackError

logger = structlog.get_logger(__name__)


@dataclass
class OperationResult:
    success: bool
    message: str
    error_code: str | None = None
    data: Any = None
    context: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "error_code": self.error_code,
            "context": self.context,
        }


async def run_action(action: Awaitable[Any], success_message: str) -> OperationResult:
    """
    Await a core operation and wrap its outcome.

    Only ``SubTrackError`` is converted into a failed result; anything else is
    a bug and propagates.
    """
    try:
        data = await action
    except SubTrackError as e:
        logger.info("action.failed", error_code=e.error_code, message=e.message)
        return OperationResult(
            success=False, message=e.message, error_code=e.error_code, context=e.context
        )
    return OperationResult(success=True, message=success_message, data=data)


__all__ = ["OperationResult", "run_action"]
