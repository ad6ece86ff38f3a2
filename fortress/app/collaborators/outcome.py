"""
Normalized collaborator call results.

Every call to an external collaborator (data source, scanner, reasoner,
conversational model) goes through ``guarded_call``. The call is bounded
by a timeout, retried a bounded number of times, and finally degraded to
an ``Outcome`` carrying the failure reason.

IMPORTANT:
- ``guarded_call`` MUST never raise for collaborator failures
- cancellation is NOT swallowed
- degraded outcomes are content, not errors: callers decide how to
  render them (log line, explanation text, chat turn)
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Optional

import anyio
from pydantic import BaseModel, ConfigDict, Field
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)


class Outcome(BaseModel):
    """
    Tagged result: either ``value`` (ok) or ``reason`` (degraded).
    """

    value: Any = None
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.reason is None

    @property
    def degraded(self) -> bool:
        return self.reason is not None

    @classmethod
    def success(cls, value: Any) -> "Outcome":
        return cls(value=value)

    @classmethod
    def degrade(cls, reason: str) -> "Outcome":
        return cls(reason=reason or "unknown failure")

    model_config = ConfigDict(frozen=True, extra="forbid")


class CallPolicy(BaseModel):
    """Timeout and retry bounds applied to a single collaborator call."""

    timeout_seconds: float = Field(30.0, gt=0)
    max_attempts: int = Field(2, ge=1)
    backoff_seconds: float = Field(0.5, ge=0)
    max_backoff_seconds: float = Field(4.0, ge=0)

    model_config = ConfigDict(frozen=True, extra="forbid")


def describe_exception(exc: BaseException) -> str:
    message = str(exc)
    if not message:
        return type(exc).__name__
    return f"{type(exc).__name__}: {message}"


async def guarded_call(
    label: str,
    fn: Callable[..., Awaitable[Any]],
    *args: Any,
    policy: CallPolicy,
    **kwargs: Any,
) -> Outcome:
    """
    Await ``fn(*args, **kwargs)`` under ``policy`` and normalize the result.
    """
    value: Any = None
    try:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(policy.max_attempts),
            wait=wait_exponential(
                multiplier=policy.backoff_seconds,
                max=policy.max_backoff_seconds,
            ),
            retry=retry_if_exception_type(Exception),
            reraise=True,
        ):
            with attempt:
                with anyio.fail_after(policy.timeout_seconds):
                    value = await fn(*args, **kwargs)
    except Exception as exc:
        reason = describe_exception(exc)
        logger.warning(
            "%s degraded after %d attempt(s): %s",
            label,
            policy.max_attempts,
            reason,
        )
        return Outcome.degrade(reason)

    return Outcome.success(value)
