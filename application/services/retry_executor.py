"""
Bounded exponential backoff for idempotent processor calls.

Only transient errors (network, timeout, vendor 5xx) are retried; the wrapped
call is re-invoked as-is, so every attempt carries the same idempotency key.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt, wait_exponential

from core.logging_config import get_logger
from domain.payment.exceptions import PaymentAdapterError


logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    initial_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 4.0

    @classmethod
    def from_settings(cls, cfg: Any) -> "RetryPolicy":
        return cls(
            max_attempts=int(cfg.max_attempts),
            initial_delay=float(cfg.initial_delay),
            multiplier=float(cfg.multiplier),
            max_delay=float(cfg.max_delay),
        )

    def delay_for(self, attempt: int) -> float:
        """Delay slept after the ``attempt``-th failure (1-based)."""
        return min(self.initial_delay * self.multiplier ** (attempt - 1), self.max_delay)


def is_transient(exc: BaseException) -> bool:
    return isinstance(exc, PaymentAdapterError) and exc.is_retryable()


class RetryExecutor:
    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.policy = policy or RetryPolicy()
        self._sleep = sleep

    async def run(
        self,
        fn: Callable[[], Awaitable[T]],
        *,
        operation: str = "call",
        idempotency_key: Optional[str] = None,
    ) -> T:
        def _before_sleep(state: RetryCallState) -> None:
            exc = state.outcome.exception() if state.outcome else None
            logger.warning(
                "payment_retry_scheduled",
                operation=operation,
                attempt=state.attempt_number,
                max_attempts=self.policy.max_attempts,
                delay=state.next_action.sleep if state.next_action else None,
                error_code=getattr(getattr(exc, "error_code", None), "value", None),
                idempotency_key=idempotency_key,
            )

        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.policy.max_attempts),
            wait=wait_exponential(
                multiplier=self.policy.initial_delay,
                exp_base=self.policy.multiplier,
                max=self.policy.max_delay,
            ),
            retry=retry_if_exception(is_transient),
            sleep=self._sleep,
            before_sleep=_before_sleep,
            reraise=True,
        ):
            with attempt:
                return await fn()
        raise AssertionError("unreachable")  # pragma: no cover
