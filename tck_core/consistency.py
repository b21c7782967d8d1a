"""
Eventual-consistency verification.

The mirror source lags the consensus source after a write, so any
assertion against the mirror polls until both sources agree::

    PENDING --probe mismatch, attempts left--> PENDING
    PENDING --probe match--------------------> SATISFIED   (returns)
    PENDING --probe mismatch, budget spent---> EXHAUSTED   (ConsistencyTimeout)

"Not yet converged" is the ``equals`` predicate returning False.  An
exception raised by ``probe`` or ``equals`` is a genuine failure and
propagates on the spot.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

from tck_core.context import ScenarioContext, label_of
from tck_core.errors import ConsistencyTimeout

logger = logging.getLogger("tck_consistency")

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 10
DEFAULT_INTERVAL = 1.0   # seconds


class CheckState(Enum):
    PENDING = "pending"
    SATISFIED = "satisfied"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class ConsistencyCheck(Generic[T]):
    """Descriptor of one cross-source assertion.

    ``probe`` returns ``(consensus_view, mirror_view)``.  ``max_attempts``
    and ``interval`` fall back to the verifier's defaults when None.
    """
    probe: Callable[[], Awaitable[tuple[T, T]]]
    equals: Callable[[T, T], bool]
    max_attempts: Optional[int] = None
    interval: Optional[float] = None
    description: str = ""


class ConsistencyVerifier:
    """Runs :class:`ConsistencyCheck` descriptors."""

    def __init__(
        self,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        interval: float = DEFAULT_INTERVAL,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if interval < 0:
            raise ValueError("interval must not be negative")
        self.max_attempts = max_attempts
        self.interval = interval
        self._sleep = sleep

    @classmethod
    def from_config(cls, cfg: Any) -> ConsistencyVerifier:
        return cls(cfg.consistency.max_attempts, cfg.consistency.interval_seconds)

    async def retry_until(
        self, check: ConsistencyCheck[T], ctx: ScenarioContext | None = None,
    ) -> tuple[T, T]:
        """Probe until ``check.equals`` holds; return the agreeing pair."""
        max_attempts = check.max_attempts if check.max_attempts is not None else self.max_attempts
        interval = check.interval if check.interval is not None else self.interval
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        state = CheckState.PENDING
        last_a: Any = None
        last_b: Any = None
        attempt = 0
        while state is CheckState.PENDING:
            attempt += 1
            last_a, last_b = await check.probe()
            if check.equals(last_a, last_b):
                state = CheckState.SATISFIED
            elif attempt >= max_attempts:
                state = CheckState.EXHAUSTED
            else:
                logger.debug("[%s] %s: attempt %d/%d not converged",
                             label_of(ctx), check.description or "check",
                             attempt, max_attempts)
                await self._sleep(interval)

        if state is CheckState.EXHAUSTED:
            logger.warning("[%s] %s: gave up after %d attempts",
                           label_of(ctx), check.description or "check", attempt)
            raise ConsistencyTimeout(check.description, attempt, last_a, last_b)

        if attempt > 1:
            logger.debug("[%s] %s: converged after %d attempts",
                         label_of(ctx), check.description or "check", attempt)
        return last_a, last_b

    async def retry_until_equal(
        self,
        probe: Callable[[], Awaitable[tuple[T, T]]],
        equals: Callable[[T, T], bool] | None = None,
        *,
        description: str = "",
        ctx: ScenarioContext | None = None,
    ) -> tuple[T, T]:
        """Shorthand for a one-off check (``==`` unless *equals* is given)."""
        check = ConsistencyCheck(probe, equals or (lambda a, b: a == b), description=description)
        return await self.retry_until(check, ctx)
