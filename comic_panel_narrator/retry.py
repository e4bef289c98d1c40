"""
Retry within a model, fall back across models.

`AttemptPlan` lays out every attempt up front as a lazy sequence of
`Attempt(model, attempt, delay)` so timing and exhaustion are testable
without sleeping. `ModelPool` keeps per-model health and decides which
models a plan should cover. `call_with_fallbacks` walks a plan.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Iterator, List, Optional, Sequence, TypeVar

from .exceptions import ModelExhaustedError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class ModelHealth:
    fail_count: int = 0
    cooldown_until: float = 0.0


class ModelPool:
    """Ordered fallback list of model names with health tracking and an injectable clock."""

    def __init__(self, models: Sequence[str], cooldown_seconds: float = 60.0,
                 clock: Callable[[], float] = time.monotonic):
        if not models:
            raise ValueError("ModelPool needs at least one model")
        self.models: List[str] = list(models)
        self.cooldown_seconds = cooldown_seconds
        self.clock = clock
        self._health: Dict[str, ModelHealth] = {m: ModelHealth() for m in self.models}

    def health(self, model: str) -> ModelHealth:
        return self._health[model]

    def is_cooling(self, model: str) -> bool:
        return self._health[model].cooldown_until > self.clock()

    def available(self) -> List[str]:
        """Models to try, in priority order. If every model is cooling down, all of them."""
        ready = [m for m in self.models if not self.is_cooling(m)]
        return ready or list(self.models)

    def record_failure(self, model: str) -> None:
        health = self._health[model]
        health.fail_count += 1
        health.cooldown_until = self.clock() + self.cooldown_seconds

    def record_success(self, model: str) -> None:
        health = self._health[model]
        health.fail_count = 0
        health.cooldown_until = 0.0


@dataclass(frozen=True)
class Attempt:
    model: str
    attempt: int  # 1-based, per model
    delay: float  # seconds to wait before this attempt


class AttemptPlan:
    """
    Finite, restartable sequence of attempts.

    Each model gets `retries_per_model` attempts. The first attempt on a model
    starts immediately; attempt n waits `base_delay * 2 ** (n - 2)`.
    Iterating again starts over.
    """

    def __init__(self, models: Sequence[str], retries_per_model: int, base_delay: float):
        if retries_per_model < 1:
            raise ValueError("retries_per_model must be at least 1")
        self.models = list(models)
        self.retries_per_model = retries_per_model
        self.base_delay = base_delay

    def __iter__(self) -> Iterator[Attempt]:
        for model in self.models:
            for attempt in range(1, self.retries_per_model + 1):
                delay = 0.0 if attempt == 1 else self.base_delay * 2 ** (attempt - 2)
                yield Attempt(model, attempt, delay)

    def __len__(self) -> int:
        return len(self.models) * self.retries_per_model


def attempt_plan(models: Sequence[str], retries_per_model: int, base_delay: float) -> AttemptPlan:
    return AttemptPlan(models, retries_per_model, base_delay)


async def call_with_fallbacks(
    fn: Callable[[str], Awaitable[T]],
    pool: ModelPool,
    retries_per_model: int,
    base_delay: float,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    on_attempt: Optional[Callable[[Attempt, BaseException], None]] = None,
) -> T:
    """
    Call `fn(model)` following the pool's plan until one attempt succeeds.

    Raises ModelExhaustedError carrying the last error once every attempt has
    failed.
    """
    models = pool.available()
    last_error: Optional[BaseException] = None

    for attempt in attempt_plan(models, retries_per_model, base_delay):
        if attempt.delay > 0:
            await sleep(attempt.delay)
        try:
            result = await fn(attempt.model)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            last_error = e
            if on_attempt is not None:
                on_attempt(attempt, e)
            if attempt.attempt < retries_per_model:
                logger.warning(f"⚠️ [{attempt.model}] Failed (attempt {attempt.attempt}/{retries_per_model}). Retrying... {e}")
            else:
                pool.record_failure(attempt.model)
                logger.warning(f"⚠️ Model {attempt.model} failed after {retries_per_model} attempts, trying next model. {e}")
            continue

        pool.record_success(attempt.model)
        return result

    logger.error(f"❌ All fallback models failed: {', '.join(models)}")
    raise ModelExhaustedError(models, last_error)
