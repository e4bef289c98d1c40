"""
Tests for comic_panel_narrator/retry.py
"""

import asyncio

import pytest

from comic_panel_narrator.exceptions import ModelExhaustedError
from comic_panel_narrator.retry import ModelPool, attempt_plan, call_with_fallbacks


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestAttemptPlan:
    def test_two_retries_per_model(self):
        plan = attempt_plan(["a", "b"], 2, 1.5)
        assert [(a.model, a.attempt, a.delay) for a in plan] == [
            ("a", 1, 0.0), ("a", 2, 1.5),
            ("b", 1, 0.0), ("b", 2, 1.5),
        ]
        assert len(plan) == 4

    def test_backoff_doubles(self):
        assert [a.delay for a in attempt_plan(["tts"], 3, 1.5)] == [0.0, 1.5, 3.0]

    def test_plan_is_restartable(self):
        plan = attempt_plan(["a"], 2, 1.0)
        assert list(plan) == list(plan)

    def test_needs_one_attempt(self):
        with pytest.raises(ValueError):
            attempt_plan(["a"], 0, 1.0)


class TestModelPool:
    def test_failed_model_cools_down(self):
        clock = FakeClock()
        pool = ModelPool(["a", "b"], cooldown_seconds=60, clock=clock)

        pool.record_failure("a")
        assert pool.is_cooling("a")
        assert pool.available() == ["b"]
        assert pool.health("a").fail_count == 1

        clock.now += 61
        assert pool.available() == ["a", "b"]

    def test_all_cooling_uses_all(self):
        pool = ModelPool(["a", "b"], clock=FakeClock())
        pool.record_failure("a")
        pool.record_failure("b")
        assert pool.available() == ["a", "b"]

    def test_success_resets_health(self):
        pool = ModelPool(["a"], clock=FakeClock())
        pool.record_failure("a")
        pool.record_success("a")
        assert pool.health("a").fail_count == 0
        assert not pool.is_cooling("a")

    def test_needs_models(self):
        with pytest.raises(ValueError):
            ModelPool([])


class TestCallWithFallbacks:
    def test_first_success_returns(self, sleep):
        pool = ModelPool(["a", "b"], clock=FakeClock())

        async def fn(model):
            return f"ok from {model}"

        assert asyncio.run(call_with_fallbacks(fn, pool, 2, 1.5, sleep=sleep)) == "ok from a"
        assert sleep.delays == []

    def test_falls_back_to_next_model(self, sleep):
        pool = ModelPool(["a", "b"], clock=FakeClock())
        calls = []

        async def fn(model):
            calls.append(model)
            if model == "a":
                raise RuntimeError("overloaded")
            return "ok"

        assert asyncio.run(call_with_fallbacks(fn, pool, 2, 1.5, sleep=sleep)) == "ok"
        assert calls == ["a", "a", "b"]
        assert sleep.delays == [1.5]
        assert pool.is_cooling("a")
        assert not pool.is_cooling("b")

    def test_exhaustion_carries_last_error(self, sleep):
        pool = ModelPool(["a", "b"], clock=FakeClock())
        seen = []

        async def fn(model):
            raise RuntimeError(f"down {model}")

        with pytest.raises(ModelExhaustedError) as excinfo:
            asyncio.run(call_with_fallbacks(
                fn, pool, 3, 1.5, sleep=sleep, on_attempt=lambda attempt, error: seen.append(attempt)))

        assert str(excinfo.value.last_error) == "down b"
        assert excinfo.value.models == ["a", "b"]
        assert sleep.delays == [1.5, 3.0, 1.5, 3.0]
        assert len(seen) == 6

    def test_cooling_model_is_skipped(self, sleep):
        pool = ModelPool(["a", "b"], clock=FakeClock())
        pool.record_failure("a")
        calls = []

        async def fn(model):
            calls.append(model)
            return model

        assert asyncio.run(call_with_fallbacks(fn, pool, 2, 1.5, sleep=sleep)) == "b"
        assert calls == ["b"]
