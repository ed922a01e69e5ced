"""
Tests for the description request queue: ordering, spacing, cooldown,
backoff, retries and degraded fallbacks.
"""

import asyncio
import logging
from unittest.mock import Mock, patch

import pytest

from scenecast.config import Settings
from scenecast.description_queue import DescriptionQueue, build_queue
from scenecast.exceptions import EmptyResponseError, ProviderError, RateLimitError
from scenecast.formatter import NO_DETECTION, RATE_LIMITED, fallback_description
from scenecast.llm_client import Completion
from scenecast.scene import SceneDescriptor

FRAME = "aGVsbG8="


def scene_with(label: str, frame: str = FRAME) -> SceneDescriptor:
    return SceneDescriptor(objects=(label,), frame=frame)


class ScriptedProvider:
    """Provider that replays scripted outcomes and records dispatch times."""

    def __init__(self, clock, outcomes=None):
        self.clock = clock
        self.outcomes = list(outcomes or [])
        self.calls = []

    async def complete(self, messages):
        text = messages[-1]["content"][-1]["text"]
        self.calls.append((self.clock(), text))
        await asyncio.sleep(0)

        outcome = self.outcomes.pop(0) if self.outcomes else f"described: {text}"
        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(outcome, Completion):
            return outcome
        return Completion(text=outcome, tokens=10)

    @property
    def dispatch_times(self):
        return [t for t, _ in self.calls]


def make_queue(clock, provider, **settings):
    return DescriptionQueue(provider, settings=Settings(**settings), clock=clock, sleep=clock.sleep)


class TestOrderingAndSpacing:
    """FIFO dispatch with a minimum gap between requests"""

    @pytest.mark.asyncio
    async def test_dispatches_in_enqueue_order(self, clock):
        """Requests reach the provider in the order they were enqueued"""
        provider = ScriptedProvider(clock)
        queue = make_queue(clock, provider)

        results = await asyncio.gather(*(queue.enqueue(scene_with(f"obj{i}")) for i in range(4)))

        dispatched = [text for _, text in provider.calls]
        for i, text in enumerate(dispatched):
            assert f"obj{i}" in text
        for i, result in enumerate(results):
            assert f"obj{i}" in result

    @pytest.mark.asyncio
    async def test_dispatches_respect_minimum_spacing(self, clock):
        """Back-to-back enqueues are dispatched at least min_spacing apart"""
        provider = ScriptedProvider(clock)
        queue = make_queue(clock, provider, min_spacing_ms=1000)

        await asyncio.gather(*(queue.enqueue(scene_with(f"obj{i}")) for i in range(3)))

        times = provider.dispatch_times
        assert len(times) == 3
        for earlier, later in zip(times, times[1:]):
            assert later - earlier >= 1.0

    @pytest.mark.asyncio
    async def test_first_request_is_not_delayed(self, clock):
        """Spacing only applies between requests"""
        provider = ScriptedProvider(clock)
        queue = make_queue(clock, provider)

        await queue.enqueue(scene_with("chair"))

        assert provider.dispatch_times == [1000.0]
        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_single_request_in_flight(self, clock):
        """The provider is never called concurrently"""
        in_flight = 0
        peak = 0

        class SlowProvider:
            async def complete(self, messages):
                nonlocal in_flight, peak
                in_flight += 1
                peak = max(peak, in_flight)
                await clock.sleep(0.5)
                in_flight -= 1
                return Completion("ok", tokens=5)

        queue = make_queue(clock, SlowProvider())
        await asyncio.gather(*(queue.enqueue(scene_with(f"obj{i}")) for i in range(3)))

        assert peak == 1


class TestRateLimitBackoff:
    """Rate-limited requests are retried with exponential backoff"""

    @pytest.mark.asyncio
    async def test_head_retried_after_two_backoffs(self, clock):
        """Task #1 fails twice, then succeeds; #2 and #3 wait for it"""
        provider = ScriptedProvider(clock, [RateLimitError(), RateLimitError(), "first ok"])
        queue = make_queue(clock, provider)

        results = await asyncio.gather(*(queue.enqueue(scene_with(f"obj{i}")) for i in range(3)))

        assert results[0] == "first ok"
        assert queue.stats.backoffs == 2
        assert clock.sleeps[:2] == [1.0, 2.0]

        texts = [text for _, text in provider.calls]
        assert all("obj0" in t for t in texts[:3])
        assert "obj1" in texts[3]
        assert "obj2" in texts[4]

    @pytest.mark.asyncio
    async def test_backoff_doubles_and_gives_up(self, clock):
        """After max_retries the caller gets the rate-limit message"""
        provider = ScriptedProvider(clock, [RateLimitError()] * 4)
        queue = make_queue(clock, provider, max_retries=3)

        result = await queue.enqueue(scene_with("chair"))

        assert result == RATE_LIMITED
        assert len(provider.calls) == 4
        assert clock.sleeps == [1.0, 2.0, 4.0]
        assert queue.stats.rate_limited == 1
        assert queue.pending == 0

    @pytest.mark.asyncio
    async def test_backoff_capped_at_ceiling(self, clock):
        """Backoff waits never exceed the configured ceiling"""
        provider = ScriptedProvider(clock, [RateLimitError()] * 5)
        queue = make_queue(clock, provider, max_retries=4, backoff_ceiling_ms=3000)

        await queue.enqueue(scene_with("chair"))

        assert clock.sleeps == [1.0, 2.0, 3.0, 3.0]

    @pytest.mark.asyncio
    async def test_success_halves_backoff(self, clock):
        """A success moves backoff back toward the floor"""
        provider = ScriptedProvider(clock, [RateLimitError(), RateLimitError(), "ok"])
        queue = make_queue(clock, provider)

        await queue.enqueue(scene_with("chair"))

        # 1000 -> 2000 -> 4000 after two waits, halved on success
        assert queue.limiter.backoff_ms == 2000

    @pytest.mark.asyncio
    async def test_openai_style_error_body_is_retried(self, clock):
        """Errors carrying the provider's token rate-limit payload are retried"""
        error = Exception("429")
        error.body = {"error": {"type": "tokens", "code": "rate_limit_exceeded"}}
        provider = ScriptedProvider(clock, [error, "ok"])
        queue = make_queue(clock, provider)

        assert await queue.enqueue(scene_with("chair")) == "ok"
        assert queue.stats.backoffs == 1

    @pytest.mark.asyncio
    async def test_custom_rate_limit_predicate(self, clock):
        """Classification of rate-limit errors is pluggable"""
        provider = ScriptedProvider(clock, [TimeoutError("slow down"), "ok"])
        queue = DescriptionQueue(
            provider,
            settings=Settings(),
            rate_limit_predicate=lambda e: isinstance(e, TimeoutError),
            clock=clock,
            sleep=clock.sleep,
        )

        assert await queue.enqueue(scene_with("chair")) == "ok"
        assert len(provider.calls) == 2

    @pytest.mark.asyncio
    async def test_failing_predicate_is_logged(self, clock, caplog):
        """A broken classifier stops the worker cleanly and every caller gets an answer"""
        provider = ScriptedProvider(clock, [ProviderError("boom"), "never sent"])

        def predicate(error):
            raise ValueError("classifier bug")

        queue = DescriptionQueue(
            provider,
            settings=Settings(),
            rate_limit_predicate=predicate,
            clock=clock,
            sleep=clock.sleep,
        )
        scenes = [scene_with("a"), scene_with("b")]

        with caplog.at_level(logging.ERROR, logger="scenecast.description_queue"):
            results = await asyncio.gather(*(queue.enqueue(s) for s in scenes))
            await queue.drain()

        assert results == [fallback_description(s) for s in scenes]
        assert queue._worker.exception() is None
        assert any("classifier bug" in r.getMessage() for r in caplog.records)


class TestCooldown:
    """Dispatch pauses while the token window is near its budget"""

    @pytest.mark.asyncio
    async def test_waits_for_window_reset(self, clock):
        """At 85% of the budget nothing is dispatched until the window resets"""
        provider = ScriptedProvider(clock)
        queue = make_queue(clock, provider, tokens_per_minute=30000, cooldown_threshold=0.8)
        window_start = clock()
        queue.limiter.record(25500)

        result = await queue.enqueue(scene_with("chair"))

        assert "chair" in result
        assert provider.dispatch_times[0] >= window_start + 60.0
        assert queue.stats.cooldowns == 1
        assert queue.limiter.tokens_used == 10

    @pytest.mark.asyncio
    async def test_below_threshold_dispatches_immediately(self, clock):
        provider = ScriptedProvider(clock)
        queue = make_queue(clock, provider)
        queue.limiter.record(24000)

        await queue.enqueue(scene_with("chair"))

        assert provider.dispatch_times == [1000.0]
        assert queue.stats.cooldowns == 0

    @pytest.mark.asyncio
    async def test_token_estimate_without_usage(self, clock):
        """Without reported usage, tokens are estimated from the text length"""
        provider = ScriptedProvider(clock, [Completion(text="x" * 30, tokens=None)])
        queue = make_queue(clock, provider)

        await queue.enqueue(scene_with("chair"))

        assert queue.stats.tokens_used == 10


class TestDegradedResults:
    """Every enqueue resolves with a string, even when the provider fails"""

    @pytest.mark.asyncio
    async def test_no_provider_uses_fallback(self, clock):
        """Without credentials no network call is attempted"""
        with patch("scenecast.llm_client.openai.AsyncOpenAI") as client_cls, \
                patch("scenecast.llm_client.requests.Session") as session_cls:
            queue = build_queue(Settings(api_key=""), clock=clock, sleep=clock.sleep)
            scene = SceneDescriptor(objects=("chair", "cup"), frame=FRAME)

            results = [await queue.enqueue(scene) for _ in range(3)]

        assert queue.provider is None
        assert results == [fallback_description(scene)] * 3
        client_cls.assert_not_called()
        session_cls.assert_not_called()
        assert queue.stats.dispatched == 0

    @pytest.mark.asyncio
    async def test_provider_error_degrades_without_retry(self, clock):
        provider = ScriptedProvider(clock, [ProviderError("connection refused")])
        queue = make_queue(clock, provider)
        scene = scene_with("chair")

        result = await queue.enqueue(scene)

        assert result == fallback_description(scene)
        assert len(provider.calls) == 1
        assert queue.stats.backoffs == 0

    @pytest.mark.asyncio
    async def test_empty_response_degrades(self, clock):
        provider = ScriptedProvider(clock, [EmptyResponseError("empty")])
        queue = make_queue(clock, provider)
        scene = scene_with("chair")

        assert await queue.enqueue(scene) == fallback_description(scene)

    @pytest.mark.asyncio
    async def test_unexpected_error_is_logged_and_degrades(self, clock, caplog):
        provider = ScriptedProvider(clock, [KeyError("choices")])
        queue = make_queue(clock, provider)
        scene = scene_with("chair")

        with caplog.at_level(logging.ERROR, logger="scenecast.description_queue"):
            result = await queue.enqueue(scene)

        assert result == fallback_description(scene)
        assert any(r.exc_info for r in caplog.records)

    @pytest.mark.asyncio
    async def test_failure_does_not_block_next_task(self, clock):
        provider = ScriptedProvider(clock, [ProviderError("boom"), "second ok"])
        queue = make_queue(clock, provider)

        results = await asyncio.gather(queue.enqueue(scene_with("a")), queue.enqueue(scene_with("b")))

        assert results[1] == "second ok"

    @pytest.mark.asyncio
    async def test_scene_error_pauses_without_request(self, clock):
        provider = ScriptedProvider(clock)
        queue = make_queue(clock, provider)

        result = await queue.enqueue(SceneDescriptor(frame=FRAME, error="camera disconnected"))

        assert result == "Analysis paused: camera disconnected"
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_missing_frame_uses_fallback(self, clock):
        provider = ScriptedProvider(clock)
        queue = make_queue(clock, provider)

        result = await queue.enqueue(SceneDescriptor())

        assert result == NO_DETECTION
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_missing_frame_allowed_when_configured(self, clock):
        provider = ScriptedProvider(clock)
        queue = make_queue(clock, provider, describe_without_frame=True)

        await queue.enqueue(scene_with("chair", frame=None))

        assert len(provider.calls) == 1


class TestLifecycle:
    """close() and drain()"""

    @pytest.mark.asyncio
    async def test_close_finishes_queued_work(self, clock):
        provider = ScriptedProvider(clock)
        queue = make_queue(clock, provider)

        pending = [asyncio.ensure_future(queue.enqueue(scene_with(f"obj{i}"))) for i in range(3)]
        await asyncio.sleep(0)
        await queue.close()

        assert queue.pending == 0
        assert not queue.processing
        results = await asyncio.gather(*pending)
        assert all("obj" in r for r in results)
        assert len(provider.calls) == 3

    @pytest.mark.asyncio
    async def test_enqueue_after_close_uses_fallback(self, clock):
        provider = ScriptedProvider(clock)
        queue = make_queue(clock, provider)
        await queue.close()

        scene = scene_with("chair")
        assert await queue.enqueue(scene) == fallback_description(scene)
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_stats_snapshot(self, clock):
        provider = ScriptedProvider(clock, [RateLimitError(), "ok"])
        queue = make_queue(clock, provider)

        await queue.enqueue(scene_with("chair"))
        stats = queue.to_dict()

        assert stats["queue"]["enqueued"] == 1
        assert stats["queue"]["dispatched"] == 2
        assert stats["queue"]["succeeded"] == 1
        assert stats["queue"]["backoffs"] == 1
        assert stats["queue"]["pending"] == 0
        assert stats["processing"] is False
        assert stats["limiter"]["tokens_used"] == 10

    def test_build_queue_uses_created_provider(self):
        provider = Mock()
        with patch("scenecast.description_queue.create_provider", return_value=provider) as factory:
            queue = build_queue(Settings(api_key="sk-test"))

        factory.assert_called_once()
        assert queue.provider is provider
