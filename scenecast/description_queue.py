"""
Description Request Queue

Serializes every outbound description request through one worker:

- strict FIFO, at most one request in flight
- cooldown while the token window is close to its budget
- exponential backoff and bounded retries on provider rate limits
- a string result for every caller (model text, template fallback or an
  explicit rate-limit message), never an exception

Usage:
    from scenecast.description_queue import build_queue

    queue = build_queue(settings)
    text = await queue.enqueue(scene)
    await queue.close()
"""

import asyncio
import logging
import time
from collections import deque
from dataclasses import asdict, dataclass
from typing import Awaitable, Callable, Deque, Dict, Optional

from .config import Settings
from .exceptions import ProviderError
from .formatter import RATE_LIMITED, build_messages, fallback_description, paused_message
from .llm_client import DescriptionProvider, create_provider, is_rate_limit_error
from .rate_limiter import RateLimiter, estimate_tokens
from .scene import SceneDescriptor

logger = logging.getLogger(__name__)


@dataclass
class QueueTask:
    """One pending description request."""
    scene: SceneDescriptor
    future: "asyncio.Future[str]"
    retry_count: int = 0


@dataclass
class QueueStats:
    enqueued: int = 0
    dispatched: int = 0
    succeeded: int = 0
    degraded: int = 0
    rate_limited: int = 0
    backoffs: int = 0
    cooldowns: int = 0
    pending: int = 0
    tokens_used: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


class DescriptionQueue:
    """Single-worker FIFO in front of a description provider.

    The worker task is started lazily by the first queued request and exits
    when the queue is empty. Clock and sleep are injectable so the timing
    behaviour can be driven by a fake clock.
    """

    def __init__(
        self,
        provider: Optional[DescriptionProvider],
        settings: Optional[Settings] = None,
        limiter: Optional[RateLimiter] = None,
        rate_limit_predicate: Callable[[BaseException], bool] = is_rate_limit_error,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.provider = provider
        self.settings = settings or Settings()
        self.limiter = limiter or RateLimiter.from_settings(self.settings, clock=clock)
        self.is_rate_limit_error = rate_limit_predicate
        self.clock = clock
        self.sleep = sleep

        self.max_retries = self.settings.max_retries
        self.min_spacing = self.settings.min_spacing_ms / 1000.0

        self._tasks: Deque[QueueTask] = deque()
        self._worker: Optional[asyncio.Task] = None
        self._last_dispatch: Optional[float] = None
        self._closed = False
        self._stats = QueueStats()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def pending(self) -> int:
        return len(self._tasks)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def processing(self) -> bool:
        return self._worker is not None and not self._worker.done()

    @property
    def stats(self) -> QueueStats:
        self._stats.pending = len(self._tasks)
        self._stats.tokens_used = self.limiter.tokens_used
        return self._stats

    async def enqueue(self, scene: SceneDescriptor) -> str:
        """Describe a scene. Always returns a non-empty string."""
        self._stats.enqueued += 1

        if self._closed:
            logger.debug("Queue closed, using fallback description")
            return self._degrade(scene)
        if self.provider is None:
            return self._degrade(scene)
        if scene.error:
            self._stats.degraded += 1
            return paused_message(scene.error)
        if not scene.frame and not self.settings.describe_without_frame:
            logger.debug("No frame attached, using fallback description")
            return self._degrade(scene)

        future = asyncio.get_running_loop().create_future()
        self._tasks.append(QueueTask(scene=scene, future=future))
        self._ensure_worker()
        return await future

    async def drain(self):
        """Wait until every queued request has been resolved."""
        while self.processing:
            await asyncio.wait({self._worker})

    async def close(self):
        """Stop accepting work and let queued requests finish."""
        self._closed = True
        await self.drain()

    def to_dict(self) -> dict:
        return {
            "queue": self.stats.to_dict(),
            "limiter": self.limiter.to_dict(),
            "processing": self.processing,
            "closed": self._closed,
        }

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    def _ensure_worker(self):
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(self._run())

    async def _run(self):
        try:
            await self._drain_tasks()
        except Exception as e:
            logger.exception(f"Description worker stopped: {e}")
        finally:
            # Anything left behind (worker cancelled) still gets an answer.
            while self._tasks:
                task = self._tasks.popleft()
                self._resolve(task, self._degrade(task.scene))

    async def _drain_tasks(self):
        while self._tasks:
            task = self._tasks[0]

            if task.future.done():
                # Caller went away
                self._tasks.popleft()
                continue

            if self.limiter.should_cool_down():
                wait = max(self.limiter.time_until_reset(), self.limiter.backoff_floor_ms / 1000.0)
                self._stats.cooldowns += 1
                logger.info(
                    f"Token budget near limit ({self.limiter.tokens_used}/{self.limiter.tokens_per_minute}), "
                    f"cooling down for {wait:.1f}s"
                )
                await self.sleep(wait)
                continue

            await self._wait_for_spacing()

            try:
                text = await self._dispatch(task)
            except Exception as e:
                if self.is_rate_limit_error(e):
                    await self._handle_rate_limit(task, e)
                    continue
                if isinstance(e, ProviderError):
                    logger.warning(f"Description request failed, using fallback: {e}")
                else:
                    logger.exception(f"Unexpected error while describing scene: {e}")
                self._tasks.popleft()
                self._resolve(task, self._degrade(task.scene))
                continue

            self._tasks.popleft()
            self._resolve(task, text)

    async def _wait_for_spacing(self):
        if self._last_dispatch is None:
            return
        wait = self.min_spacing - (self.clock() - self._last_dispatch)
        if wait > 0:
            await self.sleep(wait)

    async def _dispatch(self, task: QueueTask) -> str:
        self._last_dispatch = self.clock()
        self._stats.dispatched += 1
        logger.debug(f"Dispatching description request (attempt {task.retry_count + 1}, {len(self._tasks)} queued)")

        completion = await self.provider.complete(build_messages(task.scene))

        tokens = completion.tokens if completion.tokens is not None else estimate_tokens(completion.text)
        self.limiter.record(tokens)
        self.limiter.relax()
        self._stats.succeeded += 1
        return completion.text

    async def _handle_rate_limit(self, task: QueueTask, error: BaseException):
        task.retry_count += 1
        if task.retry_count > self.max_retries:
            logger.warning(f"Rate limit persisted after {self.max_retries} retries, giving up on request")
            self._tasks.popleft()
            self._stats.rate_limited += 1
            self._resolve(task, RATE_LIMITED)
            return

        wait_ms = self.limiter.next_backoff_ms()
        self._stats.backoffs += 1
        logger.info(f"Rate limited ({error}), retry {task.retry_count}/{self.max_retries} in {wait_ms}ms")
        await self.sleep(wait_ms / 1000.0)

    def _degrade(self, scene: SceneDescriptor) -> str:
        self._stats.degraded += 1
        return fallback_description(scene)

    @staticmethod
    def _resolve(task: QueueTask, text: str):
        if not task.future.done():
            task.future.set_result(text)


def build_queue(
    settings: Optional[Settings] = None,
    provider: Optional[DescriptionProvider] = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> DescriptionQueue:
    """Queue wired to the configured provider (template-only without one)."""
    settings = settings or Settings.from_env()
    if provider is None:
        provider = create_provider(settings)
    return DescriptionQueue(provider, settings=settings, clock=clock, sleep=sleep)


__all__ = ["DescriptionQueue", "QueueStats", "QueueTask", "build_queue"]
