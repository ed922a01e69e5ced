"""
Commentary Pipeline

Glues detection, heuristics and the description queue together. The frame
loop never waits for a description: accepted frames are analyzed inline and
the description request is scheduled as a background task whose result is
handed to ``on_commentary``.

Usage:
    from scenecast.pipeline import build_pipeline
    from scenecast.frames import aiter_video_frames

    pipeline = build_pipeline(settings, on_commentary=print)
    await pipeline.run(aiter_video_frames("0"))
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Iterable, List, Optional, Set, Union

from .config import Settings
from .description_queue import DescriptionQueue, build_queue
from .detector.models import Detection, Detector
from .frames import encode_frame, frame_size
from .heuristics import SceneAnalyzer, Viewport
from .sampler import FrameSampler
from .scene import PersonAnnotation, SceneDescriptor

logger = logging.getLogger(__name__)

CLIP_FRAME_COUNT = 3


@dataclass
class FrameAnalysis:
    """Result of one pipeline step, used for overlays."""
    detections: List[Detection]
    annotations: List[PersonAnnotation]
    scene: Optional[SceneDescriptor] = None
    scheduled: bool = False
    timestamp: float = field(default_factory=time.time)

    @property
    def alerts(self) -> list:
        return [a.alert for a in self.annotations if a.alert is not None]

    def to_dict(self) -> dict:
        return {
            "detections": [d.to_dict() for d in self.detections],
            "annotations": [a.to_dict() for a in self.annotations],
            "scene": self.scene.to_dict() if self.scene else None,
            "scheduled": self.scheduled,
            "timestamp": self.timestamp,
        }


def clip_sample(frames: list, count: int = CLIP_FRAME_COUNT) -> list:
    """Up to `count` evenly spaced frames, each from the centre of its segment."""
    total = len(frames)
    count = min(count, total)
    return [frames[int((i + 0.5) * total / count)] for i in range(count)]


async def _aiter(frames: Union[Iterable, AsyncIterator]):
    if hasattr(frames, "__aiter__"):
        async for frame in frames:
            yield frame
    else:
        for frame in frames:
            yield frame


class CommentaryPipeline:
    """Frame loop front-end: detect, analyze, and occasionally describe."""

    def __init__(
        self,
        detector: Detector,
        analyzer: SceneAnalyzer,
        queue: DescriptionQueue,
        detection_sampler: Optional[FrameSampler] = None,
        commentary_sampler: Optional[FrameSampler] = None,
        encoder: Callable[[Any], Optional[str]] = encode_frame,
        on_commentary: Optional[Callable[[str], Any]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.detector = detector
        self.analyzer = analyzer
        self.queue = queue
        self.detection_sampler = detection_sampler or FrameSampler(0, clock)
        self.commentary_sampler = commentary_sampler or FrameSampler(0, clock)
        self.encoder = encoder
        self.on_commentary = on_commentary
        self.clock = clock

        self.last_commentary: Optional[str] = None
        self._inflight: Set[asyncio.Task] = set()
        self._stopped = False

    @property
    def stopped(self) -> bool:
        return self._stopped

    def stop(self):
        """Stop scheduling new descriptions; queued ones still finish."""
        self._stopped = True

    async def process_frame(self, frame: Any, now: Optional[float] = None,
                            viewport: Optional[Viewport] = None) -> Optional[FrameAnalysis]:
        """Analyze one frame. Returns None when the detection sampler drops it."""
        now = self.clock() if now is None else now
        if not self.detection_sampler.accept(now):
            return None

        # Detection is blocking (YOLO); analysis stays on the loop thread.
        loop = asyncio.get_running_loop()
        detections = await loop.run_in_executor(None, self.detector.detect, frame)
        viewport = viewport or Viewport(*frame_size(frame))

        describe = not self._stopped and self.commentary_sampler.accept(now)
        frame_b64 = self.encoder(frame) if describe else None

        scene, annotations = self.analyzer.analyze(
            detections, viewport, frame=frame, frame_b64=frame_b64, now=now,
        )
        analysis = FrameAnalysis(detections=list(detections), annotations=annotations, scene=scene)

        if describe:
            self._schedule(scene)
            analysis.scheduled = True

        for alert in analysis.alerts:
            logger.info(f"[{alert.type}] {alert.reason}")

        return analysis

    def _schedule(self, scene: SceneDescriptor):
        task = asyncio.get_running_loop().create_task(self.queue.enqueue(scene))
        self._inflight.add(task)
        task.add_done_callback(self._on_done)
        logger.debug(f"Scheduled description ({len(scene.people)} people, {len(scene.objects)} objects)")

    def _on_done(self, task: asyncio.Task):
        self._inflight.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Description task failed: {error}")
            return
        self._emit(task.result())

    def _emit(self, text: str):
        self.last_commentary = text
        if self.on_commentary is None:
            return
        try:
            self.on_commentary(text)
        except Exception as e:
            logger.warning(f"Commentary callback failed: {e}")

    async def wait_pending(self):
        """Wait for every scheduled description to be delivered."""
        while self._inflight:
            await asyncio.wait(set(self._inflight))

    async def run(self, frames: Union[Iterable, AsyncIterator],
                  stop_event: Optional[asyncio.Event] = None) -> int:
        """Consume frames until exhausted or stopped. Returns frames analyzed."""
        processed = 0
        try:
            async for frame in _aiter(frames):
                if stop_event is not None and stop_event.is_set():
                    logger.info("Stop requested, finishing queued descriptions")
                    break
                if await self.process_frame(frame) is not None:
                    processed += 1
        finally:
            self.stop()
            await self.wait_pending()
        return processed

    async def describe_clip(self, frames: Iterable[Any]) -> str:
        """Describe a recorded clip from its middle frame as a scenic view."""
        picks = clip_sample(list(frames))
        middle = picks[len(picks) // 2] if picks else None
        frame_b64 = self.encoder(middle) if middle is not None else None

        scene = SceneDescriptor(frame=frame_b64, is_scenic=True)
        text = await self.queue.enqueue(scene)
        self._emit(text)
        return text


def build_pipeline(
    settings: Optional[Settings] = None,
    detector: Optional[Detector] = None,
    queue: Optional[DescriptionQueue] = None,
    on_commentary: Optional[Callable[[str], Any]] = None,
) -> CommentaryPipeline:
    """Pipeline wired from settings (YOLO detector unless one is given)."""
    settings = settings or Settings.from_env()
    if detector is None:
        from .detector.yolo import YOLODetector
        detector = YOLODetector(
            model_path=settings.yolo_model,
            min_score=settings.min_score,
            max_results=settings.max_results,
        )

    def encoder(frame):
        return encode_frame(frame, scale=settings.frame_scale, quality=settings.jpeg_quality)

    return CommentaryPipeline(
        detector=detector,
        analyzer=SceneAnalyzer(settings),
        queue=queue or build_queue(settings),
        detection_sampler=FrameSampler(settings.detection_interval_ms),
        commentary_sampler=FrameSampler(settings.commentary_interval_ms),
        encoder=encoder,
        on_commentary=on_commentary,
    )


__all__ = ["CommentaryPipeline", "FrameAnalysis", "build_pipeline", "clip_sample"]
