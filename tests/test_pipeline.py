"""
Tests for the commentary pipeline (frame loop + description scheduling)
"""

import asyncio
from unittest.mock import Mock

import numpy as np
import pytest

from scenecast.config import Settings
from scenecast.description_queue import DescriptionQueue
from scenecast.detector.models import Detection
from scenecast.formatter import NO_DETECTION, SCENIC_FALLBACK
from scenecast.heuristics import SceneAnalyzer
from scenecast.pipeline import CommentaryPipeline, build_pipeline, clip_sample
from scenecast.sampler import FrameSampler

FRAME_B64 = "aGVsbG8="


def blank_frame():
    return np.zeros((720, 1280, 3), dtype=np.uint8)


def make_pipeline(clock, detections=None, queue=None, detection_ms=0, commentary_ms=0, **kwargs):
    detector = Mock()
    detector.detect.return_value = detections or []
    return CommentaryPipeline(
        detector=detector,
        analyzer=SceneAnalyzer(clock=clock),
        queue=queue or DescriptionQueue(None, Settings(), clock=clock, sleep=clock.sleep),
        detection_sampler=FrameSampler(detection_ms, clock),
        commentary_sampler=FrameSampler(commentary_ms, clock),
        encoder=Mock(return_value=FRAME_B64),
        clock=clock,
        **kwargs,
    )


class TestProcessFrame:

    @pytest.mark.asyncio
    async def test_detection_sampler_drops_frames(self, clock):
        pipeline = make_pipeline(clock, detection_ms=200)

        assert await pipeline.process_frame(blank_frame()) is not None
        clock.advance(0.1)
        assert await pipeline.process_frame(blank_frame()) is None
        assert pipeline.detector.detect.call_count == 1

    @pytest.mark.asyncio
    async def test_schedules_description(self, clock):
        received = []
        pipeline = make_pipeline(
            clock,
            detections=[Detection((0, 0, 10, 10), "chair", 0.9)],
            on_commentary=received.append,
        )

        analysis = await pipeline.process_frame(blank_frame())
        await pipeline.wait_pending()

        assert analysis.scheduled
        assert analysis.scene.frame == FRAME_B64
        assert received == ["Nearby objects include chair."]
        assert pipeline.last_commentary == received[0]

    @pytest.mark.asyncio
    async def test_commentary_sampler_limits_requests(self, clock):
        """Frames between commentary intervals still produce overlays"""
        pipeline = make_pipeline(
            clock,
            detections=[Detection((100, 100, 50, 200), "person", 0.9)],
            commentary_ms=10000,
        )

        first = await pipeline.process_frame(blank_frame())
        clock.advance(1)
        second = await pipeline.process_frame(blank_frame())
        await pipeline.wait_pending()

        assert first.scheduled
        assert not second.scheduled
        assert second.scene.frame is None
        assert len(second.annotations) == 1
        assert pipeline.encoder.call_count == 1

    @pytest.mark.asyncio
    async def test_frame_loop_does_not_wait_for_commentary(self, clock):
        release = asyncio.Event()

        class BlockingQueue:
            async def enqueue(self, scene):
                await release.wait()
                return "late"

        received = []
        pipeline = make_pipeline(clock, queue=BlockingQueue(), on_commentary=received.append)

        analysis = await pipeline.process_frame(blank_frame())

        assert analysis.scheduled
        assert received == []

        release.set()
        await pipeline.wait_pending()
        assert received == ["late"]

    @pytest.mark.asyncio
    async def test_callback_errors_are_contained(self, clock):
        pipeline = make_pipeline(clock, on_commentary=Mock(side_effect=RuntimeError("ui gone")))

        await pipeline.process_frame(blank_frame())
        await pipeline.wait_pending()

        assert pipeline.last_commentary == NO_DETECTION

    @pytest.mark.asyncio
    async def test_alerts_exposed(self, clock):
        pipeline = make_pipeline(clock, detections=[
            Detection((100, 100, 50, 200), "person", 0.9),
            Detection((150, 100, 50, 200), "person", 0.8),
        ])

        analysis = await pipeline.process_frame(blank_frame())
        await pipeline.wait_pending()

        assert [a.type for a in analysis.alerts] == ["warning", "warning"]
        assert analysis.to_dict()["annotations"][0]["annotation"]["alert"]["type"] == "warning"


class TestRun:

    @pytest.mark.asyncio
    async def test_consumes_all_frames(self, clock):
        received = []
        pipeline = make_pipeline(clock, commentary_ms=1000, on_commentary=received.append)

        async def frames():
            for _ in range(5):
                yield blank_frame()
                clock.advance(0.5)

        processed = await pipeline.run(frames())

        assert processed == 5
        assert len(received) == 3
        assert pipeline.stopped

    @pytest.mark.asyncio
    async def test_accepts_plain_iterables(self, clock):
        pipeline = make_pipeline(clock)
        assert await pipeline.run([blank_frame(), blank_frame()]) == 2

    @pytest.mark.asyncio
    async def test_stop_event(self, clock):
        stop = asyncio.Event()
        pipeline = make_pipeline(clock)

        def frames():
            yield blank_frame()
            stop.set()
            yield blank_frame()

        assert await pipeline.run(frames(), stop_event=stop) == 1

    @pytest.mark.asyncio
    async def test_no_new_descriptions_after_stop(self, clock):
        pipeline = make_pipeline(clock)
        pipeline.stop()

        analysis = await pipeline.process_frame(blank_frame())

        assert analysis is not None
        assert not analysis.scheduled


class TestDescribeClip:

    @pytest.mark.asyncio
    async def test_uses_middle_frame(self, clock):
        pipeline = make_pipeline(clock)
        frames = ["first", "middle", "last"]

        text = await pipeline.describe_clip(frames)

        pipeline.encoder.assert_called_once_with("middle")
        assert text == SCENIC_FALLBACK

    @pytest.mark.asyncio
    async def test_long_clip_uses_frame_from_the_middle(self, clock):
        """Frames are spread over the whole clip, not taken from its start"""
        pipeline = make_pipeline(clock)

        await pipeline.describe_clip(list(range(9)))

        pipeline.encoder.assert_called_once_with(4)

    def test_clip_sample_spacing(self):
        assert clip_sample(list(range(9))) == [1, 4, 7]
        assert clip_sample(list(range(30))) == [5, 15, 25]
        assert clip_sample(["a", "b"]) == ["a", "b"]
        assert clip_sample([]) == []

    @pytest.mark.asyncio
    async def test_no_frames(self, clock):
        pipeline = make_pipeline(clock)

        assert await pipeline.describe_clip([]) == SCENIC_FALLBACK
        pipeline.encoder.assert_not_called()

    @pytest.mark.asyncio
    async def test_scenic_scene_sent_to_queue(self, clock):
        queue = Mock()
        queue.enqueue = Mock(side_effect=lambda scene: asyncio.sleep(0, result=scene))
        pipeline = make_pipeline(clock, queue=queue)

        scene = await pipeline.describe_clip(["a", "b"])

        assert scene.is_scenic
        assert scene.frame == FRAME_B64
        assert scene.is_empty


class TestBuildPipeline:

    def test_wires_settings(self):
        detector = Mock()
        settings = Settings(detection_interval_ms=500, commentary_interval_ms=5000)

        pipeline = build_pipeline(settings, detector=detector)

        assert pipeline.detector is detector
        assert pipeline.detection_sampler.interval == 0.5
        assert pipeline.commentary_sampler.interval == 5.0
        assert pipeline.queue.provider is None
