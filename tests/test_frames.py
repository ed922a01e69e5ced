"""
Tests for frame helpers
"""

from unittest.mock import patch

import numpy as np
import pytest

from scenecast.frames import aiter_video_frames, frame_size, strip_data_url, to_data_url


class TestDataUrls:

    def test_strip_prefix(self):
        assert strip_data_url("data:image/png;base64,aGVsbG8=") == "aGVsbG8="

    def test_raw_base64_unchanged(self):
        assert strip_data_url("aGVsbG8=") == "aGVsbG8="

    def test_to_data_url_is_idempotent(self):
        url = to_data_url("aGVsbG8=")
        assert url == "data:image/jpeg;base64,aGVsbG8="
        assert to_data_url(url) == url


def test_frame_size():
    assert frame_size(np.zeros((720, 1280, 3), dtype=np.uint8)) == (1280, 720)


class TestAsyncFrames:

    @pytest.mark.asyncio
    async def test_reads_every_frame_in_executor(self):
        with patch("scenecast.frames.iter_video_frames", return_value=iter(["f1", "f2", "f3"])) as reader:
            frames = [frame async for frame in aiter_video_frames("clip.mp4", fps=5)]

        assert frames == ["f1", "f2", "f3"]
        reader.assert_called_once_with("clip.mp4", 5)
