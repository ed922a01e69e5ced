"""
Frame helpers: capture, downscale and base64 encoding for description requests.

OpenCV is imported lazily so the analysis core works without it.
"""

import asyncio
import base64
import logging
import re
from typing import AsyncIterator, Iterator, Optional, Tuple, Union

logger = logging.getLogger(__name__)

_DATA_URL_RE = re.compile(r"^data:image/(png|jpeg|jpg);base64,(.*)$", re.DOTALL)


def strip_data_url(value: str) -> str:
    """Return the bare base64 payload of a data URL (or the value unchanged)."""
    match = _DATA_URL_RE.match(value)
    return match.group(2) if match else value


def to_data_url(image_b64: str) -> str:
    return f"data:image/jpeg;base64,{strip_data_url(image_b64)}"


def frame_size(frame) -> Tuple[int, int]:
    """(width, height) of an HxWxC numpy frame."""
    height, width = frame.shape[:2]
    return int(width), int(height)


def encode_frame(frame, scale: float = 0.5, quality: int = 70) -> Optional[str]:
    """Downscale a BGR frame and return it as base64 JPEG.

    Returns None when the frame is empty or cannot be encoded; callers treat
    that as a scene without an image.
    """
    import cv2

    if frame is None or getattr(frame, "size", 0) == 0:
        return None

    try:
        if scale != 1.0:
            width, height = frame_size(frame)
            size = (max(1, int(width * scale)), max(1, int(height * scale)))
            frame = cv2.resize(frame, size, interpolation=cv2.INTER_AREA)
        ok, jpeg = cv2.imencode(".jpg", frame, [cv2.IMWRITE_JPEG_QUALITY, int(quality)])
    except cv2.error as e:
        logger.warning(f"Error capturing frame: {e}")
        return None

    if not ok:
        return None
    return base64.b64encode(jpeg.tobytes()).decode()


def iter_video_frames(source: Union[str, int], fps: float = 0.0) -> Iterator:
    """Yield frames from a video file, stream URL or camera index.

    Args:
        source: Path, URL, or camera index ("0" is treated as index 0)
        fps: Drop frames to approximately this rate (0 = every frame)
    """
    import cv2

    if isinstance(source, str) and source.isdigit():
        source = int(source)

    cap = cv2.VideoCapture(source)
    if not cap.isOpened():
        raise IOError(f"Cannot open video source: {source}")

    native_fps = cap.get(cv2.CAP_PROP_FPS) or 0.0
    step = 1
    if fps > 0 and native_fps > fps:
        step = max(1, int(round(native_fps / fps)))

    try:
        index = 0
        while True:
            ok, frame = cap.read()
            if not ok:
                break
            if index % step == 0:
                yield frame
            index += 1
    finally:
        cap.release()


async def aiter_video_frames(source: Union[str, int], fps: float = 0.0) -> AsyncIterator:
    """Async wrapper around iter_video_frames; reads run in the default executor."""
    loop = asyncio.get_running_loop()
    frames = iter_video_frames(source, fps)
    sentinel = object()

    while True:
        frame = await loop.run_in_executor(None, next, frames, sentinel)
        if frame is sentinel:
            break
        yield frame


def read_clip_frames(path: str, count: int = 3) -> list:
    """Grab up to `count` evenly spaced frames from a video file."""
    import cv2

    cap = cv2.VideoCapture(path)
    if not cap.isOpened():
        raise IOError(f"Failed to load video file: {path}")

    try:
        total = int(cap.get(cv2.CAP_PROP_FRAME_COUNT) or 0)
        if total <= 0:
            return []
        count = max(1, min(count, total))
        frames = []
        for i in range(count):
            cap.set(cv2.CAP_PROP_POS_FRAMES, int(i * total / count))
            ok, frame = cap.read()
            if ok:
                frames.append(frame)
        return frames
    finally:
        cap.release()
