"""
Thumbnail Extractor
Seeks to a timestamp, rasterizes a single frame and encodes it as a JPEG still
"""

import io
import logging
from typing import Any, Callable, Iterable, List, Optional

import cv2
from PIL import Image

from .exceptions import FrameCaptureFailed, SeekFailed
from .media import SourceMedia, Thumbnail

logger = logging.getLogger(__name__)

DEFAULT_FRAME_PERIOD = 1 / 25


def clamp_timestamp(timestamp: float, duration: float, fps: float = 0.0) -> float:
    """Clamp into [0, duration); the upper bound backs off by one frame period"""
    timestamp = max(0.0, float(timestamp))
    if duration <= 0:
        return timestamp
    frame_period = 1 / fps if fps > 0 else DEFAULT_FRAME_PERIOD
    upper = max(0.0, duration - frame_period)
    return min(timestamp, upper)


class ThumbnailExtractor:
    def __init__(self, config=None, capture_factory: Optional[Callable[[SourceMedia], Any]] = None):
        get = (lambda key, default: config.get(key, default)) if config is not None else (lambda key, default: default)
        self.default_timestamp = float(get('thumbnail.default_timestamp', 5.0))
        self.width = int(get('thumbnail.width', 640))
        self.height = int(get('thumbnail.height', 360))
        self.quality = int(get('thumbnail.jpeg_quality', 80))
        self.snapshot_width = int(get('thumbnail.snapshot_width', 1280))
        self.snapshot_height = int(get('thumbnail.snapshot_height', 720))
        self.snapshot_quality = int(get('thumbnail.snapshot_quality', 95))
        self.capture_factory = capture_factory or (lambda source: cv2.VideoCapture(str(source.path)))

    def extract_thumbnail(self, source: SourceMedia, timestamp: Optional[float] = None) -> Thumbnail:
        """Grab one frame at (clamped) timestamp as a 640x360 JPEG"""
        timestamp = self.default_timestamp if timestamp is None else timestamp
        return self._extract(source, timestamp, self.width, self.height, self.quality)

    def extract_snapshots(self, source: SourceMedia, timestamps: Iterable[float]) -> List[Thumbnail]:
        """High-resolution stills for several timestamps"""
        snapshots = []
        for timestamp in timestamps:
            snapshots.append(self._extract(source, timestamp, self.snapshot_width,
                                           self.snapshot_height, self.snapshot_quality))
        logger.info(f"Extracted {len(snapshots)} snapshots from {source.name}")
        return snapshots

    def _extract(self, source: SourceMedia, timestamp: float, width: int, height: int, quality: int) -> Thumbnail:
        capture = self.capture_factory(source)
        try:
            if not capture.isOpened():
                raise FrameCaptureFailed("Source could not be opened for frame capture",
                                         source_path=str(source.path))

            duration, fps = source.duration, source.fps
            if duration <= 0:
                fps = capture.get(cv2.CAP_PROP_FPS) or 0.0
                frame_count = capture.get(cv2.CAP_PROP_FRAME_COUNT) or 0.0
                duration = frame_count / fps if fps > 0 else 0.0

            used = clamp_timestamp(timestamp, duration, fps)
            if used != timestamp:
                logger.debug(f"Thumbnail timestamp {timestamp:.2f}s clamped to {used:.2f}s")

            if not capture.set(cv2.CAP_PROP_POS_MSEC, used * 1000):
                raise SeekFailed(f"Seek to {used:.2f}s failed", source_path=str(source.path))

            ok, frame = capture.read()
            if not ok or frame is None:
                raise FrameCaptureFailed(f"No frame decoded at {used:.2f}s", source_path=str(source.path))

            image = self._encode_jpeg(frame, width, height, quality)
        finally:
            capture.release()

        logger.debug(f"Thumbnail at {used:.2f}s: {width}x{height}, {len(image)} bytes")
        return Thumbnail(image=image, timestamp=used, width=width, height=height)

    @staticmethod
    def _encode_jpeg(frame, width: int, height: int, quality: int) -> bytes:
        try:
            resized = cv2.resize(frame, (width, height), interpolation=cv2.INTER_AREA)
            rgb = cv2.cvtColor(resized, cv2.COLOR_BGR2RGB)
        except cv2.error as e:
            raise FrameCaptureFailed(f"Frame rasterization failed: {e}") from e

        buffer = io.BytesIO()
        Image.fromarray(rgb).save(buffer, format='JPEG', quality=quality, optimize=True)
        return buffer.getvalue()
