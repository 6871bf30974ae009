# video_recipe/app/services/frame_extractor.py
"""
Frame sampling with OpenCV.

Seeks to 0, interval, 2*interval, ... up to and including the video duration and
encodes each captured frame as JPEG. A seek point that cannot be read (e.g. exactly
at the end of the stream) is skipped.
"""
from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Union

import cv2

from video_recipe.app.domain.errors import DecodeError
from video_recipe.app.domain.models import ExtractedFrame

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 5.0
DEFAULT_JPEG_QUALITY = 80

VideoSource = Union[str, Path]


class FrameExtractor:
    # OpenCV decoders are not safe to drive concurrently; one stream at a time.
    _decode_lock = threading.Lock()

    def __init__(self, jpeg_quality: int = DEFAULT_JPEG_QUALITY):
        if not 1 <= jpeg_quality <= 100:
            raise ValueError("jpeg_quality must be between 1 and 100")
        self.jpeg_quality = jpeg_quality

    def _open(self, video: VideoSource) -> tuple["cv2.VideoCapture", float, int]:
        source = str(video)
        if not Path(source).is_file():
            raise DecodeError(source, "Video file not found")

        cap = cv2.VideoCapture(source)
        if not cap.isOpened():
            cap.release()
            raise DecodeError(source)

        fps = cap.get(cv2.CAP_PROP_FPS)
        total_frames = int(cap.get(cv2.CAP_PROP_FRAME_COUNT))
        if fps <= 0 or total_frames <= 0:
            cap.release()
            raise DecodeError(source, "Video has no readable frames")
        return cap, fps, total_frames

    def _encode(self, frame) -> bytes:
        ok, buffer = cv2.imencode(".jpg", frame, [int(cv2.IMWRITE_JPEG_QUALITY), self.jpeg_quality])
        if not ok:
            raise DecodeError("<frame>", "JPEG encoding failed")
        return buffer.tobytes()

    @staticmethod
    def _read_at(cap, frame_index: int):
        cap.set(cv2.CAP_PROP_POS_FRAMES, frame_index)
        ret, frame = cap.read()
        return frame if ret else None

    def extract(self, video: VideoSource, interval: float = DEFAULT_INTERVAL_SECONDS) -> list[ExtractedFrame]:
        """
        Sample frames every `interval` seconds.

        Args:
            video: Path to a local video file
            interval: Seconds between samples

        Returns:
            Frames ordered by strictly increasing timestamp

        Raises:
            DecodeError: If the video cannot be loaded
        """
        if interval <= 0:
            raise ValueError("interval must be positive")

        with self._decode_lock:
            cap, fps, total_frames = self._open(video)
            duration = total_frames / fps
            frames: list[ExtractedFrame] = []
            try:
                step = 0
                timestamp = 0.0
                while timestamp <= duration:
                    frame = self._read_at(cap, int(round(timestamp * fps)))
                    if frame is None:
                        logger.debug("No frame at %.2fs, skipping", timestamp)
                    else:
                        frames.append(ExtractedFrame(timestamp=round(timestamp, 3), image=self._encode(frame)))
                    step += 1
                    timestamp = step * interval
            finally:
                cap.release()

        logger.info(
            "Extracted %d frames from %s (duration=%.1fs, interval=%.1fs)",
            len(frames),
            video,
            duration,
            interval,
        )
        return frames

    def extract_thumbnail(self, video: VideoSource, at_seconds: float = 1.0) -> bytes:
        """One JPEG snapshot, falling back to the first frame for very short videos."""
        with self._decode_lock:
            cap, fps, total_frames = self._open(video)
            try:
                index = min(int(round(max(at_seconds, 0.0) * fps)), total_frames - 1)
                frame = self._read_at(cap, index)
                if frame is None:
                    frame = self._read_at(cap, 0)
                if frame is None:
                    raise DecodeError(str(video), "Could not read a thumbnail frame")
                return self._encode(frame)
            finally:
                cap.release()
