"""
FFmpeg Utilities Module
Shared helpers for probing sources, detecting encoders and reading ffmpeg progress output
"""

import dataclasses
import json
import os
import subprocess
import logging
from fractions import Fraction
from typing import Dict, Any, List, Optional, Set

import cv2

from .exceptions import LoadError
from .media import SourceMedia

logger = logging.getLogger(__name__)

STDERR_TAIL_LINES = 20


class FFmpegUtils:
    """Shared utilities for FFmpeg operations"""

    @staticmethod
    def parse_fps(rate_str: str) -> float:
        """Safely parse FFmpeg r_frame_rate like '30000/1001' into float FPS."""
        if not rate_str:
            return 0.0
        try:
            return float(Fraction(rate_str))
        except (ValueError, ZeroDivisionError):
            try:
                return float(rate_str)
            except ValueError:
                return 0.0

    @staticmethod
    def _safe_file_path(file_path: str) -> str:
        """Safely handle file paths with special characters"""
        abs_path = os.path.abspath(file_path)
        if os.name == 'nt':
            abs_path = abs_path.replace('"', '')
        return abs_path

    @staticmethod
    def probe_source(source: SourceMedia, timeout: float = 30, ffprobe: str = 'ffprobe') -> SourceMedia:
        """
        Decode container metadata for a source.

        Returns a new SourceMedia carrying duration, dimensions and fps.
        Raises LoadError for empty files, unreadable containers and sources
        without a video stream.
        """
        if source.size_bytes == 0:
            raise LoadError("Source file is empty", source_path=str(source.path))

        safe_path = FFmpegUtils._safe_file_path(str(source.path))
        cmd = [
            ffprobe, '-v', 'quiet', '-print_format', 'json',
            '-show_format', '-show_streams', safe_path
        ]
        try:
            result = subprocess.run(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding='utf-8',
                errors='replace',
                timeout=timeout
            )
        except FileNotFoundError:
            logger.debug(f"{ffprobe} not found, probing with OpenCV instead")
            return FFmpegUtils._probe_with_opencv(source)
        except subprocess.TimeoutExpired as e:
            raise LoadError(f"Probe timed out after {timeout}s", source_path=str(source.path)) from e

        if result.returncode != 0:
            raise LoadError(
                f"Container could not be decoded: {FFmpegUtils.stderr_tail(result.stderr, 3) or 'ffprobe failed'}",
                source_path=str(source.path)
            )

        stdout_text = result.stdout or ""
        try:
            data = json.loads(stdout_text) if stdout_text.strip() else {}
        except json.JSONDecodeError as e:
            raise LoadError(f"Unreadable probe output: {e}", source_path=str(source.path)) from e

        info = FFmpegUtils.parse_probe_data(data)
        if info is None:
            raise LoadError("No video stream found", source_path=str(source.path))

        logger.debug(f"Probed {source.name}: {info['width']}x{info['height']} "
                     f"@ {info['fps']:.2f}fps, {info['duration']:.2f}s")
        return dataclasses.replace(source, probed=True, **info)

    @staticmethod
    def parse_probe_data(data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Extract duration/width/height/fps from ffprobe JSON; None without a video stream"""
        video_stream = None
        for stream in data.get('streams', []):
            if stream.get('codec_type') == 'video':
                video_stream = stream
                break
        if not video_stream:
            return None

        duration_str = data.get('format', {}).get('duration') or video_stream.get('duration')
        try:
            duration = float(duration_str) if duration_str not in (None, 'N/A') else 0.0
        except ValueError:
            duration = 0.0

        fps = FFmpegUtils.parse_fps(video_stream.get('avg_frame_rate') or '')
        if fps <= 0:
            fps = FFmpegUtils.parse_fps(video_stream.get('r_frame_rate') or '')

        return {
            'duration': max(0.0, duration),
            'width': int(video_stream.get('width', 0) or 0),
            'height': int(video_stream.get('height', 0) or 0),
            'fps': fps,
        }

    @staticmethod
    def _probe_with_opencv(source: SourceMedia) -> SourceMedia:
        capture = cv2.VideoCapture(str(source.path))
        try:
            if not capture.isOpened():
                raise LoadError("Container could not be opened", source_path=str(source.path))
            width = int(capture.get(cv2.CAP_PROP_FRAME_WIDTH) or 0)
            height = int(capture.get(cv2.CAP_PROP_FRAME_HEIGHT) or 0)
            fps = float(capture.get(cv2.CAP_PROP_FPS) or 0.0)
            frame_count = float(capture.get(cv2.CAP_PROP_FRAME_COUNT) or 0.0)
            if width <= 0 or height <= 0:
                raise LoadError("No video stream found", source_path=str(source.path))
            duration = frame_count / fps if fps > 0 else 0.0
        finally:
            capture.release()

        return dataclasses.replace(source, probed=True, duration=duration, width=width, height=height, fps=fps)

    @staticmethod
    def detect_encoders(binary: str = 'ffmpeg', timeout: float = 15) -> Set[str]:
        """Return the set of encoder names reported by `ffmpeg -encoders`"""
        try:
            result = subprocess.run([binary, '-hide_banner', '-encoders'],
                                    capture_output=True, text=True, timeout=timeout)
        except (subprocess.TimeoutExpired, FileNotFoundError, OSError) as e:
            logger.warning(f"FFmpeg not available for encoder detection: {e}")
            return set()

        if result.returncode != 0:
            logger.warning("FFmpeg not found or not working properly")
            return set()

        encoders = FFmpegUtils.parse_encoder_list(result.stdout)
        logger.info(f"Detected {len(encoders)} available FFmpeg encoders")
        return encoders

    @staticmethod
    def parse_encoder_list(output: str) -> Set[str]:
        """Parse ` V....D libx264   description` lines into encoder names"""
        encoders = set()
        started = False
        for line in output.splitlines():
            if line.strip().startswith('------'):
                started = True
                continue
            if not started:
                continue
            parts = line.split()
            if len(parts) >= 2 and len(parts[0]) == 6:
                encoders.add(parts[1])
        return encoders

    @staticmethod
    def parse_progress_seconds(line: str) -> Optional[float]:
        """Parse the encoded position from one `-progress` key=value line"""
        key, _, value = line.strip().partition('=')
        if key in ('out_time_us', 'out_time_ms'):
            # ffmpeg reports microseconds under both keys
            try:
                return max(0.0, int(value) / 1_000_000)
            except ValueError:
                return None
        if key == 'out_time':
            parts = value.split(':')
            if len(parts) == 3:
                try:
                    return max(0.0, float(parts[0]) * 3600 + float(parts[1]) * 60 + float(parts[2]))
                except ValueError:
                    return None
        return None

    @staticmethod
    def is_progress_end(line: str) -> bool:
        return line.strip() == 'progress=end'

    @staticmethod
    def stderr_tail(stderr: Optional[str], lines: int = STDERR_TAIL_LINES) -> str:
        if not stderr:
            return ""
        return "\n".join(stderr.strip().splitlines()[-lines:])

    @staticmethod
    def format_source_for_logging(source: SourceMedia) -> List[str]:
        """Render a probed source as log lines"""
        lines = [f"Source: {source.name} ({source.size_mb:.2f} MB, {source.mime_type})"]
        if source.probed:
            lines.append(f"  Resolution: {source.width}x{source.height}")
            lines.append(f"  Frame rate: {source.fps:.2f} fps")
            lines.append(f"  Duration: {source.duration:.2f}s")
        return lines
