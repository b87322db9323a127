"""
Frame-Sampling Encoder
Decodes the source at normal or accelerated playback rate, rasterizes sampled frames
onto a reduced-resolution surface and feeds them into an encoding session
"""

import dataclasses
import logging
import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

import cv2
import numpy as np

from .bitrate_planner import BitratePlanner
from .codec_negotiator import CodecChoice, CodecNegotiator
from .encoder_state import CancellationToken, EncoderState, EncoderStateTracker
from .encoding_session import EncodingSession, FFmpegEncodingSession
from .exceptions import CompressionCancelled, EncodingFailed, LoadError, ReelSqueezeError
from .media import CompressionRequest, SourceMedia, SpeedMode

logger = logging.getLogger(__name__)

DEFAULT_PROFILES = {
    'normal': {'max_dimension': 1280, 'fps': 30, 'max_frames': 300, 'playback_rate': 1.0,
               'skip_alternate_frames': False},
    'fast': {'max_dimension': 720, 'fps': 15, 'max_frames': 150, 'playback_rate': 2.0,
             'skip_alternate_frames': True},
    'reduced': {'max_dimension': 720, 'fps': 15, 'max_frames': 150, 'playback_rate': 2.0,
                'skip_alternate_frames': False},
}

ProgressCallback = Callable[[float], None]


def _even(value: float) -> int:
    return max(2, int(value) // 2 * 2)


def compute_output_dimensions(source_width: int, source_height: int, max_dimension: int,
                              width: Optional[int] = None, height: Optional[int] = None) -> Tuple[int, int]:
    """
    Aspect-preserving output size capped at max_dimension on the long side.

    An explicit width or height wins over the cap; when only one is given the
    other follows the source aspect ratio. Both results are rounded down to even.
    """
    if source_width <= 0 or source_height <= 0:
        raise LoadError(f"Source has no usable dimensions: {source_width}x{source_height}")

    if width and height:
        return _even(width), _even(height)
    if width:
        return _even(width), _even(width * source_height / source_width)
    if height:
        return _even(height * source_width / source_height), _even(height)

    if source_width >= source_height:
        out_width = min(max_dimension, source_width)
        return _even(out_width), _even(out_width * source_height / source_width)
    out_height = min(max_dimension, source_height)
    return _even(out_height * source_width / source_height), _even(out_height)


@dataclass(frozen=True)
class FramePlan:
    """Everything one encode attempt needs to know about the output"""
    profile: str
    width: int
    height: int
    fps: float
    frame_ceiling: int
    base_bitrate_bps: int
    playback_rate: float
    skip_alternate_frames: bool
    retry_allowed: bool = False
    quality_scale: float = 1.0

    @property
    def bitrate_bps(self) -> int:
        return max(1, int(math.floor(self.base_bitrate_bps * self.quality_scale)))

    def scaled(self, quality_scale: float) -> 'FramePlan':
        return dataclasses.replace(self, quality_scale=quality_scale)


@dataclass(frozen=True)
class FrameSamplingOutput:
    data: bytes
    plan: FramePlan
    codec: CodecChoice
    frames_written: int
    attempts: int


def _default_capture_factory(source: SourceMedia):
    return cv2.VideoCapture(str(source.path))


class FrameSamplingEncoder:
    def __init__(self, config=None, negotiator: Optional[CodecNegotiator] = None,
                 planner: Optional[BitratePlanner] = None,
                 capture_factory: Optional[Callable[[SourceMedia], Any]] = None,
                 session_factory: Optional[Callable[[CodecChoice, FramePlan], EncodingSession]] = None):
        self.config = config
        self.negotiator = negotiator or (CodecNegotiator.from_config(config) if config is not None
                                         else CodecNegotiator())
        self.planner = planner or BitratePlanner(config)
        self.capture_factory = capture_factory or _default_capture_factory
        self.session_factory = session_factory or self._default_session_factory

        self.retry_enabled = bool(self._cfg('frame_sampling.retry.enabled', True))
        self.quality_step = float(self._cfg('frame_sampling.retry.quality_step', 0.1))
        self.quality_floor = float(self._cfg('frame_sampling.retry.quality_floor', 0.5))

    def _cfg(self, key: str, default: Any) -> Any:
        return self.config.get(key, default) if self.config is not None else default

    def _default_session_factory(self, codec: CodecChoice, plan: FramePlan) -> EncodingSession:
        return FFmpegEncodingSession(
            codec, plan.width, plan.height, plan.fps, plan.bitrate_bps,
            binary=self._cfg('precision_engine.binary', 'ffmpeg'),
            temp_dir=self.config.get_temp_dir() if self.config is not None else None,
            timeout=float(self._cfg('frame_sampling.session_timeout_seconds', 600)),
        )

    def profile_settings(self, name: str) -> Dict[str, Any]:
        settings = dict(DEFAULT_PROFILES.get(name, DEFAULT_PROFILES['normal']))
        if self.config is not None:
            settings.update(self.config.get_profile(name))
        return settings

    @staticmethod
    def profile_for_request(request: CompressionRequest) -> str:
        return 'normal' if request.speed == SpeedMode.NORMAL else 'fast'

    def build_plan(self, source: SourceMedia, request: CompressionRequest,
                   profile: Optional[str] = None) -> FramePlan:
        """Resolve profile, output geometry, frame ceiling and bitrate for a source"""
        profile = profile or self.profile_for_request(request)
        settings = self.profile_settings(profile)

        width, height = compute_output_dimensions(
            source.width, source.height, int(settings['max_dimension']), request.width, request.height
        )
        fps = float(request.frame_rate or settings['fps'])
        max_frames = int(settings['max_frames'])
        if source.duration > 0:
            frame_ceiling = min(int(math.ceil(source.duration * fps)), max_frames)
        else:
            frame_ceiling = max_frames

        duration = source.duration if source.duration > 0 else frame_ceiling / fps
        bitrate = self.planner.plan(request.target_size_mb, duration, request.quality)

        plan = FramePlan(
            profile=profile,
            width=width,
            height=height,
            fps=fps,
            frame_ceiling=max(1, frame_ceiling),
            base_bitrate_bps=bitrate,
            playback_rate=float(settings.get('playback_rate', 1.0)),
            skip_alternate_frames=bool(settings.get('skip_alternate_frames', False)),
            retry_allowed=self.retry_enabled and not request.explicit_quality,
        )
        logger.info(f"Frame-sampling plan ({profile}): {width}x{height} @ {fps:g}fps, "
                    f"{plan.frame_ceiling} frames max, {bitrate / 1000:.0f} kbps, "
                    f"playback x{plan.playback_rate:g}")
        return plan

    def encode(self, source: SourceMedia, plan: FramePlan, progress_cb: Optional[ProgressCallback] = None,
               token: Optional[CancellationToken] = None) -> bytes:
        return self.encode_with_details(source, plan, progress_cb, token).data

    def encode_with_details(self, source: SourceMedia, plan: FramePlan,
                            progress_cb: Optional[ProgressCallback] = None,
                            token: Optional[CancellationToken] = None) -> FrameSamplingOutput:
        """Encode with the bounded quality-reduction retry loop"""
        token = token or CancellationToken()
        scale = 1.0
        attempts = 0
        while True:
            attempts += 1
            try:
                data, codec, frames = self._encode_once(source, plan.scaled(scale), progress_cb, token)
                return FrameSamplingOutput(data=data, plan=plan.scaled(scale), codec=codec,
                                           frames_written=frames, attempts=attempts)
            except EncodingFailed as e:
                next_scale = round(scale - self.quality_step, 6)
                if not plan.retry_allowed or next_scale < self.quality_floor - 1e-9:
                    logger.error(f"Frame-sampling encode failed after {attempts} attempt(s): {e.message}")
                    raise
                logger.warning(f"Frame-sampling encode failed ({e.message}), "
                               f"retrying at quality scale {next_scale:.1f}")
                scale = next_scale

    def _encode_once(self, source: SourceMedia, plan: FramePlan, progress_cb: Optional[ProgressCallback],
                     token: CancellationToken) -> Tuple[bytes, CodecChoice, int]:
        tracker = EncoderStateTracker('frame_sampling')
        session = None
        capture = None
        try:
            tracker.transition(EncoderState.INITIALIZING)
            codec = self.negotiator.negotiate()
            capture = self.capture_factory(source)
            if not capture.isOpened():
                raise LoadError("Source could not be opened for decoding", source_path=str(source.path))
            session = self.session_factory(codec, plan)
            session.start()

            tracker.transition(EncoderState.RUNNING)
            frames = self._sample_frames(capture, source, plan, session, progress_cb, token)

            tracker.transition(EncoderState.FINALIZING)
            data = session.stop()
            session = None
            tracker.transition(EncoderState.COMPLETE)
            if progress_cb:
                progress_cb(100.0)
            logger.info(f"Frame sampling encoded {frames} frames with {codec.label} "
                        f"({len(data) / 1024:.1f} KB)")
            return data, codec, frames
        except CompressionCancelled:
            tracker.cancel()
            raise
        except ReelSqueezeError:
            tracker.fail()
            raise
        except cv2.error as e:
            tracker.fail()
            raise EncodingFailed(f"Frame rasterization failed: {e}", source_path=str(source.path)) from e
        finally:
            if session is not None:
                session.abort()
            if capture is not None:
                capture.release()

    def _sample_frames(self, capture, source: SourceMedia, plan: FramePlan, session: EncodingSession,
                       progress_cb: Optional[ProgressCallback], token: CancellationToken) -> int:
        source_fps = capture.get(cv2.CAP_PROP_FPS) or source.fps or plan.fps
        # Source frames advanced per output frame
        step = plan.playback_rate * source_fps / plan.fps
        surface = np.zeros((plan.height, plan.width, 3), dtype=np.uint8)
        source_index = -1
        frames_written = 0
        has_raster = False

        for output_index in range(plan.frame_ceiling):
            token.raise_if_cancelled('frame sampling')

            if plan.skip_alternate_frames and output_index % 2 == 1 and has_raster:
                session.feed_frame(surface)
            else:
                target_index = int(output_index * step)
                end_of_stream = False
                while source_index < target_index:
                    if not capture.grab():
                        end_of_stream = True
                        break
                    source_index += 1
                if end_of_stream:
                    break
                ok, frame = capture.retrieve()
                if not ok or frame is None:
                    break
                surface[:] = cv2.resize(frame, (plan.width, plan.height), interpolation=cv2.INTER_AREA)
                has_raster = True
                session.feed_frame(surface)

            frames_written += 1
            if progress_cb:
                progress_cb(frames_written * 100 / plan.frame_ceiling)

        if frames_written == 0:
            raise EncodingFailed("No frames could be decoded from the source", source_path=str(source.path))
        return frames_written
