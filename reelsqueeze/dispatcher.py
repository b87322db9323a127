"""
Strategy Dispatcher
Entry point of the pipeline: probes the source, short-circuits small files and routes
everything else to the encoder matching its size bucket
"""

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from .config_manager import ConfigManager
from .encoder_state import CancellationToken
from .error_handler import ErrorHandler
from .exceptions import CompressionCancelled, CompressionFailed, ReelSqueezeError, ThumbnailError
from .ffmpeg_utils import FFmpegUtils
from .frame_sampling_encoder import FrameSamplingEncoder
from .media import (
    CompressionMethod, CompressionRequest, CompressionResult, PipelineOutcome, SourceMedia
)
from .performance_monitor import PerformanceMonitor
from .precision_encoder import PrecisionEncoder
from .streaming_compressor import StreamingCompressor
from .thumbnail_extractor import ThumbnailExtractor

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]

DEFAULT_BUCKETS = [
    {'name': 'small', 'max_size_mb': 500, 'strategies': ['frame_sampling']},
    {'name': 'large', 'max_size_mb': 2048, 'strategies': ['precision', 'frame_sampling_reduced']},
    {'name': 'massive', 'max_size_mb': None, 'strategies': ['streaming']},
]


@dataclass(frozen=True)
class StrategyOutput:
    data: bytes
    method: CompressionMethod
    mime_type: str
    profile: Optional[str] = None
    chunk_count: Optional[int] = None
    average_chunk_time_ms: Optional[float] = None
    frames: Optional[int] = None


class StrategyDispatcher:
    def __init__(self, config: Optional[ConfigManager] = None,
                 frame_encoder: Optional[FrameSamplingEncoder] = None,
                 streaming: Optional[StreamingCompressor] = None,
                 precision: Optional[PrecisionEncoder] = None,
                 thumbnails: Optional[ThumbnailExtractor] = None,
                 monitor: Optional[PerformanceMonitor] = None,
                 prober: Optional[Callable[[SourceMedia], SourceMedia]] = None,
                 precision_enabled: Optional[bool] = None):
        self.config = config or ConfigManager()
        self.frame_encoder = frame_encoder or FrameSamplingEncoder(self.config)
        self.streaming = streaming or StreamingCompressor(self.config)
        self.thumbnails = thumbnails or ThumbnailExtractor(self.config)
        self.monitor = monitor or PerformanceMonitor(self.config)
        self.error_handler = ErrorHandler()

        if precision_enabled is None:
            precision_enabled = bool(self.config.get('precision_engine.enabled', True))
        if precision is None and precision_enabled:
            precision = PrecisionEncoder.from_config(self.config)
        self.precision = precision if precision_enabled else None

        probe_timeout = float(self.config.get('probe.timeout_seconds', 30))
        self.prober = prober or (lambda source: FFmpegUtils.probe_source(source, timeout=probe_timeout))
        self.passthrough_enabled = bool(self.config.get('dispatcher.passthrough_enabled', True))
        self.buckets = self.config.get('dispatcher.buckets') or DEFAULT_BUCKETS

        self._runners: Dict[str, Callable[..., StrategyOutput]] = {
            'frame_sampling': self._run_frame_sampling,
            'frame_sampling_reduced': self._run_frame_sampling_reduced,
            'precision': self._run_precision,
            'streaming': self._run_streaming,
        }

    def shutdown(self) -> None:
        """Tear down the precision engine workspace if one was created"""
        if self.precision is not None:
            self.precision.engine.shutdown()

    def select_bucket(self, size_mb: float) -> Tuple[str, List[str]]:
        for bucket in self.buckets:
            limit = bucket.get('max_size_mb')
            if limit is None or size_mb < limit:
                return bucket.get('name', 'unnamed'), list(bucket.get('strategies', []))
        last = self.buckets[-1]
        return last.get('name', 'unnamed'), list(last.get('strategies', []))

    def prepare(self, source: Union[str, Path, SourceMedia]) -> SourceMedia:
        """Resolve a path into a probed SourceMedia; raises LoadError"""
        if not isinstance(source, SourceMedia):
            source = SourceMedia.from_path(source)
        if not source.probed:
            source = self.prober(source)
        return source

    @staticmethod
    def _coerce_request(request: Union[CompressionRequest, Dict[str, Any], None]) -> CompressionRequest:
        if request is None:
            return CompressionRequest.create()
        if isinstance(request, dict):
            return CompressionRequest.from_options(request)
        request.validate()
        return request

    def compress(self, source: Union[str, Path, SourceMedia],
                 request: Union[CompressionRequest, Dict[str, Any], None] = None,
                 progress_cb: Optional[ProgressCallback] = None,
                 token: Optional[CancellationToken] = None,
                 chunk_cb: Optional[Callable[[int, int], None]] = None) -> CompressionResult:
        """
        Compress one source according to the request.

        Raises LoadError when the source cannot be probed, CompressionFailed when
        every candidate strategy of a multi-strategy bucket failed, and the original
        error kind when a single candidate failed.
        """
        token = token or CancellationToken()
        start_time = time.time()
        try:
            request = self._coerce_request(request)
            source = self.prepare(source)
            for line in FFmpegUtils.format_source_for_logging(source):
                logger.debug(line)

            if self.passthrough_enabled and source.size_mb <= request.passthrough_limit_mb:
                logger.info(f"Passthrough: {source.name} is {source.size_mb:.2f} MB "
                            f"(limit {request.passthrough_limit_mb:g} MB)")
                result = CompressionResult.passthrough(source, source.read_bytes(),
                                                       (time.time() - start_time) * 1000)
                if progress_cb:
                    progress_cb(100.0)
                self.monitor.record_result(result, quality=request.quality.value, source_name=source.name)
                return result

            bucket, strategies = self.select_bucket(source.size_mb)
            logger.info(f"Routing {source.name} ({source.size_mb:.1f} MB) to bucket '{bucket}': "
                        f"{', '.join(strategies)}")
            output = self._run_bucket(strategies, source, request, progress_cb, token, chunk_cb)
        except ReelSqueezeError as e:
            if not isinstance(e, CompressionCancelled):
                self.error_handler.handle_error(e, getattr(source, 'name', str(source)))
            raise

        elapsed_ms = (time.time() - start_time) * 1000
        if len(output.data) > source.size_bytes:
            logger.warning(f"{output.method.value} output ({len(output.data)} bytes) is larger than the "
                           f"source ({source.size_bytes} bytes); returning the original")
            result = CompressionResult.passthrough(source, source.read_bytes(), elapsed_ms)
        else:
            result = CompressionResult.build(
                output.data, source.size_bytes, elapsed_ms, output.method, output.mime_type,
                profile=output.profile,
                chunk_count=output.chunk_count,
                average_chunk_time_ms=output.average_chunk_time_ms,
            )

        logger.info(f"Compressed {source.name}: {result.original_size_mb:.2f} MB -> "
                    f"{result.compressed_size_mb:.2f} MB ({result.method.value}, "
                    f"{result.compression_ratio:.2f}x, {result.processing_time_ms:.0f}ms)")
        self.monitor.record_result(result, frames=output.frames, quality=request.quality.value,
                                   source_name=source.name)
        return result

    def process(self, source: Union[str, Path, SourceMedia],
                request: Union[CompressionRequest, Dict[str, Any], None] = None,
                thumbnail_at: Optional[float] = None,
                progress_cb: Optional[ProgressCallback] = None,
                token: Optional[CancellationToken] = None) -> PipelineOutcome:
        """Compress, then extract a thumbnail; a failed thumbnail yields None"""
        try:
            source = self.prepare(source)
        except ReelSqueezeError as e:
            self.error_handler.handle_error(e, getattr(source, 'name', str(source)))
            raise
        result = self.compress(source, request, progress_cb, token)

        thumbnail = None
        try:
            thumbnail = self.thumbnails.extract_thumbnail(source, thumbnail_at)
        except ThumbnailError as e:
            self.error_handler.handle_error(e, source.name)
            logger.warning(f"Continuing without thumbnail: {e.get_short_message()}")
        return PipelineOutcome(result=result, thumbnail=thumbnail)

    def _run_bucket(self, strategies: List[str], source: SourceMedia, request: CompressionRequest,
                    progress_cb: Optional[ProgressCallback], token: CancellationToken,
                    chunk_cb: Optional[Callable[[int, int], None]] = None) -> StrategyOutput:
        errors: List[ReelSqueezeError] = []
        attempted = 0
        for name in strategies:
            if name == 'precision' and (self.precision is None or not self.precision.engine.is_available()):
                logger.info("Precision engine unavailable, skipping precision strategy")
                continue

            runner = self._runners.get(name)
            if runner is None:
                raise CompressionFailed(f"Unknown strategy '{name}'", source_path=str(source.path))

            attempted += 1
            token.raise_if_cancelled(f'strategy {name}')
            try:
                with self.monitor.measure_operation(f'strategy.{name}', size_mb=round(source.size_mb, 2)):
                    extra = {'chunk_cb': chunk_cb} if name == 'streaming' else {}
                    return runner(source, request, progress_cb, token, **extra)
            except CompressionCancelled:
                raise
            except ReelSqueezeError as e:
                logger.warning(f"Strategy {name} failed: {e.get_short_message()}")
                errors.append(e)

        if not errors:
            raise CompressionFailed("No compression strategy was available", source_path=str(source.path))
        if attempted == 1:
            raise errors[0]
        raise CompressionFailed(
            f"All strategies failed: {'; '.join(e.get_short_message() for e in errors)}",
            errors=errors,
            source_path=str(source.path)
        ) from errors[-1]

    def _run_frame_sampling(self, source, request, progress_cb, token, profile=None) -> StrategyOutput:
        plan = self.frame_encoder.build_plan(source, request, profile)
        output = self.frame_encoder.encode_with_details(source, plan, progress_cb, token)
        return StrategyOutput(
            data=output.data,
            method=CompressionMethod.FRAME_SAMPLING,
            mime_type=output.codec.mime_type,
            profile=f"{plan.profile}:{output.codec.encoder}",
            frames=output.frames_written,
        )

    def _run_frame_sampling_reduced(self, source, request, progress_cb, token) -> StrategyOutput:
        return self._run_frame_sampling(source, request, progress_cb, token, profile='reduced')

    def _run_precision(self, source, request, progress_cb, token) -> StrategyOutput:
        data = self.precision.encode_precise(source, request.target_size_mb, progress_cb, token)
        return StrategyOutput(
            data=data,
            method=CompressionMethod.PRECISION,
            mime_type=self.precision.output_mime_type,
            profile=f"precision:{self.precision.video_codec}",
        )

    def _run_streaming(self, source, request, progress_cb, token, chunk_cb=None) -> StrategyOutput:
        output = self.streaming.encode_with_stats(source, request, progress_cb, chunk_cb, token)
        return StrategyOutput(
            data=output.data,
            method=CompressionMethod.STREAMING,
            mime_type=output.mime_type,
            profile=f"streaming:{request.speed.value}",
            chunk_count=output.chunk_count,
            average_chunk_time_ms=output.average_chunk_time_ms,
        )
