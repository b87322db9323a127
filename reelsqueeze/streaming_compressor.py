"""
Chunked Streaming Compressor
Splits very large sources into fixed-size byte ranges, compresses them in
concurrency-bounded batches and reassembles the output in index order
"""

import logging
import math
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Callable, List, Optional

from .encoder_state import CancellationToken, EncoderState, EncoderStateTracker
from .exceptions import CompressionCancelled, CompressionFailed, InvalidInput, LoadError, ReelSqueezeError
from .media import Chunk, CompressionRequest, SourceMedia, SpeedMode

logger = logging.getLogger(__name__)

DEFAULT_RATIOS = {
    SpeedMode.LIGHTNING: 0.05,
    SpeedMode.EXTREME: 0.15,
    SpeedMode.ULTRA: 0.25,
}
DEFAULT_RATIO = 0.15

ProgressCallback = Callable[[float], None]
ChunkCallback = Callable[[int, int], None]


def plan_chunks(total_size: int, chunk_size: int) -> List[Chunk]:
    """ceil(total_size / chunk_size) contiguous ranges; the last one may be short"""
    if chunk_size <= 0:
        raise InvalidInput(f"chunk_size must be positive, got {chunk_size}")
    if total_size < 0:
        raise InvalidInput(f"total_size must not be negative, got {total_size}")
    count = math.ceil(total_size / chunk_size)
    return [
        Chunk(index=i, offset=i * chunk_size, length=min(chunk_size, total_size - i * chunk_size))
        for i in range(count)
    ]


def batch_count(chunk_count: int, max_concurrent: int) -> int:
    return math.ceil(chunk_count / max_concurrent) if chunk_count else 0


class ChunkTransform:
    """Per-chunk compression step; implementations must be thread-safe"""

    name = "identity"

    def __call__(self, chunk: Chunk, data: bytes) -> bytes:
        return data


class RatioChunkTransform(ChunkTransform):
    """
    Fast approximation policy: keeps the leading floor(len * ratio) bytes of each chunk.

    The result is sized by the speed-mode ratio but is not a decodable stream on
    its own. Swap in a real per-chunk encoder where decodability matters.
    """

    name = "ratio"

    def __init__(self, ratio: float):
        if not (0 < ratio <= 1):
            raise InvalidInput(f"Chunk ratio must be in (0, 1], got {ratio}")
        self.ratio = ratio

    def __call__(self, chunk: Chunk, data: bytes) -> bytes:
        return data[:int(math.floor(len(data) * self.ratio))]


@dataclass(frozen=True)
class StreamingOutput:
    data: bytes
    chunk_count: int
    batch_count: int
    average_chunk_time_ms: float
    ratio: float
    mime_type: str


class StreamingCompressor:
    def __init__(self, config=None, transform_factory: Optional[Callable[[float], ChunkTransform]] = None):
        self.config = config
        self.transform_factory = transform_factory or RatioChunkTransform
        self.output_mime_type = config.get('streaming.output_mime_type', 'video/webm') if config else 'video/webm'

    def ratio_for(self, speed: SpeedMode) -> float:
        if self.config is None:
            return DEFAULT_RATIOS.get(speed, DEFAULT_RATIO)
        ratios = self.config.get('streaming.compression_ratios', {}) or {}
        default = float(self.config.get('streaming.default_ratio', DEFAULT_RATIO))
        return float(ratios.get(speed.value, default))

    def encode_streaming(self, source: SourceMedia, request: CompressionRequest,
                         progress_cb: Optional[ProgressCallback] = None,
                         chunk_cb: Optional[ChunkCallback] = None,
                         token: Optional[CancellationToken] = None) -> bytes:
        return self.encode_with_stats(source, request, progress_cb, chunk_cb, token).data

    def encode_with_stats(self, source: SourceMedia, request: CompressionRequest,
                          progress_cb: Optional[ProgressCallback] = None,
                          chunk_cb: Optional[ChunkCallback] = None,
                          token: Optional[CancellationToken] = None) -> StreamingOutput:
        token = token or CancellationToken()
        tracker = EncoderStateTracker('streaming')
        tracker.transition(EncoderState.INITIALIZING)

        if source.size_bytes <= 0:
            tracker.fail()
            raise LoadError("Source file is empty", source_path=str(source.path))

        ratio = self.ratio_for(request.speed)
        transform = self.transform_factory(ratio)
        chunks = plan_chunks(source.size_bytes, request.chunk_size_bytes)
        total = len(chunks)
        max_concurrent = request.max_concurrent_chunks
        batches = batch_count(total, max_concurrent)
        outputs: List[Optional[bytes]] = [None] * total
        chunk_times: List[float] = []

        logger.info(f"Streaming compression: {source.size_mb:.1f} MB in {total} chunks of "
                    f"{request.chunk_size_mb:g} MB, {batches} batches of up to {max_concurrent}, "
                    f"ratio {ratio:g} ({request.speed.value})")

        tracker.transition(EncoderState.RUNNING)
        start_time = time.time()
        try:
            with ThreadPoolExecutor(max_workers=max_concurrent, thread_name_prefix='chunk') as executor:
                for batch_start in range(0, total, max_concurrent):
                    token.raise_if_cancelled('streaming compression')
                    batch = chunks[batch_start:batch_start + max_concurrent]
                    futures = {executor.submit(self._process_chunk, source, chunk, transform): chunk
                               for chunk in batch}
                    wait(futures)

                    errors = []
                    for future, chunk in futures.items():
                        error = future.exception()
                        if error is not None:
                            errors.append((chunk, error))
                            continue
                        outputs[chunk.index] = chunk.compressed
                        chunk_times.append(chunk.processing_time_ms)
                        chunk.compressed = None

                    if errors:
                        failed_chunk, first_error = min(errors, key=lambda item: item[0].index)
                        raise CompressionFailed(
                            f"Chunk {failed_chunk.index + 1}/{total} failed: {first_error}",
                            errors=[e for _, e in errors if isinstance(e, ReelSqueezeError)],
                            source_path=str(source.path)
                        ) from first_error

                    done = batch_start + len(batch)
                    if progress_cb:
                        progress_cb(min(100.0, done * 100 / total))
                    if chunk_cb:
                        chunk_cb(done, total)
                    logger.debug(f"Batch {batch_start // max_concurrent + 1}/{batches} complete ({done}/{total})")

            tracker.transition(EncoderState.FINALIZING)
            data = b"".join(outputs)
            tracker.transition(EncoderState.COMPLETE)
        except CompressionCancelled:
            tracker.cancel()
            outputs.clear()
            raise
        except ReelSqueezeError:
            tracker.fail()
            outputs.clear()
            raise

        average = sum(chunk_times) / len(chunk_times) if chunk_times else 0.0
        elapsed = time.time() - start_time
        logger.info(f"Streaming compression finished in {elapsed:.2f}s: {source.size_mb:.1f} MB -> "
                    f"{len(data) / (1024 * 1024):.2f} MB, avg {average:.1f} ms/chunk")
        return StreamingOutput(data=data, chunk_count=total, batch_count=batches,
                               average_chunk_time_ms=average, ratio=ratio, mime_type=self.output_mime_type)

    @staticmethod
    def _process_chunk(source: SourceMedia, chunk: Chunk, transform: ChunkTransform) -> Chunk:
        started = time.perf_counter()
        try:
            chunk.raw = source.read_range(chunk.offset, chunk.length)
        except OSError as e:
            raise LoadError(f"Failed to read chunk {chunk.index}: {e}", source_path=str(source.path)) from e
        if len(chunk.raw) != chunk.length:
            raise LoadError(f"Short read for chunk {chunk.index}: {len(chunk.raw)}/{chunk.length} bytes",
                            source_path=str(source.path))
        try:
            chunk.compressed = transform(chunk, chunk.raw)
        finally:
            chunk.release_raw()
        chunk.processing_time_ms = (time.perf_counter() - started) * 1000
        return chunk
