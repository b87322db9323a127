"""reelsqueeze package root.

Export primary classes and CLI for convenience when installed via pip.
"""

from .cli import main as cli_main  # noqa: F401
from .dispatcher import StrategyDispatcher  # noqa: F401
from .config_manager import ConfigManager  # noqa: F401
from .bitrate_planner import plan_bitrate, plan_precision_bitrate_kbps, BitratePlanner  # noqa: F401
from .frame_sampling_encoder import FrameSamplingEncoder, FramePlan, compute_output_dimensions  # noqa: F401
from .streaming_compressor import StreamingCompressor, ChunkTransform, RatioChunkTransform, plan_chunks  # noqa: F401
from .precision_encoder import EngineHandle, PrecisionEncoder  # noqa: F401
from .thumbnail_extractor import ThumbnailExtractor  # noqa: F401
from .encoder_state import CancellationToken, EncoderState  # noqa: F401
from .media import (  # noqa: F401
    SourceMedia, CompressionRequest, CompressionResult, CompressionMethod, Chunk, Thumbnail,
    PipelineOutcome, QualityTier, SpeedMode
)
from .exceptions import (  # noqa: F401
    ReelSqueezeError, LoadError, InvalidInput, CodecUnavailable, EngineUnavailable, EncodingFailed,
    ThumbnailError, SeekFailed, FrameCaptureFailed, CompressionFailed, CompressionCancelled
)
