"""
Media Data Model
Source handles, compression requests, chunks, results and thumbnails passed
between the dispatcher and the encoders
"""

import math
import mimetypes
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Union

from .exceptions import InvalidInput, LoadError

BYTES_PER_MB = 1024 * 1024


class QualityTier(Enum):
    """Ordinal quality tiers, ordered low to ultra"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    ULTRA = "ultra"

    @property
    def rank(self) -> int:
        return list(QualityTier).index(self)

    @classmethod
    def from_value(cls, value: Union[str, float, int, 'QualityTier']) -> 'QualityTier':
        """Accept a tier name or a 0.0-1.0 quality factor"""
        if isinstance(value, QualityTier):
            return value
        if isinstance(value, bool):
            raise InvalidInput(f"Invalid quality: {value!r}")
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                raise InvalidInput(f"Unknown quality tier: {value!r} "
                                   f"(must be one of: {', '.join(t.value for t in cls)})")
        if isinstance(value, (int, float)):
            if math.isnan(value) or not (0.0 <= value <= 1.0):
                raise InvalidInput(f"Quality factor must be between 0.0 and 1.0, got {value}")
            if value < 0.4:
                return cls.LOW
            if value < 0.75:
                return cls.MEDIUM
            if value < 0.9:
                return cls.HIGH
            return cls.ULTRA
        raise InvalidInput(f"Invalid quality: {value!r}")


class SpeedMode(Enum):
    """Speed/aggressiveness policies"""
    NORMAL = "normal"
    FAST = "fast"
    LIGHTNING = "lightning"
    EXTREME = "extreme"
    ULTRA = "ultra"

    @classmethod
    def from_value(cls, value: Union[str, 'SpeedMode']) -> 'SpeedMode':
        if isinstance(value, SpeedMode):
            return value
        if isinstance(value, str):
            normalized = value.strip().lower()
            if normalized == 'ultra-streaming':
                return cls.ULTRA
            try:
                return cls(normalized)
            except ValueError:
                pass
        raise InvalidInput(f"Unknown speed mode: {value!r} (must be one of: {', '.join(s.value for s in cls)})")


class CompressionMethod(Enum):
    PASSTHROUGH = "passthrough"
    FRAME_SAMPLING = "frame_sampling"
    PRECISION = "precision"
    STREAMING = "streaming"


@dataclass(frozen=True)
class SourceMedia:
    """Immutable handle to a raw input file; probing returns a new instance"""
    path: Path
    size_bytes: int
    mime_type: str = "application/octet-stream"
    duration: float = 0.0
    width: int = 0
    height: int = 0
    fps: float = 0.0
    probed: bool = False

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> 'SourceMedia':
        """Stat the file without decoding it"""
        path = Path(path)
        if not path.is_file():
            raise LoadError(f"Source file not found: {path}", source_path=str(path))
        try:
            size = path.stat().st_size
        except OSError as e:
            raise LoadError(f"Source file not accessible: {e}", source_path=str(path)) from e
        mime_type, _ = mimetypes.guess_type(str(path))
        return cls(path=path, size_bytes=size, mime_type=mime_type or "application/octet-stream")

    @property
    def size_mb(self) -> float:
        return self.size_bytes / BYTES_PER_MB

    @property
    def name(self) -> str:
        return self.path.name

    def read_bytes(self) -> bytes:
        try:
            return self.path.read_bytes()
        except OSError as e:
            raise LoadError(f"Failed to read source: {e}", source_path=str(self.path)) from e

    def read_range(self, offset: int, length: int) -> bytes:
        """Read one byte range with a private file handle"""
        with open(self.path, 'rb') as handle:
            handle.seek(offset)
            return handle.read(length)


@dataclass(frozen=True)
class CompressionRequest:
    """Caller configuration; validated once by the dispatcher"""
    target_size_mb: float = 10.0
    max_size_mb: Optional[float] = None
    quality: QualityTier = QualityTier.MEDIUM
    explicit_quality: bool = False
    speed: SpeedMode = SpeedMode.NORMAL
    width: Optional[int] = None
    height: Optional[int] = None
    frame_rate: Optional[float] = None
    chunk_size_mb: float = 10.0
    max_concurrent_chunks: int = 4

    OPTION_KEYS = {
        'maxSizeMB': 'max_size_mb',
        'quality': 'quality',
        'width': 'width',
        'height': 'height',
        'fastMode': 'fast_mode',
        'targetSizeMB': 'target_size_mb',
        'chunkSizeMB': 'chunk_size_mb',
        'maxConcurrentChunks': 'max_concurrent_chunks',
        'speed': 'speed',
        'frameRate': 'frame_rate',
    }

    @classmethod
    def from_options(cls, options: Dict[str, Any]) -> 'CompressionRequest':
        """Build a request from the caller's option dict (camelCase keys)"""
        unknown = sorted(set(options) - set(cls.OPTION_KEYS))
        if unknown:
            raise InvalidInput(f"Unrecognized compression options: {', '.join(unknown)}")

        kwargs: Dict[str, Any] = {}
        for key, value in options.items():
            if value is not None:
                kwargs[cls.OPTION_KEYS[key]] = value
        return cls.create(**kwargs)

    @classmethod
    def create(cls, fast_mode: bool = False, quality: Any = None, speed: Any = None, **kwargs) -> 'CompressionRequest':
        """Coerce loose values into a validated request"""
        speed_mode = SpeedMode.from_value(speed) if speed is not None else SpeedMode.NORMAL
        if fast_mode and speed_mode == SpeedMode.NORMAL:
            speed_mode = SpeedMode.FAST

        request = cls(
            quality=QualityTier.from_value(quality) if quality is not None else QualityTier.MEDIUM,
            explicit_quality=quality is not None,
            speed=speed_mode,
            **kwargs
        )
        request.validate()
        return request

    @property
    def passthrough_limit_mb(self) -> float:
        """maxSizeMB can only raise the passthrough cap above the target"""
        if self.max_size_mb is None:
            return self.target_size_mb
        return max(self.target_size_mb, self.max_size_mb)

    @property
    def chunk_size_bytes(self) -> int:
        return max(1, int(self.chunk_size_mb * BYTES_PER_MB))

    def validate(self) -> None:
        """Fail fast on malformed parameters"""
        def positive_number(name: str, value: Any) -> None:
            if isinstance(value, bool) or not isinstance(value, (int, float)) or math.isnan(value) or value <= 0:
                raise InvalidInput(f"{name} must be a positive number, got {value!r}")

        positive_number('target_size_mb', self.target_size_mb)
        positive_number('chunk_size_mb', self.chunk_size_mb)
        if self.max_size_mb is not None:
            positive_number('max_size_mb', self.max_size_mb)
        if not isinstance(self.quality, QualityTier):
            raise InvalidInput(f"quality must be a QualityTier, got {self.quality!r}")
        if not isinstance(self.speed, SpeedMode):
            raise InvalidInput(f"speed must be a SpeedMode, got {self.speed!r}")
        if isinstance(self.max_concurrent_chunks, bool) or not isinstance(self.max_concurrent_chunks, int) \
                or self.max_concurrent_chunks < 1:
            raise InvalidInput(f"max_concurrent_chunks must be an integer >= 1, got {self.max_concurrent_chunks!r}")
        for name in ('width', 'height'):
            value = getattr(self, name)
            if value is not None and (isinstance(value, bool) or not isinstance(value, int) or value < 2):
                raise InvalidInput(f"{name} must be an integer >= 2, got {value!r}")
        if self.frame_rate is not None:
            positive_number('frame_rate', self.frame_rate)
            if self.frame_rate > 120:
                raise InvalidInput(f"frame_rate must not exceed 120, got {self.frame_rate}")


@dataclass
class Chunk:
    """A byte range of the source, owned by exactly one worker"""
    index: int
    offset: int
    length: int
    raw: Optional[bytes] = field(default=None, repr=False)
    compressed: Optional[bytes] = field(default=None, repr=False)
    processing_time_ms: float = 0.0

    def release_raw(self) -> None:
        self.raw = None


@dataclass(frozen=True)
class CompressionResult:
    """Output record handed back to the caller for persistence"""
    data: bytes = field(repr=False)
    original_size: int
    compressed_size: int
    compression_ratio: float
    processing_time_ms: float
    method: CompressionMethod
    mime_type: str
    profile: Optional[str] = None
    chunk_count: Optional[int] = None
    average_chunk_time_ms: Optional[float] = None

    @classmethod
    def build(cls, data: bytes, original_size: int, processing_time_ms: float,
              method: CompressionMethod, mime_type: str, **extra) -> 'CompressionResult':
        compressed_size = len(data)
        ratio = original_size / compressed_size if compressed_size else 0.0
        return cls(
            data=data,
            original_size=original_size,
            compressed_size=compressed_size,
            compression_ratio=ratio,
            processing_time_ms=processing_time_ms,
            method=method,
            mime_type=mime_type,
            **extra
        )

    @classmethod
    def passthrough(cls, source: SourceMedia, data: bytes, processing_time_ms: float = 0.0) -> 'CompressionResult':
        return cls(
            data=data,
            original_size=source.size_bytes,
            compressed_size=len(data),
            compression_ratio=1.0,
            processing_time_ms=processing_time_ms,
            method=CompressionMethod.PASSTHROUGH,
            mime_type=source.mime_type,
        )

    @property
    def original_size_mb(self) -> float:
        return self.original_size / BYTES_PER_MB

    @property
    def compressed_size_mb(self) -> float:
        return self.compressed_size / BYTES_PER_MB

    @property
    def size_reduction_percent(self) -> float:
        if not self.original_size:
            return 0.0
        return (1 - self.compressed_size / self.original_size) * 100

    def summary(self) -> Dict[str, Any]:
        return {
            'method': self.method.value,
            'original_size_mb': round(self.original_size_mb, 3),
            'compressed_size_mb': round(self.compressed_size_mb, 3),
            'compression_ratio': round(self.compression_ratio, 3),
            'processing_time_ms': round(self.processing_time_ms, 1),
            'mime_type': self.mime_type,
            'profile': self.profile,
            'chunk_count': self.chunk_count,
            'average_chunk_time_ms': self.average_chunk_time_ms,
        }


@dataclass(frozen=True)
class Thumbnail:
    image: bytes = field(repr=False)
    timestamp: float
    width: int
    height: int
    mime_type: str = "image/jpeg"

    @property
    def size_bytes(self) -> int:
        return len(self.image)


@dataclass(frozen=True)
class PipelineOutcome:
    result: CompressionResult
    thumbnail: Optional[Thumbnail] = None
