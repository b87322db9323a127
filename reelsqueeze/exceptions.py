"""
Pipeline Exceptions
Error taxonomy shared by the dispatcher, the encoders and the thumbnail extractor
"""

from typing import List, Optional


class ReelSqueezeError(Exception):
    """Base class for every error raised by the transcoding pipeline"""

    kind = "error"

    def __init__(self, message: str, source_path: Optional[str] = None, context: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.source_path = source_path
        self.context = context

    def get_short_message(self) -> str:
        """Get concise error message for logging"""
        base = f"{self.kind}: {self.message}"
        if self.context:
            base += f" (context: {self.context})"
        return base


class LoadError(ReelSqueezeError):
    """Source cannot be opened, decoded or probed (missing, empty, corrupt container)"""

    kind = "load_error"


class InvalidInput(ReelSqueezeError):
    """Malformed request parameters or planner arguments"""

    kind = "invalid_input"


class CodecUnavailable(ReelSqueezeError):
    """No codec/container combination of the fallback chain exists on the host"""

    kind = "codec_unavailable"

    def __init__(self, message: str, attempted: Optional[List[str]] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.attempted = attempted or []


class EngineUnavailable(ReelSqueezeError):
    """The external precision engine failed to initialize"""

    kind = "engine_unavailable"


class EncodingFailed(ReelSqueezeError):
    """An encoder reported an internal error"""

    kind = "encoding_failed"

    def __init__(self, message: str, exit_code: Optional[int] = None,
                 stderr_tail: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.exit_code = exit_code
        self.stderr_tail = stderr_tail or ""


class ThumbnailError(ReelSqueezeError):
    """Base class for thumbnail failures; never fatal to a compression"""

    kind = "thumbnail_error"


class SeekFailed(ThumbnailError):
    kind = "seek_failed"


class FrameCaptureFailed(ThumbnailError):
    kind = "frame_capture_failed"


class CompressionFailed(ReelSqueezeError):
    """Terminal failure: a chunk or a whole-file encode did not complete"""

    kind = "compression_failed"

    def __init__(self, message: str, errors: Optional[List[ReelSqueezeError]] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.errors = errors or []


class CompressionCancelled(ReelSqueezeError):
    """The caller cancelled the operation; in-flight buffers were released"""

    kind = "cancelled"
