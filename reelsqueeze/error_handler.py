"""
Error Handling Module
Categorizes pipeline failures for diagnostics: category, severity, retryability
and suggested remedies. Callers only see success or failure; the kind is kept here.
"""

import logging
from typing import Dict, Any, List, Optional
from dataclasses import dataclass
from enum import Enum

from .exceptions import (
    CodecUnavailable, CompressionCancelled, CompressionFailed, EncodingFailed, EngineUnavailable,
    InvalidInput, LoadError, ReelSqueezeError, ThumbnailError
)

logger = logging.getLogger(__name__)


class ErrorCategory(Enum):
    """Categories of processing errors for better handling and reporting"""
    SOURCE = "source"
    REQUEST = "request"
    CODEC = "codec"
    ENGINE = "engine"
    ENCODER = "encoder"
    THUMBNAIL = "thumbnail"
    COMPRESSION = "compression"
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"
    PERMISSION = "permission"
    GENERAL = "general"


@dataclass
class ProcessingError:
    """Structured representation of a processing error"""
    category: ErrorCategory
    kind: str
    message: str
    file_path: str
    exception_type: str
    severity: str  # 'warning', 'error', 'critical'
    suggestions: List[str]
    retryable: bool = True
    context: Optional[str] = None

    def get_short_description(self) -> str:
        return f"{self.category.value}: {self.message}"

    def get_detailed_description(self) -> str:
        base = f"Error in {self.file_path}: {self.message}"
        if self.context:
            base += f" (Context: {self.context})"

        if self.suggestions:
            base += "\nSuggestions:\n" + "\n".join(f"  • {s}" for s in self.suggestions)

        return base


# (category, severity, retryable) per pipeline exception, most specific first
_TAXONOMY = [
    (LoadError, ErrorCategory.SOURCE, 'error', False),
    (InvalidInput, ErrorCategory.REQUEST, 'error', False),
    (CodecUnavailable, ErrorCategory.CODEC, 'critical', False),
    (EngineUnavailable, ErrorCategory.ENGINE, 'error', True),
    (EncodingFailed, ErrorCategory.ENCODER, 'error', True),
    (ThumbnailError, ErrorCategory.THUMBNAIL, 'warning', True),
    (CompressionCancelled, ErrorCategory.CANCELLED, 'warning', True),
    (CompressionFailed, ErrorCategory.COMPRESSION, 'error', True),
]

_SUGGESTIONS = {
    ErrorCategory.SOURCE: [
        "Check that the file exists and is a complete video",
        "Re-export the video in a standard container (mp4, webm, mov)",
    ],
    ErrorCategory.REQUEST: [
        "Check the compression options (sizes must be positive, quality low|medium|high|ultra)",
    ],
    ErrorCategory.CODEC: [
        "Install an ffmpeg build with libvpx or libx264",
        "Adjust codecs.fallback_chain in pipeline.yaml",
    ],
    ErrorCategory.ENGINE: [
        "Check that ffmpeg is installed and on PATH",
        "Disable the precision engine: --no-precision",
    ],
    ErrorCategory.ENCODER: [
        "Try fast mode: --fast",
        "Lower the quality tier or raise the target size",
        "Check the encoder output in logs/errors.log",
    ],
    ErrorCategory.THUMBNAIL: [
        "Pick an earlier thumbnail timestamp",
    ],
    ErrorCategory.COMPRESSION: [
        "Retry the operation",
        "Use a smaller chunk size or fewer concurrent chunks",
    ],
    ErrorCategory.CANCELLED: [],
    ErrorCategory.TIMEOUT: [
        "Increase the timeout settings",
        "Use a faster speed mode",
    ],
    ErrorCategory.PERMISSION: [
        "Check file permissions",
        "Ensure the output directory is writable",
    ],
    ErrorCategory.GENERAL: [
        "Check system resources",
        "Retry operation",
        "Check logs for more details",
    ],
}


class ErrorHandler:
    """Centralized error categorization and per-category accounting"""

    def __init__(self):
        self.error_counts = {category: 0 for category in ErrorCategory}
        self.processed_errors: List[ProcessingError] = []

    def categorize_error(self, exception: Exception, file_path: str = "",
                         context: str = None) -> ProcessingError:
        """Categorize an exception into a structured ProcessingError"""
        error_msg = getattr(exception, 'message', None) or str(exception)
        exception_type = type(exception).__name__

        if isinstance(exception, ReelSqueezeError):
            file_path = file_path or exception.source_path or ""
            context = context or exception.context
            for exc_type, category, severity, retryable in _TAXONOMY:
                if isinstance(exception, exc_type):
                    return self._build(category, exception.kind, error_msg, file_path,
                                       exception_type, severity, retryable, context)
            return self._build(ErrorCategory.GENERAL, exception.kind, error_msg, file_path,
                               exception_type, 'error', True, context)

        # Pattern-based categorization for foreign errors
        error_lower = error_msg.lower()
        if isinstance(exception, PermissionError) or 'permission' in error_lower:
            category, severity, retryable = ErrorCategory.PERMISSION, 'error', False
        elif isinstance(exception, TimeoutError) or 'timed out' in error_lower or 'timeout' in error_lower:
            category, severity, retryable = ErrorCategory.TIMEOUT, 'warning', True
        elif isinstance(exception, FileNotFoundError) or 'corrupt' in error_lower:
            category, severity, retryable = ErrorCategory.SOURCE, 'error', False
        elif 'ffmpeg' in error_lower or 'encoder' in error_lower:
            category, severity, retryable = ErrorCategory.ENCODER, 'error', True
        else:
            category, severity, retryable = ErrorCategory.GENERAL, 'error', True

        return self._build(category, 'error', error_msg, file_path, exception_type, severity, retryable, context)

    @staticmethod
    def _build(category: ErrorCategory, kind: str, message: str, file_path: str, exception_type: str,
               severity: str, retryable: bool, context: Optional[str]) -> ProcessingError:
        return ProcessingError(
            category=category,
            kind=kind,
            message=message,
            file_path=file_path,
            exception_type=exception_type,
            severity=severity,
            suggestions=list(_SUGGESTIONS.get(category, [])),
            retryable=retryable,
            context=context
        )

    def handle_error(self, exception: Exception, file_path: str = "",
                     context: str = None) -> ProcessingError:
        """Categorize, count and log an error"""
        error = self.categorize_error(exception, file_path, context)
        self.processed_errors.append(error)
        self.error_counts[error.category] += 1

        if error.severity == 'critical':
            logger.error(f"CRITICAL ERROR: {error.get_short_description()}")
            logger.error(f"Details: {error.get_detailed_description()}")
        elif error.severity == 'error':
            logger.error(f"ERROR: {error.get_short_description()}")
            if error.suggestions:
                logger.info(f"Suggestions: {'; '.join(error.suggestions[:2])}")
        else:
            logger.warning(f"WARNING: {error.get_short_description()}")

        if isinstance(exception, EncodingFailed) and exception.stderr_tail:
            logger.debug(f"Encoder output:\n{exception.stderr_tail}")
        if isinstance(exception, CompressionFailed):
            for nested in exception.errors:
                logger.debug(f"  caused by {nested.get_short_message()}")

        return error

    def get_error_summary(self) -> Dict[str, Any]:
        total_errors = len(self.processed_errors)
        if total_errors == 0:
            return {'total_errors': 0, 'categories': {}}

        category_counts = {cat.value: count for cat, count in self.error_counts.items() if count > 0}
        severity_counts: Dict[str, int] = {}
        for error in self.processed_errors:
            severity_counts[error.severity] = severity_counts.get(error.severity, 0) + 1
        retryable_count = sum(1 for error in self.processed_errors if error.retryable)

        return {
            'total_errors': total_errors,
            'categories': category_counts,
            'severity_distribution': severity_counts,
            'most_common_category': max(category_counts.items(), key=lambda x: x[1])[0],
            'critical_errors': severity_counts.get('critical', 0),
            'retryable_errors': retryable_count,
            'non_retryable_errors': total_errors - retryable_count
        }

    def get_category_suggestions(self, category: ErrorCategory) -> List[str]:
        return list(_SUGGESTIONS.get(category, [])) or ["Check system configuration", "Retry operation"]

    def reset(self):
        """Reset error tracking"""
        self.error_counts = {category: 0 for category in ErrorCategory}
        self.processed_errors = []
