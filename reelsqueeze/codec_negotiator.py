"""
Codec Negotiation for the frame-sampling encoder
Walks the configured fallback chain and picks the first encoder the host ffmpeg provides
"""

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Set

from .exceptions import CodecUnavailable
from .ffmpeg_utils import FFmpegUtils

logger = logging.getLogger(__name__)

DEFAULT_CHAIN = [
    {'encoder': 'libvpx-vp9', 'container': 'webm', 'mime_type': 'video/webm;codecs=vp9'},
    {'encoder': 'libvpx', 'container': 'webm', 'mime_type': 'video/webm;codecs=vp8'},
    {'encoder': 'libx264', 'container': 'mp4', 'mime_type': 'video/mp4'},
]


@dataclass(frozen=True)
class CodecChoice:
    encoder: str
    container: str
    mime_type: str

    @property
    def label(self) -> str:
        return f"{self.encoder}/{self.container}"


class CodecNegotiator:
    def __init__(self, chain: Optional[List[Dict[str, str]]] = None, binary: str = 'ffmpeg',
                 detector: Optional[Callable[[str], Set[str]]] = None):
        self.chain = [CodecChoice(c['encoder'], c['container'], c['mime_type']) for c in (chain or DEFAULT_CHAIN)]
        self.binary = binary
        self._detector = detector or FFmpegUtils.detect_encoders
        self._available: Optional[Set[str]] = None
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config, detector=None) -> 'CodecNegotiator':
        return cls(
            chain=config.get('codecs.fallback_chain') or None,
            binary=config.get('precision_engine.binary', 'ffmpeg'),
            detector=detector,
        )

    def available_encoders(self) -> Set[str]:
        """Detect once per negotiator; later calls reuse the result"""
        with self._lock:
            if self._available is None:
                self._available = set(self._detector(self.binary))
            return self._available

    def negotiate(self) -> CodecChoice:
        """Return the first supported entry of the fallback chain"""
        available = self.available_encoders()
        attempted = []
        for choice in self.chain:
            attempted.append(choice.label)
            if choice.encoder in available:
                if len(attempted) > 1:
                    logger.info(f"Codec fallback: using {choice.label} after trying {', '.join(attempted[:-1])}")
                else:
                    logger.debug(f"Negotiated codec {choice.label}")
                return choice

        raise CodecUnavailable(
            f"No supported codec/container combination (tried: {', '.join(attempted)})",
            attempted=attempted
        )

    def get_report(self) -> str:
        available = self.available_encoders()
        report = ["=== Codec Fallback Chain ==="]
        for choice in self.chain:
            status = "OK" if choice.encoder in available else "missing"
            report.append(f"  {choice.label:<20} {choice.mime_type:<28} {status}")
        return "\n".join(report)
