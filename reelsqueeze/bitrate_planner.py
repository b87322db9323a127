"""
Bitrate Planner
Derives a target bitrate from desired output size, duration and quality tier
"""

import logging
import math
from typing import Dict, Optional

from .exceptions import InvalidInput
from .media import BYTES_PER_MB, QualityTier

logger = logging.getLogger(__name__)

DEFAULT_QUALITY_MULTIPLIERS = {
    QualityTier.LOW: 0.7,
    QualityTier.MEDIUM: 1.0,
    QualityTier.HIGH: 1.2,
    QualityTier.ULTRA: 1.5,
}

DEFAULT_SAFETY_MARGIN = 0.8


def _multipliers_from_config(config) -> Dict[QualityTier, float]:
    if config is None:
        return DEFAULT_QUALITY_MULTIPLIERS
    configured = config.get('bitrate_planner.quality_multipliers', {}) or {}
    return {tier: float(configured.get(tier.value, DEFAULT_QUALITY_MULTIPLIERS[tier]))
            for tier in QualityTier}


def _check_inputs(target_size_mb: float, duration_seconds: float) -> None:
    for name, value in (('target_size_mb', target_size_mb), ('duration_seconds', duration_seconds)):
        if isinstance(value, bool) or not isinstance(value, (int, float)) or math.isnan(value) or value <= 0:
            raise InvalidInput(f"{name} must be a positive number, got {value!r}")


def plan_bitrate(target_size_mb: float, duration_seconds: float,
                 quality: QualityTier = QualityTier.MEDIUM,
                 multipliers: Optional[Dict[QualityTier, float]] = None) -> int:
    """
    Plan a video bitrate in bits per second.

    floor(target_bytes * 8 / duration * multiplier). Monotone in target size and
    quality tier, inversely monotone in duration.
    """
    _check_inputs(target_size_mb, duration_seconds)
    multiplier = (multipliers or DEFAULT_QUALITY_MULTIPLIERS)[QualityTier.from_value(quality)]
    target_bits = target_size_mb * BYTES_PER_MB * 8
    bitrate = int(math.floor(target_bits / duration_seconds * multiplier))
    logger.debug(f"Planned bitrate {bitrate} bps for {target_size_mb} MB over {duration_seconds:.2f}s "
                 f"({quality.value if isinstance(quality, QualityTier) else quality}, x{multiplier})")
    return bitrate


def plan_precision_bitrate_kbps(target_size_mb: float, duration_seconds: float,
                                safety_margin: float = DEFAULT_SAFETY_MARGIN) -> int:
    """Kilobits per second for the precision engine; no quality scaling"""
    _check_inputs(target_size_mb, duration_seconds)
    if not (0 < safety_margin <= 1):
        raise InvalidInput(f"safety_margin must be in (0, 1], got {safety_margin!r}")
    target_kbits = target_size_mb * 8 * 1024
    return int(math.floor(target_kbits / duration_seconds * safety_margin))


class BitratePlanner:
    """Config-bound front end for the planning functions"""

    def __init__(self, config=None):
        self.multipliers = _multipliers_from_config(config)
        self.safety_margin = float(config.get('precision_engine.safety_margin', DEFAULT_SAFETY_MARGIN)) \
            if config is not None else DEFAULT_SAFETY_MARGIN

    def plan(self, target_size_mb: float, duration_seconds: float,
             quality: QualityTier = QualityTier.MEDIUM, scale: float = 1.0) -> int:
        """Bits per second, optionally scaled down for a retry attempt"""
        bitrate = plan_bitrate(target_size_mb, duration_seconds, quality, self.multipliers)
        return max(1, int(math.floor(bitrate * scale)))

    def plan_precision_kbps(self, target_size_mb: float, duration_seconds: float) -> int:
        return plan_precision_bitrate_kbps(target_size_mb, duration_seconds, self.safety_margin)
