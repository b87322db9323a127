"""
Unit tests for the media data model: quality tiers, speed modes and request validation
"""

import dataclasses

import pytest

from reelsqueeze.exceptions import InvalidInput, LoadError
from reelsqueeze.media import (
    CompressionMethod, CompressionRequest, CompressionResult, QualityTier, SourceMedia, SpeedMode
)


@pytest.mark.parametrize("value,expected", [
    ('low', QualityTier.LOW),
    ('MEDIUM', QualityTier.MEDIUM),
    (0.2, QualityTier.LOW),
    (0.5, QualityTier.MEDIUM),
    (0.8, QualityTier.HIGH),
    (0.95, QualityTier.ULTRA),
    (1, QualityTier.ULTRA),
])
def test_quality_tier_from_value(value, expected):
    assert QualityTier.from_value(value) is expected


@pytest.mark.parametrize("value", ['best', 1.5, -0.1, True])
def test_quality_tier_rejects_invalid_values(value):
    with pytest.raises(InvalidInput):
        QualityTier.from_value(value)


def test_speed_mode_accepts_ultra_streaming_alias():
    assert SpeedMode.from_value('ultra-streaming') is SpeedMode.ULTRA
    with pytest.raises(InvalidInput):
        SpeedMode.from_value('warp')


def test_from_options_maps_camel_case_keys():
    request = CompressionRequest.from_options({
        'targetSizeMB': 8,
        'maxSizeMB': 12,
        'quality': 'high',
        'fastMode': True,
        'chunkSizeMB': 5,
        'maxConcurrentChunks': 2,
        'width': 640,
    })
    assert request.target_size_mb == 8
    assert request.max_size_mb == 12
    assert request.quality is QualityTier.HIGH
    assert request.explicit_quality
    assert request.speed is SpeedMode.FAST
    assert request.chunk_size_bytes == 5 * 1024 * 1024
    assert request.max_concurrent_chunks == 2
    assert request.passthrough_limit_mb == 12


def test_max_size_below_target_keeps_target_as_passthrough_cap():
    request = CompressionRequest.create(target_size_mb=10, max_size_mb=5)
    assert request.passthrough_limit_mb == 10


def test_from_options_rejects_unknown_keys():
    with pytest.raises(InvalidInput, match="bogus"):
        CompressionRequest.from_options({'targetSizeMB': 10, 'bogus': 1})


def test_fast_mode_does_not_override_explicit_speed():
    request = CompressionRequest.create(fast_mode=True, speed='lightning')
    assert request.speed is SpeedMode.LIGHTNING


def test_default_request_uses_medium_quality():
    request = CompressionRequest.create()
    assert request.quality is QualityTier.MEDIUM
    assert not request.explicit_quality
    assert request.passthrough_limit_mb == request.target_size_mb


@pytest.mark.parametrize("kwargs", [
    {'target_size_mb': 0},
    {'target_size_mb': -5},
    {'chunk_size_mb': 0},
    {'max_concurrent_chunks': 0},
    {'width': 1},
    {'frame_rate': 500},
    {'max_size_mb': -1},
])
def test_request_validation_rejects_bad_values(kwargs):
    with pytest.raises(InvalidInput):
        CompressionRequest.create(**kwargs)


def test_source_media_from_path(tmp_path):
    video = tmp_path / "clip.mp4"
    video.write_bytes(b"\x00" * 2048)
    source = SourceMedia.from_path(video)
    assert source.size_bytes == 2048
    assert source.mime_type == "video/mp4"
    assert not source.probed
    assert source.read_range(1024, 100) == b"\x00" * 100

    probed = dataclasses.replace(source, duration=12.0, probed=True)
    assert source.duration == 0.0
    assert probed.duration == 12.0


def test_source_media_missing_file(tmp_path):
    with pytest.raises(LoadError):
        SourceMedia.from_path(tmp_path / "missing.mp4")


def test_compression_result_ratio_and_sizes():
    result = CompressionResult.build(b"x" * 256, 1024, 12.5, CompressionMethod.STREAMING, "video/webm",
                                     chunk_count=4, average_chunk_time_ms=3.0)
    assert result.compressed_size == 256
    assert result.compression_ratio == 4.0
    assert result.size_reduction_percent == 75.0
    assert result.summary()['method'] == 'streaming'
