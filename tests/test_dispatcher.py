"""
Tests for the strategy dispatcher: passthrough, bucket routing and failure propagation
"""

import dataclasses
import unittest
from pathlib import Path
from types import SimpleNamespace
import tempfile
import shutil

from reelsqueeze.codec_negotiator import CodecChoice
from reelsqueeze.config_manager import ConfigManager
from reelsqueeze.dispatcher import StrategyDispatcher
from reelsqueeze.exceptions import (
    CompressionFailed, EncodingFailed, InvalidInput, LoadError, SeekFailed
)
from reelsqueeze.media import BYTES_PER_MB, CompressionMethod, CompressionRequest, Thumbnail
from reelsqueeze.streaming_compressor import StreamingCompressor

# Byte-sized buckets so tests can use small files
TEST_BUCKETS = [
    {'name': 'small', 'max_size_mb': 3000 / BYTES_PER_MB, 'strategies': ['frame_sampling']},
    {'name': 'large', 'max_size_mb': 10000 / BYTES_PER_MB, 'strategies': ['precision', 'frame_sampling_reduced']},
    {'name': 'massive', 'max_size_mb': None, 'strategies': ['streaming']},
]

TINY_TARGET = 1000 / BYTES_PER_MB


def fake_prober(source):
    return dataclasses.replace(source, probed=True, duration=10.0, width=1280, height=720, fps=30.0)


class FakeFrameEncoder:
    def __init__(self, output=b"frames", error=None):
        self.output = output
        self.error = error
        self.calls = []

    def build_plan(self, source, request, profile=None):
        return SimpleNamespace(profile=profile or 'normal')

    def encode_with_details(self, source, plan, progress_cb=None, token=None):
        self.calls.append(plan.profile)
        if self.error is not None:
            raise self.error
        if progress_cb:
            progress_cb(100.0)
        return SimpleNamespace(data=self.output, frames_written=30,
                               codec=CodecChoice('libx264', 'mp4', 'video/mp4'))


class FakePrecision:
    output_mime_type = 'video/mp4'
    video_codec = 'libx264'

    def __init__(self, available=True, output=b"precise", error=None):
        self.engine = SimpleNamespace(is_available=lambda: available, shutdown=lambda: None)
        self.output = output
        self.error = error
        self.calls = 0

    def encode_precise(self, source, target_size_mb, progress_cb=None, token=None):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.output


class FakeThumbnails:
    def __init__(self, error=None):
        self.error = error

    def extract_thumbnail(self, source, timestamp=None):
        if self.error is not None:
            raise self.error
        return Thumbnail(image=b"\xff\xd8jpeg", timestamp=timestamp or 5.0, width=640, height=360)


class DispatcherTestCase(unittest.TestCase):

    def setUp(self):
        self.temp_dir = Path(tempfile.mkdtemp())
        self.config = ConfigManager()

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _file(self, name, size):
        path = self.temp_dir / name
        path.write_bytes(bytes(i % 251 for i in range(size)))
        return path

    def _dispatcher(self, frame_encoder=None, precision=None, thumbnails=None, prober=fake_prober):
        dispatcher = StrategyDispatcher(
            self.config,
            frame_encoder=frame_encoder or FakeFrameEncoder(),
            streaming=StreamingCompressor(self.config),
            precision=precision,
            thumbnails=thumbnails or FakeThumbnails(),
            prober=prober,
            precision_enabled=precision is not None,
        )
        dispatcher.buckets = TEST_BUCKETS
        return dispatcher


class TestPassthrough(DispatcherTestCase):

    def test_source_under_target_is_returned_unchanged(self):
        path = self._file("small.mp4", 5 * BYTES_PER_MB)
        frame_encoder = FakeFrameEncoder()
        progress = []

        result = self._dispatcher(frame_encoder).compress(path, CompressionRequest.create(target_size_mb=10),
                                                          progress.append)

        self.assertEqual(result.method, CompressionMethod.PASSTHROUGH)
        self.assertEqual(result.data, path.read_bytes())
        self.assertEqual(result.compression_ratio, 1.0)
        self.assertEqual(result.mime_type, 'video/mp4')
        self.assertEqual(progress, [100.0])
        self.assertEqual(frame_encoder.calls, [])

    def test_max_size_overrides_target_for_passthrough(self):
        path = self._file("clip.mp4", 2000)
        request = CompressionRequest.create(target_size_mb=TINY_TARGET, max_size_mb=1)

        result = self._dispatcher().compress(path, request)

        self.assertEqual(result.method, CompressionMethod.PASSTHROUGH)

    def test_max_size_below_target_never_lowers_passthrough(self):
        path = self._file("clip.mp4", 8000)
        frame_encoder = FakeFrameEncoder()
        request = CompressionRequest.from_options({'targetSizeMB': 10000 / BYTES_PER_MB,
                                                   'maxSizeMB': 5000 / BYTES_PER_MB})

        result = self._dispatcher(frame_encoder).compress(path, request)

        self.assertEqual(result.method, CompressionMethod.PASSTHROUGH)
        self.assertEqual(frame_encoder.calls, [])

    def test_second_pass_is_idempotent(self):
        path = self._file("clip.mp4", 2000)
        dispatcher = self._dispatcher()
        request = CompressionRequest.create(target_size_mb=1)

        first = dispatcher.compress(path, request)
        second = dispatcher.compress(path, request)

        self.assertEqual(first.data, second.data)


class TestRouting(DispatcherTestCase):

    def test_default_bucket_boundaries(self):
        dispatcher = StrategyDispatcher(self.config, precision_enabled=False, prober=fake_prober)

        self.assertEqual(dispatcher.select_bucket(50)[0], 'small')
        self.assertEqual(dispatcher.select_bucket(1000), ('large', ['precision', 'frame_sampling_reduced']))
        self.assertEqual(dispatcher.select_bucket(2048)[0], 'massive')
        self.assertEqual(dispatcher.select_bucket(2500), ('massive', ['streaming']))

    def test_small_source_uses_frame_sampling(self):
        path = self._file("clip.mp4", 2000)
        frame_encoder = FakeFrameEncoder(output=b"x" * 300)

        result = self._dispatcher(frame_encoder).compress(path, {'targetSizeMB': TINY_TARGET, 'fastMode': True})

        self.assertEqual(result.method, CompressionMethod.FRAME_SAMPLING)
        self.assertEqual(result.profile, 'normal:libx264')
        self.assertEqual(result.compressed_size, 300)
        self.assertAlmostEqual(result.compression_ratio, 2000 / 300)

    def test_large_source_prefers_precision(self):
        path = self._file("clip.mov", 5000)
        precision = FakePrecision()
        frame_encoder = FakeFrameEncoder()

        result = self._dispatcher(frame_encoder, precision).compress(
            path, CompressionRequest.create(target_size_mb=TINY_TARGET))

        self.assertEqual(result.method, CompressionMethod.PRECISION)
        self.assertEqual(result.data, b"precise")
        self.assertEqual(frame_encoder.calls, [])

    def test_unavailable_precision_falls_back_to_reduced_profile(self):
        path = self._file("clip.mov", 5000)
        precision = FakePrecision(available=False)
        frame_encoder = FakeFrameEncoder()

        result = self._dispatcher(frame_encoder, precision).compress(
            path, CompressionRequest.create(target_size_mb=TINY_TARGET))

        self.assertEqual(result.method, CompressionMethod.FRAME_SAMPLING)
        self.assertEqual(frame_encoder.calls, ['reduced'])
        self.assertEqual(precision.calls, 0)

    def test_massive_source_is_streamed(self):
        path = self._file("huge.mp4", 20000)
        chunk_events = []

        result = self._dispatcher().compress(
            path, CompressionRequest.create(target_size_mb=TINY_TARGET, speed='lightning'),
            chunk_cb=lambda done, total: chunk_events.append((done, total)))

        self.assertEqual(result.method, CompressionMethod.STREAMING)
        self.assertEqual(result.chunk_count, 1)
        self.assertEqual(result.compressed_size, 1000)
        self.assertEqual(result.profile, 'streaming:lightning')
        self.assertEqual(chunk_events, [(1, 1)])


class TestFailures(DispatcherTestCase):

    def test_probe_failure_stops_before_encoding(self):
        path = self._file("broken.mp4", 2000)
        frame_encoder = FakeFrameEncoder()

        def broken_prober(source):
            raise LoadError("Container could not be decoded", source_path=str(source.path))

        dispatcher = self._dispatcher(frame_encoder, prober=broken_prober)
        with self.assertRaises(LoadError):
            dispatcher.compress(path, CompressionRequest.create(target_size_mb=TINY_TARGET))

        self.assertEqual(frame_encoder.calls, [])
        self.assertEqual(dispatcher.error_handler.get_error_summary()['categories'], {'source': 1})

    def test_missing_file_raises_load_error(self):
        with self.assertRaises(LoadError):
            self._dispatcher().compress(self.temp_dir / "nope.mp4")

    def test_unknown_option_is_rejected(self):
        path = self._file("clip.mp4", 2000)
        with self.assertRaises(InvalidInput):
            self._dispatcher().compress(path, {'targetSizeMB': 1, 'bogus': True})

    def test_larger_output_falls_back_to_original(self):
        path = self._file("clip.mp4", 2000)
        frame_encoder = FakeFrameEncoder(output=b"y" * 5000)

        result = self._dispatcher(frame_encoder).compress(path, CompressionRequest.create(target_size_mb=TINY_TARGET))

        self.assertEqual(result.method, CompressionMethod.PASSTHROUGH)
        self.assertEqual(result.data, path.read_bytes())

    def test_single_strategy_failure_keeps_error_kind(self):
        path = self._file("clip.mp4", 2000)
        frame_encoder = FakeFrameEncoder(error=EncodingFailed("encoder exited with code 1", exit_code=1))

        with self.assertRaises(EncodingFailed):
            self._dispatcher(frame_encoder).compress(path, CompressionRequest.create(target_size_mb=TINY_TARGET))

    def test_all_candidates_failing_raises_compression_failed(self):
        path = self._file("clip.mov", 5000)
        precision = FakePrecision(error=EncodingFailed("engine exited with code 1", exit_code=1))
        frame_encoder = FakeFrameEncoder(error=EncodingFailed("encoder exited with code 1", exit_code=1))

        with self.assertRaises(CompressionFailed) as ctx:
            self._dispatcher(frame_encoder, precision).compress(
                path, CompressionRequest.create(target_size_mb=TINY_TARGET))

        self.assertEqual(len(ctx.exception.errors), 2)
        self.assertTrue(all(isinstance(e, EncodingFailed) for e in ctx.exception.errors))


class TestProcess(DispatcherTestCase):

    def test_process_returns_result_and_thumbnail(self):
        path = self._file("clip.mp4", 2000)

        outcome = self._dispatcher().process(path, CompressionRequest.create(target_size_mb=TINY_TARGET),
                                             thumbnail_at=2.0)

        self.assertEqual(outcome.result.method, CompressionMethod.FRAME_SAMPLING)
        self.assertEqual(outcome.thumbnail.timestamp, 2.0)

    def test_thumbnail_failure_yields_none(self):
        path = self._file("clip.mp4", 2000)
        dispatcher = self._dispatcher(thumbnails=FakeThumbnails(error=SeekFailed("Seek to 5.00s failed")))

        outcome = dispatcher.process(path, CompressionRequest.create(target_size_mb=TINY_TARGET))

        self.assertIsNone(outcome.thumbnail)
        self.assertEqual(outcome.result.method, CompressionMethod.FRAME_SAMPLING)

    def test_process_reports_load_failure(self):
        path = self._file("broken.mp4", 2000)

        def broken_prober(source):
            raise LoadError("Container could not be decoded", source_path=str(source.path))

        dispatcher = self._dispatcher(prober=broken_prober)
        with self.assertRaises(LoadError):
            dispatcher.process(path, CompressionRequest.create(target_size_mb=TINY_TARGET))

        self.assertEqual(dispatcher.error_handler.get_error_summary()['categories'], {'source': 1})


if __name__ == '__main__':
    unittest.main()
