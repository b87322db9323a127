"""
Tests for benchmark recording and summaries
"""

import json
import unittest
import tempfile
import os

from reelsqueeze.media import CompressionMethod, CompressionResult
from reelsqueeze.performance_monitor import CompressionBenchmark, PerformanceMonitor


def _result(method, original, compressed, time_ms):
    return CompressionResult.build(b"x" * compressed, original, time_ms, method, 'video/webm')


class TestPerformanceMonitor(unittest.TestCase):

    def test_empty_summary(self):
        summary = PerformanceMonitor().get_performance_summary()
        self.assertEqual(summary['total_compressions'], 0)
        self.assertIsNone(summary['fastest_method'])

    def test_summary_picks_fastest_and_best_methods(self):
        monitor = PerformanceMonitor()
        monitor.record_result(_result(CompressionMethod.FRAME_SAMPLING, 1000, 100, 400.0), frames=40)
        monitor.record_result(_result(CompressionMethod.STREAMING, 1000, 250, 100.0))
        monitor.record_result(_result(CompressionMethod.FRAME_SAMPLING, 1000, 200, 600.0), frames=60)

        summary = monitor.get_performance_summary()

        self.assertEqual(summary['total_compressions'], 3)
        self.assertEqual(summary['fastest_method'], 'streaming')
        self.assertEqual(summary['best_compression_method'], 'frame_sampling')
        self.assertEqual(summary['total_bytes_saved'], 900 + 750 + 800)
        self.assertAlmostEqual(summary['average_time_ms'], 1100 / 3)

        comparison = monitor.compare_methods()
        self.assertEqual(comparison['frame_sampling']['count'], 2)
        self.assertAlmostEqual(comparison['frame_sampling']['average_compression_ratio'], 7.5)

    def test_frames_per_second_recorded(self):
        monitor = PerformanceMonitor()
        benchmark = monitor.record_result(_result(CompressionMethod.FRAME_SAMPLING, 1000, 100, 2000.0), frames=150)
        self.assertAlmostEqual(benchmark.frames_per_second, 75.0)

    def test_history_is_bounded(self):
        monitor = PerformanceMonitor(max_benchmarks=3)
        for i in range(5):
            monitor.record_result(_result(CompressionMethod.STREAMING, 1000, 100 + i, 10.0))
        self.assertEqual([b.compressed_size for b in monitor.benchmarks], [102, 103, 104])

    def test_export_import_round_trip(self):
        monitor = PerformanceMonitor()
        monitor.record_result(_result(CompressionMethod.PRECISION, 5000, 1000, 50.0), quality='high',
                              source_name='a.mp4')

        with tempfile.TemporaryDirectory() as temp_dir:
            path = os.path.join(temp_dir, 'benchmarks.json')
            payload = monitor.export_benchmarks(path)
            with open(path, encoding='utf-8') as f:
                exported = json.load(f)
                self.assertEqual(exported['summary']['total_compressions'], 1)
                self.assertIn('cpu_count', exported['system'])

        restored = PerformanceMonitor()
        self.assertEqual(restored.import_benchmarks(payload), 1)
        self.assertEqual(restored.benchmarks[0].method, 'precision')
        self.assertEqual(restored.benchmarks[0].source_name, 'a.mp4')

    def test_import_rejects_garbage(self):
        self.assertEqual(PerformanceMonitor().import_benchmarks("not json"), 0)

    def test_from_dict_ignores_unknown_keys(self):
        benchmark = CompressionBenchmark.from_dict({
            'method': 'streaming', 'original_size': 10, 'compressed_size': 5,
            'compression_ratio': 2.0, 'processing_time_ms': 1.0, 'extra': 'ignored'
        })
        self.assertEqual(benchmark.compression_ratio, 2.0)

    def test_measure_operation_records_failures(self):
        monitor = PerformanceMonitor()
        with monitor.measure_operation('strategy.streaming', size_mb=1.0):
            pass
        with self.assertRaises(ValueError):
            with monitor.measure_operation('strategy.streaming'):
                raise ValueError("boom")

        stats = monitor.get_operation_statistics('strategy.streaming')['strategy.streaming']
        self.assertEqual(stats['count'], 2)
        self.assertEqual(stats['success_rate'], 50.0)

    def test_operation_history_is_bounded(self):
        monitor = PerformanceMonitor(max_benchmarks=3)
        for _ in range(10):
            with monitor.measure_operation('probe'):
                pass

        self.assertEqual(monitor.get_operation_statistics('probe')['probe']['count'], 3)

    def test_clear(self):
        monitor = PerformanceMonitor()
        monitor.record_result(_result(CompressionMethod.STREAMING, 1000, 100, 10.0))
        monitor.clear()
        self.assertEqual(monitor.benchmarks, [])


if __name__ == '__main__':
    unittest.main()
