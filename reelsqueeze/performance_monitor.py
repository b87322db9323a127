"""
Performance Monitoring and Metrics System

Records one benchmark per compression, summarizes recent runs and compares
strategies. Benchmarks can be exported to and imported from JSON.
"""

import json
import time
import threading
from collections import defaultdict, deque
from contextlib import contextmanager
from dataclasses import dataclass, asdict, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
import logging

import psutil

from .media import CompressionResult

logger = logging.getLogger(__name__)


@dataclass
class CompressionBenchmark:
    """Metrics for a single compression run."""
    method: str
    original_size: int
    compressed_size: int
    compression_ratio: float
    processing_time_ms: float
    timestamp: float = field(default_factory=time.time)
    frames_per_second: Optional[float] = None
    quality: Optional[str] = None
    memory_mb: Optional[float] = None
    source_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CompressionBenchmark':
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


@dataclass
class OperationMetrics:
    """Metrics for a single timed operation."""
    operation_name: str
    duration: float
    success: bool
    error_message: Optional[str] = None
    memory_delta_mb: Optional[float] = None
    additional_metrics: Optional[Dict[str, Any]] = None


def _process_memory_mb() -> Optional[float]:
    try:
        return psutil.Process().memory_info().rss / (1024 * 1024)
    except (psutil.Error, OSError) as e:
        logger.debug(f"Failed to capture memory usage: {e}")
        return None


class PerformanceMonitor:
    """Keeps the most recent compression benchmarks and timed operations."""

    def __init__(self, config=None, max_benchmarks: Optional[int] = None):
        if max_benchmarks is None:
            max_benchmarks = int(config.get('performance.max_benchmarks', 100)) if config is not None else 100
        self.max_benchmarks = max_benchmarks

        self._lock = threading.RLock()
        self._benchmarks: deque = deque(maxlen=max_benchmarks)
        self._operation_stats: Dict[str, deque] = defaultdict(lambda: deque(maxlen=self.max_benchmarks))

    def record_benchmark(self, benchmark: CompressionBenchmark) -> None:
        with self._lock:
            self._benchmarks.append(benchmark)
        logger.info(f"PERFORMANCE [{benchmark.method}]: {benchmark.processing_time_ms:.0f}ms, "
                    f"ratio {benchmark.compression_ratio:.2f}x")

    def record_result(self, result: CompressionResult, frames: Optional[int] = None,
                      quality: Optional[str] = None, source_name: Optional[str] = None) -> CompressionBenchmark:
        """Build and store a benchmark from a finished compression"""
        fps = None
        if frames and result.processing_time_ms > 0:
            fps = frames / (result.processing_time_ms / 1000)
        benchmark = CompressionBenchmark(
            method=result.method.value,
            original_size=result.original_size,
            compressed_size=result.compressed_size,
            compression_ratio=result.compression_ratio,
            processing_time_ms=result.processing_time_ms,
            frames_per_second=fps,
            quality=quality,
            memory_mb=_process_memory_mb(),
            source_name=source_name,
        )
        self.record_benchmark(benchmark)
        return benchmark

    @property
    def benchmarks(self) -> List[CompressionBenchmark]:
        with self._lock:
            return list(self._benchmarks)

    @contextmanager
    def measure_operation(self, operation_name: str, **additional_metrics):
        """
        Context manager to measure operation performance.

        Args:
            operation_name: Name of the operation being measured
            **additional_metrics: Additional metrics to record
        """
        start_time = time.time()
        start_memory = _process_memory_mb()
        success = True
        error_message = None

        try:
            yield
        except Exception as e:
            success = False
            error_message = str(e)
            raise
        finally:
            duration = time.time() - start_time
            end_memory = _process_memory_mb()
            memory_delta = end_memory - start_memory if start_memory is not None and end_memory is not None else None
            metrics = OperationMetrics(
                operation_name=operation_name,
                duration=duration,
                success=success,
                error_message=error_message,
                memory_delta_mb=memory_delta,
                additional_metrics=additional_metrics or None,
            )
            with self._lock:
                self._operation_stats[operation_name].append(metrics)

            logger.debug(f"PERFORMANCE [{operation_name}]: {duration:.3f}s")
            if memory_delta is not None:
                logger.debug(f"  Memory: {memory_delta:+.1f}MB")
            if not success:
                logger.warning(f"  {operation_name} failed: {error_message}")

    def get_operation_statistics(self, operation_name: Optional[str] = None) -> Dict[str, Any]:
        with self._lock:
            names = [operation_name] if operation_name else list(self._operation_stats)
            stats = {}
            for name in names:
                entries = self._operation_stats.get(name, [])
                if not entries:
                    continue
                durations = [m.duration for m in entries]
                stats[name] = {
                    'count': len(entries),
                    'success_rate': sum(1 for m in entries if m.success) / len(entries) * 100,
                    'avg_duration': sum(durations) / len(durations),
                    'min_duration': min(durations),
                    'max_duration': max(durations),
                }
            return stats

    def get_performance_summary(self) -> Dict[str, Any]:
        """Averages, fastest method and best compression method over recent benchmarks"""
        with self._lock:
            benchmarks = list(self._benchmarks)

        if not benchmarks:
            return {
                'total_compressions': 0,
                'average_time_ms': 0.0,
                'average_compression_ratio': 0.0,
                'fastest_method': None,
                'best_compression_method': None,
                'total_bytes_saved': 0,
            }

        comparison = self.compare_methods()
        return {
            'total_compressions': len(benchmarks),
            'average_time_ms': sum(b.processing_time_ms for b in benchmarks) / len(benchmarks),
            'average_compression_ratio': sum(b.compression_ratio for b in benchmarks) / len(benchmarks),
            'fastest_method': min(comparison, key=lambda m: comparison[m]['average_time_ms']),
            'best_compression_method': max(comparison, key=lambda m: comparison[m]['average_compression_ratio']),
            'total_bytes_saved': sum(b.original_size - b.compressed_size for b in benchmarks),
        }

    def compare_methods(self) -> Dict[str, Dict[str, float]]:
        with self._lock:
            grouped: Dict[str, List[CompressionBenchmark]] = defaultdict(list)
            for benchmark in self._benchmarks:
                grouped[benchmark.method].append(benchmark)

        comparison = {}
        for method, entries in grouped.items():
            comparison[method] = {
                'count': len(entries),
                'average_time_ms': sum(b.processing_time_ms for b in entries) / len(entries),
                'average_compression_ratio': sum(b.compression_ratio for b in entries) / len(entries),
            }
        return comparison

    def get_system_statistics(self) -> Dict[str, Any]:
        try:
            memory = psutil.virtual_memory()
            return {
                'cpu_count': psutil.cpu_count(),
                'memory_total_gb': memory.total / (1024 ** 3),
                'memory_available_gb': memory.available / (1024 ** 3),
                'memory_percent': memory.percent,
            }
        except (psutil.Error, OSError) as e:
            logger.debug(f"Failed to get system stats: {e}")
            return {}

    def export_benchmarks(self, path: Optional[Union[str, Path]] = None) -> str:
        """Serialize benchmarks to JSON; also written to path when given"""
        payload = json.dumps({
            'export_timestamp': time.time(),
            'benchmarks': [b.to_dict() for b in self.benchmarks],
            'summary': self.get_performance_summary(),
            'system': self.get_system_statistics(),
        }, indent=2)
        if path is not None:
            Path(path).write_text(payload, encoding='utf-8')
            logger.info(f"Exported {len(self.benchmarks)} benchmarks to {path}")
        return payload

    def import_benchmarks(self, payload: str) -> int:
        """Append benchmarks from an export; returns how many were loaded"""
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as e:
            logger.error(f"Failed to import benchmarks: {e}")
            return 0

        entries = data.get('benchmarks', []) if isinstance(data, dict) else []
        loaded = 0
        for entry in entries:
            try:
                self.record_benchmark(CompressionBenchmark.from_dict(entry))
                loaded += 1
            except TypeError as e:
                logger.warning(f"Skipping malformed benchmark entry: {e}")
        return loaded

    def clear(self) -> None:
        with self._lock:
            self._benchmarks.clear()
            self._operation_stats.clear()
        logger.info("Cleared performance benchmarks")
