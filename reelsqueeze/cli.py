"""
Command Line Interface for reelsqueeze
Argument parsing, progress display and graceful shutdown around the dispatcher
"""

import argparse
import atexit
import json
import signal
import sys
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

from tqdm import tqdm

from .codec_negotiator import CodecNegotiator
from .config_manager import ConfigManager
from .dispatcher import StrategyDispatcher
from .encoder_state import CancellationToken
from .exceptions import CompressionCancelled, ReelSqueezeError
from .ffmpeg_utils import FFmpegUtils
from .logger_setup import setup_logging, get_logger
from .media import CompressionRequest, CompressionResult, QualityTier, SourceMedia, SpeedMode
from .temp_file_manager import TempFileManager
from .thumbnail_extractor import ThumbnailExtractor

logger = None  # Will be initialized after logging setup

MIME_EXTENSIONS = {
    'video/webm': '.webm',
    'video/mp4': '.mp4',
    'video/x-msvideo': '.avi',
}


def output_extension(result: CompressionResult, source: SourceMedia) -> str:
    base_mime = result.mime_type.split(';')[0].strip()
    return MIME_EXTENSIONS.get(base_mime, source.path.suffix or '.bin')


class ReelSqueezeCLI:
    def __init__(self):
        self.config: Optional[ConfigManager] = None
        self.dispatcher: Optional[StrategyDispatcher] = None
        self.token = CancellationToken()
        self.signal_count = 0
        self._lock = threading.Lock()

    def run(self, argv: Optional[List[str]] = None) -> int:
        """Parse arguments, execute the command and return the exit code"""
        global logger
        args = self._parse_arguments(argv)

        effective_level = 'DEBUG' if args.debug else args.log_level
        setup_logging(log_level=effective_level, logs_dir=args.logs_dir)
        logger = get_logger('cli')

        atexit.register(TempFileManager.cleanup)
        self._setup_signal_handlers()

        try:
            self.config = ConfigManager(args.config_dir)
            self.config.update_from_args(self._extract_config_overrides(args))
            if args.command not in ('config', 'cfg') and not self.config.validate_config():
                print("Configuration is invalid; see logs/errors.log for details", file=sys.stderr)
                return 1
            return self._execute_command(args)
        except CompressionCancelled:
            print("\nCancelled", file=sys.stderr)
            logger.warning("Operation cancelled by user")
            return 1
        except ReelSqueezeError as e:
            print(f"Failed: {e.get_short_message()}", file=sys.stderr)
            logger.error(f"Command failed: {e.get_short_message()}")
            return 1
        finally:
            if self.dispatcher is not None:
                self.dispatcher.shutdown()
            TempFileManager.cleanup()

    def _setup_signal_handlers(self):
        """First signal cancels cooperatively; the second one exits immediately"""

        def signal_handler(signum, frame):
            with self._lock:
                self.signal_count += 1
                count = self.signal_count
            signal_name = signal.Signals(signum).name
            if count >= 2:
                print(f"\n{signal_name} received again. Cleaning up and exiting...")
                logger.warning(f"{signal_name} received {count} times, forcing exit")
                TempFileManager.cleanup()
                sys.exit(1)
            print(f"\nReceived {signal_name}, finishing current unit... (Press Ctrl+C again to force quit)")
            logger.info(f"Received {signal_name} signal, cancelling")
            self.token.cancel()

        if threading.current_thread() is not threading.main_thread():
            return
        signal.signal(signal.SIGINT, signal_handler)
        if hasattr(signal, 'SIGTERM'):
            signal.signal(signal.SIGTERM, signal_handler)

    def _parse_arguments(self, argv: Optional[List[str]] = None) -> argparse.Namespace:
        parser = argparse.ArgumentParser(
            prog='reelsqueeze',
            description="reelsqueeze - size-bounded adaptive video compression",
            epilog="Examples:\n"
                   "  %(prog)s compress clip.mov -o clip.webm --target-size-mb 10\n"
                   "  %(prog)s compress match.mp4 --fast --thumbnail thumb.jpg\n"
                   "  %(prog)s compress huge.mp4 --speed lightning --chunk-size-mb 10\n"
                   "  %(prog)s thumbnail clip.mov thumb.jpg --at 5\n"
                   "  %(prog)s probe clip.mov\n",
            formatter_class=argparse.RawDescriptionHelpFormatter
        )
        parser.add_argument('--config-dir', default=None,
                            help='Configuration directory overriding the packaged defaults')
        parser.add_argument('--log-level', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'], default=None,
                            help='Override logging level (default: WARNING to console, DEBUG to file)')
        parser.add_argument('-v', '--debug', action='store_true', help='Enable verbose debug output')
        parser.add_argument('--logs-dir', default='logs', help='Directory for log files (default: logs)')
        parser.add_argument('--temp-dir', help='Temporary directory for encoder output')

        subparsers = parser.add_subparsers(dest='command', help='Available commands')

        compress_parser = subparsers.add_parser('compress', aliases=['c'], help='Compress a video file')
        compress_parser.add_argument('input', help='Input video file')
        compress_parser.add_argument('-o', '--output', help='Output file (default: <input>_compressed.<ext>)')
        compress_parser.add_argument('-t', '--target-size-mb', type=float, default=10.0, metavar='MB',
                                     help='Target output size in MB (default: 10)')
        compress_parser.add_argument('-s', '--max-size-mb', type=float, metavar='MB',
                                     help='Pass files at or below this size through unchanged')
        compress_parser.add_argument('-q', '--quality', default=None,
                                     help='Quality tier (low, medium, high, ultra) or factor 0.0-1.0')
        compress_parser.add_argument('--speed', choices=[m.value for m in SpeedMode], default=None,
                                     help='Speed mode (default: normal)')
        compress_parser.add_argument('-f', '--fast', action='store_true', help='Shortcut for --speed fast')
        compress_parser.add_argument('--width', type=int, help='Output width in pixels')
        compress_parser.add_argument('--height', type=int, help='Output height in pixels')
        compress_parser.add_argument('--frame-rate', type=float, help='Output frame rate')
        compress_parser.add_argument('--chunk-size-mb', type=float, default=None, metavar='MB',
                                     help='Chunk size for streaming compression')
        compress_parser.add_argument('--max-concurrent-chunks', type=int, default=None, metavar='N',
                                     help='Chunks compressed in parallel per batch')
        compress_parser.add_argument('--thumbnail', metavar='PATH', help='Also write a JPEG thumbnail')
        compress_parser.add_argument('--thumbnail-at', type=float, default=None, metavar='SEC',
                                     help='Thumbnail timestamp in seconds (default: 5)')
        compress_parser.add_argument('--no-precision', action='store_true',
                                     help='Never use the external precision engine')
        compress_parser.add_argument('--benchmarks', metavar='PATH',
                                     help='Export the performance benchmark of this run as JSON')

        thumb_parser = subparsers.add_parser('thumbnail', aliases=['t'], help='Extract a JPEG thumbnail')
        thumb_parser.add_argument('input', help='Input video file')
        thumb_parser.add_argument('output', help='Output JPEG path')
        thumb_parser.add_argument('--at', type=float, default=None, metavar='SEC', help='Timestamp in seconds')

        snap_parser = subparsers.add_parser('snapshots', help='Extract high-resolution stills')
        snap_parser.add_argument('input', help='Input video file')
        snap_parser.add_argument('timestamps', type=float, nargs='+', metavar='SEC', help='Timestamps in seconds')
        snap_parser.add_argument('-o', '--output-dir', default='.', help='Directory for the stills')

        subparsers.add_parser('probe', aliases=['p'], help='Show source metadata').add_argument(
            'input', help='Input video file')
        subparsers.add_parser('codecs', help='Show the codec fallback chain and what the host supports')

        config_parser = subparsers.add_parser('config', aliases=['cfg'], help='Configuration management')
        config_subparsers = config_parser.add_subparsers(dest='config_action')
        config_subparsers.add_parser('show', help='Show active configuration')
        config_subparsers.add_parser('validate', help='Validate configuration files')

        args = parser.parse_args(argv)
        if not args.command:
            parser.print_help()
            parser.exit(1)
        return args

    def _extract_config_overrides(self, args: argparse.Namespace) -> Dict[str, Any]:
        overrides: Dict[str, Any] = {}
        if args.temp_dir:
            overrides['paths.temp_dir'] = args.temp_dir
        if getattr(args, 'no_precision', False):
            overrides['precision_engine.enabled'] = False
        return overrides

    def _execute_command(self, args: argparse.Namespace) -> int:
        command = {'c': 'compress', 't': 'thumbnail', 'p': 'probe', 'cfg': 'config'}.get(args.command, args.command)

        if command == 'compress':
            return self._compress(args)
        if command == 'thumbnail':
            return self._thumbnail(args)
        if command == 'snapshots':
            return self._snapshots(args)
        if command == 'probe':
            return self._probe(args)
        if command == 'codecs':
            print(CodecNegotiator.from_config(self.config).get_report())
            return 0
        if command == 'config':
            return self._handle_config_command(args)

        logger.error(f"Unknown command: {command}")
        return 1

    def _build_request(self, args: argparse.Namespace) -> CompressionRequest:
        quality: Any = args.quality
        if quality is not None and quality.lower() not in {t.value for t in QualityTier}:
            try:
                quality = float(quality)
            except ValueError:
                pass

        options = {
            'targetSizeMB': args.target_size_mb,
            'maxSizeMB': args.max_size_mb,
            'quality': quality,
            'speed': args.speed,
            'fastMode': args.fast or None,
            'width': args.width,
            'height': args.height,
            'frameRate': args.frame_rate,
            'chunkSizeMB': args.chunk_size_mb if args.chunk_size_mb is not None
            else self.config.get('streaming.default_chunk_size_mb'),
            'maxConcurrentChunks': args.max_concurrent_chunks if args.max_concurrent_chunks is not None
            else self.config.get('streaming.default_max_concurrent_chunks'),
        }
        return CompressionRequest.from_options(options)

    def _compress(self, args: argparse.Namespace) -> int:
        request = self._build_request(args)
        self.dispatcher = StrategyDispatcher(self.config)
        source = self.dispatcher.prepare(args.input)

        with tqdm(total=100, desc=f"Compressing {source.name}", unit="%",
                  bar_format='{l_bar}{bar}| {n:.0f}/{total:.0f}%') as progress_bar:
            def on_progress(percent: float):
                progress_bar.n = min(100.0, percent)
                progress_bar.refresh()

            if args.thumbnail:
                outcome = self.dispatcher.process(source, request, args.thumbnail_at, on_progress, self.token)
                result, thumbnail = outcome.result, outcome.thumbnail
            else:
                result = self.dispatcher.compress(source, request, on_progress, self.token)
                thumbnail = None

        output_path = Path(args.output) if args.output else \
            source.path.with_name(f"{source.path.stem}_compressed{output_extension(result, source)}")
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_bytes(result.data)

        print(f"{result.method.value}: {result.original_size_mb:.2f} MB -> {result.compressed_size_mb:.2f} MB "
              f"({result.compression_ratio:.2f}x, {result.processing_time_ms / 1000:.1f}s) -> {output_path}")
        if result.chunk_count:
            print(f"  {result.chunk_count} chunks, avg {result.average_chunk_time_ms:.1f} ms/chunk")

        if args.thumbnail:
            if thumbnail is not None:
                Path(args.thumbnail).write_bytes(thumbnail.image)
                print(f"  thumbnail at {thumbnail.timestamp:.2f}s -> {args.thumbnail}")
            else:
                print("  thumbnail unavailable")

        if args.benchmarks:
            self.dispatcher.monitor.export_benchmarks(args.benchmarks)
        return 0

    def _thumbnail(self, args: argparse.Namespace) -> int:
        source = FFmpegUtils.probe_source(SourceMedia.from_path(args.input),
                                          timeout=float(self.config.get('probe.timeout_seconds', 30)))
        thumbnail = ThumbnailExtractor(self.config).extract_thumbnail(source, args.at)
        Path(args.output).write_bytes(thumbnail.image)
        print(f"Thumbnail at {thumbnail.timestamp:.2f}s ({thumbnail.width}x{thumbnail.height}, "
              f"{thumbnail.size_bytes} bytes) -> {args.output}")
        return 0

    def _snapshots(self, args: argparse.Namespace) -> int:
        source = FFmpegUtils.probe_source(SourceMedia.from_path(args.input),
                                          timeout=float(self.config.get('probe.timeout_seconds', 30)))
        output_dir = Path(args.output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        for snapshot in ThumbnailExtractor(self.config).extract_snapshots(source, args.timestamps):
            path = output_dir / f"{source.path.stem}_{snapshot.timestamp:.2f}s.jpg"
            path.write_bytes(snapshot.image)
            print(f"{snapshot.timestamp:.2f}s -> {path}")
        return 0

    def _probe(self, args: argparse.Namespace) -> int:
        source = FFmpegUtils.probe_source(SourceMedia.from_path(args.input),
                                          timeout=float(self.config.get('probe.timeout_seconds', 30)))
        print(json.dumps({
            'path': str(source.path),
            'size_mb': round(source.size_mb, 3),
            'mime_type': source.mime_type,
            'duration': source.duration,
            'width': source.width,
            'height': source.height,
            'fps': round(source.fps, 3),
        }, indent=2))
        return 0

    def _handle_config_command(self, args: argparse.Namespace) -> int:
        if args.config_action == 'show':
            self.config.log_active_configuration()
            print(json.dumps(self.config.config, indent=2, default=str))
            return 0
        if args.config_action == 'validate':
            issues = self.config.validate_configuration_values()
            if issues:
                for issue in issues:
                    print(f"  - {issue}")
                return 1
            print("Configuration is valid")
            return 0
        print("Usage: reelsqueeze config {show,validate}")
        return 1


def main():
    """Entry point for the CLI application"""
    sys.exit(ReelSqueezeCLI().run())


if __name__ == '__main__':
    main()
