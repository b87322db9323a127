"""
External Precision Encoder Adapter
Size-targeted compression through an external ffmpeg engine using CRF with a
capped bitrate, run inside a private workspace directory
"""

import logging
import os
import shutil
import subprocess
import tempfile
import threading
import time
import uuid
from typing import Callable, List, Optional

from .bitrate_planner import BitratePlanner
from .encoder_state import CancellationToken, EncoderState, EncoderStateTracker
from .exceptions import CompressionCancelled, EncodingFailed, EngineUnavailable, ReelSqueezeError
from .ffmpeg_utils import FFmpegUtils
from .media import SourceMedia

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]


class EngineHandle:
    """
    Lazily initialized encoding engine shared by every precision encode.

    Initialization runs at most once per handle (guarded by a lock); a failed
    initialization is remembered and re-raised until shutdown() resets the handle.
    The owner is responsible for calling shutdown(), which removes the workspace.
    """

    def __init__(self, binary: str = 'ffmpeg', temp_root: Optional[str] = None, timeout: float = 15,
                 runner: Callable = subprocess.run):
        self.binary = binary
        self.temp_root = temp_root
        self.timeout = timeout
        self._runner = runner
        self._lock = threading.Lock()
        self._initialized = False
        self._init_error: Optional[EngineUnavailable] = None
        self.workspace: Optional[str] = None
        self.version: Optional[str] = None
        self.init_count = 0

    @property
    def initialized(self) -> bool:
        return self._initialized

    def ensure_initialized(self) -> None:
        with self._lock:
            if self._initialized:
                return
            if self._init_error is not None:
                raise self._init_error

            try:
                result = self._runner([self.binary, '-hide_banner', '-version'],
                                      capture_output=True, text=True, timeout=self.timeout)
            except (OSError, subprocess.TimeoutExpired) as e:
                self._init_error = EngineUnavailable(f"Encoding engine '{self.binary}' could not be started: {e}")
                logger.error(self._init_error.message)
                raise self._init_error from e

            if result.returncode != 0:
                self._init_error = EngineUnavailable(
                    f"Encoding engine '{self.binary}' failed to initialize (exit code {result.returncode})"
                )
                logger.error(self._init_error.message)
                raise self._init_error

            self.version = (result.stdout or "").splitlines()[0] if result.stdout else "unknown"
            self.workspace = tempfile.mkdtemp(prefix='reelsqueeze_engine_', dir=self.temp_root)
            self._initialized = True
            self.init_count += 1
            logger.info(f"Precision engine initialized: {self.version}")
            logger.debug(f"Engine workspace: {self.workspace}")

    def is_available(self) -> bool:
        try:
            self.ensure_initialized()
            return True
        except EngineUnavailable:
            return False

    def workspace_path(self, name: str) -> str:
        if not self._initialized or self.workspace is None:
            raise EngineUnavailable("Encoding engine is not initialized")
        return os.path.join(self.workspace, name)

    def shutdown(self) -> None:
        with self._lock:
            if self.workspace and os.path.isdir(self.workspace):
                shutil.rmtree(self.workspace)
                logger.debug(f"Removed engine workspace {self.workspace}")
            self.workspace = None
            self._initialized = False
            self._init_error = None


class PrecisionEncoder:
    def __init__(self, engine: EngineHandle, config=None, planner: Optional[BitratePlanner] = None,
                 process_factory: Callable = subprocess.Popen):
        self.engine = engine
        self.planner = planner or BitratePlanner(config)
        self._process_factory = process_factory

        get = (lambda key, default: config.get(key, default)) if config is not None else (lambda key, default: default)
        self.video_codec = get('precision_engine.video_codec', 'libx264')
        self.preset = get('precision_engine.preset', 'medium')
        self.crf = int(get('precision_engine.crf', 28))
        self.audio_codec = get('precision_engine.audio_codec', 'aac')
        self.audio_bitrate = str(get('precision_engine.audio_bitrate', '128k'))
        self.timeout = float(get('precision_engine.timeout_seconds', 3600))
        self.output_mime_type = get('precision_engine.output_mime_type', 'video/mp4')

    @classmethod
    def from_config(cls, config) -> 'PrecisionEncoder':
        engine = EngineHandle(
            binary=config.get('precision_engine.binary', 'ffmpeg'),
            temp_root=config.get_temp_dir(),
        )
        return cls(engine, config)

    def build_command(self, input_path: str, output_path: str, bitrate_kbps: int) -> List[str]:
        return [
            self.engine.binary, '-y', '-hide_banner', '-nostats',
            '-progress', 'pipe:1',
            '-i', input_path,
            '-c:v', self.video_codec,
            '-preset', self.preset,
            '-crf', str(self.crf),
            '-maxrate', f'{bitrate_kbps}k',
            '-bufsize', f'{bitrate_kbps * 2}k',
            '-c:a', self.audio_codec,
            '-b:a', self.audio_bitrate,
            '-movflags', '+faststart',
            output_path,
        ]

    def encode_precise(self, source: SourceMedia, target_size_mb: float,
                       progress_cb: Optional[ProgressCallback] = None,
                       token: Optional[CancellationToken] = None) -> bytes:
        """Encode the whole source towards target_size_mb; workspace files never outlive the call"""
        token = token or CancellationToken()
        tracker = EncoderStateTracker('precision')
        tracker.transition(EncoderState.INITIALIZING)

        try:
            bitrate_kbps = self.planner.plan_precision_kbps(target_size_mb, source.duration)
            self.engine.ensure_initialized()
        except ReelSqueezeError:
            tracker.fail()
            raise

        job_id = uuid.uuid4().hex[:12]
        suffix = source.path.suffix or '.bin'
        input_path = self.engine.workspace_path(f'input_{job_id}{suffix}')
        output_path = self.engine.workspace_path(f'output_{job_id}.mp4')

        try:
            shutil.copyfile(source.path, input_path)
            cmd = self.build_command(input_path, output_path, bitrate_kbps)
            logger.info(f"Precision encode: {source.name} -> target {target_size_mb:g} MB "
                        f"(maxrate {bitrate_kbps}k, crf {self.crf})")
            logger.debug(f"Engine command: {' '.join(cmd)}")

            tracker.transition(EncoderState.RUNNING)
            self._run_engine(cmd, source.duration, progress_cb, token)

            tracker.transition(EncoderState.FINALIZING)
            with open(output_path, 'rb') as handle:
                data = handle.read()
            if not data:
                raise EncodingFailed("Encoding engine produced no output", source_path=str(source.path))
            tracker.transition(EncoderState.COMPLETE)
            logger.info(f"Precision encode finished: {len(data) / (1024 * 1024):.2f} MB")
            return data
        except CompressionCancelled:
            tracker.cancel()
            raise
        except ReelSqueezeError:
            tracker.fail()
            raise
        except OSError as e:
            tracker.fail()
            raise EncodingFailed(f"Engine workspace I/O failed: {e}", source_path=str(source.path)) from e
        finally:
            for path in (input_path, output_path):
                if os.path.exists(path):
                    os.remove(path)

    def _run_engine(self, cmd: List[str], duration: float, progress_cb: Optional[ProgressCallback],
                    token: CancellationToken) -> None:
        with tempfile.TemporaryFile(mode='w+', encoding='utf-8', errors='replace') as stderr_file:
            try:
                process = self._process_factory(
                    cmd,
                    stdout=subprocess.PIPE,
                    stderr=stderr_file,
                    text=True,
                    encoding='utf-8',
                    errors='replace'
                )
            except OSError as e:
                raise EngineUnavailable(f"Failed to launch encoding engine: {e}") from e

            # The watchdog kills a silent engine; the per-line check catches one that keeps talking
            deadline = time.monotonic() + self.timeout
            watchdog = threading.Timer(self.timeout, process.kill)
            watchdog.daemon = True
            watchdog.start()
            try:
                for line in process.stdout:
                    if time.monotonic() > deadline:
                        raise subprocess.TimeoutExpired(cmd, self.timeout)
                    if token.cancelled:
                        process.kill()
                        process.wait()
                        token.raise_if_cancelled('precision encode')
                    if progress_cb is None:
                        continue
                    if FFmpegUtils.is_progress_end(line):
                        progress_cb(100.0)
                        continue
                    seconds = FFmpegUtils.parse_progress_seconds(line)
                    if seconds is not None and duration > 0:
                        progress_cb(min(99.0, seconds / duration * 100))
                if time.monotonic() > deadline:
                    raise subprocess.TimeoutExpired(cmd, self.timeout)
                returncode = process.wait(timeout=max(0.0, deadline - time.monotonic()))
            except subprocess.TimeoutExpired as e:
                process.kill()
                process.wait()
                raise EncodingFailed(f"Encoding engine timed out after {self.timeout:g}s") from e
            finally:
                watchdog.cancel()

            if returncode != 0:
                stderr_file.seek(0)
                stderr = FFmpegUtils.stderr_tail(stderr_file.read())
                raise EncodingFailed(
                    f"Encoding engine exited with code {returncode}",
                    exit_code=returncode,
                    stderr_tail=stderr
                )
