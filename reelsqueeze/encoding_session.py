"""
Encoding Sessions
A session accepts rasterized frames and yields the encoded container bytes
"""

import logging
import subprocess
import tempfile
from typing import List, Optional

import numpy as np

from .codec_negotiator import CodecChoice
from .exceptions import EncodingFailed
from .ffmpeg_utils import FFmpegUtils
from .temp_file_manager import TempFileManager

logger = logging.getLogger(__name__)


class EncodingSession:
    """Capability interface: start, feed frames, stop (or abort)"""

    def start(self) -> None:
        raise NotImplementedError

    def feed_frame(self, frame: np.ndarray) -> None:
        raise NotImplementedError

    def stop(self) -> bytes:
        raise NotImplementedError

    def abort(self) -> None:
        raise NotImplementedError


class FFmpegEncodingSession(EncodingSession):
    """Pipes raw BGR frames into an ffmpeg process writing a temp container file"""

    def __init__(self, codec: CodecChoice, width: int, height: int, fps: float, bitrate_bps: int,
                 binary: str = 'ffmpeg', temp_dir: Optional[str] = None, timeout: float = 600):
        self.codec = codec
        self.width = width
        self.height = height
        self.fps = fps
        self.bitrate_bps = bitrate_bps
        self.binary = binary
        self.temp_dir = temp_dir
        self.timeout = timeout
        self.frames_fed = 0
        self._process: Optional[subprocess.Popen] = None
        self._output_path: Optional[str] = None
        self._stderr_file = None

    def build_command(self, output_path: str) -> List[str]:
        cmd = [
            self.binary, '-y', '-hide_banner', '-loglevel', 'error',
            '-f', 'rawvideo', '-pix_fmt', 'bgr24',
            '-s', f'{self.width}x{self.height}',
            '-r', f'{self.fps:g}',
            '-i', '-',
            '-an',
            '-c:v', self.codec.encoder,
            '-b:v', str(self.bitrate_bps),
        ]
        if self.codec.encoder.startswith('libvpx'):
            cmd.extend(['-deadline', 'realtime', '-cpu-used', '8'])
        cmd.extend(['-pix_fmt', 'yuvj420p' if self.codec.encoder == 'mjpeg' else 'yuv420p'])
        cmd.append(output_path)
        return cmd

    def start(self) -> None:
        self._output_path = str(TempFileManager.create(suffix=f'.{self.codec.container}', prefix='session_',
                                                       directory=self.temp_dir))
        self._stderr_file = tempfile.TemporaryFile(mode='w+', encoding='utf-8', errors='replace')

        cmd = self.build_command(self._output_path)
        logger.debug(f"Starting encoding session: {' '.join(cmd)}")
        try:
            self._process = subprocess.Popen(
                cmd,
                stdin=subprocess.PIPE,
                stdout=subprocess.DEVNULL,
                stderr=self._stderr_file
            )
        except OSError as e:
            self._release()
            raise EncodingFailed(f"Failed to start encoder {self.codec.encoder}: {e}") from e

    def feed_frame(self, frame: np.ndarray) -> None:
        if self._process is None or self._process.stdin is None:
            raise EncodingFailed("Encoding session is not running")
        if frame.shape[:2] != (self.height, self.width):
            raise EncodingFailed(f"Frame shape {frame.shape[1]}x{frame.shape[0]} does not match "
                                 f"session surface {self.width}x{self.height}")
        try:
            self._process.stdin.write(np.ascontiguousarray(frame, dtype=np.uint8).tobytes())
        except (BrokenPipeError, OSError) as e:
            stderr = self._read_stderr()
            self.abort()
            raise EncodingFailed(f"Encoder {self.codec.encoder} stopped accepting frames: {e}",
                                 stderr_tail=stderr) from e
        self.frames_fed += 1

    def stop(self) -> bytes:
        if self._process is None:
            raise EncodingFailed("Encoding session was never started")
        try:
            if self._process.stdin:
                self._process.stdin.close()
            self._process.wait(timeout=self.timeout)
        except subprocess.TimeoutExpired as e:
            self.abort()
            raise EncodingFailed(f"Encoder {self.codec.encoder} timed out after {self.timeout}s") from e
        except BrokenPipeError:
            self._process.wait(timeout=self.timeout)

        try:
            if self._process.returncode != 0:
                stderr = self._read_stderr()
                raise EncodingFailed(
                    f"Encoder {self.codec.encoder} exited with code {self._process.returncode}",
                    exit_code=self._process.returncode,
                    stderr_tail=stderr
                )
            with open(self._output_path, 'rb') as handle:
                data = handle.read()
            if not data:
                raise EncodingFailed(f"Encoder {self.codec.encoder} produced no output")
            logger.debug(f"Encoding session finished: {self.frames_fed} frames, {len(data)} bytes")
            return data
        finally:
            self._release()

    def abort(self) -> None:
        if self._process is not None and self._process.poll() is None:
            self._process.kill()
            self._process.wait()
            logger.debug(f"Encoding session aborted after {self.frames_fed} frames")
        self._release()

    def _read_stderr(self) -> str:
        if self._stderr_file is None:
            return ""
        self._stderr_file.seek(0)
        return FFmpegUtils.stderr_tail(self._stderr_file.read())

    def _release(self) -> None:
        if self._stderr_file is not None:
            self._stderr_file.close()
            self._stderr_file = None
        if self._output_path:
            TempFileManager.release(self._output_path)
            self._output_path = None
