"""
Tests for ffprobe parsing, encoder detection and progress parsing
"""

import json
import subprocess
import unittest
from pathlib import Path
from unittest.mock import patch
import tempfile
import shutil

from reelsqueeze.exceptions import LoadError
from reelsqueeze.ffmpeg_utils import FFmpegUtils
from reelsqueeze.media import SourceMedia

PROBE_OUTPUT = {
    'format': {'duration': '62.500000', 'format_name': 'mov,mp4,m4a,3gp,3g2,mj2'},
    'streams': [
        {'codec_type': 'audio', 'codec_name': 'aac'},
        {'codec_type': 'video', 'codec_name': 'h264', 'width': 1920, 'height': 1080,
         'avg_frame_rate': '30000/1001', 'r_frame_rate': '30000/1001'},
    ]
}

ENCODERS_OUTPUT = """Encoders:
 V..... = Video
 A..... = Audio
 ------
 V....D libx264              libx264 H.264 / AVC / MPEG-4 AVC (codec h264)
 V....D libvpx-vp9           libvpx VP9 (codec vp9)
 A....D aac                  AAC (Advanced Audio Coding)
"""


def completed(stdout="", returncode=0, stderr=""):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


class TestParsers(unittest.TestCase):

    def test_parse_fps(self):
        self.assertAlmostEqual(FFmpegUtils.parse_fps('30000/1001'), 29.97, places=2)
        self.assertEqual(FFmpegUtils.parse_fps('25'), 25.0)
        self.assertEqual(FFmpegUtils.parse_fps('0/0'), 0.0)
        self.assertEqual(FFmpegUtils.parse_fps(''), 0.0)

    def test_parse_probe_data(self):
        info = FFmpegUtils.parse_probe_data(PROBE_OUTPUT)
        self.assertEqual(info['duration'], 62.5)
        self.assertEqual((info['width'], info['height']), (1920, 1080))
        self.assertAlmostEqual(info['fps'], 29.97, places=2)

    def test_parse_probe_data_without_video(self):
        self.assertIsNone(FFmpegUtils.parse_probe_data({'streams': [{'codec_type': 'audio'}]}))

    def test_parse_probe_data_falls_back_to_r_frame_rate(self):
        data = {'format': {'duration': 'N/A'},
                'streams': [{'codec_type': 'video', 'width': 640, 'height': 360,
                             'avg_frame_rate': '0/0', 'r_frame_rate': '24/1'}]}
        info = FFmpegUtils.parse_probe_data(data)
        self.assertEqual(info['fps'], 24.0)
        self.assertEqual(info['duration'], 0.0)

    def test_parse_encoder_list(self):
        self.assertEqual(FFmpegUtils.parse_encoder_list(ENCODERS_OUTPUT), {'libx264', 'libvpx-vp9', 'aac'})

    def test_parse_progress_seconds(self):
        self.assertEqual(FFmpegUtils.parse_progress_seconds("out_time_us=12500000"), 12.5)
        self.assertEqual(FFmpegUtils.parse_progress_seconds("out_time_ms=2000000\n"), 2.0)
        self.assertEqual(FFmpegUtils.parse_progress_seconds("out_time=00:01:02.500000"), 62.5)
        self.assertIsNone(FFmpegUtils.parse_progress_seconds("out_time_us=N/A"))
        self.assertIsNone(FFmpegUtils.parse_progress_seconds("frame=120"))
        self.assertTrue(FFmpegUtils.is_progress_end("progress=end\n"))
        self.assertFalse(FFmpegUtils.is_progress_end("progress=continue"))

    def test_stderr_tail(self):
        stderr = "\n".join(f"line {i}" for i in range(30))
        self.assertEqual(FFmpegUtils.stderr_tail(stderr, 2), "line 28\nline 29")
        self.assertEqual(FFmpegUtils.stderr_tail(None), "")


class TestProbeSource(unittest.TestCase):

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.path = Path(self.temp_dir) / "clip.mp4"
        self.path.write_bytes(b"\x00" * 2048)
        self.source = SourceMedia.from_path(self.path)

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    @patch('reelsqueeze.ffmpeg_utils.subprocess.run')
    def test_probe_returns_new_probed_source(self, mock_run):
        mock_run.return_value = completed(json.dumps(PROBE_OUTPUT))

        probed = FFmpegUtils.probe_source(self.source)

        self.assertTrue(probed.probed)
        self.assertFalse(self.source.probed)
        self.assertEqual(probed.duration, 62.5)
        self.assertEqual(probed.size_bytes, 2048)
        self.assertEqual(mock_run.call_args[0][0][0], 'ffprobe')

    @patch('reelsqueeze.ffmpeg_utils.subprocess.run')
    def test_corrupt_container_raises_load_error(self, mock_run):
        mock_run.return_value = completed(returncode=1, stderr="moov atom not found\nInvalid data found")

        with self.assertRaises(LoadError) as ctx:
            FFmpegUtils.probe_source(self.source)
        self.assertIn("Invalid data found", ctx.exception.message)

    @patch('reelsqueeze.ffmpeg_utils.subprocess.run')
    def test_audio_only_raises_load_error(self, mock_run):
        mock_run.return_value = completed(json.dumps({'streams': [{'codec_type': 'audio'}]}))

        with self.assertRaises(LoadError):
            FFmpegUtils.probe_source(self.source)

    @patch('reelsqueeze.ffmpeg_utils.subprocess.run')
    def test_timeout_raises_load_error(self, mock_run):
        mock_run.side_effect = subprocess.TimeoutExpired(cmd='ffprobe', timeout=30)

        with self.assertRaises(LoadError):
            FFmpegUtils.probe_source(self.source)

    @patch('reelsqueeze.ffmpeg_utils.subprocess.run')
    def test_empty_file_is_rejected_without_probing(self, mock_run):
        empty = Path(self.temp_dir) / "empty.mp4"
        empty.write_bytes(b"")

        with self.assertRaises(LoadError):
            FFmpegUtils.probe_source(SourceMedia.from_path(empty))
        mock_run.assert_not_called()


class TestDetectEncoders(unittest.TestCase):

    @patch('reelsqueeze.ffmpeg_utils.subprocess.run')
    def test_detect_encoders(self, mock_run):
        mock_run.return_value = completed(ENCODERS_OUTPUT)
        self.assertIn('libvpx-vp9', FFmpegUtils.detect_encoders())

    @patch('reelsqueeze.ffmpeg_utils.subprocess.run')
    def test_missing_ffmpeg_returns_empty_set(self, mock_run):
        mock_run.side_effect = FileNotFoundError("ffmpeg")
        self.assertEqual(FFmpegUtils.detect_encoders(), set())


if __name__ == '__main__':
    unittest.main()
