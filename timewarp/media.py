"""
Media Tools - FFmpeg, FFprobe and Rubberband wrappers.

Everything that launches an external process lives here. The rest of
the pipeline only sees parsed probe values, byte streams and files.
"""

import subprocess
import tempfile
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import BinaryIO, Iterator, List, Optional

from .errors import MalformedOutputError, ToolError
from .remap import Timebase

logger = logging.getLogger(__name__)

PROBE_TIMEOUT = 60  # seconds, for single-value probes


class MediaTools:
    """Runs ffprobe / ffmpeg / rubberband from a configurable location."""

    def __init__(self, directory: Optional[str] = None, suffix: str = "",
                 video_codec: str = "libx264", preset: str = "veryfast",
                 audio_bitrate: int = 192, verify: bool = True):
        self.ffmpeg = self._tool_path(directory, "ffmpeg", suffix)
        self.ffprobe = self._tool_path(directory, "ffprobe", suffix)
        self.rubberband = self._tool_path(directory, "rubberband", suffix)
        self.video_codec = video_codec
        self.preset = preset
        self.audio_bitrate = audio_bitrate
        if verify:
            self._verify_ffmpeg()

    @classmethod
    def from_config(cls, config, verify: bool = True) -> "MediaTools":
        return cls(
            directory=getattr(config, "directory", None),
            suffix=getattr(config, "suffix", ""),
            video_codec=getattr(config, "video_codec", "libx264"),
            preset=getattr(config, "preset", "veryfast"),
            audio_bitrate=getattr(config, "audio_bitrate", 192),
            verify=verify,
        )

    @staticmethod
    def _tool_path(directory: Optional[str], name: str, suffix: str) -> str:
        if directory:
            return str(Path(directory) / f"{name}{suffix}")
        return f"{name}{suffix}"

    def _verify_ffmpeg(self):
        """Check that FFmpeg can be launched."""
        try:
            result = subprocess.run(
                [self.ffmpeg, "-version"],
                capture_output=True, text=True, timeout=10
            )
            if result.returncode != 0:
                raise RuntimeError("FFmpeg returned non-zero exit code")
            version_line = result.stdout.split("\n")[0]
            logger.debug(f"FFmpeg found: {version_line}")
        except FileNotFoundError:
            raise RuntimeError(
                f"FFmpeg not found at '{self.ffmpeg}'. Install FFmpeg and add "
                f"it to PATH, or set tools.directory in config.yaml.\n"
                f"Download: https://ffmpeg.org/download.html"
            )

    def _run(self, cmd: List[str], timeout: Optional[float] = None,
             cwd: Optional[Path] = None) -> str:
        logger.debug(f"Running: {' '.join(cmd)}")
        result = subprocess.run(
            cmd, capture_output=True, text=True, timeout=timeout,
            cwd=str(cwd) if cwd else None
        )
        if result.returncode != 0:
            raise ToolError(cmd, result.returncode, result.stderr)
        return result.stdout

    # ── FFprobe ──

    def _probe_stream_value(self, video_path: Path, stream: str, entry: str) -> str:
        cmd = [
            self.ffprobe,
            "-v", "error",
            "-select_streams", stream,
            "-show_entries", f"stream={entry}",
            "-of", "default=noprint_wrappers=1:nokey=1",
            str(video_path)
        ]
        return self._run(cmd, timeout=PROBE_TIMEOUT).strip()

    def _probe_int(self, video_path: Path, stream: str, entry: str) -> int:
        output = self._probe_stream_value(video_path, stream, entry)
        if not output:
            raise MalformedOutputError(f"ffprobe returned no {entry}", output)
        try:
            return int(output)
        except ValueError:
            raise MalformedOutputError(f"Invalid ffprobe {entry} value", output) from None

    def probe_sample_rate(self, video_path: Path) -> int:
        """Native sample rate of the first audio stream."""
        return self._probe_int(video_path, "a:0", "sample_rate")

    def probe_channel_count(self, video_path: Path) -> int:
        return self._probe_int(video_path, "a:0", "channels")

    def probe_total_samples(self, video_path: Path) -> int:
        """
        Length of the first audio stream in native samples.

        Computed as container duration * stream sample rate from a single
        ffprobe call printing "<sample_rate>" and "<duration>" lines.
        """
        cmd = [
            self.ffprobe,
            "-v", "error",
            "-select_streams", "a:0",
            "-show_entries", "format=duration:stream=sample_rate",
            "-of", "csv=p=0",
            str(video_path)
        ]
        output = self._run(cmd, timeout=PROBE_TIMEOUT)
        parts = output.split()
        if len(parts) != 2:
            raise MalformedOutputError("ffprobe returned unexpected output", output)

        try:
            sample_rate = int(parts[0].strip(","))
            duration = float(parts[1].strip(","))
        except ValueError:
            raise MalformedOutputError("ffprobe returned unexpected output", output) from None

        return int(duration * sample_rate)

    def probe_video_pts(self, video_path: Path) -> List[int]:
        """Presentation timestamps of every frame of the first video stream."""
        cmd = [
            self.ffprobe,
            "-v", "error",
            "-select_streams", "v:0",
            "-show_entries", "frame=pts",
            "-of", "csv=p=0",
            str(video_path)
        ]
        output = self._run(cmd)

        pts = []
        for line in output.splitlines():
            value = line.replace(",", "").strip()
            if not value:
                continue
            try:
                pts.append(int(value))
            except ValueError:
                raise MalformedOutputError("Invalid frame pts", line) from None

        logger.debug(f"Probed {len(pts)} video frame timestamps")
        return pts

    def probe_video_timebase(self, video_path: Path) -> Timebase:
        output = self._probe_stream_value(video_path, "v:0", "time_base")
        return Timebase.parse(output)

    # ── FFmpeg ──

    @contextmanager
    def open_raw_audio_stream(self, video_path: Path, sample_rate: int = 16000,
                              channels: int = 1) -> Iterator[BinaryIO]:
        """
        Decode the audio track to raw f32le on a pipe.

        Yields the readable end of ffmpeg's stdout. The exit status is
        checked once the block exits, after the consumer has read to EOF.
        """
        cmd = [
            self.ffmpeg,
            "-i", str(video_path),
            "-vn",
            "-f", "f32le",
            "-acodec", "pcm_f32le",
            "-ar", str(sample_rate),
            "-ac", str(channels),
            "-loglevel", "error",
            "pipe:1"
        ]
        logger.debug(f"Streaming: {' '.join(cmd)}")

        with tempfile.TemporaryFile() as stderr:
            proc = subprocess.Popen(cmd, stdout=subprocess.PIPE, stderr=stderr)
            try:
                yield proc.stdout
            except BaseException:
                proc.kill()
                proc.wait()
                raise
            finally:
                proc.stdout.close()

            returncode = proc.wait()
            if returncode != 0:
                stderr.seek(0)
                raise ToolError(cmd, returncode,
                                stderr.read().decode("utf-8", errors="replace"))

    def extract_audio(self, video_path: Path, output_path: Path,
                      sample_rate: int, channels: int) -> Path:
        """Extract the audio track at its native rate and channel layout."""
        output_path = Path(output_path)
        cmd = [
            self.ffmpeg,
            "-i", str(video_path),
            "-vn",
            "-ar", str(sample_rate),
            "-ac", str(channels),
            "-b:a", f"{self.audio_bitrate}k",
            "-loglevel", "error",
            "-y",
            str(output_path)
        ]
        logger.info(f"Extracting audio: {Path(video_path).name} → {output_path.name}")
        self._run(cmd)
        return output_path

    def warp_video(self, video_path: Path, timemap_path: Path,
                   warped_audio_path: Path, output_path: Path) -> Path:
        """
        Retime the video with the warp filter and mux the warped audio.

        ffmpeg runs inside the timemap's directory so the filter argument
        only has to carry a bare file name.
        """
        timemap_path = Path(timemap_path)
        output_path = Path(output_path)
        cmd = [
            self.ffmpeg,
            "-y",
            "-i", str(Path(video_path).resolve()),
            "-i", str(Path(warped_audio_path).resolve()),
            "-filter_complex", f"[0:v]warp=timemap={timemap_path.name}[outv]",
            "-map", "[outv]",
            "-map", "1:a",
            "-c:v", self.video_codec,
            "-preset", self.preset,
            "-c:a", "aac",
            "-b:a", f"{self.audio_bitrate}k",
            "-loglevel", "error",
            str(output_path.resolve())
        ]
        logger.info(f"Warping video → {output_path.name}")
        self._run(cmd, cwd=timemap_path.parent)
        return output_path

    # ── Rubberband ──

    def warp_audio(self, audio_path: Path, duration: float,
                   timemap_path: Path, output_path: Path) -> Path:
        """Time-stretch audio along the anchor timemap to `duration` seconds."""
        output_path = Path(output_path)
        cmd = [
            self.rubberband,
            "--timemap", str(timemap_path),
            "-D", f"{duration:.6f}",
            str(audio_path),
            str(output_path)
        ]
        logger.info(f"Stretching audio to {duration:.1f}s → {output_path.name}")
        self._run(cmd)
        return output_path
