"""
Pipeline Orchestrator - Coordinates the whole warp.

Stages:
  1. Probing + VAD, concurrently (FFprobe, FFmpeg pipe, Silero)
  2. Audio extraction at the native rate (FFmpeg)
  3. Anchor curve + timemaps
  4. Audio stretch (Rubberband) and video retime (FFmpeg warp filter)
"""

import time
import shutil
import tempfile
import logging
from pathlib import Path
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Optional, Callable

from .media import MediaTools
from .vad import SAMPLE_RATE, SileroScorer, VADResult, WindowedInferenceEngine
from .speed import SpeedFunction, build_anchor_curve, speed_function_from_config
from .remap import remap_frame_timestamps
from .timemap import write_audio_timemap, write_video_timemap

logger = logging.getLogger(__name__)

# Type alias for progress callbacks: (message: str, percent: int) -> None
ProgressCallback = Optional[Callable[[str, int], None]]


@dataclass
class WarpResult:
    """Summary of a finished warp."""
    output_path: Path
    input_duration: float   # seconds
    output_duration: float  # seconds
    windows: int
    frames: int
    speech_fraction: float
    elapsed: float

    @property
    def speedup(self) -> float:
        if self.output_duration <= 0:
            return 0.0
        return self.input_duration / self.output_duration


class WarpPipeline:
    """
    Main pipeline orchestrator.

    Usage:
        config = load_config()
        pipeline = WarpPipeline(config)
        pipeline.process("talk.mp4", "talk_warped.mp4")
    """

    def __init__(self, config, media: Optional[MediaTools] = None,
                 engine: Optional[WindowedInferenceEngine] = None,
                 speed_fn: Optional[SpeedFunction] = None):
        self.config = config

        # Speed parameters are checked before any work starts
        self.speed_fn = speed_fn or speed_function_from_config(config.speed)
        self.media = media or MediaTools.from_config(config.tools)
        self.engine = engine or WindowedInferenceEngine(SileroScorer.from_config(config.vad))

    def process(
        self,
        video_path: Path,
        output_path: Path,
        progress_cb: ProgressCallback = None
    ) -> WarpResult:
        """
        Warp a video so silent stretches play faster.

        Args:
            video_path: Path to the input video file.
            output_path: Path for the warped video.
            progress_cb: Optional callback for progress updates.

        Returns:
            WarpResult describing the output.

        Raises:
            FileNotFoundError: If the video file doesn't exist.
        """
        video_path = Path(video_path)
        output_path = Path(output_path)
        if not video_path.exists():
            raise FileNotFoundError(f"Video file not found: {video_path}")

        start_time = time.monotonic()
        work_dir = Path(tempfile.mkdtemp(prefix="timewarp_"))
        audio_ext = self.config.tools.audio_format

        logger.info(f"{'='*60}")
        logger.info(f"Timewarp")
        logger.info(f"Input:  {video_path}")
        logger.info(f"Output: {output_path}")
        logger.info(f"Speed:  {self.config.speed.loud_speed}x speech, "
                    f"{self.config.speed.silent_speed}x silence "
                    f"(threshold {self.config.speed.threshold})")
        logger.info(f"Temp:   {work_dir}")
        logger.info(f"{'='*60}")

        try:
            # ── Stage 1 + 2: Probing, VAD and extraction ──
            self._report(progress_cb, "Probing media and detecting speech...", 5)

            with ThreadPoolExecutor(max_workers=self.config.threading.max_workers) as executor:
                sample_rate_future = executor.submit(self.media.probe_sample_rate, video_path)
                channels_future = executor.submit(self.media.probe_channel_count, video_path)
                pts_future = executor.submit(self.media.probe_video_pts, video_path)
                timebase_future = executor.submit(self.media.probe_video_timebase, video_path)
                total_future = executor.submit(self.media.probe_total_samples, video_path)
                vad_future = executor.submit(self._detect_voice_activity, video_path)

                try:
                    sample_rate = sample_rate_future.result()
                    channels = channels_future.result()
                    self._report(progress_cb, f"Audio: {sample_rate} Hz, {channels} ch.", 10)

                    audio_path = self.media.extract_audio(
                        video_path, work_dir / f"audio.{audio_ext}", sample_rate, channels
                    )
                    self._report(progress_cb, "Extracted audio.", 20)

                    total_samples = total_future.result()
                    pts = pts_future.result()
                    timebase = timebase_future.result()
                    self._report(progress_cb, f"Video: {len(pts)} frames, timebase {timebase}.", 25)

                    vad_result = vad_future.result()
                    self._report(progress_cb, "Got voice activity.", 50)
                except BaseException:
                    executor.shutdown(wait=True, cancel_futures=True)
                    raise

            # ── Stage 3: Timemaps ──
            curve = build_anchor_curve(vad_result, self.speed_fn, sample_rate, total_samples)
            audio_timemap = write_audio_timemap(curve, work_dir / "timemap.audio.txt")
            self._report(progress_cb, "Processed audio timemap.", 55)

            records = remap_frame_timestamps(curve, sample_rate, pts, timebase)
            video_timemap = write_video_timemap(records, work_dir / "timemap.video.raw")
            self._report(progress_cb, "Processed video timemap.", 60)

            # ── Stage 4: Warp ──
            output_duration = curve.duration_seconds(sample_rate)
            warped_audio = self.media.warp_audio(
                audio_path, output_duration, audio_timemap,
                work_dir / f"audio.warped.{audio_ext}"
            )
            self._report(progress_cb, "Rubberband finished.", 75)

            warped_video = self.media.warp_video(
                video_path, video_timemap, warped_audio,
                work_dir / f"video.warped{output_path.suffix or video_path.suffix}"
            )
            self._report(progress_cb, "FFmpeg finished.", 95)

            output_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(str(warped_video), str(output_path))

            elapsed = time.monotonic() - start_time
            result = WarpResult(
                output_path=output_path,
                input_duration=total_samples / sample_rate,
                output_duration=output_duration,
                windows=len(vad_result),
                frames=len(records),
                speech_fraction=vad_result.speech_fraction(self.config.speed.threshold),
                elapsed=elapsed,
            )
            self._report(progress_cb, f"Done! ({elapsed:.1f}s)", 100)

            logger.info(f"{'='*60}")
            logger.info(f"Warp complete in {elapsed:.1f}s")
            logger.info(f"  Duration: {result.input_duration:.1f}s → "
                        f"{result.output_duration:.1f}s ({result.speedup:.2f}x)")
            logger.info(f"  Speech:   {result.speech_fraction:.0%} of {result.windows} windows")
            logger.info(f"  Frames:   {result.frames}")
            logger.info(f"  Output:   {output_path}")
            logger.info(f"{'='*60}")

            return result

        finally:
            if self.config.output.keep_temp:
                logger.info(f"Keeping temporary files in {work_dir}")
            else:
                shutil.rmtree(work_dir, ignore_errors=True)
                logger.debug(f"Cleaned up temp dir: {work_dir}")

    def _detect_voice_activity(self, video_path: Path) -> VADResult:
        """Run the VAD over a 16kHz mono decode piped straight from ffmpeg."""
        with self.media.open_raw_audio_stream(video_path, SAMPLE_RATE, 1) as stream:
            return self.engine.detect_stream(stream)

    # ── Utilities ──

    @staticmethod
    def _report(cb: ProgressCallback, msg: str, pct: int):
        """Report progress to logger and optional callback."""
        logger.info(f"[{pct:3d}%] {msg}")
        if cb:
            cb(msg, pct)
