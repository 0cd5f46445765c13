"""
Speed Curve - turns speech probabilities into an audio time map.

Each VAD window is assigned a playback speed by a speed function and
shrinks to (window length / speed) samples. Accumulating those lengths
gives an anchor curve: a monotonic piecewise-linear map from original
sample position to warped sample position, in the audio's own sample
rate (not the 16kHz the probabilities were computed at).
"""

import logging
import numpy as np
from dataclasses import dataclass
from typing import Callable, List

from .errors import ConfigurationError
from .vad import SAMPLE_RATE, VADResult

logger = logging.getLogger(__name__)

# probability in [0, 1] -> playback speed (> 0)
SpeedFunction = Callable[[float], float]


def simple_threshold(threshold: float, loud_speed: float, silent_speed: float) -> SpeedFunction:
    """
    Two-level speed: loud_speed where probability >= threshold,
    silent_speed everywhere else.
    """
    if loud_speed <= 0 or silent_speed <= 0:
        raise ConfigurationError(
            f"Speeds must be positive (loud={loud_speed}, silent={silent_speed})"
        )

    def speed(probability: float) -> float:
        return loud_speed if probability >= threshold else silent_speed

    return speed


def speed_function_from_config(config) -> SpeedFunction:
    return simple_threshold(
        getattr(config, "threshold", 0.5),
        getattr(config, "loud_speed", 1.2),
        getattr(config, "silent_speed", 4.0),
    )


@dataclass(frozen=True, eq=False)
class AnchorCurve:
    """
    Control points of the sample time map.

    input_samples is strictly increasing and starts at 0; output_samples
    is non-decreasing. Both have len(probabilities) + 1 entries, the last
    one sitting at the total sample count of the source audio.
    """
    input_samples: np.ndarray   # int64
    output_samples: np.ndarray  # float64

    def __len__(self) -> int:
        return len(self.input_samples)

    @property
    def total_input(self) -> int:
        return int(self.input_samples[-1])

    @property
    def total_output(self) -> float:
        return float(self.output_samples[-1])

    def duration_seconds(self, sample_rate: int) -> float:
        """Length of the warped audio in seconds."""
        return self.total_output / sample_rate

    def audio_lines(self) -> List[str]:
        """Lines of the rubberband timemap: "<input> <rounded output>"."""
        return [
            f"{int(i)} {int(round(float(o)))}"
            for i, o in zip(self.input_samples, self.output_samples)
        ]

    def validate(self):
        if len(self.input_samples) != len(self.output_samples):
            raise ValueError("Anchor input and output lengths differ")
        if len(self.input_samples) < 2:
            raise ValueError("Anchor curve needs at least two anchors")
        if self.input_samples[0] != 0:
            raise ValueError("Anchor curve must start at sample 0")
        if np.any(np.diff(self.input_samples) <= 0):
            raise ValueError("Anchor input samples must be strictly increasing")
        if np.any(np.diff(self.output_samples) < 0):
            raise ValueError("Anchor output samples must be non-decreasing")


def build_anchor_curve(
    vad_result: VADResult,
    speed_fn: SpeedFunction,
    native_sample_rate: int,
    total_samples: int,
) -> AnchorCurve:
    """
    Build the anchor curve for audio at native_sample_rate.

    Window boundaries are scaled from the 16kHz analysis rate and
    rounded to whole native samples. Anchor i holds the cumulative warped
    length at the start of window i; one final anchor closes the curve
    at total_samples.

    Args:
        vad_result: Probabilities computed at 16kHz.
        speed_fn: Maps each probability to a playback speed.
        native_sample_rate: Sample rate of the audio being warped.
        total_samples: Length of that audio in native samples.

    Returns:
        AnchorCurve with len(vad_result) + 1 anchors.

    Raises:
        ConfigurationError: On empty input, a non-positive sample rate,
            a non-positive speed, or total_samples not past the last
            window start.
    """
    num_windows = len(vad_result.probabilities)
    if num_windows == 0:
        raise ConfigurationError("No VAD windows: the audio track is empty")
    if native_sample_rate <= 0:
        raise ConfigurationError(f"Invalid sample rate: {native_sample_rate}")

    window = vad_result.window_size
    scale = native_sample_rate / SAMPLE_RATE

    input_samples = np.empty(num_windows + 1, dtype=np.int64)
    output_samples = np.empty(num_windows + 1, dtype=np.float64)
    cumulative_out = 0.0

    for i in range(num_windows):
        input_start = int(round(i * window * scale))
        input_end = int(round((i + 1) * window * scale))

        speed = speed_fn(float(vad_result.probabilities[i]))
        if not speed > 0:
            raise ConfigurationError(
                f"Speed function returned {speed} for probability "
                f"{vad_result.probabilities[i]:.3f} (window {i})"
            )

        input_samples[i] = input_start
        output_samples[i] = cumulative_out
        cumulative_out += (input_end - input_start) / speed

    if total_samples <= input_samples[num_windows - 1]:
        raise ConfigurationError(
            f"Total sample count {total_samples} does not reach past the "
            f"last window start {input_samples[num_windows - 1]}"
        )

    input_samples[num_windows] = total_samples
    output_samples[num_windows] = cumulative_out

    expected_end = int(round(num_windows * window * scale))
    if abs(expected_end - total_samples) > window * scale:
        logger.warning(
            f"Reported length {total_samples} differs from analysed length "
            f"{expected_end} by more than one window"
        )

    logger.info(
        f"Anchor curve: {num_windows + 1} anchors, "
        f"{total_samples / native_sample_rate:.1f}s -> "
        f"{cumulative_out / native_sample_rate:.1f}s"
    )
    return AnchorCurve(input_samples, output_samples)
