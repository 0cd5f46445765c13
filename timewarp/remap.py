"""
Frame Timestamp Remapper - projects video PTS through the anchor curve.

Every video frame timestamp is converted to a native audio sample
position, located on the anchor curve and linearly interpolated to a
warped position. Both the original and the warped time are emitted in
AV_TIME_BASE units (microseconds) for ffmpeg's warp filter.
"""

import logging
from dataclasses import dataclass
from typing import List, NamedTuple, Sequence

from .errors import ConfigurationError, InvalidInputError, MalformedOutputError
from .speed import AnchorCurve

logger = logging.getLogger(__name__)

AV_TIME_BASE = 1_000_000


@dataclass(frozen=True)
class Timebase:
    """A PTS value p lasts p * numerator / denominator seconds."""
    numerator: int
    denominator: int

    def __post_init__(self):
        if self.numerator <= 0 or self.denominator <= 0:
            raise ConfigurationError(
                f"Invalid timebase {self.numerator}/{self.denominator}"
            )

    @classmethod
    def parse(cls, text: str) -> "Timebase":
        """Parse ffprobe's "num/den" notation, e.g. "1/30000"."""
        parts = text.strip().split("/")
        if len(parts) != 2:
            raise MalformedOutputError("Unexpected timebase", text)
        try:
            return cls(int(parts[0]), int(parts[1]))
        except ValueError:
            raise MalformedOutputError("Unexpected timebase", text) from None

    @property
    def ratio(self) -> float:
        return self.numerator / self.denominator

    def __str__(self):
        return f"{self.numerator}/{self.denominator}"


class PTSRecord(NamedTuple):
    """One frame of the video timemap, in AV_TIME_BASE units."""
    input_timestamp: int
    output_timestamp: int


def remap_frame_timestamps(
    curve: AnchorCurve,
    native_sample_rate: int,
    pts: Sequence[int],
    timebase: Timebase,
) -> List[PTSRecord]:
    """
    Map each frame PTS to its warped time.

    The PTS sequence must be sorted ascending: the anchor cursor only
    ever moves forward, which keeps the pass linear and the output
    monotonic. Frames at or before the first anchor take the curve's
    start value, frames at or past the final anchor take its end value.

    Args:
        curve: Anchor curve in native sample positions.
        native_sample_rate: Sample rate the curve is expressed in.
        pts: Frame timestamps in timebase units, non-decreasing.
        timebase: Rational unit of the pts values.

    Returns:
        One PTSRecord per frame, in input order.

    Raises:
        InvalidInputError: If a timestamp is smaller than the one before.
    """
    if native_sample_rate <= 0:
        raise ConfigurationError(f"Invalid sample rate: {native_sample_rate}")

    anchors_in = curve.input_samples.tolist()
    anchors_out = curve.output_samples.tolist()
    last = len(anchors_in) - 1
    last_in = float(anchors_in[last])
    last_out = float(anchors_out[last])

    ratio = timebase.ratio
    us_per_tick = AV_TIME_BASE * ratio
    records = []
    k = 0
    previous = None

    for p in pts:
        if previous is not None and p < previous:
            raise InvalidInputError(
                f"Frame timestamps must be non-decreasing ({p} after {previous})"
            )
        previous = p
        pts_samples = p * ratio * native_sample_rate

        while k < last and anchors_in[k] < pts_samples:
            k += 1

        if k == 0:
            warped = float(anchors_out[0])
        elif pts_samples >= last_in:
            warped = last_out
        else:
            in0 = float(anchors_in[k - 1])
            in1 = float(anchors_in[k])
            out0 = float(anchors_out[k - 1])
            out1 = float(anchors_out[k])

            denom = in1 - in0
            t = (pts_samples - in0) / denom if denom > 0 else 0.0
            t = min(max(t, 0.0), 1.0)
            warped = out0 + t * (out1 - out0)

        records.append(PTSRecord(
            int(round(p * us_per_tick)),
            int(round(warped / native_sample_rate * AV_TIME_BASE)),
        ))

    if records:
        logger.debug(
            f"Remapped {len(records)} frames: "
            f"{records[-1].input_timestamp / AV_TIME_BASE:.2f}s -> "
            f"{records[-1].output_timestamp / AV_TIME_BASE:.2f}s"
        )
    return records
