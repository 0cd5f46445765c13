"""
Timemap Writer - artifact files for the external warp tools.

Audio timemap (rubberband --timemap), text:

    0 0
    512 427
    1024 555
    ...

one "<input sample> <output sample>" pair per anchor, native sample rate.

Video timemap (ffmpeg warp filter), binary: consecutive 16-byte records
of two little-endian signed 64-bit integers (input time, output time) in
AV_TIME_BASE units, one per frame, no header.
"""

import logging
import struct
from pathlib import Path
from typing import Iterable, List

from .remap import PTSRecord
from .speed import AnchorCurve

logger = logging.getLogger(__name__)

VIDEO_RECORD = struct.Struct("<qq")


def write_audio_timemap(curve: AnchorCurve, output_path: Path) -> Path:
    output_path = Path(output_path)
    lines = curve.audio_lines()

    with open(output_path, "w", encoding="ascii", newline="\n") as f:
        for line in lines:
            f.write(f"{line}\n")

    logger.info(f"Audio timemap written: {len(lines)} anchors → {output_path.name}")
    return output_path


def write_video_timemap(records: Iterable[PTSRecord], output_path: Path) -> Path:
    output_path = Path(output_path)
    count = 0

    with open(output_path, "wb") as f:
        for record in records:
            f.write(VIDEO_RECORD.pack(record.input_timestamp, record.output_timestamp))
            count += 1

    logger.info(f"Video timemap written: {count} frames → {output_path.name}")
    return output_path


def read_video_timemap(path: Path) -> List[PTSRecord]:
    """Decode a binary video timemap back into records."""
    data = Path(path).read_bytes()
    if len(data) % VIDEO_RECORD.size:
        raise ValueError(
            f"Video timemap size {len(data)} is not a multiple of "
            f"{VIDEO_RECORD.size} bytes"
        )
    return [PTSRecord(*fields) for fields in VIDEO_RECORD.iter_unpack(data)]
