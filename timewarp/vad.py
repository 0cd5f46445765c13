"""
Voice Activity Detection - windowed Silero inference.

Scores raw 16kHz mono float audio one fixed-size window at a time with
the stateful Silero VAD model. Each window is prefixed with the last
CONTEXT_SIZE samples of the previous one, and the recurrent state the
model returns for window i is fed into window i+1, so the pass is
strictly sequential.

Three input modes share one scoring loop:
  - detect_samples: an in-memory float array
  - detect_file:    a headerless f32le file (length known up front)
  - detect_stream:  a binary pipe read until EOF
"""

import logging
import numpy as np
import soundfile as sf
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Callable, Iterable, Iterator, Optional, Tuple

from .errors import ConfigurationError, InvalidInputError

logger = logging.getLogger(__name__)

SAMPLE_RATE = 16000
WINDOW_SIZE = 512       # samples scored per call at 16kHz
CONTEXT_SIZE = 64       # samples carried over from the previous window
STATE_SHAPE = (2, 1, 128)
BYTES_PER_SAMPLE = 4    # f32le

SILERO_MODEL_URL = (
    "https://github.com/snakers4/silero-vad/raw/master/"
    "src/silero_vad/data/silero_vad.onnx"
)

# (frame[1, W+C], state) -> (probability, new_state)
Scorer = Callable[[np.ndarray, np.ndarray], Tuple[float, np.ndarray]]


@dataclass
class VADResult:
    """Speech probabilities, one per window of window_size samples."""
    probabilities: np.ndarray
    window_size: int

    def __len__(self) -> int:
        return len(self.probabilities)

    def speech_fraction(self, threshold: float = 0.5) -> float:
        if len(self.probabilities) == 0:
            return 0.0
        return float(np.mean(self.probabilities >= threshold))

    def __repr__(self):
        return (f"VADResult({len(self)} windows of {self.window_size}, "
                f"speech={self.speech_fraction():.0%})")


class SileroScorer:
    """
    Runs one Silero VAD window through an ONNX Runtime session.

    The session is created lazily on first call. When no model path is
    configured the ONNX file is downloaded once into the torch hub cache.
    """

    def __init__(self, model_path: Optional[str] = None,
                 model_url: str = SILERO_MODEL_URL, threads: int = 0):
        self.model_path = model_path
        self.model_url = model_url
        self.threads = threads

        self._session = None
        self._sr = np.array([SAMPLE_RATE], dtype=np.int64)

    @classmethod
    def from_config(cls, config) -> "SileroScorer":
        return cls(
            model_path=getattr(config, "model_path", None),
            model_url=getattr(config, "model_url", SILERO_MODEL_URL),
            threads=getattr(config, "threads", 0),
        )

    def resolve_model_path(self) -> Path:
        """Locate the ONNX model, downloading it if nothing is configured."""
        if self.model_path:
            path = Path(self.model_path)
            if not path.exists():
                raise FileNotFoundError(
                    f"Silero VAD model not found at {path}.\n"
                    f"Download it from: {self.model_url}"
                )
            return path

        import torch

        path = Path(torch.hub.get_dir()) / "silero_vad" / "silero_vad.onnx"
        if not path.exists():
            path.parent.mkdir(parents=True, exist_ok=True)
            logger.info(f"Downloading Silero VAD model to {path}...")
            torch.hub.download_url_to_file(self.model_url, str(path), progress=False)
        return path

    def _load_model(self):
        if self._session is not None:
            return

        import onnxruntime as ort

        model_path = self.resolve_model_path()
        logger.info(f"Loading Silero VAD model from {model_path}...")

        options = ort.SessionOptions()
        options.enable_cpu_mem_arena = True
        options.enable_mem_pattern = True
        options.execution_mode = ort.ExecutionMode.ORT_SEQUENTIAL
        options.intra_op_num_threads = self.threads  # 0 = ORT default
        self._session = ort.InferenceSession(
            str(model_path), sess_options=options,
            providers=["CPUExecutionProvider"]
        )
        logger.info("Silero VAD loaded successfully.")

    def __call__(self, frame: np.ndarray, state: np.ndarray) -> Tuple[float, np.ndarray]:
        self._load_model()
        outputs = self._session.run(None, {
            "input": frame,
            "state": state,
            "sr": self._sr,
        })
        probability = float(np.asarray(outputs[0]).reshape(-1)[0])
        return probability, outputs[1]


class WindowedInferenceEngine:
    """
    Produces exactly one speech probability per window of input audio.

    A short final window is zero-padded on the right and scored rather
    than dropped, so N samples always yield ceil(N / window_size)
    probabilities whichever input mode is used.
    """

    def __init__(self, scorer: Scorer, window_size: int = WINDOW_SIZE,
                 context_size: int = CONTEXT_SIZE,
                 state_shape: Tuple[int, ...] = STATE_SHAPE):
        if window_size <= 0:
            raise ConfigurationError(f"Window size must be positive, got {window_size}")
        if context_size < 0:
            raise ConfigurationError(f"Context size cannot be negative, got {context_size}")

        self.scorer = scorer
        self.window_size = window_size
        self.context_size = context_size
        self.state_shape = state_shape

    # ── Input modes ──

    def detect_samples(self, samples: np.ndarray) -> VADResult:
        """Score an in-memory mono float array."""
        samples = np.asarray(samples, dtype=np.float32).reshape(-1)
        W = self.window_size
        chunks = (samples[i:i + W] for i in range(0, len(samples), W))
        return self._run(chunks, total_hint=len(samples))

    def detect_file(self, audio_path: Path) -> VADResult:
        """
        Score a raw f32le mono 16kHz file.

        Args:
            audio_path: Headerless PCM file as written by ffmpeg -f f32le.

        Returns:
            VADResult with ceil(samples / window_size) probabilities.

        Raises:
            FileNotFoundError: If the file doesn't exist.
            OSError: If the file ends before its reported length.
        """
        audio_path = Path(audio_path)
        if not audio_path.exists():
            raise FileNotFoundError(f"Audio file not found: {audio_path}")

        with sf.SoundFile(str(audio_path), mode="r", format="RAW",
                          subtype="FLOAT", endian="LITTLE",
                          samplerate=SAMPLE_RATE, channels=1) as f:
            total = f.frames
            return self._run(self._read_file(f, total), total_hint=total)

    def detect_stream(self, stream: BinaryIO) -> VADResult:
        """
        Score a binary f32le stream until it signals EOF.

        A short read marks the final window; it is padded and scored and
        no further reads are attempted. The stream is left open for the
        caller to close.
        """
        if getattr(stream, "closed", False):
            raise InvalidInputError("Audio stream is closed.")
        readable = getattr(stream, "readable", None)
        if readable is not None and not readable():
            raise InvalidInputError("Audio stream is not readable.")

        return self._run(self._read_stream(stream))

    # ── Readers ──

    def _read_file(self, f, total: int) -> Iterator[np.ndarray]:
        full, remainder = divmod(total, self.window_size)
        sizes = [self.window_size] * full + ([remainder] if remainder else [])
        for size in sizes:
            chunk = f.read(size, dtype="float32")
            if len(chunk) != size:
                raise OSError(
                    f"Unexpected end of audio file: wanted {size} samples, "
                    f"got {len(chunk)}"
                )
            yield chunk

    def _read_stream(self, stream: BinaryIO) -> Iterator[np.ndarray]:
        needed = self.window_size * BYTES_PER_SAMPLE

        while True:
            data = self._read_up_to(stream, needed)
            usable = len(data) - len(data) % BYTES_PER_SAMPLE
            if usable != len(data):
                logger.warning(
                    f"Discarding {len(data) - usable} trailing bytes "
                    f"that do not form a whole sample"
                )
            if usable:
                yield np.frombuffer(bytes(data[:usable]), dtype="<f4").astype(np.float32)
            if len(data) < needed:
                return

    @staticmethod
    def _read_up_to(stream: BinaryIO, needed: int) -> bytearray:
        """Read until `needed` bytes are collected or the stream hits EOF."""
        data = bytearray()
        while len(data) < needed:
            block = stream.read(needed - len(data))
            if not block:
                break
            data += block
        return data

    # ── Scoring loop ──

    def _run(self, chunks: Iterable[np.ndarray], total_hint: Optional[int] = None) -> VADResult:
        W = self.window_size
        C = self.context_size

        if total_hint is not None:
            logger.info(f"Running VAD on {total_hint / SAMPLE_RATE:.1f}s audio...")
        else:
            logger.info("Running VAD on streamed audio...")

        buffer = np.zeros(C + W, dtype=np.float32)
        state = np.zeros(self.state_shape, dtype=np.float32)
        probabilities = []
        total = 0

        for chunk in chunks:
            n = len(chunk)
            if n == 0:
                continue
            buffer[C:C + n] = chunk
            if n < W:
                buffer[C + n:] = 0.0

            probability, state = self.scorer(buffer[np.newaxis, :].copy(), state)
            probabilities.append(probability)
            total += n

            if C:
                buffer[:C] = buffer[-C:].copy()

        result = VADResult(np.asarray(probabilities, dtype=np.float32), W)
        logger.info(
            f"VAD complete: {len(result)} windows "
            f"({total / SAMPLE_RATE:.1f}s), "
            f"{result.speech_fraction():.0%} speech"
        )
        return result
