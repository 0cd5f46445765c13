"""
Tests for the windowed VAD inference engine.
"""

import io
import math
import pytest
import numpy as np

from timewarp.vad import (
    WindowedInferenceEngine, VADResult, SileroScorer,
    WINDOW_SIZE, CONTEXT_SIZE, STATE_SHAPE,
)
from timewarp.errors import ConfigurationError, InvalidInputError


class FakeScorer:
    """Deterministic stand-in for the Silero session that records its calls."""

    def __init__(self):
        self.frames = []
        self.states_in = []
        self.states_out = []

    def __call__(self, frame, state):
        self.frames.append(frame.copy())
        self.states_in.append(state)
        new_state = state + 1.0
        self.states_out.append(new_state)
        probability = float(np.clip(np.abs(frame).mean() * 10, 0.0, 1.0))
        return probability, new_state


class ChunkedStream(io.RawIOBase):
    """Hands out at most `chunk` bytes per read, like a pipe."""

    def __init__(self, data: bytes, chunk: int = 100):
        self._data = data
        self._pos = 0
        self._chunk = chunk
        self.empty_reads = 0

    def readable(self):
        return True

    def read(self, size=-1):
        if self._pos >= len(self._data):
            self.empty_reads += 1
            if self.empty_reads > 1:
                raise AssertionError("read after end of stream")
            return b""
        n = min(size, self._chunk)
        block = self._data[self._pos:self._pos + n]
        self._pos += len(block)
        return block


class FailingStream(io.RawIOBase):
    def readable(self):
        return True

    def read(self, size=-1):
        raise OSError("pipe broken")


@pytest.fixture
def scorer():
    return FakeScorer()


@pytest.fixture
def engine(scorer):
    return WindowedInferenceEngine(scorer)


def make_audio(n: int, seed: int = 0) -> np.ndarray:
    rng = np.random.default_rng(seed)
    return (rng.standard_normal(n) * 0.05).astype(np.float32)


def to_bytes(samples: np.ndarray) -> bytes:
    return samples.astype("<f4").tobytes()


class TestWindowCount:
    """One probability per window, including a padded final window."""

    @pytest.mark.parametrize("n", [1, 100, 511, 512, 513, 1024, 5000, 16000])
    def test_ceil_windows(self, engine, n):
        result = engine.detect_samples(make_audio(n))
        assert len(result) == math.ceil(n / WINDOW_SIZE)

    def test_one_second_example(self, engine):
        # 31 full windows + 288 leftover samples
        result = engine.detect_samples(make_audio(16000))
        assert len(result) == 32
        assert result.window_size == 512

    def test_empty_audio(self, engine):
        result = engine.detect_samples(np.array([], dtype=np.float32))
        assert len(result) == 0

    def test_custom_window_size(self, scorer):
        engine = WindowedInferenceEngine(scorer, window_size=100, context_size=10)
        result = engine.detect_samples(make_audio(250))
        assert len(result) == 3
        assert scorer.frames[0].shape == (1, 110)


class TestWindowContents:
    """Context carry-over and zero padding."""

    def test_frame_shape(self, engine, scorer):
        engine.detect_samples(make_audio(1024))
        for frame in scorer.frames:
            assert frame.shape == (1, CONTEXT_SIZE + WINDOW_SIZE)
            assert frame.dtype == np.float32

    def test_first_context_is_zero(self, engine, scorer):
        audio = make_audio(1024)
        engine.detect_samples(audio)
        first = scorer.frames[0][0]
        assert np.all(first[:CONTEXT_SIZE] == 0.0)
        np.testing.assert_array_equal(first[CONTEXT_SIZE:], audio[:WINDOW_SIZE])

    def test_context_carried_forward(self, engine, scorer):
        audio = make_audio(1536)
        engine.detect_samples(audio)
        for i in range(1, 3):
            frame = scorer.frames[i][0]
            np.testing.assert_array_equal(
                frame[:CONTEXT_SIZE],
                audio[i * WINDOW_SIZE - CONTEXT_SIZE:i * WINDOW_SIZE]
            )
            np.testing.assert_array_equal(
                frame[CONTEXT_SIZE:],
                audio[i * WINDOW_SIZE:(i + 1) * WINDOW_SIZE]
            )

    def test_partial_window_zero_padded(self, engine, scorer):
        audio = make_audio(512 + 200)
        engine.detect_samples(audio)
        last = scorer.frames[-1][0]
        np.testing.assert_array_equal(last[CONTEXT_SIZE:CONTEXT_SIZE + 200], audio[512:])
        assert np.all(last[CONTEXT_SIZE + 200:] == 0.0)
        # Context still comes from the previous full window
        np.testing.assert_array_equal(last[:CONTEXT_SIZE], audio[512 - CONTEXT_SIZE:512])


class TestRecurrentState:
    """The state returned by window i is the input of window i+1."""

    def test_initial_state_is_zero(self, engine, scorer):
        engine.detect_samples(make_audio(600))
        assert scorer.states_in[0].shape == STATE_SHAPE
        assert np.all(scorer.states_in[0] == 0.0)

    def test_state_threaded(self, engine, scorer):
        engine.detect_samples(make_audio(2048))
        for i in range(1, len(scorer.states_in)):
            assert scorer.states_in[i] is scorer.states_out[i - 1]

    def test_returned_states_not_mutated(self, engine, scorer):
        engine.detect_samples(make_audio(2048))
        for i, state in enumerate(scorer.states_out):
            assert np.all(state == i + 1)


class TestInputModes:
    """Samples, file and stream modes agree."""

    @pytest.mark.parametrize("n", [512, 700, 5000, 16000])
    def test_stream_matches_samples(self, n):
        audio = make_audio(n, seed=n)
        from_samples = WindowedInferenceEngine(FakeScorer()).detect_samples(audio)
        from_stream = WindowedInferenceEngine(FakeScorer()).detect_stream(
            io.BytesIO(to_bytes(audio))
        )
        np.testing.assert_array_equal(from_samples.probabilities, from_stream.probabilities)

    def test_small_reads_match(self):
        audio = make_audio(3000)
        from_samples = WindowedInferenceEngine(FakeScorer()).detect_samples(audio)
        stream = ChunkedStream(to_bytes(audio), chunk=100)
        from_stream = WindowedInferenceEngine(FakeScorer()).detect_stream(stream)
        np.testing.assert_array_equal(from_samples.probabilities, from_stream.probabilities)

    def test_no_reads_after_eof(self, engine):
        stream = ChunkedStream(to_bytes(make_audio(1024)), chunk=4096)
        result = engine.detect_stream(stream)
        assert len(result) == 2
        assert stream.empty_reads == 1

    def test_no_reads_after_short_window(self, engine):
        stream = ChunkedStream(to_bytes(make_audio(700)), chunk=4096)
        result = engine.detect_stream(stream)
        assert len(result) == 2
        assert stream.empty_reads == 1

    def test_file_matches_samples(self, tmp_path):
        audio = make_audio(5000)
        path = tmp_path / "audio.f32"
        path.write_bytes(to_bytes(audio))
        from_samples = WindowedInferenceEngine(FakeScorer()).detect_samples(audio)
        from_file = WindowedInferenceEngine(FakeScorer()).detect_file(path)
        assert len(from_file) == math.ceil(5000 / WINDOW_SIZE)
        np.testing.assert_allclose(from_samples.probabilities, from_file.probabilities)

    def test_trailing_bytes_discarded(self, engine):
        audio = make_audio(600)
        result = engine.detect_stream(io.BytesIO(to_bytes(audio) + b"\x01\x02"))
        assert len(result) == 2

    def test_empty_stream(self, engine):
        assert len(engine.detect_stream(io.BytesIO(b""))) == 0

    def test_idempotent(self):
        audio = make_audio(4000)
        first = WindowedInferenceEngine(FakeScorer()).detect_samples(audio)
        second = WindowedInferenceEngine(FakeScorer()).detect_samples(audio)
        np.testing.assert_array_equal(first.probabilities, second.probabilities)


class TestErrors:
    """Invalid sources and parameters."""

    def test_closed_stream(self, engine):
        stream = io.BytesIO(b"\x00" * 4096)
        stream.close()
        with pytest.raises(InvalidInputError):
            engine.detect_stream(stream)

    def test_write_only_stream(self, engine, tmp_path):
        with open(tmp_path / "out.raw", "wb") as f:
            with pytest.raises(InvalidInputError):
                engine.detect_stream(f)

    def test_read_failure_propagates(self, engine):
        with pytest.raises(OSError):
            engine.detect_stream(FailingStream())

    def test_missing_file(self, engine, tmp_path):
        with pytest.raises(FileNotFoundError):
            engine.detect_file(tmp_path / "missing.f32")

    def test_zero_window(self, scorer):
        with pytest.raises(ConfigurationError):
            WindowedInferenceEngine(scorer, window_size=0)

    def test_negative_context(self, scorer):
        with pytest.raises(ConfigurationError):
            WindowedInferenceEngine(scorer, context_size=-1)

    def test_missing_model(self, tmp_path):
        scorer = SileroScorer(model_path=str(tmp_path / "nope.onnx"))
        with pytest.raises(FileNotFoundError):
            scorer.resolve_model_path()


class TestVADResult:
    def test_speech_fraction(self):
        result = VADResult(np.array([0.1, 0.6, 0.9, 0.2], dtype=np.float32), 512)
        assert result.speech_fraction(0.5) == pytest.approx(0.5)
        assert result.speech_fraction(0.95) == 0.0

    def test_speech_fraction_empty(self):
        assert VADResult(np.array([], dtype=np.float32), 512).speech_fraction() == 0.0
