import pytest

from config import AppConfig
from logic.core import Session
from logic.normalizer import ResponseNormalizer
from logic.store import ResultStore

BASE_URL = "http://testserver"


def make_raw(file_id, species, timestamp=1_700_000_000, filename=None, **overrides):
    """A service-shaped result. `species` is a list of (name, confidence) pairs."""
    raw = {
        "file_id": file_id,
        "original_filename": filename or f"{file_id}_recording.wav",
        "timestamp": timestamp,
        "duration": 2.5,
        "sample_rate": 384000,
        "spectrogram_url": f"/static/spectrograms/{file_id}.png",
        "audio_url": f"/static/audio/{file_id}.wav",
        "species_detected": [{"species": name, "confidence": conf} for name, conf in species],
        "call_parameters": {
            "start_frequency": 80.0,
            "end_frequency": 40.0,
            "peak_frequency": 50.0,
            "bandwidth": 40.0,
            "pulse_duration": 5.0,
            "shape": "FM",
        },
    }
    raw.update(overrides)
    return raw


@pytest.fixture
def normalizer():
    return ResponseNormalizer(BASE_URL)


@pytest.fixture
def make_result(normalizer):
    def _make(file_id, species, **kwargs):
        return normalizer.normalize(make_raw(file_id, species, **kwargs))
    return _make


@pytest.fixture
def store():
    return ResultStore()


@pytest.fixture
def config():
    return AppConfig(api_base=BASE_URL, request_timeout=5.0, health_interval=0.01)


@pytest.fixture
def session(config):
    return Session(config=config)
