"""Pytest configuration and fixtures."""

import sys
import threading
from pathlib import Path

import cv2
import numpy as np
import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from photo_faces.cache import DetectionCache  # noqa: E402
from photo_faces.constants import DetectorConfig, StorageConfig  # noqa: E402
from photo_faces.detection import BaseFaceDetector, DetectedFace, DetectorOutput  # noqa: E402
from photo_faces.pipeline import RecognitionPipeline  # noqa: E402
from photo_faces.registry import PersonRegistry  # noqa: E402
from photo_faces.service import FaceRecognitionService  # noqa: E402
from photo_faces.types import BoundingBox  # noqa: E402

EMBEDDING_DIM = 8


def unit(index: int, dim: int = EMBEDDING_DIM):
    """Basis vector with a 1.0 at ``index``."""
    vector = [0.0] * dim
    vector[index] = 1.0
    return vector


def face(x=10, y=10, size=60, confidence=0.99, embedding=None, landmarks=None, attributes=None):
    """Build a DetectedFace for the fake detector."""
    return DetectedFace(
        bounding_box=BoundingBox(x=x, y=y, width=size, height=size),
        confidence=confidence,
        embedding=list(embedding if embedding is not None else unit(0)),
        landmarks=landmarks,
        attributes=attributes,
    )


class FakeDetector(BaseFaceDetector):
    """In-memory detector returning scripted faces per file name."""

    name = "fake"

    def __init__(self, faces=None, width=200, height=150):
        self.faces = dict(faces or {})
        self.failures = {}
        self.width = width
        self.height = height
        self.calls = []
        self.closed = False
        self._lock = threading.Lock()

    def set_faces(self, file_name, faces):
        self.faces[file_name] = list(faces)

    def fail_on(self, file_name, error):
        self.failures[file_name] = error

    def detect(self, image_path, options=None):
        name = Path(image_path).name
        with self._lock:
            self.calls.append(name)
        if name in self.failures:
            raise self.failures[name]
        return DetectorOutput(
            image_width=self.width,
            image_height=self.height,
            faces=list(self.faces.get(name, [])),
        )

    def close(self):
        self.closed = True


@pytest.fixture
def make_image(tmp_path):
    """Factory writing a decodable random image; seed changes the bytes."""
    image_dir = tmp_path / "images"
    image_dir.mkdir(exist_ok=True)

    def _make(name="photo.jpg", seed=0, width=200, height=150):
        rng = np.random.default_rng(seed)
        image = rng.integers(0, 255, (height, width, 3), dtype=np.uint8)
        path = image_dir / name
        # PNG is lossless, so the same seed always gives the same bytes
        ok, encoded = cv2.imencode(".png", image)
        assert ok
        path.write_bytes(encoded.tobytes())
        return path

    return _make


@pytest.fixture
def storage(tmp_path):
    return StorageConfig(data_dir=tmp_path / "data")


@pytest.fixture
def fake_detector():
    return FakeDetector()


@pytest.fixture
def registry(storage):
    return PersonRegistry(storage.people_path, storage.samples_path)


@pytest.fixture
def cache(storage):
    return DetectionCache(storage.cache_path)


@pytest.fixture
def pipeline(fake_detector, registry, cache):
    pipeline = RecognitionPipeline(detector=fake_detector, registry=registry, cache=cache)
    yield pipeline
    pipeline.close()


@pytest.fixture
def service(storage, fake_detector):
    service = FaceRecognitionService(
        storage=storage,
        detector=fake_detector,
        detector_config=DetectorConfig(timeout=10.0),
    )
    yield service
    service.shutdown()
