"""Photo face recognition.

Finds faces in image files, caches detections by image content and
identifies them against a registry of named people.

Quick Start:
    from photo_faces import FaceRecognitionService

    service = FaceRecognitionService()
    alice = service.create_or_update_person("Alice")
    service.assign_face(alice.id, "alice.jpg", (120, 80, 64, 64))
    result = service.recognize_one("party.jpg")
"""

__version__ = "0.1.0"

from .constants import AppConfig, RecognitionOptions
from .exceptions import (
    ConfigurationError,
    DetectorError,
    FaceRecognitionError,
    ImageIOError,
    NameConflictError,
    NotFoundError,
    PersonNotFoundError,
    UnsupportedFormatError,
)
from .types import BoundingBox, DetectionResult, Exemplar, FaceDetection, Person
from .cache import DetectionCache
from .hashing import ContentHasher
from .matching import Match, MatchEngine
from .registry import PersonRegistry
from .pipeline import RecognitionPipeline
from .service import FaceRecognitionService

__all__ = [
    "AppConfig",
    "RecognitionOptions",
    "ConfigurationError",
    "DetectorError",
    "FaceRecognitionError",
    "ImageIOError",
    "NameConflictError",
    "NotFoundError",
    "PersonNotFoundError",
    "UnsupportedFormatError",
    "BoundingBox",
    "DetectionResult",
    "Exemplar",
    "FaceDetection",
    "Person",
    "DetectionCache",
    "ContentHasher",
    "Match",
    "MatchEngine",
    "PersonRegistry",
    "RecognitionPipeline",
    "FaceRecognitionService",
]
