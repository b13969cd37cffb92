"""Face detection backends.

Available backends:
- insightface: InsightFace buffalo_l pack (detection, landmarks, embedding, age/gender)
- insightface_small: InsightFace buffalo_sc pack, faster and less accurate
"""

from .base import BaseFaceDetector, DetectedFace, DetectorOutput
from .insightface import InsightFaceDetector
from .detector import BACKENDS, available_backends, create_detector, register_backend

__all__ = [
    "BaseFaceDetector",
    "DetectedFace",
    "DetectorOutput",
    "InsightFaceDetector",
    "BACKENDS",
    "available_backends",
    "create_detector",
    "register_backend",
]
