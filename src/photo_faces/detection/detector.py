"""Detector backend factory."""

import logging
from typing import Callable, Dict, List

from .base import BaseFaceDetector
from .insightface import InsightFaceDetector

logger = logging.getLogger(__name__)

BACKENDS: Dict[str, Callable[..., BaseFaceDetector]] = {
    "insightface": InsightFaceDetector,
    "insightface_small": lambda **kwargs: InsightFaceDetector(
        **{**kwargs, "model_name": "buffalo_sc"}
    ),
}


def create_detector(backend: str = "insightface", **kwargs) -> BaseFaceDetector:
    """Create a face detector by backend name.

    Args:
        backend: Detection backend to use (default: insightface)
        **kwargs: Additional arguments for the detector

    Raises:
        ValueError: Unknown backend
    """
    if backend not in BACKENDS:
        raise ValueError(
            f"Unknown backend: {backend}. "
            f"Available: {available_backends()}"
        )
    logger.debug(f"Creating {backend} detector")
    return BACKENDS[backend](**kwargs)


def register_backend(name: str, factory: Callable[..., BaseFaceDetector]):
    """Make a custom detector available to create_detector."""
    BACKENDS[name] = factory


def available_backends() -> List[str]:
    """Return list of available detection backends."""
    return list(BACKENDS.keys())
