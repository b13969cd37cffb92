"""Base face detector interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..constants import RecognitionOptions
from ..types import BoundingBox


@dataclass
class DetectedFace:
    """One face found by a detector, before identification."""

    bounding_box: BoundingBox
    confidence: float
    embedding: List[float]
    landmarks: Optional[Dict[str, List[float]]] = None
    attributes: Optional[Dict[str, Any]] = None


@dataclass
class DetectorOutput:
    """Everything a detector reports for one image."""

    image_width: int
    image_height: int
    faces: List[DetectedFace] = field(default_factory=list)


class BaseFaceDetector(ABC):
    """Abstract base class for face detectors.

    Implementations must report every face they find. Filtering by the
    recognition options happens after caching, so ``options`` is only a
    hint (e.g. whether landmarks or attributes are worth computing).
    """

    name = "base"

    @abstractmethod
    def detect(
        self,
        image_path: Union[str, Path],
        options: Optional[RecognitionOptions] = None,
    ) -> DetectorOutput:
        """Detect faces and compute their embeddings.

        Args:
            image_path: Image file to analyse
            options: Current recognition options

        Returns:
            DetectorOutput with image dimensions and faces

        Raises:
            Exception: Any failure; the pipeline wraps it as DetectorError
        """
        pass

    def close(self):
        """Release model resources."""
