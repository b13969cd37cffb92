"""Face detector and embedder using InsightFace.

InsightFace model packs bundle a RetinaFace/SCRFD detector with an
ArcFace recognition model, giving boxes, 5-point landmarks, an
L2-normalised 512-d embedding and (for most packs) age/gender per face.
"""

import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import cv2

from ..constants import RecognitionOptions
from ..exceptions import DetectorError
from ..types import BoundingBox
from .base import BaseFaceDetector, DetectedFace, DetectorOutput

logger = logging.getLogger(__name__)

LANDMARK_NAMES = ("left_eye", "right_eye", "nose", "mouth_left", "mouth_right")


class InsightFaceDetector(BaseFaceDetector):
    """InsightFace FaceAnalysis wrapper.

    The model is loaded lazily on first use so constructing the service
    stays cheap.
    """

    name = "insightface"

    def __init__(
        self,
        model_name: str = "buffalo_l",
        det_size: Tuple[int, int] = (640, 640),
        det_thresh: float = 0.5,
        providers: Optional[List[str]] = None,
    ):
        """Initialize InsightFace detector.

        Args:
            model_name: Model pack name
                - buffalo_l: Large, best accuracy
                - buffalo_sc: Small, faster
            det_size: Detection input size (width, height)
            det_thresh: Detector score floor; keep below the recognition
                threshold so filtering stays with the recognition options
            providers: ONNX Runtime execution providers
        """
        self._app = None
        self._model_name = model_name
        self._det_size = tuple(det_size)
        self._det_thresh = det_thresh
        self._providers = providers or ["CPUExecutionProvider"]
        self._init_lock = threading.Lock()

    def _initialize(self):
        """Lazy initialization of the InsightFace model."""
        with self._init_lock:
            if self._app is not None:
                return self._app

            try:
                from insightface.app import FaceAnalysis
            except ImportError as e:
                raise DetectorError(
                    "insightface not installed. Install with: pip install insightface onnxruntime"
                ) from e

            try:
                app = FaceAnalysis(name=self._model_name, providers=self._providers)
                app.prepare(ctx_id=-1, det_size=self._det_size, det_thresh=self._det_thresh)
            except Exception as e:
                logger.error(f"Failed to initialize InsightFace detector: {e}")
                raise DetectorError(f"Failed to initialize InsightFace model {self._model_name}: {e}") from e

            logger.info(f"Initialized InsightFace detector: {self._model_name}")
            self._app = app
            return app

    def detect(
        self,
        image_path: Union[str, Path],
        options: Optional[RecognitionOptions] = None,
    ) -> DetectorOutput:
        """Detect faces using InsightFace.

        Args:
            image_path: Image file
            options: Recognition options (landmarks and attributes are
                always reported; they are stripped later if disabled)

        Returns:
            DetectorOutput with one DetectedFace per face
        """
        app = self._initialize()

        image = cv2.imread(str(image_path))
        if image is None:
            raise DetectorError(f"OpenCV could not decode {image_path}", path=str(image_path))

        height, width = image.shape[:2]
        faces = app.get(image)

        detected = []
        for face in faces:
            embedding = getattr(face, "normed_embedding", None)
            if embedding is None:
                raise DetectorError(
                    f"Model pack {self._model_name} produced no embedding",
                    path=str(image_path),
                )

            x1, y1, x2, y2 = [float(v) for v in face.bbox]
            x1 = max(0.0, x1)
            y1 = max(0.0, y1)
            x2 = min(float(width), x2)
            y2 = min(float(height), y2)
            if x2 <= x1 or y2 <= y1:
                continue

            detected.append(DetectedFace(
                bounding_box=BoundingBox(x=x1, y=y1, width=x2 - x1, height=y2 - y1),
                confidence=float(getattr(face, "det_score", 1.0)),
                embedding=[float(v) for v in embedding],
                landmarks=self._landmarks(face),
                attributes=self._attributes(face),
            ))

        logger.debug(f"InsightFace found {len(detected)} face(s) in {image_path}")
        return DetectorOutput(image_width=width, image_height=height, faces=detected)

    @staticmethod
    def _landmarks(face) -> Optional[Dict[str, List[float]]]:
        kps = getattr(face, "kps", None)
        if kps is None:
            return None
        return {
            name: [float(point[0]), float(point[1])]
            for name, point in zip(LANDMARK_NAMES, kps)
        }

    @staticmethod
    def _attributes(face) -> Optional[Dict[str, Any]]:
        attributes: Dict[str, Any] = {}
        age = getattr(face, "age", None)
        if age is not None:
            attributes["age"] = int(age)
        sex = getattr(face, "sex", None)
        if sex is not None:
            attributes["gender"] = "male" if sex == "M" else "female"
        return attributes or None

    def close(self):
        with self._init_lock:
            self._app = None
