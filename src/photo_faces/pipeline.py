"""Recognition pipeline.

Each image goes through a small state machine::

    HASHING -> CACHE_LOOKUP -> CACHE_HIT ----------------> MATCHING -> DONE
                            \\-> DETECTING -> CACHE_STORE -/

Any step may end in FAILED. The cache holds the raw detector output; the
recognition options and person matching are applied to a copy on every
call, so changing options or the registry never requires a rescan.
"""

import copy
import hashlib
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Tuple, Union

from .cache import DetectionCache
from .constants import SUPPORTED_EXTENSIONS, RecognitionOptions
from .detection.base import BaseFaceDetector, DetectorOutput
from .exceptions import (
    ConfigurationError,
    DetectorError,
    FaceRecognitionError,
    ImageIOError,
    UnsupportedFormatError,
)
from .hashing import ContentHasher
from .matching import MatchEngine
from .registry import PersonRegistry
from .types import BoundingBox, DetectionResult, FaceDetection

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


class PipelineState(Enum):
    """Recognition steps for a single image."""
    HASHING = "hashing"
    CACHE_LOOKUP = "cache_lookup"
    CACHE_HIT = "cache_hit"
    DETECTING = "detecting"
    CACHE_STORE = "cache_store"
    MATCHING = "matching"
    DONE = "done"
    FAILED = "failed"


def face_id_for(fingerprint: str, index: int) -> str:
    """Stable id of the index-th face detected in an image."""
    return hashlib.md5(f"{fingerprint}{index}".encode("utf-8")).hexdigest()


def apply_options(raw: DetectionResult, options: RecognitionOptions) -> DetectionResult:
    """Return a copy of a raw result filtered by the recognition options."""
    faces = []
    for face in raw.faces:
        if face.confidence < options.detection_confidence_threshold:
            continue
        box = face.bounding_box
        if min(box.width, box.height) < options.min_face_size:
            continue
        if options.max_face_size and max(box.width, box.height) > options.max_face_size:
            continue
        faces.append(face)

    limit = options.max_faces_per_image
    if limit and len(faces) > limit:
        ranked = sorted(range(len(faces)), key=lambda i: faces[i].confidence, reverse=True)
        keep = sorted(ranked[:limit])
        faces = [faces[i] for i in keep]

    result = copy.deepcopy(raw)
    result.faces = copy.deepcopy(faces)
    for face in result.faces:
        if not options.enable_landmarks:
            face.landmarks = None
        if not options.enable_attributes:
            face.attributes = None
    return result


class RecognitionPipeline:
    """Detects, caches and identifies faces in image files.

    The pipeline owns no storage itself: the registry and cache are
    constructed by the caller and passed in.
    """

    def __init__(
        self,
        detector: BaseFaceDetector,
        registry: PersonRegistry,
        cache: DetectionCache,
        hasher: Optional[ContentHasher] = None,
        options: Optional[RecognitionOptions] = None,
        matcher: Optional[MatchEngine] = None,
        detector_timeout: Optional[float] = None,
        min_assign_iou: float = 0.3,
    ):
        """Initialize recognition pipeline.

        Args:
            detector: Face detection capability
            registry: Person registry to match against
            cache: Detection cache keyed by content fingerprint
            hasher: Content hasher (default SHA-256)
            options: Initial recognition options
            matcher: Match engine (default brute-force cosine)
            detector_timeout: Seconds to wait for one detector call, None for no limit
            min_assign_iou: Minimum overlap for embed_face to pick a detected face
        """
        self.detector = detector
        self.registry = registry
        self.cache = cache
        self.hasher = hasher or ContentHasher()
        self._options = options or RecognitionOptions()
        self.matcher = matcher or MatchEngine(self._options.match_confidence_threshold)
        self.detector_timeout = detector_timeout
        self.min_assign_iou = min_assign_iou

        self._lock = threading.Lock()
        self._executor: Optional[ThreadPoolExecutor] = None

    # ------------------------------------------------------------------
    # Options
    # ------------------------------------------------------------------

    @property
    def options(self) -> RecognitionOptions:
        with self._lock:
            return self._options

    def configure(self, **partial) -> RecognitionOptions:
        """Merge options into the current ones.

        Raises:
            ConfigurationError: Unknown option or invalid value
        """
        with self._lock:
            self._options = self._options.merged(**partial)
            self.matcher.threshold = self._options.match_confidence_threshold
            options = self._options
        logger.info(f"Recognition options updated: {partial}")
        return options

    # ------------------------------------------------------------------
    # Recognition
    # ------------------------------------------------------------------

    def _transition(self, file_path: str, state: PipelineState):
        logger.debug(f"{Path(file_path).name}: {state.value}")

    def _validate(self, file_path: str):
        path = Path(file_path)
        if not path.is_file():
            raise ImageIOError(file_path, "does not exist")
        if path.suffix.lower() not in SUPPORTED_EXTENSIONS:
            raise UnsupportedFormatError(file_path, path.suffix.lower())

    def _run_detector(self, file_path: str, options: RecognitionOptions) -> DetectorOutput:
        if self.detector_timeout is None:
            return self.detector.detect(file_path, options)

        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="FaceDetector")
            executor = self._executor

        future = executor.submit(self.detector.detect, file_path, options)
        try:
            return future.result(timeout=self.detector_timeout)
        except FutureTimeoutError:
            # The hung worker cannot be interrupted; later calls get a fresh one
            with self._lock:
                if self._executor is executor:
                    self._executor = None
            executor.shutdown(wait=False)
            raise DetectorError(
                f"Detector timed out after {self.detector_timeout}s", path=file_path
            )

    def _detect(self, file_path: str, fingerprint: str, options: RecognitionOptions) -> DetectionResult:
        try:
            output = self._run_detector(file_path, options)
        except FaceRecognitionError:
            raise
        except Exception as e:
            logger.debug(f"Detector failed on {file_path}", exc_info=True)
            raise DetectorError(f"Detector failed: {e}", path=file_path) from e

        faces = [
            FaceDetection(
                id=face_id_for(fingerprint, index),
                bounding_box=face.bounding_box,
                confidence=float(face.confidence),
                embedding=[float(v) for v in face.embedding],
                landmarks=face.landmarks,
                attributes=face.attributes,
            )
            for index, face in enumerate(output.faces)
        ]
        return DetectionResult(
            file_path=file_path,
            content_fingerprint=fingerprint,
            image_width=int(output.image_width),
            image_height=int(output.image_height),
            faces=faces,
        )

    def _raw_result(self, file_path: str, options: RecognitionOptions) -> Tuple[str, DetectionResult]:
        """Hash, look up and (on miss) detect and cache.

        Raises:
            FaceRecognitionError: Any per-file failure
        """
        self._transition(file_path, PipelineState.HASHING)
        self._validate(file_path)
        fingerprint = self.hasher.fingerprint(file_path)

        self._transition(file_path, PipelineState.CACHE_LOOKUP)
        raw = self.cache.get(fingerprint)
        if raw is not None:
            self._transition(file_path, PipelineState.CACHE_HIT)
            raw.file_path = file_path
            return fingerprint, raw

        self._transition(file_path, PipelineState.DETECTING)
        raw = self._detect(file_path, fingerprint, options)

        self._transition(file_path, PipelineState.CACHE_STORE)
        self.cache.put(fingerprint, raw)
        return fingerprint, raw

    def _match_faces(self, result: DetectionResult, options: RecognitionOptions):
        """Annotate faces with the best matching person.

        Annotations are applied only once every face has been matched, so
        a ConfigurationError leaves all faces unannotated.
        """
        candidates = [p for p in self.registry.get_all() if p.exemplars]
        if not candidates or not result.faces:
            return

        index = self.matcher.build_index(candidates)
        threshold = options.match_confidence_threshold
        matches = [self.matcher.match_index(index, face.embedding, threshold) for face in result.faces]

        matched_ids = []
        for face, match in zip(result.faces, matches):
            if match is None:
                continue
            face.person_id = match.person.id
            face.person_name = match.person.name
            face.match_confidence = match.confidence
            if match.person.id not in matched_ids:
                matched_ids.append(match.person.id)

        for person_id in matched_ids:
            try:
                self.registry.record_match(person_id, result.content_fingerprint)
            except ImageIOError as e:
                logger.warning(f"Could not record match for {person_id}: {e}")

    def recognize_one(self, file_path: Union[str, Path]) -> DetectionResult:
        """Recognize faces in one image.

        Never raises: failures are reported through ``DetectionResult.error``.
        """
        file_path = str(file_path)
        options = self.options

        try:
            fingerprint, raw = self._raw_result(file_path, options)
        except FaceRecognitionError as e:
            self._transition(file_path, PipelineState.FAILED)
            logger.warning(f"Recognition failed for {file_path}: {e}")
            return DetectionResult.failed(file_path, str(e))
        except Exception as e:
            self._transition(file_path, PipelineState.FAILED)
            logger.error(f"Unexpected error recognizing {file_path}: {e}", exc_info=True)
            return DetectionResult.failed(file_path, f"Unexpected error: {e}")

        result = apply_options(raw, options)

        self._transition(file_path, PipelineState.MATCHING)
        try:
            self._match_faces(result, options)
        except ConfigurationError as e:
            self._transition(file_path, PipelineState.FAILED)
            logger.warning(f"Matching skipped for {file_path}: {e}")
            result.error = str(e)
            return result

        self._transition(file_path, PipelineState.DONE)
        logger.debug(f"{Path(file_path).name}: {len(result.faces)} face(s)")
        return result

    def recognize_batch(
        self,
        file_paths: Iterable[Union[str, Path]],
        on_progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[DetectionResult]:
        """Recognize faces in several images, one at a time, in input order.

        Args:
            file_paths: Images to process
            on_progress: Called with (processed, total) after every file
            cancel_event: When set, stops before the next file

        Returns:
            Results for the files processed so far
        """
        paths = list(file_paths)
        total = len(paths)
        results: List[DetectionResult] = []

        for processed, path in enumerate(paths, start=1):
            if cancel_event is not None and cancel_event.is_set():
                logger.info(f"Batch cancelled after {len(results)}/{total} files")
                break

            results.append(self.recognize_one(path))

            if on_progress is not None:
                try:
                    on_progress(processed, total)
                except Exception as e:
                    logger.error(f"Progress callback error: {e}", exc_info=True)

        failed = sum(1 for r in results if not r.succeeded)
        logger.info(f"Batch finished: {len(results)} processed, {failed} failed")
        return results

    def embed_face(self, image_path: Union[str, Path], bounding_box: BoundingBox) -> List[float]:
        """Embedding of the detected face that best overlaps a box.

        Raises:
            FaceRecognitionError: The image cannot be processed
            DetectorError: No detected face overlaps the box enough
        """
        image_path = str(image_path)
        _, raw = self._raw_result(image_path, self.options)

        best_face, best_iou = None, 0.0
        for face in raw.faces:
            overlap = face.bounding_box.iou(bounding_box)
            if overlap > best_iou:
                best_face, best_iou = face, overlap

        if best_face is None or best_iou < self.min_assign_iou:
            raise DetectorError(
                f"No detected face overlaps the given box (best IoU {best_iou:.2f})",
                path=image_path,
            )
        return list(best_face.embedding)

    def close(self):
        """Release the detector worker thread."""
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=False)
