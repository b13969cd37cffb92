"""Face recognition service.

Thread-safe facade that owns the person registry, the detection cache,
the recognition pipeline and the background batch queue, and exposes the
operations used by the CLI and HTTP API.
"""

import logging
import threading
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from .cache import DetectionCache
from .constants import AppConfig, DetectorConfig, RecognitionOptions, StorageConfig
from .detection import BaseFaceDetector, create_detector
from .exceptions import PersonNotFoundError
from .pipeline import ProgressCallback, RecognitionPipeline
from .processing import BatchJob, BatchProcessingQueue, EventCallback
from .registry import PersonRegistry
from .types import BoundingBox, DetectionResult, Person

logger = logging.getLogger(__name__)

BoxLike = Union[BoundingBox, Dict[str, float], Sequence[float]]


def _as_bounding_box(box: BoxLike) -> BoundingBox:
    if isinstance(box, BoundingBox):
        return box
    if isinstance(box, dict):
        return BoundingBox.from_dict(box)
    x, y, width, height = box
    return BoundingBox(x=x, y=y, width=width, height=height)


class FaceRecognitionService:
    """Host control surface for face recognition.

    Integrates:
    - PersonRegistry: named persons and their exemplar faces
    - DetectionCache: raw detector output keyed by image content
    - RecognitionPipeline: hashing, detection, caching and matching
    - BatchProcessingQueue: background batches with progress callbacks
    """

    def __init__(
        self,
        storage: Optional[StorageConfig] = None,
        detector: Optional[BaseFaceDetector] = None,
        options: Optional[RecognitionOptions] = None,
        detector_config: Optional[DetectorConfig] = None,
        auto_start_processing: bool = True,
    ):
        """Initialize face recognition service.

        Args:
            storage: Locations of people store, samples and cache
            detector: Detector instance; built from detector_config if None
            options: Initial recognition options
            detector_config: Detector backend settings
            auto_start_processing: Start the batch worker on startup
        """
        self.storage = storage or StorageConfig()
        self.detector_config = detector_config or DetectorConfig()

        self._lock = threading.RLock()

        self.registry = PersonRegistry(self.storage.people_path, self.storage.samples_path)
        self.cache = DetectionCache(self.storage.cache_path)

        if detector is None:
            detector = create_detector(
                self.detector_config.backend,
                model_name=self.detector_config.model_name,
                det_size=self.detector_config.det_size,
            )
        self.detector = detector

        self.pipeline = RecognitionPipeline(
            detector=self.detector,
            registry=self.registry,
            cache=self.cache,
            options=options,
            detector_timeout=self.detector_config.timeout,
            min_assign_iou=self.detector_config.min_assign_iou,
        )

        self.processing_queue = BatchProcessingQueue(
            pipeline=self.pipeline,
            auto_start=auto_start_processing,
        )

        logger.info(
            f"FaceRecognitionService initialized: "
            f"data_dir={self.storage.data_dir}, people={len(self.registry)}"
        )

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        detector: Optional[BaseFaceDetector] = None,
        **kwargs: Any,
    ) -> "FaceRecognitionService":
        """Create a service from loaded configuration."""
        return cls(
            storage=config.storage,
            detector=detector,
            options=config.recognition,
            detector_config=config.detector,
            **kwargs,
        )

    # -------------------------------------------------------------------------
    # Options
    # -------------------------------------------------------------------------

    @property
    def options(self) -> RecognitionOptions:
        return self.pipeline.options

    def configure(self, **partial: Any) -> RecognitionOptions:
        """Merge recognition options into the current ones."""
        return self.pipeline.configure(**partial)

    # -------------------------------------------------------------------------
    # Recognition
    # -------------------------------------------------------------------------

    def recognize_one(self, file_path: Union[str, Path]) -> DetectionResult:
        """Recognize faces in one image. Never raises."""
        return self.pipeline.recognize_one(file_path)

    def recognize_batch(
        self,
        file_paths: Iterable[Union[str, Path]],
        on_progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[DetectionResult]:
        """Recognize faces in several images in the calling thread."""
        return self.pipeline.recognize_batch(file_paths, on_progress, cancel_event)

    # -------------------------------------------------------------------------
    # Background batches
    # -------------------------------------------------------------------------

    def submit_batch(
        self,
        file_paths: List[Union[str, Path]],
        callback: Optional[EventCallback] = None,
    ) -> str:
        """Queue a batch for background recognition.

        Returns:
            Job ID for tracking
        """
        return self.processing_queue.submit(file_paths, callback)

    def cancel_batch(self, job_id: str) -> bool:
        return self.processing_queue.cancel(job_id)

    def get_batch(self, job_id: str) -> Optional[BatchJob]:
        return self.processing_queue.get_job(job_id)

    def wait_batch(self, job_id: str, timeout: Optional[float] = None) -> Optional[BatchJob]:
        return self.processing_queue.wait(job_id, timeout)

    def add_callback(self, job_id: str, callback: EventCallback):
        """Add a callback for batch events.

        Args:
            job_id: Job ID to listen for, or "*" for all batches
            callback: Callback function
        """
        self.processing_queue.add_callback(job_id, callback)

    def remove_callback(self, job_id: str, callback: EventCallback):
        self.processing_queue.remove_callback(job_id, callback)

    # -------------------------------------------------------------------------
    # People
    # -------------------------------------------------------------------------

    def list_people(self) -> List[Person]:
        return self.registry.get_all()

    def get_person(self, person_id: str) -> Optional[Person]:
        return self.registry.get_by_id(person_id)

    def create_or_update_person(self, name: str, **fields: Any) -> Person:
        return self.registry.create_or_update(name, **fields)

    def rename_person(self, person_id: str, new_name: str) -> Person:
        return self.registry.rename(person_id, new_name)

    def delete_person(self, person_id: str) -> bool:
        return self.registry.delete(person_id)

    def assign_face(
        self,
        person_id: str,
        image_path: Union[str, Path],
        bounding_box: BoxLike,
        embedding: Optional[Sequence[float]] = None,
    ) -> Person:
        """Add a face from an image to a person's exemplars.

        Args:
            person_id: Person to extend
            image_path: Image containing the face
            bounding_box: Face location (BoundingBox, dict or x, y, w, h)
            embedding: Face embedding; computed from the detector if None

        Raises:
            PersonNotFoundError: Unknown person (checked before detection)
            DetectorError: No detected face overlaps the box
            ConfigurationError: Embedding length differs from stored exemplars
            ImageIOError: Image cannot be read
        """
        box = _as_bounding_box(bounding_box)

        with self._lock:
            if person_id not in self.registry:
                raise PersonNotFoundError(person_id)

            if embedding is None:
                embedding = self.pipeline.embed_face(image_path, box)

            return self.registry.add_exemplar(person_id, image_path, box, list(embedding))

    def unassign_face(self, person_id: str, face_id: str) -> Person:
        """Remove an exemplar face from a person."""
        with self._lock:
            return self.registry.remove_exemplar(person_id, face_id)

    # -------------------------------------------------------------------------
    # Statistics & Lifecycle
    # -------------------------------------------------------------------------

    def clear_cache(self) -> int:
        return self.cache.clear()

    def get_stats(self) -> dict:
        """Get service statistics."""
        people = self.registry.get_all()
        jobs = self.processing_queue.list_jobs()

        return {
            "people": len(people),
            "exemplars": sum(len(p.exemplars) for p in people),
            "embedding_dim": self.registry.embedding_dim,
            "cached_images": len(self.cache),
            "batches": len(jobs),
            "queue_size": self.processing_queue.get_queue_size(),
            "detector": getattr(self.detector, "name", type(self.detector).__name__),
            "options": self.options.to_dict(),
        }

    def shutdown(self):
        """Shutdown the service gracefully."""
        logger.info("Shutting down FaceRecognitionService")
        self.processing_queue.stop()
        self.pipeline.close()
        self.detector.close()
