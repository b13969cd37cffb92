"""Background batch recognition queue.

Runs submitted batches on a worker thread and notifies clients of
progress via callbacks. Designed for the API layer, where a request
submits a batch and polls or subscribes for its progress.
"""

import logging
import queue
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

from .pipeline import RecognitionPipeline
from .types import DetectionResult

logger = logging.getLogger(__name__)


class BatchStatus(Enum):
    """Lifecycle of a batch job."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


FINISHED_STATUSES = (BatchStatus.COMPLETED, BatchStatus.CANCELLED, BatchStatus.FAILED)


class ProcessingEventType(Enum):
    """Types of processing events for callbacks."""
    BATCH_STARTED = "batch_started"
    BATCH_PROGRESS = "batch_progress"
    BATCH_COMPLETED = "batch_completed"
    BATCH_CANCELLED = "batch_cancelled"
    BATCH_FAILED = "batch_failed"


TERMINAL_EVENTS = (
    ProcessingEventType.BATCH_COMPLETED,
    ProcessingEventType.BATCH_CANCELLED,
    ProcessingEventType.BATCH_FAILED,
)


@dataclass
class BatchJob:
    """A batch of image files submitted for recognition."""

    id: str
    file_paths: List[str]
    status: BatchStatus = BatchStatus.PENDING
    processed: int = 0
    results: List[DetectionResult] = field(default_factory=list)
    created_at: datetime = field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    cancel_event: threading.Event = field(default_factory=threading.Event, repr=False)

    @property
    def total(self) -> int:
        return len(self.file_paths)

    @property
    def percentage(self) -> float:
        return round(100.0 * self.processed / self.total, 1) if self.total else 100.0

    @property
    def failed_count(self) -> int:
        return sum(1 for r in self.results if not r.succeeded)

    def to_dict(self, include_results: bool = True) -> dict:
        """Convert to dictionary for JSON serialization."""
        data = {
            "id": self.id,
            "status": self.status.value,
            "total": self.total,
            "processed": self.processed,
            "percentage": self.percentage,
            "failed": self.failed_count,
            "created_at": self.created_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "error_message": self.error_message,
        }
        if include_results:
            data["results"] = [r.to_dict(include_embeddings=False) for r in self.results]
        return data


@dataclass
class ProcessingEvent:
    """Event data for processing callbacks."""

    event_type: ProcessingEventType
    job_id: str
    processed: int = 0
    total: int = 0
    percentage: float = 0.0
    current_file: Optional[str] = None
    message: Optional[str] = None
    error: Optional[str] = None
    timestamp: Optional[datetime] = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.now()

    @property
    def is_terminal(self) -> bool:
        return self.event_type in TERMINAL_EVENTS

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "event_type": self.event_type.value,
            "job_id": self.job_id,
            "processed": self.processed,
            "total": self.total,
            "percentage": self.percentage,
            "current_file": self.current_file,
            "message": self.message,
            "error": self.error,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


# Type alias for event callback function
EventCallback = Callable[[ProcessingEvent], None]


class BatchProcessingQueue:
    """Background worker for batch recognition.

    Supports:
    - Queueing multiple batches, processed one at a time
    - Progress tracking with callbacks
    - Cooperative cancellation between files
    - Graceful shutdown
    """

    def __init__(
        self,
        pipeline: RecognitionPipeline,
        auto_start: bool = True,
        max_finished_jobs: int = 100,
    ):
        """Initialize processing queue.

        Args:
            pipeline: Recognition pipeline that processes each file
            auto_start: Whether to start the worker immediately
            max_finished_jobs: Finished batches kept for lookup; older ones are dropped
        """
        self.pipeline = pipeline
        self.max_finished_jobs = max_finished_jobs

        self._job_queue: "queue.Queue[str]" = queue.Queue()

        self._jobs: Dict[str, BatchJob] = {}
        self._jobs_lock = threading.Lock()

        # Event callbacks (job_id -> list of callbacks)
        self._callbacks: Dict[str, List[EventCallback]] = {}
        self._global_callbacks: List[EventCallback] = []
        self._callbacks_lock = threading.Lock()

        self._worker: Optional[threading.Thread] = None
        self._running = False

        if auto_start:
            self.start()

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self):
        """Start the worker thread."""
        if self._running:
            return

        self._running = True
        self._worker = threading.Thread(
            target=self._worker_loop,
            name="BatchProcessingWorker",
            daemon=True,
        )
        self._worker.start()
        logger.info("Started batch processing worker")

    def stop(self, timeout: float = 5.0):
        """Cancel every unfinished batch and stop the worker.

        Args:
            timeout: Maximum time to wait for the worker to finish
        """
        if not self._running:
            return

        with self._jobs_lock:
            for job in self._jobs.values():
                job.cancel_event.set()

        self._running = False

        if self._worker is not None:
            self._worker.join(timeout=timeout)
            self._worker = None
        logger.info("Stopped batch processing worker")

    def submit(
        self,
        file_paths: List[Union[str, Path]],
        callback: Optional[EventCallback] = None,
    ) -> str:
        """Submit a new batch.

        Args:
            file_paths: Images to recognize, processed in order
            callback: Optional callback for this batch's events

        Returns:
            Job ID for tracking
        """
        job_id = uuid.uuid4().hex[:12]
        job = BatchJob(id=job_id, file_paths=[str(p) for p in file_paths])

        with self._jobs_lock:
            self._jobs[job_id] = job

        if callback:
            self.add_callback(job_id, callback)

        self._job_queue.put(job_id)
        logger.info(f"Submitted batch {job_id} with {job.total} files")
        return job_id

    def cancel(self, job_id: str) -> bool:
        """Request cancellation of a batch.

        Returns:
            True if the batch exists and has not finished
        """
        with self._jobs_lock:
            job = self._jobs.get(job_id)
            if job is None or job.status not in (BatchStatus.PENDING, BatchStatus.PROCESSING):
                return False
            job.cancel_event.set()

        logger.info(f"Cancellation requested for batch {job_id}")
        return True

    def get_job(self, job_id: str) -> Optional[BatchJob]:
        with self._jobs_lock:
            return self._jobs.get(job_id)

    def list_jobs(self) -> List[BatchJob]:
        with self._jobs_lock:
            return list(self._jobs.values())

    def get_queue_size(self) -> int:
        """Get number of batches waiting in the queue."""
        return self._job_queue.qsize()

    def wait(self, job_id: str, timeout: Optional[float] = None) -> Optional[BatchJob]:
        """Block until a batch finishes.

        Returns:
            The job, or None if unknown or still running after timeout
        """
        job = self.get_job(job_id)
        if job is None:
            return None

        finished = threading.Event()

        def on_event(event: ProcessingEvent):
            if event.is_terminal:
                finished.set()

        self.add_callback(job_id, on_event)
        try:
            if job.status in (BatchStatus.PENDING, BatchStatus.PROCESSING):
                if not finished.wait(timeout):
                    return None
        finally:
            self.remove_callback(job_id, on_event)
        return job

    def add_callback(self, job_id: str, callback: EventCallback):
        """Add a callback for batch events.

        Args:
            job_id: Job ID to listen for, or "*" for all batches
            callback: Callback function
        """
        with self._callbacks_lock:
            if job_id == "*":
                self._global_callbacks.append(callback)
            else:
                self._callbacks.setdefault(job_id, []).append(callback)

    def remove_callback(self, job_id: str, callback: EventCallback):
        """Remove a callback.

        Args:
            job_id: Job ID or "*" for global callbacks
            callback: Callback to remove
        """
        with self._callbacks_lock:
            if job_id == "*":
                if callback in self._global_callbacks:
                    self._global_callbacks.remove(callback)
            elif callback in self._callbacks.get(job_id, []):
                self._callbacks[job_id].remove(callback)

    def _worker_loop(self):
        """Main worker loop for processing batches."""
        logger.debug(f"Worker {threading.current_thread().name} started")

        while self._running:
            try:
                job_id = self._job_queue.get(timeout=0.5)
            except queue.Empty:
                continue

            try:
                self._process_job(job_id)
            except Exception as e:
                logger.error(f"Worker error: {e}", exc_info=True)
                self._finish(job_id, BatchStatus.FAILED, error=str(e))
            finally:
                self._job_queue.task_done()

        # Batches still queued at shutdown are reported as cancelled
        while True:
            try:
                job_id = self._job_queue.get_nowait()
            except queue.Empty:
                break
            self._finish(job_id, BatchStatus.CANCELLED)
            self._job_queue.task_done()

        logger.debug(f"Worker {threading.current_thread().name} stopped")

    def _process_job(self, job_id: str):
        job = self.get_job(job_id)
        if job is None:
            logger.error(f"Batch {job_id} not found")
            return

        if job.cancel_event.is_set():
            self._finish(job_id, BatchStatus.CANCELLED)
            return

        with self._jobs_lock:
            job.status = BatchStatus.PROCESSING

        self._emit_event(ProcessingEvent(
            event_type=ProcessingEventType.BATCH_STARTED,
            job_id=job_id,
            total=job.total,
            percentage=0.0,
            message=f"Starting recognition of {job.total} files",
        ))

        def on_progress(processed: int, total: int):
            with self._jobs_lock:
                job.processed = processed
            self._emit_event(ProcessingEvent(
                event_type=ProcessingEventType.BATCH_PROGRESS,
                job_id=job_id,
                processed=processed,
                total=total,
                percentage=job.percentage,
                current_file=job.file_paths[processed - 1],
                message=f"Processed {processed}/{total} files",
            ))

        results = self.pipeline.recognize_batch(
            job.file_paths,
            on_progress=on_progress,
            cancel_event=job.cancel_event,
        )

        with self._jobs_lock:
            job.results = results

        if job.cancel_event.is_set() and len(results) < job.total:
            self._finish(job_id, BatchStatus.CANCELLED)
        else:
            self._finish(job_id, BatchStatus.COMPLETED)

    def _finish(self, job_id: str, status: BatchStatus, error: Optional[str] = None):
        job = self.get_job(job_id)
        if job is None:
            return

        with self._jobs_lock:
            job.status = status
            job.completed_at = datetime.now()
            job.error_message = error

        self._prune_finished()

        event_type = {
            BatchStatus.COMPLETED: ProcessingEventType.BATCH_COMPLETED,
            BatchStatus.CANCELLED: ProcessingEventType.BATCH_CANCELLED,
        }.get(status, ProcessingEventType.BATCH_FAILED)

        self._emit_event(ProcessingEvent(
            event_type=event_type,
            job_id=job_id,
            processed=job.processed,
            total=job.total,
            percentage=job.percentage,
            message=f"Batch {status.value}: {job.processed} processed, {job.failed_count} failed",
            error=error,
        ))

        # Clean up callbacks for this job
        with self._callbacks_lock:
            self._callbacks.pop(job_id, None)

        logger.info(f"Batch {job_id} {status.value}: {job.processed}/{job.total} processed")

    def _prune_finished(self):
        """Drop the oldest finished batches beyond max_finished_jobs."""
        with self._jobs_lock:
            finished = [j.id for j in self._jobs.values() if j.status in FINISHED_STATUSES]
            for job_id in finished[:max(0, len(finished) - self.max_finished_jobs)]:
                del self._jobs[job_id]
                logger.debug(f"Dropped finished batch {job_id}")

    def _emit_event(self, event: ProcessingEvent):
        """Emit an event to registered callbacks."""
        with self._callbacks_lock:
            callbacks = list(self._callbacks.get(event.job_id, []))
            callbacks.extend(self._global_callbacks)

        for callback in callbacks:
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Callback error: {e}", exc_info=True)
