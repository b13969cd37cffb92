"""Content-addressed cache of raw detection results."""

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Optional, Union

from .types import DetectionResult

logger = logging.getLogger(__name__)


class DetectionCache:
    """Stores one JSON document per content fingerprint.

    The cache is best-effort: reads never raise and write failures are
    logged and ignored. Entries never go stale because a change in content
    changes the fingerprint.
    """

    def __init__(self, cache_dir: Union[str, Path]):
        self._cache_dir = Path(cache_dir)
        self._lock = threading.Lock()
        try:
            self._cache_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.warning(f"Cannot create cache directory {self._cache_dir}: {e}")

    @property
    def cache_dir(self) -> Path:
        return self._cache_dir

    def _entry_path(self, fingerprint: str) -> Path:
        return self._cache_dir / f"{fingerprint}.json"

    def get(self, fingerprint: str) -> Optional[DetectionResult]:
        """Return the cached result for a fingerprint, or None."""
        path = self._entry_path(fingerprint)
        with self._lock:
            try:
                with open(path, "r", encoding="utf-8") as f:
                    data = json.load(f)
            except FileNotFoundError:
                return None
            except (OSError, ValueError) as e:
                logger.warning(f"Ignoring unreadable cache entry {path.name}: {e}")
                return None

        try:
            return DetectionResult.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Ignoring corrupt cache entry {path.name}: {e}")
            return None

    def put(self, fingerprint: str, result: DetectionResult) -> None:
        """Store a result, replacing any previous entry."""
        path = self._entry_path(fingerprint)
        payload = json.dumps(result.to_dict())

        with self._lock:
            tmp_name = None
            try:
                self._cache_dir.mkdir(parents=True, exist_ok=True)
                fd, tmp_name = tempfile.mkstemp(
                    dir=self._cache_dir, prefix=f".{fingerprint}.", suffix=".tmp"
                )
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(payload)
                os.replace(tmp_name, path)
                tmp_name = None
                logger.debug(f"Cached detection result {fingerprint[:12]}")
            except OSError as e:
                logger.warning(f"Failed to write cache entry {path.name}: {e}")
            finally:
                if tmp_name is not None:
                    try:
                        os.unlink(tmp_name)
                    except OSError:
                        pass

    def invalidate(self, fingerprint: str) -> bool:
        """Remove one entry. Returns True if it existed."""
        with self._lock:
            try:
                self._entry_path(fingerprint).unlink()
                return True
            except FileNotFoundError:
                return False
            except OSError as e:
                logger.warning(f"Failed to remove cache entry {fingerprint}: {e}")
                return False

    def clear(self) -> int:
        """Remove every entry. Returns the number removed."""
        removed = 0
        with self._lock:
            for path in self._cache_dir.glob("*.json"):
                try:
                    path.unlink()
                    removed += 1
                except OSError as e:
                    logger.warning(f"Failed to remove cache entry {path.name}: {e}")
        logger.info(f"Cleared {removed} cache entries")
        return removed

    def __contains__(self, fingerprint: str) -> bool:
        return self._entry_path(fingerprint).exists()

    def __len__(self) -> int:
        if not self._cache_dir.exists():
            return 0
        return sum(1 for _ in self._cache_dir.glob("*.json"))
