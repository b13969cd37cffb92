"""Content fingerprinting for image files."""

import hashlib
import logging
from pathlib import Path
from typing import Union

from .exceptions import ImageIOError

logger = logging.getLogger(__name__)


class ContentHasher:
    """Computes a SHA-256 fingerprint of a file's bytes.

    The fingerprint depends only on content, so a renamed or copied file
    shares its cache entry with the original.
    """

    def __init__(self, chunk_size: int = 1024 * 1024):
        self.chunk_size = chunk_size

    def fingerprint(self, file_path: Union[str, Path]) -> str:
        """Return the hex SHA-256 digest of the file.

        Raises:
            ImageIOError: The file cannot be read
        """
        digest = hashlib.sha256()
        try:
            with open(file_path, "rb") as f:
                for chunk in iter(lambda: f.read(self.chunk_size), b""):
                    digest.update(chunk)
        except OSError as e:
            logger.debug(f"Cannot hash {file_path}: {e}")
            raise ImageIOError(str(file_path), e.strerror or "could not be read") from e

        return digest.hexdigest()
