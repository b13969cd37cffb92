"""Exception hierarchy for face recognition.

All errors inherit from FaceRecognitionError so callers (CLI, API, batch
results) can handle them uniformly.
"""

from typing import Any, Dict, Optional


class FaceRecognitionError(Exception):
    """Base exception for all face recognition errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional error details
    """

    def __init__(
        self,
        message: str,
        code: str = "ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        result = {
            "code": self.code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


# === File Errors ===

class ImageIOError(FaceRecognitionError, OSError):
    """File could not be read or written."""

    def __init__(self, path: str, reason: str = "could not be read"):
        super().__init__(
            message=f"{path}: {reason}",
            code="IO_ERROR",
            details={"path": str(path)},
        )


class UnsupportedFormatError(FaceRecognitionError):
    """File extension is not a supported image format."""

    def __init__(self, path: str, extension: str):
        super().__init__(
            message=f"Unsupported image format: {extension or '<none>'}",
            code="UNSUPPORTED_FORMAT",
            details={"path": str(path), "extension": extension},
        )


# === Detector Errors ===

class DetectorError(FaceRecognitionError):
    """The face detector failed for an image."""

    def __init__(self, message: str, path: Optional[str] = None):
        details = {"path": str(path)} if path else {}
        super().__init__(message=message, code="DETECTOR_ERROR", details=details)


# === Not Found Errors ===

class NotFoundError(FaceRecognitionError):
    """Referenced entity does not exist."""

    def __init__(self, entity: str, identifier: Optional[str] = None):
        message = f"{entity} not found"
        if identifier:
            message = f"{entity} '{identifier}' not found"
        super().__init__(message=message, code="NOT_FOUND")


class PersonNotFoundError(NotFoundError):
    def __init__(self, person_id: str):
        super().__init__("Person", person_id)


# === Configuration Errors ===

class ConfigurationError(FaceRecognitionError):
    """Invalid options or inconsistent embedding dimensions."""

    def __init__(self, message: str, field: Optional[str] = None):
        details = {"field": field} if field else {}
        super().__init__(message=message, code="CONFIGURATION_ERROR", details=details)


class NameConflictError(FaceRecognitionError):
    """Another person already uses the requested name."""

    def __init__(self, name: str):
        super().__init__(
            message=f"A person named '{name}' already exists",
            code="NAME_CONFLICT",
            details={"name": name},
        )
