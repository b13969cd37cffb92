"""Data types shared by the registry, cache and recognition pipeline."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple


@dataclass
class BoundingBox:
    """Face bounding box in pixel coordinates (top-left origin)."""

    x: float
    y: float
    width: float
    height: float

    @property
    def area(self) -> float:
        """Return area of bounding box."""
        return max(self.width, 0) * max(self.height, 0)

    @property
    def center(self) -> Tuple[float, float]:
        """Return center point of bounding box."""
        return (self.x + self.width / 2, self.y + self.height / 2)

    def iou(self, other: "BoundingBox") -> float:
        """Intersection over union with another box."""
        x1 = max(self.x, other.x)
        y1 = max(self.y, other.y)
        x2 = min(self.x + self.width, other.x + other.width)
        y2 = min(self.y + self.height, other.y + other.height)

        inter = max(0.0, x2 - x1) * max(0.0, y2 - y1)
        union = self.area + other.area - inter
        if union <= 0:
            return 0.0
        return float(inter / union)

    def to_dict(self) -> dict:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BoundingBox":
        return cls(
            x=data["x"],
            y=data["y"],
            width=data["width"],
            height=data["height"],
        )


@dataclass
class Exemplar:
    """One stored reference face of a person."""

    face_id: str
    embedding: List[float]
    sample_image_path: str

    def to_dict(self) -> dict:
        return {
            "face_id": self.face_id,
            "embedding": list(self.embedding),
            "sample_image_path": self.sample_image_path,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Exemplar":
        return cls(
            face_id=data["face_id"],
            embedding=[float(v) for v in data["embedding"]],
            sample_image_path=data["sample_image_path"],
        )


def _parse_datetime(value: Optional[str]) -> datetime:
    if not value:
        return datetime.now()
    # Legacy stores use a trailing "Z" which fromisoformat rejects before 3.11
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is not None:
        # Stored dates are naive local time
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


@dataclass
class Person:
    """A named identity with its exemplar faces."""

    id: str
    name: str
    exemplars: List[Exemplar] = field(default_factory=list)
    thumbnail_path: Optional[str] = None
    date_created: datetime = field(default_factory=datetime.now)
    date_modified: datetime = field(default_factory=datetime.now)
    image_count: int = 0
    matched_fingerprints: List[str] = field(default_factory=list)

    @property
    def face_ids(self) -> List[str]:
        return [e.face_id for e in self.exemplars]

    @property
    def sample_images(self) -> List[str]:
        return [e.sample_image_path for e in self.exemplars]

    def find_exemplar(self, face_id: str) -> Optional[int]:
        """Return the index of an exemplar, or None if absent."""
        for i, exemplar in enumerate(self.exemplars):
            if exemplar.face_id == face_id:
                return i
        return None

    def to_dict(self, include_embeddings: bool = True) -> dict:
        """Convert to dictionary for JSON serialization.

        Args:
            include_embeddings: Include exemplar embeddings (omitted in API responses)
        """
        exemplars = []
        for exemplar in self.exemplars:
            data = exemplar.to_dict()
            if not include_embeddings:
                data.pop("embedding")
            exemplars.append(data)

        return {
            "id": self.id,
            "name": self.name,
            "exemplars": exemplars,
            "thumbnail_path": self.thumbnail_path,
            "date_created": self.date_created.isoformat(),
            "date_modified": self.date_modified.isoformat(),
            "image_count": self.image_count,
            "matched_fingerprints": list(self.matched_fingerprints),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Person":
        """Create from dictionary.

        Accepts both the current layout and the legacy desktop layout, where
        exemplars were stored as parallel faceIds / faceDescriptors /
        sampleImages arrays with camelCase keys.
        """
        if "exemplars" in data:
            exemplars = [Exemplar.from_dict(e) for e in data["exemplars"]]
        else:
            exemplars = [
                Exemplar(
                    face_id=face_id,
                    embedding=[float(v) for v in descriptor],
                    sample_image_path=sample,
                )
                for face_id, descriptor, sample in zip(
                    data.get("faceIds", []),
                    data.get("faceDescriptors", []),
                    data.get("sampleImages", []),
                )
            ]

        return cls(
            id=data["id"],
            name=data["name"],
            exemplars=exemplars,
            thumbnail_path=data.get("thumbnail_path", data.get("thumbnailPath")),
            date_created=_parse_datetime(data.get("date_created", data.get("dateCreated"))),
            date_modified=_parse_datetime(data.get("date_modified", data.get("dateModified"))),
            image_count=int(data.get("image_count", data.get("imageCount", 0))),
            matched_fingerprints=list(data.get("matched_fingerprints", [])),
        )


@dataclass
class FaceDetection:
    """A detected face, optionally annotated with the matched person."""

    id: str
    bounding_box: BoundingBox
    confidence: float
    embedding: List[float] = field(default_factory=list)
    landmarks: Optional[Dict[str, List[float]]] = None
    attributes: Optional[Dict[str, Any]] = None
    person_id: Optional[str] = None
    person_name: Optional[str] = None
    match_confidence: Optional[float] = None

    @property
    def is_matched(self) -> bool:
        return self.person_id is not None

    def to_dict(self, include_embedding: bool = True) -> dict:
        data = {
            "id": self.id,
            "bounding_box": self.bounding_box.to_dict(),
            "confidence": self.confidence,
            "landmarks": self.landmarks,
            "attributes": self.attributes,
            "person_id": self.person_id,
            "person_name": self.person_name,
            "match_confidence": self.match_confidence,
        }
        if include_embedding:
            data["embedding"] = list(self.embedding)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FaceDetection":
        return cls(
            id=data["id"],
            bounding_box=BoundingBox.from_dict(data["bounding_box"]),
            confidence=data["confidence"],
            embedding=list(data.get("embedding", [])),
            landmarks=data.get("landmarks"),
            attributes=data.get("attributes"),
            person_id=data.get("person_id"),
            person_name=data.get("person_name"),
            match_confidence=data.get("match_confidence"),
        )


@dataclass
class DetectionResult:
    """Recognition result for a single image file."""

    file_path: str
    content_fingerprint: str = ""
    image_width: int = 0
    image_height: int = 0
    faces: List[FaceDetection] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None

    @classmethod
    def failed(cls, file_path: str, error: str, fingerprint: str = "") -> "DetectionResult":
        """Result for a file that could not be processed."""
        return cls(file_path=file_path, content_fingerprint=fingerprint, error=error)

    def to_dict(self, include_embeddings: bool = True) -> dict:
        return {
            "file_path": self.file_path,
            "content_fingerprint": self.content_fingerprint,
            "image_width": self.image_width,
            "image_height": self.image_height,
            "faces": [f.to_dict(include_embedding=include_embeddings) for f in self.faces],
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DetectionResult":
        return cls(
            file_path=data["file_path"],
            content_fingerprint=data.get("content_fingerprint", ""),
            image_width=int(data.get("image_width", 0)),
            image_height=int(data.get("image_height", 0)),
            faces=[FaceDetection.from_dict(f) for f in data.get("faces", [])],
            error=data.get("error"),
        )
