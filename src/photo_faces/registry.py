"""Person registry.

Holds every named person with their exemplar faces and persists the whole
collection to a single JSON document after each change. Exemplar sample
images live next to it in a people directory, named
``<person_id>_<face_id><ext>``.
"""

import copy
import json
import logging
import os
import shutil
import tempfile
import threading
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, List, Optional, Union

import cv2

from .constants import PEOPLE_STORE_VERSION
from .exceptions import (
    ConfigurationError,
    ImageIOError,
    NameConflictError,
    PersonNotFoundError,
)
from .types import BoundingBox, Exemplar, Person

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("thumbnail_path", "exemplars", "image_count")


def _name_key(name: str) -> str:
    return name.strip().casefold()


def _coerce_exemplar(value: Any) -> Exemplar:
    if isinstance(value, Exemplar):
        return Exemplar(value.face_id, [float(v) for v in value.embedding], value.sample_image_path)
    return Exemplar.from_dict(value)


class PersonRegistry:
    """Thread-safe, write-through store of persons.

    All mutations hold a single re-entrant lock and persist the store
    before returning. Read methods return copies so callers cannot modify
    registry state behind its back.
    """

    def __init__(
        self,
        people_file: Union[str, Path],
        people_dir: Union[str, Path],
    ):
        """Initialize the registry and load any existing store.

        Args:
            people_file: Path to the JSON people store
            people_dir: Directory for exemplar sample images
        """
        self.people_file = Path(people_file)
        self.people_dir = Path(people_dir)
        self.people_file.parent.mkdir(parents=True, exist_ok=True)
        self.people_dir.mkdir(parents=True, exist_ok=True)

        self._lock = threading.RLock()
        self._people: List[Person] = []

        self._load()
        logger.info(f"Loaded {len(self._people)} people from {self.people_file}")

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load(self):
        if not self.people_file.exists():
            return

        try:
            with open(self.people_file, "r", encoding="utf-8") as f:
                data = json.load(f)
            records = data["people"] if isinstance(data, dict) else data
            self._people = [Person.from_dict(record) for record in records]
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.error(f"Failed to load people store {self.people_file}, starting empty: {e}")
            self._people = []

    def _persist(self):
        """Write the whole store atomically.

        Raises:
            ImageIOError: The store could not be written
        """
        document = {
            "version": PEOPLE_STORE_VERSION,
            "people": [person.to_dict() for person in self._people],
        }

        tmp_name = None
        try:
            fd, tmp_name = tempfile.mkstemp(
                dir=self.people_file.parent, prefix=f".{self.people_file.name}.", suffix=".tmp"
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(document, f, indent=2)
            os.replace(tmp_name, self.people_file)
            tmp_name = None
        except OSError as e:
            logger.error(f"Failed to save people store: {e}")
            raise ImageIOError(str(self.people_file), f"could not be written ({e})") from e
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass

    def _owns(self, path: str) -> bool:
        """True if the path lies inside the samples directory."""
        try:
            Path(path).resolve().relative_to(self.people_dir.resolve())
        except (OSError, ValueError):
            return False
        return True

    def _remove_file(self, path: Optional[str]):
        # Only samples written by the registry are ever deleted
        if not path or not self._owns(path):
            return
        try:
            Path(path).unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Error deleting sample image {path}: {e}")

    # ------------------------------------------------------------------
    # Lookup helpers (caller holds the lock)
    # ------------------------------------------------------------------

    def _find(self, person_id: str) -> Optional[Person]:
        for person in self._people:
            if person.id == person_id:
                return person
        return None

    def _find_by_name(self, name: str) -> Optional[Person]:
        key = _name_key(name)
        for person in self._people:
            if _name_key(person.name) == key:
                return person
        return None

    @staticmethod
    def _fix_thumbnail(person: Person):
        """Point the thumbnail at an exemplar sample, or clear it."""
        if person.thumbnail_path not in person.sample_images:
            person.thumbnail_path = person.sample_images[0] if person.exemplars else None

    def _require(self, person_id: str) -> Person:
        person = self._find(person_id)
        if person is None:
            raise PersonNotFoundError(person_id)
        return person

    def _current_dim(self, exclude: Optional[Person] = None) -> Optional[int]:
        for person in self._people:
            if person is exclude:
                continue
            for exemplar in person.exemplars:
                return len(exemplar.embedding)
        return None

    def _check_dims(self, embeddings: Iterable[List[float]], exclude: Optional[Person] = None):
        expected = self._current_dim(exclude)
        for embedding in embeddings:
            if not embedding:
                raise ConfigurationError("Exemplar embedding is empty", field="embedding")
            if expected is None:
                expected = len(embedding)
            elif len(embedding) != expected:
                raise ConfigurationError(
                    f"Embedding length {len(embedding)} does not match registry dimension {expected}",
                    field="embedding",
                )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_all(self) -> List[Person]:
        """Get all persons in insertion order."""
        with self._lock:
            return copy.deepcopy(self._people)

    def get_by_id(self, person_id: str) -> Optional[Person]:
        with self._lock:
            person = self._find(person_id)
            return copy.deepcopy(person) if person else None

    def get_by_name(self, name: str) -> Optional[Person]:
        """Case-insensitive lookup by display name."""
        with self._lock:
            person = self._find_by_name(name)
            return copy.deepcopy(person) if person else None

    @property
    def embedding_dim(self) -> Optional[int]:
        """Length of stored exemplar embeddings, None when there are none."""
        with self._lock:
            return self._current_dim()

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create_or_update(self, name: str, **fields: Any) -> Person:
        """Create a person, or update the one with this name.

        Lookup is case-insensitive; on update the display casing of
        ``name`` replaces the stored one.

        Args:
            name: Display name
            **fields: Any of thumbnail_path, exemplars, image_count

        Returns:
            Copy of the created or updated person

        Raises:
            ValueError: Blank name or unknown field
            ConfigurationError: Exemplar embeddings of inconsistent length
        """
        if not name or not name.strip():
            raise ValueError("Person name must not be blank")
        unknown = sorted(set(fields) - set(UPDATABLE_FIELDS))
        if unknown:
            raise ValueError(f"Unknown person field(s): {', '.join(unknown)}")

        name = name.strip()
        if "exemplars" in fields:
            fields["exemplars"] = [_coerce_exemplar(e) for e in fields["exemplars"]]
        if "image_count" in fields:
            image_count = int(fields["image_count"])
            if image_count < 0:
                raise ValueError("image_count must not be negative")
            fields["image_count"] = image_count

        with self._lock:
            person = self._find_by_name(name)
            if "exemplars" in fields:
                self._check_dims((e.embedding for e in fields["exemplars"]), exclude=person)
                samples = [e.sample_image_path for e in fields["exemplars"]]
            else:
                samples = person.sample_images if person else []
            thumbnail = fields.get("thumbnail_path")
            if thumbnail is not None and thumbnail not in samples:
                raise ValueError("thumbnail_path must be one of the person's exemplar samples")

            now = datetime.now()
            dropped = []
            if person is None:
                person = Person(
                    id=str(uuid.uuid4()),
                    name=name,
                    date_created=now,
                    date_modified=now,
                )
                for key, value in fields.items():
                    setattr(person, key, value)
                self._people.append(person)
                logger.info(f"Created person {name} ({person.id})")
            else:
                dropped = [p for p in person.sample_images if p not in samples]
                person.name = name
                for key, value in fields.items():
                    setattr(person, key, value)
                person.date_modified = now
                logger.info(f"Updated person {name} ({person.id})")

            self._fix_thumbnail(person)
            self._persist()
            for path in dropped:
                self._remove_file(path)
            return copy.deepcopy(person)

    def rename(self, person_id: str, new_name: str) -> Person:
        """Rename a person.

        Raises:
            ValueError: Blank name
            PersonNotFoundError: Unknown person
            NameConflictError: Another person already uses the name
        """
        if not new_name or not new_name.strip():
            raise ValueError("Person name must not be blank")
        new_name = new_name.strip()

        with self._lock:
            person = self._require(person_id)
            other = self._find_by_name(new_name)
            if other is not None and other is not person:
                raise NameConflictError(new_name)

            old_name = person.name
            person.name = new_name
            person.date_modified = datetime.now()
            self._persist()
            logger.info(f"Renamed person {old_name} -> {new_name}")
            return copy.deepcopy(person)

    def delete(self, person_id: str) -> bool:
        """Delete a person and their sample images.

        Returns:
            True if deleted, False if not found
        """
        with self._lock:
            person = self._find(person_id)
            if person is None:
                return False

            self._people.remove(person)
            paths = set(person.sample_images)
            if person.thumbnail_path:
                paths.add(person.thumbnail_path)
            for path in paths:
                self._remove_file(path)

            self._persist()
            logger.info(f"Deleted person {person.name} ({person_id})")
            return True

    def add_exemplar(
        self,
        person_id: str,
        source_image_path: Union[str, Path],
        bounding_box: BoundingBox,
        embedding: List[float],
    ) -> Person:
        """Add an exemplar face to a person.

        The sample image is the face crop when OpenCV can decode the
        source, otherwise a byte copy of the whole file.

        Args:
            person_id: Person to extend
            source_image_path: Image containing the face
            bounding_box: Face location within the image
            embedding: Face embedding vector

        Raises:
            PersonNotFoundError: Unknown person
            ConfigurationError: Embedding length differs from stored exemplars
            ImageIOError: Source image unreadable or sample not writable
        """
        embedding = [float(v) for v in embedding]

        with self._lock:
            person = self._require(person_id)
            self._check_dims([embedding])

            face_id = uuid.uuid4().hex
            sample_path = self._store_sample(Path(source_image_path), person.id, face_id, bounding_box)

            person.exemplars.append(Exemplar(face_id, embedding, str(sample_path)))
            if not person.thumbnail_path:
                person.thumbnail_path = str(sample_path)
            person.date_modified = datetime.now()

            self._persist()
            logger.info(f"Added face {face_id} to {person.name} ({len(person.exemplars)} total)")
            return copy.deepcopy(person)

    def _store_sample(
        self,
        source: Path,
        person_id: str,
        face_id: str,
        bounding_box: BoundingBox,
    ) -> Path:
        if not source.is_file():
            raise ImageIOError(str(source), "does not exist")

        ext = source.suffix.lower() or ".jpg"
        target = self.people_dir / f"{person_id}_{face_id}{ext}"

        image = cv2.imread(str(source))
        if image is not None:
            height, width = image.shape[:2]
            x1 = max(0, int(bounding_box.x))
            y1 = max(0, int(bounding_box.y))
            x2 = min(width, int(bounding_box.x + bounding_box.width))
            y2 = min(height, int(bounding_box.y + bounding_box.height))
            if x2 > x1 and y2 > y1:
                try:
                    if cv2.imwrite(str(target), image[y1:y2, x1:x2]):
                        return target
                except cv2.error as e:
                    logger.debug(f"OpenCV cannot write {target.name}: {e}")
            logger.debug(f"Could not crop face from {source}, copying whole image")

        try:
            shutil.copyfile(source, target)
        except OSError as e:
            raise ImageIOError(str(source), f"could not be copied ({e})") from e
        return target

    def remove_exemplar(self, person_id: str, face_id: str) -> Person:
        """Remove an exemplar face from a person.

        Unknown face ids leave the person unchanged.

        Raises:
            PersonNotFoundError: Unknown person
        """
        with self._lock:
            person = self._require(person_id)
            index = person.find_exemplar(face_id)
            if index is None:
                logger.debug(f"Face {face_id} not found on {person.name}, nothing removed")
                return copy.deepcopy(person)

            removed = person.exemplars.pop(index)
            self._remove_file(removed.sample_image_path)

            self._fix_thumbnail(person)
            person.date_modified = datetime.now()

            self._persist()
            logger.info(f"Removed face {face_id} from {person.name}")
            return copy.deepcopy(person)

    def record_match(self, person_id: str, fingerprint: str) -> Optional[Person]:
        """Count an image in which this person was recognized.

        Each image (by content fingerprint) is counted once per person.

        Returns:
            Copy of the person, or None if unknown
        """
        with self._lock:
            person = self._find(person_id)
            if person is None:
                return None
            if fingerprint in person.matched_fingerprints:
                return copy.deepcopy(person)

            person.matched_fingerprints.append(fingerprint)
            person.image_count += 1
            person.date_modified = datetime.now()
            self._persist()
            return copy.deepcopy(person)

    def __len__(self) -> int:
        with self._lock:
            return len(self._people)

    def __contains__(self, person_id: str) -> bool:
        with self._lock:
            return self._find(person_id) is not None
