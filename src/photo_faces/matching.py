"""Nearest-neighbour matching of face embeddings against known persons.

Matching is exact cosine similarity over every exemplar of every
candidate. The search sits behind ``BaseMatchIndex`` so an approximate
index can replace the brute-force one without changing callers.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .exceptions import ConfigurationError
from .types import Person

logger = logging.getLogger(__name__)

# Norms below this are treated as zero vectors
_EPSILON = 1e-10
# Decimal places kept in similarities so identical vectors score exactly 1.0
_SIMILARITY_DECIMALS = 12


@dataclass
class Match:
    """Best matching person for a query embedding."""

    person: Person
    confidence: float


def _as_vector(embedding: Sequence[float]) -> np.ndarray:
    return np.asarray(embedding, dtype=np.float64).ravel()


class BaseMatchIndex(ABC):
    """Abstract index over the exemplars of a fixed set of persons."""

    @property
    @abstractmethod
    def dim(self) -> Optional[int]:
        """Embedding length, None for an empty index."""

    @abstractmethod
    def __len__(self) -> int:
        """Number of searchable exemplars."""

    @abstractmethod
    def search(self, embedding: Sequence[float]) -> Optional[Tuple[Person, float]]:
        """Return the best (person, similarity) pair, or None."""

    @abstractmethod
    def scores(self, embedding: Sequence[float]) -> List[Tuple[Person, float]]:
        """Return the best similarity per person, in candidate order."""


class BruteForceIndex(BaseMatchIndex):
    """Exact search using one matrix product per query."""

    def __init__(self, candidates: Sequence[Person]):
        self._persons: List[Person] = []
        owners: List[int] = []
        rows: List[np.ndarray] = []
        dim: Optional[int] = None

        for person in candidates:
            if not person.exemplars:
                continue
            person_index = len(self._persons)
            self._persons.append(person)

            for exemplar in person.exemplars:
                vector = _as_vector(exemplar.embedding)
                if dim is None:
                    dim = vector.shape[0]
                elif vector.shape[0] != dim:
                    raise ConfigurationError(
                        f"Exemplar {exemplar.face_id} of {person.name} has length "
                        f"{vector.shape[0]}, expected {dim}",
                        field="embedding",
                    )

                norm = np.linalg.norm(vector)
                if not np.isfinite(norm) or norm < _EPSILON:
                    logger.debug(f"Skipping degenerate exemplar {exemplar.face_id} of {person.name}")
                    continue
                rows.append(vector / norm)
                owners.append(person_index)

        self._dim = dim
        self._owners = np.asarray(owners, dtype=np.int64)
        if rows:
            self._matrix = np.vstack(rows)
        else:
            self._matrix = np.empty((0, dim or 0), dtype=np.float64)

    @property
    def dim(self) -> Optional[int]:
        return self._dim

    def __len__(self) -> int:
        return self._matrix.shape[0]

    def _similarities(self, embedding: Sequence[float]) -> Optional[np.ndarray]:
        query = _as_vector(embedding)
        if self._dim is not None and query.shape[0] != self._dim:
            raise ConfigurationError(
                f"Embedding length {query.shape[0]} does not match exemplar length {self._dim}",
                field="embedding",
            )
        if len(self) == 0:
            return None

        norm = np.linalg.norm(query)
        if not np.isfinite(norm) or norm < _EPSILON:
            return None

        sims = self._matrix @ (query / norm)
        return np.clip(np.round(sims, _SIMILARITY_DECIMALS), -1.0, 1.0)

    def search(self, embedding: Sequence[float]) -> Optional[Tuple[Person, float]]:
        sims = self._similarities(embedding)
        if sims is None:
            return None
        # argmax returns the first maximum: candidate order, then exemplar order
        best = int(np.argmax(sims))
        return self._persons[self._owners[best]], float(sims[best])

    def scores(self, embedding: Sequence[float]) -> List[Tuple[Person, float]]:
        sims = self._similarities(embedding)
        if sims is None:
            return []
        best = np.full(len(self._persons), -np.inf)
        np.maximum.at(best, self._owners, sims)
        return [
            (person, float(score))
            for person, score in zip(self._persons, best)
            if np.isfinite(score)
        ]


class MatchEngine:
    """Matches face embeddings to persons above a similarity threshold."""

    def __init__(self, threshold: float = 0.6):
        """Initialize match engine.

        Args:
            threshold: Minimum cosine similarity for a match (-1.0 to 1.0)
        """
        self.threshold = threshold

    def build_index(self, candidates: Sequence[Person]) -> BaseMatchIndex:
        """Build a search index over the candidates' exemplars.

        Persons without exemplars are never matched.
        """
        return BruteForceIndex(candidates)

    def match_index(
        self,
        index: BaseMatchIndex,
        embedding: Sequence[float],
        threshold: Optional[float] = None,
    ) -> Optional[Match]:
        """Find the best match in a prebuilt index.

        Args:
            index: Index from build_index
            embedding: Query embedding
            threshold: Overrides the engine threshold for this query

        Raises:
            ConfigurationError: Embedding length differs from the exemplars
        """
        found = index.search(embedding)
        if found is None:
            return None

        person, similarity = found
        if similarity < (self.threshold if threshold is None else threshold):
            return None
        return Match(person=person, confidence=similarity)

    def match(self, embedding: Sequence[float], candidates: Sequence[Person]) -> Optional[Match]:
        """Find the best matching person for an embedding.

        Returns:
            Match, or None if no exemplar reaches the threshold
        """
        return self.match_index(self.build_index(candidates), embedding)

    def rank(
        self,
        embedding: Sequence[float],
        candidates: Sequence[Person],
        limit: int = 5,
    ) -> List[Match]:
        """Best similarity per person, highest first, ignoring the threshold."""
        scored = self.build_index(candidates).scores(embedding)
        scored.sort(key=lambda item: item[1], reverse=True)
        return [Match(person=p, confidence=s) for p, s in scored[:limit]]
