"""
Face matching against the registered descriptor gallery.
Nearest neighbour by Euclidean distance under an acceptance threshold.
"""
import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import numpy as np

from attendance.errors import DescriptorError
from attendance.models import FaceCandidate
from .descriptor import DESCRIPTOR_LENGTH, face_distance, parse_descriptor

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE = 0.6


@dataclass(frozen=True)
class MatchResult:
    """Best accepted candidate for a live descriptor."""
    person_id: str
    distance: float

    @property
    def confidence(self) -> float:
        return max(0.0, 1.0 - self.distance)

    def to_dict(self) -> dict:
        return {
            'person_id': self.person_id,
            'distance': self.distance,
            'confidence': self.confidence,
        }


class FaceMatcher:
    """Matches live descriptors against stored ones."""

    def __init__(self, tolerance: Optional[float] = None,
                 distance_fn: Callable[[np.ndarray, np.ndarray], float] = face_distance):
        if tolerance is None:
            try:
                from utils.config import config
                tolerance = config.face.tolerance
            except ImportError:
                tolerance = DEFAULT_TOLERANCE
        self.tolerance = tolerance
        self.distance_fn = distance_fn

        # person_id -> stored text and parsed descriptor
        self._gallery: Dict[str, Tuple[str, np.ndarray]] = {}
        self._rejected: Dict[str, str] = {}

        self.matching_times: List[float] = []
        self.recognition_history: List[dict] = []

    def load_candidates(self, candidates: Iterable[FaceCandidate]) -> int:
        """Replace the gallery, parsing each stored descriptor once.

        Returns:
            Number of usable descriptors.
        """
        gallery: Dict[str, Tuple[str, np.ndarray]] = {}
        rejected: Dict[str, str] = {}
        for candidate in candidates:
            try:
                descriptor = self._parse(candidate)
            except DescriptorError as e:
                logger.warning(f"Skipping stored descriptor for {candidate.id}: {e}")
                rejected[candidate.id] = str(e)
                continue
            gallery[candidate.id] = (candidate.face_descriptor_json, descriptor)

        self._gallery = gallery
        self._rejected = rejected
        logger.info(f"Face gallery loaded: {len(gallery)} usable, {len(rejected)} rejected")
        return len(gallery)

    def _parse(self, candidate: FaceCandidate) -> np.ndarray:
        cached = self._gallery.get(candidate.id)
        if cached is not None and cached[0] == candidate.face_descriptor_json:
            return cached[1]
        return parse_descriptor(candidate.face_descriptor_json, DESCRIPTOR_LENGTH)

    def _iter_descriptors(self, candidates: Optional[Iterable[FaceCandidate]]):
        if candidates is None:
            for person_id, (_, descriptor) in self._gallery.items():
                yield person_id, descriptor
            return

        for candidate in candidates:
            try:
                yield candidate.id, self._parse(candidate)
            except DescriptorError as e:
                logger.warning(f"Skipping stored descriptor for {candidate.id}: {e}")

    def match(self, encoding: np.ndarray,
              candidates: Optional[Iterable[FaceCandidate]] = None) -> Optional[MatchResult]:
        """Return the closest candidate under the tolerance, or None for unknown.

        A candidate replaces the current best only when its distance is
        strictly lower than the best so far and strictly lower than the
        tolerance. Uses the loaded gallery when ``candidates`` is None.
        """
        start_time = time.time()
        encoding = np.asarray(encoding, dtype=np.float64)

        best_id: Optional[str] = None
        best_distance = float('inf')

        for person_id, descriptor in self._iter_descriptors(candidates):
            try:
                distance = self.distance_fn(encoding, descriptor)
            except DescriptorError as e:
                logger.warning(f"Cannot compare with {person_id}: {e}")
                continue

            if distance < best_distance and distance < self.tolerance:
                best_distance = distance
                best_id = person_id

        self.matching_times.append(time.time() - start_time)
        if len(self.matching_times) > 100:
            self.matching_times = self.matching_times[-100:]

        if best_id is None:
            return None

        result = MatchResult(person_id=best_id, distance=best_distance)
        self.recognition_history.append({
            'timestamp': time.time(),
            'person_id': best_id,
            'distance': best_distance,
            'confidence': result.confidence,
        })
        if len(self.recognition_history) > 1000:
            self.recognition_history = self.recognition_history[-1000:]

        logger.debug(f"Face matched: {best_id} (distance: {best_distance:.3f})")
        return result

    @property
    def gallery_size(self) -> int:
        return len(self._gallery)

    def get_recognition_statistics(self) -> Dict:
        """Get matching performance statistics."""
        avg_matching_time = float(np.mean(self.matching_times)) if self.matching_times else 0.0
        return {
            'gallery_size': len(self._gallery),
            'rejected_descriptors': len(self._rejected),
            'average_matching_time_ms': avg_matching_time * 1000,
            'tolerance': self.tolerance,
            'recognitions': len(self.recognition_history),
        }
