"""
Match Selector Module

Finds the registered identity whose face best matches a candidate and
applies the acceptance threshold.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional, Sequence

import config
from models.face_comparator import FaceComparator, FaceRepresentation

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegistryEntry:
    """A registered identity and its stored face representation"""
    identity: Any
    representation: FaceRepresentation


@dataclass(frozen=True)
class MatchResult:
    """
    Best match for a candidate.

    ``identity`` is None when nobody cleared the threshold; ``confidence``
    still reports the best score seen, for diagnostics.
    """
    identity: Optional[Any]
    confidence: float

    @property
    def is_match(self) -> bool:
        return self.identity is not None


class MatchSelector:
    """
    Linear scan over the registry.

    Every entry is scored (no early exit). A later entry replaces the
    current best only with a strictly greater score, so ties go to the
    earliest registered identity.
    """

    def __init__(self, comparator: FaceComparator, threshold: float = None):
        self.comparator = comparator
        self.threshold = config.MATCH_THRESHOLD if threshold is None else threshold

    def select(
        self,
        candidate: FaceRepresentation,
        registry: Sequence[RegistryEntry],
        threshold: float = None
    ) -> MatchResult:
        """
        Match a candidate against the registry.

        Args:
            candidate: Representation of the captured face
            registry: Entries in registration order
            threshold: Acceptance threshold (uses the selector default if None)

        Returns:
            MatchResult with the identity, or identity=None below threshold
        """
        if threshold is None:
            threshold = self.threshold

        if not registry:
            return MatchResult(identity=None, confidence=0.0)

        best_identity = None
        best_score = -1.0

        for entry in registry:
            score = self.comparator.compare(candidate, entry.representation)
            if score > best_score:
                best_score = score
                best_identity = entry.identity

        if best_score >= threshold:
            logger.info("Best match %s (confidence=%.3f)", best_identity, best_score)
            return MatchResult(identity=best_identity, confidence=best_score)

        logger.info(
            "No match above threshold %.2f (best=%.3f over %d faces)",
            threshold, best_score, len(registry)
        )
        return MatchResult(identity=None, confidence=best_score)
