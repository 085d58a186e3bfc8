"""
Face Comparator Module

Scores the similarity of two face representations in [0, 1].

Two comparators share the same interface:
- SizeRatioComparator: placeholder used while recognition is disabled.
  Its score is derived from payload sizes only and must not be trusted
  as biometric matching.
- EmbeddingComparator: cosine similarity between float32 embedding vectors.

A comparator never raises for a representation it cannot read; the pair
simply scores 0.0 and is treated as "not a match".
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

import numpy as np
from scipy.spatial.distance import cosine

import config

logger = logging.getLogger(__name__)

# Reads a stored representation by its relative path
Reader = Callable[[str], bytes]


@dataclass(frozen=True)
class FaceRepresentation:
    """
    Opaque reference to the data used for comparison.

    Registered faces point at a stored file (``reference``); a fresh capture
    carries its payload in memory (``data``) until it is stored.
    """
    reference: Optional[str] = None
    data: Optional[bytes] = None

    @classmethod
    def from_bytes(cls, data: bytes) -> "FaceRepresentation":
        return cls(data=data)

    @classmethod
    def from_path(cls, reference: str) -> "FaceRepresentation":
        return cls(reference=reference)


class FaceComparator(Protocol):
    """Anything that can score two representations."""

    def compare(self, a: FaceRepresentation, b: FaceRepresentation) -> float:
        ...


def load_payload(representation: FaceRepresentation, reader: Optional[Reader]) -> bytes:
    """Bytes behind a representation, from memory or through the reader."""
    if representation.data is not None:
        return representation.data
    if representation.reference is None:
        raise ValueError("Representation has neither data nor reference")
    if reader is None:
        raise ValueError(f"No reader configured for {representation.reference}")
    return reader(representation.reference)


def bytes_to_embedding(data: bytes, dtype: str = config.EMBEDDING_DTYPE) -> np.ndarray:
    """Decode a raw embedding buffer (e.g. 512 x float32 = 2048 bytes)."""
    if not data:
        raise ValueError("Empty embedding buffer")
    return np.frombuffer(data, dtype=np.dtype(dtype))


def embedding_to_bytes(embedding: np.ndarray, dtype: str = config.EMBEDDING_DTYPE) -> bytes:
    """Encode an embedding vector for storage."""
    return np.asarray(embedding, dtype=np.dtype(dtype)).tobytes()


class SizeRatioComparator:
    """
    Placeholder comparator used when no feature extractor is configured.

    score = 0.2 + 0.6 * min(len(a), len(b)) / max(len(a), len(b))

    Identical sizes score 0.8, so with the default 0.5 threshold almost
    any capture matches someone. Acceptance decisions made with this
    comparator are NOT real face recognition.
    """

    mode = "size_ratio"

    def __init__(self, reader: Optional[Reader] = None):
        self.reader = reader

    def compare(self, a: FaceRepresentation, b: FaceRepresentation) -> float:
        try:
            size_a = len(load_payload(a, self.reader))
            size_b = len(load_payload(b, self.reader))
        except Exception as e:
            logger.warning("Face comparison failed, scoring 0: %s", e)
            return 0.0

        largest = max(size_a, size_b)
        if largest == 0:
            return 0.0

        score = 0.2 + 0.6 * min(size_a, size_b) / largest
        score = min(max(score, 0.0), 1.0)
        logger.debug("Face comparison (simulated): confidence=%.3f", score)
        return score


class EmbeddingComparator:
    """
    Cosine similarity between two embedding vectors, clamped to [0, 1].

    Both payloads must be raw vectors of the same length, as produced by
    embedding_to_bytes().
    """

    mode = "embedding"

    def __init__(self, reader: Optional[Reader] = None, dtype: str = config.EMBEDDING_DTYPE):
        self.reader = reader
        self.dtype = dtype

    def compare(self, a: FaceRepresentation, b: FaceRepresentation) -> float:
        try:
            emb1 = bytes_to_embedding(load_payload(a, self.reader), self.dtype)
            emb2 = bytes_to_embedding(load_payload(b, self.reader), self.dtype)
        except Exception as e:
            logger.warning("Face comparison failed, scoring 0: %s", e)
            return 0.0

        if emb1.shape != emb2.shape:
            logger.warning("Embedding size mismatch: %s vs %s", emb1.shape, emb2.shape)
            return 0.0

        if np.linalg.norm(emb1) == 0 or np.linalg.norm(emb2) == 0:
            return 0.0

        # Cosine similarity (1 - cosine distance)
        similarity = float(1 - cosine(emb1, emb2))
        if not np.isfinite(similarity):
            return 0.0
        return min(max(similarity, 0.0), 1.0)


def create_comparator(recognition_enabled: bool, reader: Optional[Reader] = None) -> FaceComparator:
    """
    Build the comparator for this process.

    Args:
        recognition_enabled: Use embedding comparison instead of the placeholder
        reader: Loads stored representations by relative path

    Returns:
        FaceComparator
    """
    if recognition_enabled:
        logger.info("Face recognition enabled: embedding comparator")
        return EmbeddingComparator(reader)

    logger.warning("Face recognition disabled: using size-ratio placeholder comparator")
    return SizeRatioComparator(reader)
