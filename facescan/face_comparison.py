#!/usr/bin/env python3
"""
Face Comparison Engine
Decides whether a freshly captured face matches the stored reference.

Both images go through the same detector. When the detector provides
ArcFace embeddings (InsightFace) the score is their cosine similarity;
otherwise it falls back to comparing the normalized 5-point landmark
geometry.
"""

import logging
from enum import Enum
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from . import config as cfg
from .errors import ComparisonError, DetectionError
from .face_detector import DetectedFace, FaceDetector
from .frame_capture import StillImage

logger = logging.getLogger(__name__)

# =============================================================================
# RESULT TYPES
# =============================================================================

class Diagnostic(Enum):
    NO_FACE_DETECTED = "no_face_detected"
    MULTIPLE_FACES_DETECTED = "multiple_faces_detected"
    MISMATCH = "mismatch"
    MATCH = "match"
    COMPARISON_ERROR = "comparison_error"


DIAGNOSTIC_MESSAGES = {
    Diagnostic.NO_FACE_DETECTED: "No face detected in one or both images.",
    Diagnostic.MULTIPLE_FACES_DETECTED: "Multiple faces detected. Please ensure only one face is in the frame.",
    Diagnostic.MISMATCH: "Verification Failed.",
    Diagnostic.MATCH: "Verification Successful!",
    Diagnostic.COMPARISON_ERROR: "An error occurred during verification.",
}


@dataclass(frozen=True)
class VerificationResult:
    success: bool
    score: float
    confidence: float
    diagnostic: Diagnostic

    @property
    def message(self) -> str:
        return DIAGNOSTIC_MESSAGES[self.diagnostic]

    @classmethod
    def failure(cls, diagnostic: Diagnostic) -> "VerificationResult":
        return cls(success=False, score=0.0, confidence=0.0, diagnostic=diagnostic)


# =============================================================================
# SIMILARITY
# =============================================================================

def cosine_similarity(emb1: np.ndarray, emb2: np.ndarray) -> float:
    """
    Compute cosine similarity between two embeddings.

    Returns:
        Similarity score in range [-1, 1], higher = more similar
    """
    norm1 = np.linalg.norm(emb1)
    norm2 = np.linalg.norm(emb2)
    if norm1 == 0 or norm2 == 0:
        return 0.0
    return float(np.dot(emb1, emb2) / (norm1 * norm2))


def _landmark_shape(face: DetectedFace) -> np.ndarray:
    """Landmarks relative to the face box, centered and scaled to unit norm."""
    if face.landmarks is None or face.width <= 0 or face.height <= 0:
        raise ComparisonError("Face has no landmarks to compare")
    points = np.asarray(face.landmarks, dtype=np.float64)
    points = (points - (face.x, face.y)) / (face.width, face.height)
    points -= points.mean(axis=0)
    norm = np.linalg.norm(points)
    if norm == 0:
        raise ComparisonError("Degenerate landmark geometry")
    return (points / norm).ravel()


def landmark_similarity(face1: DetectedFace, face2: DetectedFace) -> float:
    """
    Similarity of two faces' landmark layouts: 1 - distance between their
    normalized shapes, clamped at 0. Identical geometry scores 1.0.
    """
    distance = float(np.linalg.norm(_landmark_shape(face1) - _landmark_shape(face2)))
    return max(0.0, 1.0 - distance)


def face_similarity(face1: DetectedFace, face2: DetectedFace) -> float:
    if face1.embedding is not None and face2.embedding is not None:
        return cosine_similarity(face1.embedding, face2.embedding)
    return landmark_similarity(face1, face2)


# =============================================================================
# COMPARATOR
# =============================================================================

class FaceComparator:
    """
    Compares a reference image with a captured image.

    Usage:
        comparator = FaceComparator(InsightFaceDetector())
        await comparator.load()
        result = await comparator.compare(reference, captured)
    """

    def __init__(
        self,
        detector: FaceDetector,
        similarity_threshold: float = cfg.SIMILARITY_THRESHOLD,
        min_detection_score: float = cfg.MIN_DETECTION_SCORE,
        detection_threshold: Optional[float] = cfg.DETECTION_MIN_CONFIDENCE
    ):
        self.detector = detector
        self.similarity_threshold = similarity_threshold
        self.min_detection_score = min_detection_score
        self.detection_threshold = detection_threshold

    async def load(self) -> None:
        await self.detector.load()

    async def _faces(self, image: StillImage, label: str) -> Tuple[DetectedFace, ...]:
        try:
            result = await self.detector.detect(image, self.detection_threshold)
        except DetectionError as e:
            raise ComparisonError(f"Detection on {label} image failed: {e}") from e
        logger.debug(f"{label}: {result.face_count} face(s)")
        return result.faces

    async def compare(self, reference: StillImage, candidate: StillImage) -> VerificationResult:
        """
        Compare two images.

        Returns:
            VerificationResult (MATCH / MISMATCH / NO_FACE_DETECTED /
            MULTIPLE_FACES_DETECTED)

        Raises:
            ComparisonError: detector or model failure
        """
        ref_faces = await self._faces(reference, "reference")
        cand_faces = await self._faces(candidate, "captured")

        if not ref_faces or not cand_faces:
            return VerificationResult.failure(Diagnostic.NO_FACE_DETECTED)
        if len(ref_faces) > 1 or len(cand_faces) > 1:
            return VerificationResult.failure(Diagnostic.MULTIPLE_FACES_DETECTED)

        ref, cand = ref_faces[0], cand_faces[0]
        try:
            similarity = face_similarity(ref, cand)
        except ComparisonError:
            raise
        except Exception as e:
            raise ComparisonError(f"Similarity computation failed: {e}") from e

        confidence = min(ref.confidence, cand.confidence)
        matched = similarity >= self.similarity_threshold and confidence >= self.min_detection_score

        logger.info(f"Comparison: similarity={similarity:.3f} (threshold {self.similarity_threshold}), "
                    f"confidence={confidence:.3f} -> {'MATCH' if matched else 'MISMATCH'}")

        return VerificationResult(
            success=matched,
            score=max(0.0, similarity),
            confidence=confidence,
            diagnostic=Diagnostic.MATCH if matched else Diagnostic.MISMATCH,
        )
