"""Tests for the face comparison engine."""

import numpy as np
import pytest

from facescan.errors import ComparisonError, DetectionError
from facescan.face_comparison import (
    Diagnostic,
    FaceComparator,
    cosine_similarity,
    landmark_similarity,
)
from tests.fakes import QueueDetector, make_face, make_still

E1 = [1.0, 0.0, 0.0, 0.0]
E2 = [0.0, 1.0, 0.0, 0.0]

LANDMARKS = ((0.45, 0.45), (0.55, 0.45), (0.5, 0.5), (0.46, 0.56), (0.54, 0.56))


def comparator(*responses, **kwargs):
    return FaceComparator(QueueDetector(*responses), **kwargs)


async def compare(comp):
    return await comp.compare(make_still(), make_still())


class TestDiagnostics:

    @pytest.mark.asyncio
    async def test_match(self):
        result = await compare(comparator([make_face(embedding=E1)], [make_face(embedding=E1)]))
        assert result.success
        assert result.diagnostic is Diagnostic.MATCH
        assert result.score == pytest.approx(1.0)
        assert result.message == "Verification Successful!"

    @pytest.mark.asyncio
    async def test_mismatch(self):
        result = await compare(comparator([make_face(embedding=E1)], [make_face(embedding=E2)]))
        assert not result.success
        assert result.diagnostic is Diagnostic.MISMATCH
        assert result.score == pytest.approx(0.0)
        assert result.message == "Verification Failed."

    @pytest.mark.asyncio
    async def test_negative_similarity_reports_zero(self):
        result = await compare(comparator([make_face(embedding=E1)], [make_face(embedding=[-1.0, 0, 0, 0])]))
        assert result.score == 0.0

    @pytest.mark.asyncio
    async def test_no_face_in_reference(self):
        result = await compare(comparator([], [make_face(embedding=E1)]))
        assert result.diagnostic is Diagnostic.NO_FACE_DETECTED
        assert not result.success
        assert result.score == 0.0

    @pytest.mark.asyncio
    async def test_no_face_in_capture(self):
        result = await compare(comparator([make_face(embedding=E1)], []))
        assert result.diagnostic is Diagnostic.NO_FACE_DETECTED

    @pytest.mark.asyncio
    async def test_multiple_faces(self):
        result = await compare(comparator([make_face(embedding=E1)], [make_face(), make_face(cx=0.2)]))
        assert result.diagnostic is Diagnostic.MULTIPLE_FACES_DETECTED
        assert "only one face" in result.message

    @pytest.mark.asyncio
    async def test_no_face_checked_before_multiple(self):
        result = await compare(comparator([make_face(), make_face(cx=0.2)], []))
        assert result.diagnostic is Diagnostic.NO_FACE_DETECTED

    @pytest.mark.asyncio
    async def test_low_detection_confidence_is_mismatch(self):
        comp = comparator(
            [make_face(embedding=E1, confidence=0.95)],
            [make_face(embedding=E1, confidence=0.6)],
            min_detection_score=0.7,
        )
        result = await compare(comp)
        assert result.diagnostic is Diagnostic.MISMATCH
        assert result.confidence == pytest.approx(0.6)

    @pytest.mark.asyncio
    async def test_threshold_is_inclusive(self):
        comp = comparator(
            [make_face(embedding=E1)],
            [make_face(embedding=E1)],
            similarity_threshold=1.0,
        )
        result = await compare(comp)
        assert result.success


class TestFailures:

    @pytest.mark.asyncio
    async def test_detector_failure_raises_comparison_error(self):
        with pytest.raises(ComparisonError):
            await compare(comparator(DetectionError("model crashed")))

    @pytest.mark.asyncio
    async def test_missing_landmarks_and_embeddings(self):
        with pytest.raises(ComparisonError):
            await compare(comparator([make_face()], [make_face()]))

    @pytest.mark.asyncio
    async def test_mismatched_embedding_sizes(self):
        with pytest.raises(ComparisonError):
            await compare(comparator([make_face(embedding=E1)], [make_face(embedding=[1.0, 0.0])]))


class TestSimilarity:

    def test_cosine(self):
        assert cosine_similarity(np.array(E1), np.array(E1)) == pytest.approx(1.0)
        assert cosine_similarity(np.array(E1), np.array(E2)) == pytest.approx(0.0)
        assert cosine_similarity(np.zeros(4), np.array(E1)) == 0.0

    def test_landmarks_identical(self):
        face = make_face(landmarks=LANDMARKS)
        assert landmark_similarity(face, face) == pytest.approx(1.0)

    def test_landmarks_scale_and_position_invariant(self):
        near = make_face(cx=0.5, cy=0.5, width=0.2, height=0.2, landmarks=LANDMARKS)
        # same layout, face box twice as big and shifted
        far_points = tuple((0.3 + (x - 0.4) * 2, 0.3 + (y - 0.4) * 2) for x, y in LANDMARKS)
        far = make_face(cx=0.5, cy=0.5, width=0.4, height=0.4, landmarks=far_points)
        assert landmark_similarity(near, far) == pytest.approx(1.0)

    def test_landmarks_different_layout(self):
        a = make_face(landmarks=LANDMARKS)
        wide = ((0.40, 0.45), (0.60, 0.45), (0.5, 0.52), (0.44, 0.58), (0.56, 0.58))
        b = make_face(landmarks=wide)
        assert landmark_similarity(a, b) < 1.0

    @pytest.mark.asyncio
    async def test_landmark_fallback_used_without_embeddings(self):
        face = make_face(landmarks=LANDMARKS)
        result = await compare(comparator([face], [face]))
        assert result.success
        assert result.score == pytest.approx(1.0)
