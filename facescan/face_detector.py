#!/usr/bin/env python3
"""
Face Detection Adapter
Wraps the external face detectors behind one async contract:

    await detector.detect(image, min_confidence) -> DetectionFrameResult

Two backends:
- YuNetDetector: OpenCV's YuNet (fast, built-in). Used for the live loop.
- InsightFaceDetector: InsightFace buffalo_s/buffalo_l. Slower, but also
  returns ArcFace embeddings, so it is used for verification.

Bounding boxes and landmarks are normalized to fractions of the frame so the
rest of the engine never deals with pixel coordinates.
"""

import asyncio
import os
import threading
import logging
import urllib.request
from typing import List, Optional, Tuple
from dataclasses import dataclass

import cv2
import numpy as np

from . import config as cfg
from .errors import DetectionError, ModelLoadError
from .frame_capture import StillImage

logger = logging.getLogger(__name__)

# =============================================================================
# DATA STRUCTURES
# =============================================================================

@dataclass(frozen=True, eq=False)
class DetectedFace:
    """One detected face. Coordinates are fractions of frame width/height."""
    x: float
    y: float
    width: float
    height: float
    confidence: float
    landmarks: Optional[Tuple[Tuple[float, float], ...]] = None  # 5 points: eyes, nose, mouth corners
    embedding: Optional[np.ndarray] = None

    @property
    def center(self) -> Tuple[float, float]:
        return (self.x + self.width / 2, self.y + self.height / 2)


@dataclass(frozen=True)
class DetectionFrameResult:
    """All faces found in one frame."""
    faces: Tuple[DetectedFace, ...]
    frame_width: int
    frame_height: int

    @property
    def face_count(self) -> int:
        return len(self.faces)


def _normalize_points(points: np.ndarray, w: int, h: int) -> Tuple[Tuple[float, float], ...]:
    return tuple((float(px) / w, float(py) / h) for px, py in points)


# =============================================================================
# BASE ADAPTER
# =============================================================================

class FaceDetector:
    """
    Base class for detection backends.

    Subclasses implement _load_sync() and _detect_sync(); blocking work runs
    in the default executor so the event loop keeps ticking.
    """

    name = "detector"

    def __init__(self, min_confidence: float = cfg.DETECTION_MIN_CONFIDENCE):
        self.min_confidence = min_confidence
        self._loaded = False
        self._lock = threading.Lock()  # backends are not thread-safe

    @property
    def loaded(self) -> bool:
        return self._loaded

    async def load(self) -> None:
        """Load the model. Raises ModelLoadError on any failure."""
        if self._loaded:
            return
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._load_sync)
        except ModelLoadError:
            raise
        except Exception as e:
            logger.error(f"Failed to load {self.name} model: {e}")
            raise ModelLoadError(f"{self.name}: {e}") from e
        self._loaded = True
        logger.info(f"{self.name} model loaded")

    async def detect(self, image: StillImage, min_confidence: Optional[float] = None) -> DetectionFrameResult:
        """
        Detect faces in an image.

        Args:
            image: Frame to analyse
            min_confidence: Score threshold (defaults to the detector's own)

        Raises:
            DetectionError: on any backend failure
        """
        if not self._loaded:
            raise DetectionError(f"{self.name} model not loaded")
        threshold = self.min_confidence if min_confidence is None else min_confidence
        loop = asyncio.get_running_loop()
        try:
            faces = await loop.run_in_executor(None, self._locked_detect, image.pixels, threshold)
        except DetectionError:
            raise
        except Exception as e:
            raise DetectionError(f"{self.name} detection failed: {e}") from e
        return DetectionFrameResult(faces=tuple(faces), frame_width=image.width, frame_height=image.height)

    def _locked_detect(self, frame: np.ndarray, threshold: float) -> List[DetectedFace]:
        with self._lock:
            return self._detect_sync(frame, threshold)

    def _load_sync(self) -> None:
        raise NotImplementedError

    def _detect_sync(self, frame: np.ndarray, threshold: float) -> List[DetectedFace]:
        raise NotImplementedError


# =============================================================================
# YUNET (OpenCV)
# =============================================================================

class YuNetDetector(FaceDetector):
    """
    YuNet face detector (OpenCV 4.5+).

    Much more accurate than Haar Cascade while still being fast (~5-10ms),
    which makes it suitable for polling a live stream.
    """

    name = "YuNet"

    def __init__(
        self,
        model_path: str = cfg.YUNET_MODEL_PATH,
        min_confidence: float = cfg.DETECTION_MIN_CONFIDENCE,
        model_url: str = cfg.YUNET_MODEL_URL
    ):
        super().__init__(min_confidence)
        self.model_path = model_path
        self.model_url = model_url
        self._detector = None
        self._input_size: Optional[Tuple[int, int]] = None

    def _load_sync(self) -> None:
        # Download model if not exists
        if not os.path.exists(self.model_path):
            logger.info(f"Downloading YuNet model to {self.model_path}...")
            os.makedirs(os.path.dirname(self.model_path), exist_ok=True)
            urllib.request.urlretrieve(self.model_url, self.model_path)
            logger.info("YuNet model downloaded")

        # Score threshold stays low here; callers filter per request
        self._input_size = (640, 480)
        self._detector = cv2.FaceDetectorYN.create(
            self.model_path,
            "",
            self._input_size,
            score_threshold=0.3,
            nms_threshold=0.3,
            top_k=5000
        )

    def _detect_sync(self, frame: np.ndarray, threshold: float) -> List[DetectedFace]:
        h, w = frame.shape[:2]
        if self._input_size != (w, h):
            self._detector.setInputSize((w, h))
            self._input_size = (w, h)

        _, faces = self._detector.detect(frame)
        if faces is None:
            return []

        # Row format: [x, y, w, h, x_re, y_re, x_le, y_le, x_nt, y_nt, x_rcm, y_rcm, x_lcm, y_lcm, score]
        results = []
        for row in faces:
            score = float(row[14])
            if score < threshold:
                continue
            results.append(DetectedFace(
                x=float(row[0]) / w,
                y=float(row[1]) / h,
                width=float(row[2]) / w,
                height=float(row[3]) / h,
                confidence=score,
                landmarks=_normalize_points(np.asarray(row[4:14]).reshape(5, 2), w, h),
            ))
        return results


# =============================================================================
# INSIGHTFACE (ArcFace)
# =============================================================================

class InsightFaceDetector(FaceDetector):
    """InsightFace detector + recognizer. Faces carry 512-dim embeddings."""

    name = "InsightFace"

    def __init__(
        self,
        model_name: str = cfg.INSIGHTFACE_MODEL,
        model_dir: str = cfg.MODEL_DIR,
        min_confidence: float = 0.0,
        det_size: Tuple[int, int] = (640, 640)
    ):
        super().__init__(min_confidence)
        self.model_name = model_name
        self.model_dir = model_dir
        self.det_size = det_size
        self._app = None

    def _load_sync(self) -> None:
        # Suppress InsightFace download messages
        os.environ.setdefault('INSIGHTFACE_LOG_LEVEL', '50')
        from insightface.app import FaceAnalysis

        logger.info(f"Initializing InsightFace model '{self.model_name}' (first run downloads ~100MB)...")
        os.makedirs(self.model_dir, exist_ok=True)

        # CPU only; the scanner runs on kiosks without a GPU
        self._app = FaceAnalysis(
            name=self.model_name,
            root=self.model_dir,
            providers=['CPUExecutionProvider']
        )
        self._app.prepare(ctx_id=-1, det_size=self.det_size)

    def _detect_sync(self, frame: np.ndarray, threshold: float) -> List[DetectedFace]:
        h, w = frame.shape[:2]
        results = []
        for face in self._app.get(frame):
            score = float(face.det_score)
            if score < threshold:
                continue
            x1, y1, x2, y2 = [float(v) for v in face.bbox]
            kps = getattr(face, 'kps', None)
            embedding = getattr(face, 'embedding', None)
            results.append(DetectedFace(
                x=x1 / w,
                y=y1 / h,
                width=(x2 - x1) / w,
                height=(y2 - y1) / h,
                confidence=score,
                landmarks=_normalize_points(kps, w, h) if kps is not None else None,
                embedding=np.asarray(embedding, dtype=np.float32) if embedding is not None else None,
            ))
        return results
