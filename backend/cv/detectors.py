"""
Object and marker detectors for the capture scanner.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import List

import cv2
import torch
from ultralytics import YOLO

from common.config import MODELS_DIR
from cv.config import (
    AGNOSTIC_NMS,
    CONFIDENCE,
    DEFAULT_OBJECT_MODEL,
    IMAGE_SIZE,
    IOU_THRESHOLD,
    QR_MIN_SIDE_PX,
)
from cv.utils import decode_shared
from scanner.exceptions import DetectionError
from scanner.types import Box, DetectedMarker, DetectedObject, MarkerKind, NormalizedInput

logger = logging.getLogger(__name__)


class YoloObjectDetector:
    """Generic object detector in streaming mode (one call per frame)."""

    DEFAULT_MODEL = DEFAULT_OBJECT_MODEL

    def __init__(
        self,
        model_path: str | None = None,
        confidence: float = CONFIDENCE,
        classify_objects: bool = True,
        multiple_objects: bool = True,
    ):
        self.confidence = confidence
        self.classify_objects = classify_objects
        self.multiple_objects = multiple_objects
        self._use_half = False
        self.model: YOLO | None = self._load_model(model_path)

    def _load_model(self, model_path: str | None) -> YOLO:
        device = "cuda" if torch.cuda.is_available() else "cpu"
        self._use_half = device == "cuda"
        logger.info("[Detector] PyTorch device: %s", device)
        if device == "cuda":
            logger.info("[Detector] CUDA device: %s", torch.cuda.get_device_name(0))

        if model_path:
            path = Path(model_path)
            if path.exists():
                logger.info("[Detector] Loading model from: %s", path)
                return YOLO(str(path))

            models_path = MODELS_DIR / model_path
            if models_path.exists():
                logger.info("[Detector] Loading model from: %s", models_path)
                return YOLO(str(models_path))

        default_path = MODELS_DIR / self.DEFAULT_MODEL
        if default_path.exists():
            logger.info("[Detector] Loading model from: %s", default_path)
            return YOLO(str(default_path))

        # ultralytics downloads known weights on first use
        logger.info("[Detector] Loading default model: %s", self.DEFAULT_MODEL)
        return YOLO(self.DEFAULT_MODEL)

    def detect(self, image: NormalizedInput) -> List[DetectedObject]:
        if self.model is None:
            raise DetectionError("Object detector is closed")

        frame = decode_shared(image)
        results = self.model(
            frame,
            conf=self.confidence,
            iou=IOU_THRESHOLD,
            imgsz=IMAGE_SIZE,
            half=self._use_half,
            agnostic_nms=AGNOSTIC_NMS,
            verbose=False,
        )[0]

        detections: List[DetectedObject] = []
        boxes = results.boxes
        if boxes is None or len(boxes) == 0:
            return detections

        # One device→host transfer for the whole batch of boxes
        xyxy_all = boxes.xyxy.cpu().numpy()
        conf_all = boxes.conf.cpu().numpy()
        cls_all = boxes.cls.cpu().numpy().astype(int)

        for i in range(len(xyxy_all)):
            x1, y1, x2, y2 = (float(v) for v in xyxy_all[i])
            label = None
            if self.classify_objects:
                label = results.names.get(int(cls_all[i]))
            detections.append(DetectedObject(
                box=Box(left=x1, top=y1, right=x2, bottom=y2),
                label=label,
                confidence=float(conf_all[i]),
            ))

        if not self.multiple_objects:
            detections = [max(detections, key=lambda d: d.confidence or 0.0)]
        return detections

    def close(self) -> None:
        self.model = None
        if torch.cuda.is_available():
            torch.cuda.empty_cache()


class QRCodeMarkerDetector:
    """QR-only marker detector backed by OpenCV."""

    kind = MarkerKind.QR_CODE

    def __init__(self, min_side_px: float = QR_MIN_SIDE_PX):
        self.min_side_px = min_side_px
        self._detector: cv2.QRCodeDetector | None = cv2.QRCodeDetector()

    def detect(self, image: NormalizedInput) -> List[DetectedMarker]:
        if self._detector is None:
            raise DetectionError("Marker detector is closed")

        frame = decode_shared(image)
        try:
            found, decoded, points, _ = self._detector.detectAndDecodeMulti(frame)
        except cv2.error as exc:
            raise DetectionError(f"QR detection failed: {exc}") from exc

        markers: List[DetectedMarker] = []
        if not found or points is None:
            return markers

        for value, quad in zip(decoded, points):
            # Candidates OpenCV located but could not read are not markers.
            if not value:
                continue
            box = Box.from_points((float(x), float(y)) for x, y in quad)
            if box.width < self.min_side_px or box.height < self.min_side_px:
                continue
            markers.append(DetectedMarker(box=box, kind=self.kind, value=value))
        return markers

    def close(self) -> None:
        self._detector = None


def get_object_detector(
    confidence: float = CONFIDENCE,
    model_path: str | None = None,
    classify_objects: bool = True,
    multiple_objects: bool = True,
) -> YoloObjectDetector:
    return YoloObjectDetector(
        model_path=model_path,
        confidence=confidence,
        classify_objects=classify_objects,
        multiple_objects=multiple_objects,
    )


def get_marker_detector() -> QRCodeMarkerDetector:
    return QRCodeMarkerDetector()
