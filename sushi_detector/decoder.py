"""Decoding of raw detection-model outputs into Detection records."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, List, Sequence

import numpy as np

from .config import BOX_TENSOR_INDEX, CLASS_TENSOR_INDEX, SCORE_THRESHOLD, SCORE_TENSOR_INDEX
from .errors import DecodeError
from .labels import LabelTable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BoundingBox:
    x: float
    y: float
    width: float
    height: float


@dataclass(frozen=True)
class Detection:
    class_id: int
    label: str
    score: float
    box: BoundingBox


class DetectionDecoder:
    """モデル出力（0=クラス, 1=ボックス, 4=スコア）から Detection を組み立てる。

    Args:
        labels: クラス番号を名前に変換するラベル表。
        threshold: このスコアを「超えた」スロットのみ採用する。
    """

    def __init__(self, labels: LabelTable, threshold: float = SCORE_THRESHOLD) -> None:
        self.labels = labels
        self.threshold = threshold

    def decode(self, outputs: Sequence[Any], width: int, height: int) -> List[Detection]:
        classes = self._vector(outputs, CLASS_TENSOR_INDEX, "classes")
        scores = self._vector(outputs, SCORE_TENSOR_INDEX, "scores")
        boxes = self._boxes(outputs)

        if len(classes) < len(scores) or len(boxes) < len(scores):
            raise DecodeError(
                f"slot count mismatch: classes={len(classes)} boxes={len(boxes)} scores={len(scores)}"
            )

        detections: List[Detection] = []
        for i, score in enumerate(scores):
            if not score > self.threshold:
                continue
            try:
                class_id = self.labels.index_for(classes[i])
            except DecodeError as exc:
                logger.warning("skipping slot %d: %s", i, exc)
                continue
            y1, x1, y2, x2 = (float(v) for v in boxes[i])
            detections.append(
                Detection(
                    class_id=class_id,
                    label=self.labels[class_id],
                    score=float(score),
                    box=BoundingBox(
                        x=x1 * width,
                        y=y1 * height,
                        width=(x2 - x1) * width,
                        height=(y2 - y1) * height,
                    ),
                )
            )
        return detections

    @staticmethod
    def _tensor(outputs: Sequence[Any], index: int, name: str) -> np.ndarray:
        try:
            return np.asarray(outputs[index], dtype=np.float64)
        except IndexError as exc:
            raise DecodeError(f"model output has no {name} tensor at index {index}") from exc
        except (TypeError, ValueError) as exc:
            raise DecodeError(f"{name} tensor at index {index} is not numeric: {exc}") from exc

    def _vector(self, outputs: Sequence[Any], index: int, name: str) -> np.ndarray:
        tensor = self._tensor(outputs, index, name)
        if tensor.ndim == 2 and tensor.shape[0] == 1:
            tensor = tensor[0]
        if tensor.ndim != 1:
            raise DecodeError(f"{name} tensor has unexpected shape {tensor.shape}")
        return tensor

    def _boxes(self, outputs: Sequence[Any]) -> np.ndarray:
        tensor = self._tensor(outputs, BOX_TENSOR_INDEX, "boxes")
        if tensor.ndim == 3 and tensor.shape[0] == 1:
            tensor = tensor[0]
        if tensor.ndim != 2 or tensor.shape[1] != 4:
            raise DecodeError(f"boxes tensor has unexpected shape {tensor.shape}")
        return tensor
