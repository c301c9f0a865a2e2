"""Overlay drawing for accepted detections."""

from __future__ import annotations

from typing import Sequence, Tuple

import cv2

from .decoder import Detection
from .pipeline import FrameBuffer

BOX_COLOR: Tuple[int, int, int] = (0, 0, 255)  # 赤 (BGR)
BOX_THICKNESS = 2
FONT = cv2.FONT_HERSHEY_SIMPLEX
FONT_SCALE = 0.5
TEXT_THICKNESS = 1
TEXT_OFFSET_PX = 10


def format_label(detection: Detection) -> str:
    return f"{detection.label}, Score: {detection.score * 100:.1f}%"


def render(buffer: FrameBuffer, detections: Sequence[Detection]) -> None:
    """映像を描き直してから、各検出の枠とラベルをバッファに描画する。"""
    buffer.pixels[:] = buffer.video
    for detection in detections:
        box = detection.box
        x1, y1 = int(round(box.x)), int(round(box.y))
        x2, y2 = int(round(box.x + box.width)), int(round(box.y + box.height))
        cv2.rectangle(buffer.pixels, (x1, y1), (x2, y2), BOX_COLOR, BOX_THICKNESS)
        cv2.putText(
            buffer.pixels,
            format_label(detection),
            (x1, y1 - TEXT_OFFSET_PX),
            FONT,
            FONT_SCALE,
            BOX_COLOR,
            TEXT_THICKNESS,
            cv2.LINE_AA,
        )
