"""Sushi detector component package."""

from .camera import CameraDevice, CameraManager, CameraSelector, LabelHeuristicStrategy
from .config import DetectorConfig
from .decoder import BoundingBox, Detection, DetectionDecoder
from .labels import SUSHI_LABELS, LabelTable
from .model import ModelHandle
from .pipeline import FrameBuffer, FrameSampler
from .scheduler import Scheduler, SchedulerStatus
from .state import DetectorState

__all__ = [
    "CameraDevice",
    "CameraManager",
    "CameraSelector",
    "LabelHeuristicStrategy",
    "DetectorConfig",
    "BoundingBox",
    "Detection",
    "DetectionDecoder",
    "SUSHI_LABELS",
    "LabelTable",
    "ModelHandle",
    "FrameBuffer",
    "FrameSampler",
    "Scheduler",
    "SchedulerStatus",
    "DetectorState",
]
