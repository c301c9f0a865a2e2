"""Explicit state shared across detection cycles."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from .camera import CameraManager
from .config import DetectorConfig
from .model import ModelHandle
from .pipeline import FrameBuffer
from .resources import TensorRegistry


@dataclass
class DetectorState:
    """検出ループが使う状態をまとめたもの。各コンポーネントへ明示的に渡す。"""

    config: DetectorConfig
    camera: CameraManager
    buffer: FrameBuffer
    model: Optional[ModelHandle] = None
    registry: TensorRegistry = field(default_factory=TensorRegistry)
    torn_down: bool = False

    @classmethod
    def create(cls, config: DetectorConfig, camera: CameraManager) -> "DetectorState":
        width = config.frame_width or config.frame_height or 1
        height = config.frame_height or config.frame_width or 1
        return cls(config=config, camera=camera, buffer=FrameBuffer(width, height))

    @property
    def ready(self) -> bool:
        return not self.torn_down and self.model is not None and self.camera.ready

    def teardown(self) -> None:
        self.torn_down = True
        self.camera.close()
