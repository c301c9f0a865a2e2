"""Frame sampling pieces for sushi detection."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Tuple

import cv2
import numpy as np

from .camera import CameraManager
from .resources import TensorLease, TensorRegistry

logger = logging.getLogger(__name__)


class FrameBuffer:
    """最新のカメラフレームと描画先を保持する固定サイズの画素バッファ（BGR）。

    Args:
        width: バッファの幅。
        height: バッファの高さ。
    """

    def __init__(self, width: int, height: int) -> None:
        self.video = np.zeros((height, width, 3), dtype=np.uint8)
        self.pixels = np.zeros((height, width, 3), dtype=np.uint8)

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def size(self) -> Tuple[int, int]:
        return self.width, self.height

    def resize(self, width: int, height: int) -> None:
        if (width, height) == self.size:
            return
        self.video = np.zeros((height, width, 3), dtype=np.uint8)
        self.pixels = np.zeros((height, width, 3), dtype=np.uint8)

    def clear(self) -> None:
        self.video.fill(0)
        self.pixels.fill(0)


def frame_size_for(
    native_size: Tuple[int, int],
    width: Optional[int] = None,
    height: Optional[int] = None,
) -> Tuple[int, int]:
    """バッファサイズを決める。片側のみ指定された場合はカメラのアスペクト比から求める。

    Args:
        native_size: カメラ本来の (幅, 高さ)。不明な場合は (0, 0)。
        width: 固定する幅。
        height: 固定する高さ。
    """
    if width is not None and height is not None:
        return int(width), int(height)
    native_w, native_h = native_size
    if native_w <= 0 or native_h <= 0:
        raise ValueError(f"cannot derive frame size without native dimensions: {native_size}")
    if width is not None:
        return int(width), max(1, round(width * native_h / native_w))
    if height is not None:
        return max(1, round(height * native_w / native_h)), int(height)
    return int(native_w), int(native_h)


class FrameSampler:
    """カメラフレームをバッファに描き込み、モデル入力テンソルを作る。

    Args:
        width: 固定する幅（None ならアスペクト比から算出）。
        height: 固定する高さ（None ならアスペクト比から算出）。
    """

    def __init__(self, width: Optional[int], height: Optional[int]) -> None:
        self.width = width
        self.height = height

    def configure(self, buffer: FrameBuffer, native_size: Tuple[int, int]) -> Tuple[int, int]:
        """ストリームの解像度が分かった時点でバッファサイズを決め直す。"""
        size = frame_size_for(native_size, self.width, self.height)
        buffer.resize(*size)
        logger.debug("frame buffer sized to %dx%d (native %s)", size[0], size[1], native_size)
        return size

    def capture(self, camera: CameraManager, buffer: FrameBuffer) -> bool:
        ret, frame = camera.read()
        return self._store(ret, frame, buffer)

    async def capture_async(self, camera: CameraManager, buffer: FrameBuffer) -> bool:
        """フレームの読み出しだけをワーカースレッドで行い、バッファへの書き込みはループ側で行う。"""
        ret, frame = await asyncio.to_thread(camera.read)
        return self._store(ret, frame, buffer)

    @staticmethod
    def _store(ret: bool, frame: Optional[np.ndarray], buffer: FrameBuffer) -> bool:
        if not ret or frame is None:
            return False
        if frame.shape[1] != buffer.width or frame.shape[0] != buffer.height:
            frame = cv2.resize(frame, buffer.size, interpolation=cv2.INTER_LINEAR)
        buffer.video[:] = frame
        buffer.pixels[:] = frame
        return True

    @staticmethod
    def to_tensor(buffer: FrameBuffer, registry: TensorRegistry) -> TensorLease[np.ndarray]:
        """バッファを (1, H, W, 3) の RGB uint8 テンソルに変換する。"""
        rgb = cv2.cvtColor(buffer.pixels, cv2.COLOR_BGR2RGB)
        return registry.lease(np.expand_dims(rgb, axis=0))
