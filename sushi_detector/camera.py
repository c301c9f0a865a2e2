"""Camera management utilities for the sushi detector."""

from __future__ import annotations

import glob
import logging
import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Protocol, Sequence, Tuple

import cv2
import numpy as np

from .errors import CameraAccessError

logger = logging.getLogger(__name__)

FRONT_KEYWORDS = ("front", "user", "facetime", "前面", "フロント", "インカメラ")
BACK_KEYWORDS = ("back", "rear", "environment", "背面", "リア", "アウトカメラ")


@dataclass(frozen=True)
class CameraDevice:
    device_id: str
    label: str
    kind: str = "videoinput"
    facing: Optional[str] = None


@dataclass(frozen=True)
class CameraSelector:
    """使用するカメラの指定。いずれか一つだけを設定する（全て None ならデフォルト）。

    Args:
        facing_mode: "user" / "environment" の厳密指定。
        device_id: 明示的なデバイス ID。
        prefer: ラベルから推定する "front" / "back"。
    """

    facing_mode: Optional[str] = None
    device_id: Optional[str] = None
    prefer: Optional[str] = None

    def __post_init__(self) -> None:
        chosen = [v for v in (self.facing_mode, self.device_id, self.prefer) if v is not None]
        if len(chosen) > 1:
            raise ValueError("CameraSelector accepts only one of facing_mode / device_id / prefer")

    @classmethod
    def default(cls) -> "CameraSelector":
        return cls()

    @classmethod
    def facing(cls, mode: str) -> "CameraSelector":
        return cls(facing_mode=mode)

    @classmethod
    def device(cls, device_id: str) -> "CameraSelector":
        return cls(device_id=device_id)

    @classmethod
    def heuristic(cls, role: str) -> "CameraSelector":
        return cls(prefer=role)

    @property
    def is_default(self) -> bool:
        return self.facing_mode is None and self.device_id is None and self.prefer is None


class SelectionStrategy(Protocol):
    def select(self, devices: Sequence[CameraDevice], role: str) -> Optional[CameraDevice]:
        ...


class LabelHeuristicStrategy:
    """デバイス名に含まれる単語から前面/背面カメラを推定する。"""

    def __init__(
        self,
        front_keywords: Sequence[str] = FRONT_KEYWORDS,
        back_keywords: Sequence[str] = BACK_KEYWORDS,
    ) -> None:
        self.keywords = {"front": tuple(front_keywords), "back": tuple(back_keywords)}

    def select(self, devices: Sequence[CameraDevice], role: str) -> Optional[CameraDevice]:
        keywords = self.keywords.get(role)
        if not keywords:
            return None
        for device in devices:
            label = device.label.lower()
            if any(keyword in label for keyword in keywords):
                return device
        return None


class Track(Protocol):
    def stop(self) -> None:
        ...


class ActiveStream:
    """開いているカメラストリーム。複数のトラックを持ちうる。

    Args:
        device: 開いたデバイス（デフォルトカメラの場合は None のこともある）。
        tracks: ストリームを構成するトラック。
        reader: 1フレーム読み出す関数。
        native_size: カメラ本来の (幅, 高さ)。
    """

    def __init__(self, device: Optional[CameraDevice], tracks: Sequence[Track], reader, native_size: Tuple[int, int]) -> None:
        self.device = device
        self.tracks = list(tracks)
        self._reader = reader
        self.native_size = native_size
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def read(self) -> Tuple[bool, Optional[np.ndarray]]:
        if not self._active:
            return False, None
        return self._reader()

    def stop(self) -> None:
        if not self._active:
            return
        for track in self.tracks:
            track.stop()
        self._active = False


class CameraBackend(Protocol):
    def enumerate_devices(self) -> List[CameraDevice]:
        ...

    def open(self, device: Optional[CameraDevice]) -> ActiveStream:
        ...


class _CaptureTrack:
    def __init__(self, cap: cv2.VideoCapture) -> None:
        self.cap = cap

    def stop(self) -> None:
        if self.cap.isOpened():
            self.cap.release()


class OpenCVCameraBackend:
    """OpenCV の VideoCapture を使うバックエンド。

    Args:
        frame_size: 要求するフレームサイズ (幅, 高さ)。
        fps: 要求するフレームレート。
    """

    def __init__(self, frame_size: Optional[Tuple[int, int]] = None, fps: Optional[int] = None) -> None:
        self.frame_size = frame_size
        self.fps = fps

    def enumerate_devices(self) -> List[CameraDevice]:
        devices: List[CameraDevice] = []
        for path in sorted(glob.glob("/dev/video*")):
            name = Path(path).name
            if not name.replace("video", "").isdigit():
                continue
            label = _read_sysfs_name(name) or os.path.basename(path)
            devices.append(CameraDevice(device_id=path, label=label))
        return devices

    def open(self, device: Optional[CameraDevice]) -> ActiveStream:
        if device is None:
            cap = self._open_default()
        else:
            cap = cv2.VideoCapture(_capture_source(device.device_id))
            if not cap.isOpened():
                raise CameraAccessError(f"failed to open camera {device.device_id}")
        self._configure(cap)
        native_size = (
            int(cap.get(cv2.CAP_PROP_FRAME_WIDTH) or 0),
            int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT) or 0),
        )
        return ActiveStream(device, [_CaptureTrack(cap)], cap.read, native_size)

    def _open_default(self) -> cv2.VideoCapture:
        cap = cv2.VideoCapture(0)
        if cap.isOpened():
            return cap

        logger.warning("default camera (index 0) not available; probing /dev/video*")
        for path in glob.glob("/dev/video*"):
            fallback = cv2.VideoCapture(path)
            if fallback.isOpened():
                logger.info("camera found: %s", path)
                return fallback
        raise CameraAccessError("no camera available")

    def _configure(self, cap: cv2.VideoCapture) -> None:
        if self.frame_size is not None:
            width, height = self.frame_size
            cap.set(cv2.CAP_PROP_FRAME_WIDTH, width)
            cap.set(cv2.CAP_PROP_FRAME_HEIGHT, height)
        if self.fps is not None:
            cap.set(cv2.CAP_PROP_FPS, self.fps)


def _capture_source(device_id: str):
    return int(device_id) if device_id.isdigit() else device_id


def _read_sysfs_name(node: str) -> Optional[str]:
    sys_name = Path(f"/sys/class/video4linux/{node}/name")
    try:
        text = sys_name.read_text(encoding="utf-8").strip()
    except OSError:
        return None
    return text or None


class CameraManager:
    """カメラの列挙・選択・切り替えを管理する。同時に開くストリームは常に一つ。

    Args:
        backend: デバイス列挙とストリームを開くプラットフォーム実装。
        strategy: 前面/背面をラベルから推定する選択戦略。
    """

    def __init__(self, backend: CameraBackend, strategy: Optional[SelectionStrategy] = None) -> None:
        self.backend = backend
        self.strategy: SelectionStrategy = strategy or LabelHeuristicStrategy()
        self._stream: Optional[ActiveStream] = None
        self.selector: CameraSelector = CameraSelector.default()
        # read はワーカースレッドから呼ばれるため open / close と排他する
        self._lock = threading.RLock()

    @property
    def stream(self) -> Optional[ActiveStream]:
        return self._stream

    @property
    def ready(self) -> bool:
        return self._stream is not None and self._stream.active

    def list_devices(self) -> List[CameraDevice]:
        try:
            devices = self.backend.enumerate_devices()
        except (OSError, cv2.error, CameraAccessError) as exc:
            logger.warning("camera enumeration denied: %s", exc)
            return []
        return [device for device in devices if device.kind == "videoinput"]

    def resolve(self, selector: CameraSelector) -> Optional[CameraDevice]:
        """セレクタをデバイスに解決する。解決できない場合は None（デフォルトカメラ）。"""
        if selector.is_default:
            return None
        devices = self.list_devices()
        device: Optional[CameraDevice] = None
        if selector.facing_mode is not None:
            device = next((d for d in devices if d.facing == selector.facing_mode), None)
        elif selector.device_id is not None:
            device = next((d for d in devices if d.device_id == selector.device_id), None)
        elif selector.prefer is not None:
            device = self.strategy.select(devices, selector.prefer)
        if device is None:
            logger.info("camera selector %s not resolved; using default camera", selector)
        return device

    def open(self, selector: Optional[CameraSelector] = None) -> ActiveStream:
        selector = selector or CameraSelector.default()
        with self._lock:
            self.close()
            device = self.resolve(selector)
            self.selector = selector
            stream = self.backend.open(device)
            self._stream = stream
        logger.info(
            "camera opened: %s (%dx%d)",
            device.label if device else "default",
            *stream.native_size,
        )
        return stream

    def switch(self, selector: CameraSelector) -> ActiveStream:
        """現在のストリームの全トラックを停止してから新しいカメラを開く。"""
        logger.info("switching camera to %s", selector)
        with self._lock:
            self.close()
            return self.open(selector)

    def close(self) -> None:
        with self._lock:
            stream, self._stream = self._stream, None
            if stream is not None:
                stream.stop()
                logger.debug("camera stream stopped")

    def read(self) -> Tuple[bool, Optional[np.ndarray]]:
        with self._lock:
            if self._stream is None:
                return False, None
            return self._stream.read()
