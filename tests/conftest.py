"""Shared fixtures: fake camera backend and stub detection model."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import numpy as np
import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from sushi_detector.camera import ActiveStream, CameraDevice, CameraManager
from sushi_detector.config import DetectorConfig
from sushi_detector.decoder import DetectionDecoder
from sushi_detector.errors import CameraAccessError
from sushi_detector.labels import LabelTable
from sushi_detector.pipeline import FrameSampler
from sushi_detector.scheduler import Scheduler
from sushi_detector.state import DetectorState


class FakeTrack:
    def __init__(self, backend: "FakeCameraBackend") -> None:
        self.backend = backend
        self.stopped = False

    def stop(self) -> None:
        if self.stopped:
            return
        self.stopped = True
        self.backend.open_tracks -= 1


class FakeCameraBackend:
    """Counts open tracks so tests can check that streams never overlap."""

    def __init__(
        self,
        devices: Sequence[CameraDevice] = (),
        native_size: Tuple[int, int] = (640, 480),
        fail: bool = False,
        deny_enumeration: bool = False,
        fail_on: Sequence[str] = (),
    ) -> None:
        self.devices = list(devices)
        self.native_size = native_size
        self.fail = fail
        self.deny_enumeration = deny_enumeration
        self.fail_on = set(fail_on)
        self.open_tracks = 0
        self.max_open_tracks = 0
        self.opened: List[Optional[str]] = []
        self.attempted: List[Optional[str]] = []

    def enumerate_devices(self) -> List[CameraDevice]:
        if self.deny_enumeration:
            raise OSError("permission denied")
        return list(self.devices)

    def open(self, device: Optional[CameraDevice]) -> ActiveStream:
        if self.fail:
            raise CameraAccessError("permission denied")
        if device is not None and device.device_id in self.fail_on:
            self.attempted.append(device.device_id)
            raise CameraAccessError(f"{device.device_id} is not a capture device")
        self.attempted.append(device.device_id if device else None)
        self.open_tracks += 1
        self.max_open_tracks = max(self.max_open_tracks, self.open_tracks)
        self.opened.append(device.device_id if device else None)
        width, height = self.native_size
        frame = np.full((height, width, 3), 128, dtype=np.uint8)
        return ActiveStream(device, [FakeTrack(self)], lambda: (True, frame.copy()), self.native_size)


def make_outputs(classes: Sequence[float], boxes: Sequence[Sequence[float]], scores: Sequence[float]) -> List[np.ndarray]:
    """Builds a raw output set laid out like the TF detection graph (batch of one)."""
    count = len(scores)
    return [
        np.array([classes], dtype=np.float32),
        np.array([boxes], dtype=np.float32),
        np.array([count], dtype=np.float32),
        np.zeros((1, count, 4), dtype=np.float32),
        np.array([scores], dtype=np.float32),
    ]


class StubModel:
    """Async stand-in for ModelHandle that records concurrent calls."""

    def __init__(self, outputs: Optional[List[np.ndarray]] = None, delay: float = 0.0, error: Optional[Exception] = None) -> None:
        self.outputs = outputs if outputs is not None else make_outputs(
            [0, 2, 5],
            [[0.25, 0.1, 0.75, 0.6], [0.0, 0.0, 0.5, 0.5], [0.1, 0.1, 0.2, 0.2]],
            [0.9, 0.3, 0.6],
        )
        self.delay = delay
        self.error = error
        self.calls = 0
        self.in_flight = 0
        self.max_in_flight = 0
        self.input_shapes: List[Tuple[int, ...]] = []

    async def execute_async(self, tensor: np.ndarray) -> List[np.ndarray]:
        self.calls += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        self.input_shapes.append(tensor.shape)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.error is not None:
                raise self.error
            return [array.copy() for array in self.outputs]
        finally:
            self.in_flight -= 1


@pytest.fixture
def devices() -> List[CameraDevice]:
    return [
        CameraDevice(device_id="/dev/video0", label="Integrated Front Camera"),
        CameraDevice(device_id="/dev/video2", label="USB Rear Camera", facing="environment"),
    ]


@pytest.fixture
def backend(devices) -> FakeCameraBackend:
    return FakeCameraBackend(devices)


@pytest.fixture
def camera(backend) -> CameraManager:
    return CameraManager(backend)


@pytest.fixture
def config() -> DetectorConfig:
    return DetectorConfig(interval_s=0.01)


@pytest.fixture
def state(config, camera) -> DetectorState:
    return DetectorState.create(config, camera)


@pytest.fixture
def decoder(config) -> DetectionDecoder:
    return DetectionDecoder(LabelTable(config.labels, offset=config.class_offset), threshold=config.score_threshold)


@pytest.fixture
def sampler(config) -> FrameSampler:
    return FrameSampler(config.frame_width, config.frame_height)


@pytest.fixture
def scheduler(state, sampler, decoder) -> Scheduler:
    return Scheduler(state, sampler, decoder)
