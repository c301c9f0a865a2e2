import numpy as np
import pytest

from sushi_detector import camera as camera_module
from sushi_detector.camera import (
    CameraDevice,
    CameraManager,
    CameraSelector,
    LabelHeuristicStrategy,
    OpenCVCameraBackend,
)
from sushi_detector.errors import CameraAccessError

from tests.conftest import FakeCameraBackend


def test_list_devices_returns_enumerated_cameras(camera, devices):
    assert camera.list_devices() == devices


def test_list_devices_is_empty_when_enumeration_is_denied(devices):
    manager = CameraManager(FakeCameraBackend(devices, deny_enumeration=True))

    assert manager.list_devices() == []


def test_list_devices_ignores_non_video_inputs():
    mic = CameraDevice(device_id="hw:0", label="Microphone", kind="audioinput")
    cam = CameraDevice(device_id="/dev/video0", label="Webcam")
    manager = CameraManager(FakeCameraBackend([mic, cam]))

    assert manager.list_devices() == [cam]


def test_open_by_device_id(camera, backend):
    stream = camera.open(CameraSelector.device("/dev/video2"))

    assert stream.device.device_id == "/dev/video2"
    assert backend.open_tracks == 1
    assert camera.ready


def test_open_by_exact_facing_mode(camera):
    stream = camera.open(CameraSelector.facing("environment"))

    assert stream.device.device_id == "/dev/video2"


def test_unresolved_facing_mode_falls_back_to_default(camera, backend):
    stream = camera.open(CameraSelector.facing("user"))

    assert stream.device is None
    assert backend.opened == [None]


def test_unknown_device_id_falls_back_to_default(camera, backend):
    camera.open(CameraSelector.device("/dev/video9"))

    assert backend.opened == [None]


@pytest.mark.parametrize("role, expected", [("front", "/dev/video0"), ("back", "/dev/video2")])
def test_heuristic_selection_by_label(camera, role, expected):
    stream = camera.open(CameraSelector.heuristic(role))

    assert stream.device.device_id == expected


def test_custom_selection_strategy_is_used(backend):
    class LastDevice:
        def select(self, devices, role):
            return devices[-1]

    manager = CameraManager(backend, strategy=LastDevice())

    assert manager.open(CameraSelector.heuristic("front")).device.device_id == "/dev/video2"


def test_label_heuristic_handles_japanese_labels():
    devices = [CameraDevice("a", "背面カメラ"), CameraDevice("b", "前面カメラ")]
    strategy = LabelHeuristicStrategy()

    assert strategy.select(devices, "back").device_id == "a"
    assert strategy.select(devices, "front").device_id == "b"
    assert strategy.select(devices, "side") is None


def test_switch_round_trip_never_holds_two_streams(camera, backend):
    first = CameraSelector.device("/dev/video0")
    second = CameraSelector.device("/dev/video2")

    original = camera.open(first)
    assert backend.open_tracks == 1

    camera.switch(second)
    assert backend.open_tracks == 1
    assert not original.active

    stream = camera.switch(first)
    assert backend.open_tracks == 1
    assert stream.device.device_id == "/dev/video0"
    assert backend.max_open_tracks == 1
    assert backend.opened == ["/dev/video0", "/dev/video2", "/dev/video0"]


def test_open_failure_surfaces_camera_access_error(devices):
    manager = CameraManager(FakeCameraBackend(devices, fail=True))

    with pytest.raises(CameraAccessError):
        manager.open(CameraSelector.default())
    assert not manager.ready
    assert manager.read() == (False, None)


def test_close_is_idempotent(camera, backend):
    camera.open()
    camera.close()
    camera.close()

    assert backend.open_tracks == 0
    assert not camera.ready


def test_selector_accepts_a_single_constraint():
    with pytest.raises(ValueError):
        CameraSelector(facing_mode="user", device_id="/dev/video0")


class FakeCapture:
    def __init__(self, source, opened: bool) -> None:
        self.source = source
        self.opened = opened
        self.props = {}
        self.released = False

    def isOpened(self) -> bool:
        return self.opened and not self.released

    def set(self, prop, value) -> bool:
        self.props[prop] = value
        return True

    def get(self, prop) -> float:
        return self.props.get(prop, 0)

    def read(self):
        return True, np.zeros((2, 2, 3), dtype=np.uint8)

    def release(self) -> None:
        self.released = True


@pytest.fixture
def captures(monkeypatch):
    """Replaces cv2.VideoCapture; sources listed in ``openable`` open successfully."""
    created = []
    openable = set()

    def factory(source):
        capture = FakeCapture(source, opened=source in openable)
        created.append(capture)
        return capture

    monkeypatch.setattr(camera_module.cv2, "VideoCapture", factory)
    return created, openable


def test_opencv_enumeration_keeps_numbered_video_nodes(monkeypatch):
    nodes = ["/dev/video2", "/dev/video0", "/dev/video-meta", "/dev/videoX"]
    names = {"video0": "Integrated Camera"}
    monkeypatch.setattr(camera_module.glob, "glob", lambda pattern: list(nodes))
    monkeypatch.setattr(camera_module, "_read_sysfs_name", names.get)

    devices = OpenCVCameraBackend().enumerate_devices()

    assert devices == [
        CameraDevice(device_id="/dev/video0", label="Integrated Camera"),
        CameraDevice(device_id="/dev/video2", label="video2"),
    ]


def test_missing_sysfs_name_reads_as_none():
    assert camera_module._read_sysfs_name("video-does-not-exist") is None


@pytest.mark.parametrize("device_id, source", [("2", 2), ("/dev/video2", "/dev/video2")])
def test_capture_source_accepts_index_or_path(device_id, source):
    assert camera_module._capture_source(device_id) == source


def test_opencv_open_configures_requested_size(captures):
    created, openable = captures
    openable.add("/dev/video2")

    stream = OpenCVCameraBackend(frame_size=(1280, 720), fps=30).open(CameraDevice("/dev/video2", "USB Camera"))

    assert stream.native_size == (1280, 720)
    assert created[0].props[camera_module.cv2.CAP_PROP_FPS] == 30
    stream.stop()
    assert created[0].released


def test_opencv_open_failure_raises_camera_access_error(captures):
    with pytest.raises(CameraAccessError):
        OpenCVCameraBackend().open(CameraDevice("/dev/video1", "Metadata"))


def test_default_camera_falls_back_to_video_nodes(captures, monkeypatch):
    created, openable = captures
    openable.add("/dev/video3")
    monkeypatch.setattr(camera_module.glob, "glob", lambda pattern: ["/dev/video1", "/dev/video3"])

    stream = OpenCVCameraBackend().open(None)

    assert [capture.source for capture in created] == [0, "/dev/video1", "/dev/video3"]
    assert stream.read()[0]


def test_default_camera_missing_raises_camera_access_error(captures, monkeypatch):
    monkeypatch.setattr(camera_module.glob, "glob", lambda pattern: ["/dev/video0"])

    with pytest.raises(CameraAccessError):
        OpenCVCameraBackend().open(None)
