"""Real-time sushi detection on a live camera feed."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
import sys
from pathlib import Path
from typing import List, Optional, Sequence

import cv2

from sushi_detector.camera import CameraBackend, CameraManager, CameraSelector, OpenCVCameraBackend
from sushi_detector.config import (
    DEFAULT_FRAME_HEIGHT,
    DEFAULT_FRAME_WIDTH,
    DEFAULT_MODEL_PATH,
    DETECTION_INTERVAL_S,
    FACING_MODES,
    SCORE_THRESHOLD,
    DetectorConfig,
)
from sushi_detector.decoder import DetectionDecoder
from sushi_detector.errors import CameraAccessError
from sushi_detector.labels import DEFAULT_CLASS_OFFSET, LabelTable
from sushi_detector.model import load_model_async
from sushi_detector.pipeline import FrameSampler
from sushi_detector.scheduler import Scheduler
from sushi_detector.state import DetectorState

logger = logging.getLogger(__name__)

DISPLAY_INTERVAL_S = 1.0 / 30.0
KEY_QUIT = (27, ord("q"))
KEY_TOGGLE_FACING = ord("c")
KEY_NEXT_DEVICE = ord("n")


def setup_logging(debug: bool = False) -> None:
    """ログの設定を行う"""

    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="[%(asctime)s] %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
    )


class SushiDetector:
    """カメラ・モデル・スケジューラを組み合わせ、検出結果をウィンドウに表示する。

    Args:
        config: 検出設定。
        backend: カメラバックエンド。None の場合は OpenCV を使う。
    """

    def __init__(self, config: DetectorConfig, backend: Optional[CameraBackend] = None) -> None:
        config.validate()
        self.config = config
        self.window_name = config.window_name

        if backend is None:
            requested = None
            if config.frame_width is not None and config.frame_height is not None:
                requested = (config.frame_width, config.frame_height)
            backend = OpenCVCameraBackend(frame_size=requested)
        self.camera = CameraManager(backend)
        self.state = DetectorState.create(config, self.camera)
        self.sampler = FrameSampler(config.frame_width, config.frame_height)
        self.decoder = DetectionDecoder(
            LabelTable(config.labels, offset=config.class_offset),
            threshold=config.score_threshold,
        )
        self.scheduler = Scheduler(self.state, self.sampler, self.decoder)
        self._stop_requested = asyncio.Event()

    def initial_selector(self) -> CameraSelector:
        if self.config.device_id is not None:
            return CameraSelector.device(self.config.device_id)
        if self.config.facing_mode is not None:
            return CameraSelector.facing(self.config.facing_mode)
        if self.config.prefer is not None:
            return CameraSelector.heuristic(self.config.prefer)
        return CameraSelector.default()

    async def open_camera(self, selector: CameraSelector) -> bool:
        """カメラを開き（または切り替え）、バッファサイズを合わせる。失敗しても処理は続ける。

        VideoCapture の open はブロックするためワーカースレッドで行う。
        """
        try:
            stream = await asyncio.to_thread(self.camera.switch, selector)
        except CameraAccessError as exc:
            logger.error("Failed to access the camera: %s", exc)
            self.state.buffer.clear()
            return False
        try:
            self.sampler.configure(self.state.buffer, stream.native_size)
        except ValueError as exc:
            logger.warning("keeping frame buffer at %dx%d: %s", *self.state.buffer.size, exc)
        return True

    async def toggle_facing(self) -> bool:
        current = self.camera.selector.facing_mode
        mode = "user" if current == "environment" else "environment"
        return await self.open_camera(CameraSelector.facing(mode))

    async def next_device(self) -> bool:
        devices = self.camera.list_devices()
        if not devices:
            logger.info("no cameras enumerated")
            return False
        ids: List[str] = [device.device_id for device in devices]
        # 開けなかったデバイスも次の位置の基準にする
        current = self.camera.selector.device_id
        index = (ids.index(current) + 1) % len(ids) if current in ids else 0
        return await self.open_camera(CameraSelector.device(ids[index]))

    async def handle_key(self, key: int) -> None:
        if key in KEY_QUIT:
            self.request_stop()
        elif key == KEY_TOGGLE_FACING:
            await self.toggle_facing()
        elif key == KEY_NEXT_DEVICE:
            await self.next_device()

    def request_stop(self) -> None:
        self._stop_requested.set()

    async def _load_model(self) -> None:
        model = await load_model_async(self.config.model_path, self.config.output_keys)
        if model is not None and not self.state.torn_down:
            self.state.model = model
            logger.info("Model loaded successfully")

    async def run(self) -> int:
        try:
            cv2.namedWindow(self.window_name, cv2.WINDOW_NORMAL)
        except cv2.error as exc:
            logger.critical("no drawing surface available: %s", exc)
            return 1

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError):
                loop.add_signal_handler(sig, self.request_stop)

        model_task = loop.create_task(self._load_model(), name="model-load")
        await self.open_camera(self.initial_selector())
        self.scheduler.start()
        try:
            while not self._stop_requested.is_set():
                cv2.imshow(self.window_name, self.state.buffer.pixels)
                await self.handle_key(cv2.waitKey(1) & 0xFF)
                await asyncio.sleep(DISPLAY_INTERVAL_S)
        finally:
            await self.scheduler.stop()
            model_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await model_task
            self.state.teardown()
            cv2.destroyAllWindows()
            logger.info(
                "detector stopped: %d cycles, %d failed, %d skipped ticks",
                self.scheduler.stats.cycles,
                self.scheduler.stats.failed_cycles,
                self.scheduler.stats.skipped_ticks,
            )
        return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="カメラ映像から寿司をリアルタイム検出する")
    parser.add_argument("--model", type=Path, default=DEFAULT_MODEL_PATH, help="SavedModel ディレクトリ")
    camera = parser.add_mutually_exclusive_group()
    camera.add_argument("--camera", dest="device_id", default=None, help="使用するカメラ ID（例: 0, /dev/video2）")
    camera.add_argument("--facing", choices=FACING_MODES, default=None, help="カメラの向きを厳密指定")
    camera.add_argument("--prefer", choices=("front", "back"), default=None, help="デバイス名から前面/背面を推定")
    parser.add_argument("--width", type=int, default=DEFAULT_FRAME_WIDTH, help="描画バッファの幅（0 でアスペクト比から算出）")
    parser.add_argument("--height", type=int, default=DEFAULT_FRAME_HEIGHT, help="描画バッファの高さ（0 でアスペクト比から算出）")
    parser.add_argument("--interval", type=float, default=DETECTION_INTERVAL_S, help="検出周期（秒）")
    parser.add_argument("--threshold", type=float, default=SCORE_THRESHOLD, help="採用するスコアの閾値")
    parser.add_argument("--class-offset", type=int, default=DEFAULT_CLASS_OFFSET, help="クラス番号からラベル表への補正値")
    parser.add_argument("--debug", action="store_true", help="デバッグログを出力")
    return parser


def config_from_args(args: argparse.Namespace) -> DetectorConfig:
    return DetectorConfig(
        model_path=args.model,
        frame_width=args.width or None,
        frame_height=args.height or None,
        interval_s=args.interval,
        score_threshold=args.threshold,
        class_offset=args.class_offset,
        device_id=args.device_id,
        facing_mode=args.facing,
        prefer=args.prefer,
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.debug)
    try:
        config = config_from_args(args)
        config.validate()
    except ValueError as exc:
        logger.critical("invalid configuration: %s", exc)
        return 2

    async def _run() -> int:
        detector = SushiDetector(config)
        return await detector.run()

    return asyncio.run(_run())


if __name__ == "__main__":
    sys.exit(main())
