"""Fixed-interval scheduler driving the capture/infer/decode/render cycle."""

from __future__ import annotations

import asyncio
import contextlib
import enum
import logging
from contextlib import ExitStack
from dataclasses import dataclass
from typing import Callable, List, Optional

from .decoder import Detection, DetectionDecoder
from .errors import InferenceError
from .pipeline import FrameBuffer, FrameSampler
from .renderer import render
from .state import DetectorState

logger = logging.getLogger(__name__)

FrameCallback = Callable[[FrameBuffer, List[Detection]], None]


class SchedulerStatus(enum.Enum):
    IDLE = "idle"
    ARMED = "armed"
    RUNNING = "running"


@dataclass
class CycleStats:
    cycles: int = 0
    failed_cycles: int = 0
    skipped_ticks: int = 0  # 前サイクルの推論中に来たティック
    idle_ticks: int = 0  # モデル未ロード・カメラ未準備のティック
    detections: int = 0


class Scheduler:
    """一定周期でサイクルを起動する。推論中のティックはキューに積まず捨てる。

    Args:
        state: 検出ループの共有状態。
        sampler: フレーム取得とテンソル生成。
        decoder: モデル出力のデコーダ。
        interval_s: ティック周期（秒）。None なら設定値を使う。
        on_frame: 描画完了ごとに呼ばれるコールバック。
    """

    def __init__(
        self,
        state: DetectorState,
        sampler: FrameSampler,
        decoder: DetectionDecoder,
        interval_s: Optional[float] = None,
        on_frame: Optional[FrameCallback] = None,
    ) -> None:
        self.state = state
        self.sampler = sampler
        self.decoder = decoder
        self.interval_s = interval_s if interval_s is not None else state.config.interval_s
        self.on_frame = on_frame
        self.stats = CycleStats()

        self._timer: Optional[asyncio.Task] = None
        self._cycle: Optional[asyncio.Task] = None
        self._in_flight = False

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def status(self) -> SchedulerStatus:
        if not self.state.ready:
            return SchedulerStatus.IDLE
        if self._in_flight:
            return SchedulerStatus.RUNNING
        return SchedulerStatus.ARMED

    def start(self) -> None:
        if self._timer is not None:
            return
        self._timer = asyncio.get_running_loop().create_task(self._run_timer(), name="detection-timer")
        logger.debug("scheduler started (interval=%.3fs)", self.interval_s)

    async def _run_timer(self) -> None:
        loop = asyncio.get_running_loop()
        next_tick = loop.time()
        while True:
            next_tick += self.interval_s
            now = loop.time()
            if next_tick < now:
                # 停止していた間のティックはまとめて発火させない
                next_tick = now
            await asyncio.sleep(next_tick - now)
            self.tick()

    def tick(self) -> Optional[asyncio.Task]:
        """1ティック分の処理。サイクルを開始した場合はそのタスクを返す。"""
        if not self.state.ready:
            self.stats.idle_ticks += 1
            return None
        if self._in_flight:
            self.stats.skipped_ticks += 1
            logger.debug("tick skipped: previous cycle still in flight")
            return None

        self._in_flight = True
        self._cycle = asyncio.get_running_loop().create_task(self._guarded_cycle())
        return self._cycle

    async def _guarded_cycle(self) -> List[Detection]:
        try:
            return await self.run_cycle()
        finally:
            self._in_flight = False

    async def run_cycle(self) -> List[Detection]:
        """capture → infer → decode → render → release を順に行う。

        失敗はこのサイクル内で処理し、次のティックには影響させない。
        テンソルはどの経路で抜けても一度だけ解放される。
        """
        state = self.state
        model = state.model
        if model is None:
            return []

        try:
            if not await self.sampler.capture_async(state.camera, state.buffer):
                logger.debug("no frame available from camera")
                return []
            width, height = state.buffer.size

            with ExitStack() as stack:
                frame_tensor = stack.enter_context(self.sampler.to_tensor(state.buffer, state.registry))
                try:
                    raw_outputs = await model.execute_async(frame_tensor.value)
                finally:
                    frame_tensor.release()
                outputs = stack.enter_context(state.registry.lease_all(raw_outputs))

                if state.torn_down:
                    logger.debug("discarding cycle result after teardown")
                    return []

                detections = self.decoder.decode(outputs.values, width, height)
                render(state.buffer, detections)
            if self.on_frame is not None:
                self.on_frame(state.buffer, detections)
        except InferenceError as exc:
            self.stats.failed_cycles += 1
            logger.warning("detection cycle failed: %s", exc)
            return []
        except Exception:
            self.stats.failed_cycles += 1
            logger.exception("unexpected error in detection cycle")
            return []

        self.stats.cycles += 1
        self.stats.detections += len(detections)
        return detections

    async def stop(self, wait: bool = True) -> None:
        """タイマーを止める。推論中のサイクルは完了させるが結果は捨てる。"""
        self.state.torn_down = True
        timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await timer
        cycle = self._cycle
        if wait and cycle is not None and not cycle.done():
            await cycle
        logger.debug("scheduler stopped (%s)", self.stats)
