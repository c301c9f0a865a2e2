"""Runtime configuration for the sushi detector."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple

from .labels import DEFAULT_CLASS_OFFSET, SUSHI_LABELS

DEFAULT_MODEL_PATH = Path("models") / "sushi_saved_model"
DEFAULT_FRAME_WIDTH = 640
DEFAULT_FRAME_HEIGHT = 480
DETECTION_INTERVAL_S = 0.1  # 100ms ごとに検出
SCORE_THRESHOLD = 0.5

# モデル出力の位置契約: 0=クラス, 1=ボックス, 4=スコア
DEFAULT_OUTPUT_KEYS: Tuple[str, ...] = (
    "detection_classes",
    "detection_boxes",
    "num_detections",
    "raw_detection_boxes",
    "detection_scores",
)
CLASS_TENSOR_INDEX = 0
BOX_TENSOR_INDEX = 1
SCORE_TENSOR_INDEX = 4

FACING_MODES = ("user", "environment")


@dataclass
class DetectorConfig:
    """検出ループ全体の設定値。

    Args:
        model_path: SavedModel ディレクトリ。
        frame_width: 描画バッファの幅。None の場合はカメラのアスペクト比から求める。
        frame_height: 描画バッファの高さ。None の場合はカメラのアスペクト比から求める。
        interval_s: 検出サイクルの周期（秒）。
        score_threshold: 検出として採用する最小スコア（この値を超えたもののみ採用）。
        class_offset: モデルのクラス番号からラベル表のインデックスへのオフセット。
        device_id: 明示的に使用するカメラ ID。
        facing_mode: "user" または "environment"。
        prefer: ラベルから推定する "front" または "back"。
    """

    model_path: Path = DEFAULT_MODEL_PATH
    frame_width: Optional[int] = DEFAULT_FRAME_WIDTH
    frame_height: Optional[int] = DEFAULT_FRAME_HEIGHT
    interval_s: float = DETECTION_INTERVAL_S
    score_threshold: float = SCORE_THRESHOLD
    class_offset: int = DEFAULT_CLASS_OFFSET
    labels: Tuple[str, ...] = SUSHI_LABELS
    output_keys: Tuple[str, ...] = field(default_factory=lambda: DEFAULT_OUTPUT_KEYS)
    device_id: Optional[str] = None
    facing_mode: Optional[str] = None
    prefer: Optional[str] = None
    window_name: str = "SushiDetector"

    def validate(self) -> None:
        if self.frame_width is None and self.frame_height is None:
            raise ValueError("at least one of frame_width / frame_height is required")
        for name in ("frame_width", "frame_height"):
            value = getattr(self, name)
            if value is not None and value <= 0:
                raise ValueError(f"{name} must be positive, got {value}")
        if self.interval_s <= 0:
            raise ValueError(f"interval_s must be positive, got {self.interval_s}")
        if not 0.0 <= self.score_threshold <= 1.0:
            raise ValueError(f"score_threshold must be within [0, 1], got {self.score_threshold}")
        if self.facing_mode is not None and self.facing_mode not in FACING_MODES:
            raise ValueError(f"facing_mode must be one of {FACING_MODES}, got {self.facing_mode!r}")
        if self.prefer is not None and self.prefer not in ("front", "back"):
            raise ValueError(f"prefer must be 'front' or 'back', got {self.prefer!r}")
        if len(self.output_keys) <= max(CLASS_TENSOR_INDEX, BOX_TENSOR_INDEX, SCORE_TENSOR_INDEX):
            raise ValueError("output_keys does not cover the class/box/score positions")
