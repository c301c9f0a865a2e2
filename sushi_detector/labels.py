"""Label table for the sushi classes."""

from __future__ import annotations

from typing import Sequence, Tuple

from .errors import DecodeError

# 学習時のクラス順: いくら, マグロ, いか, うに, たまご, えび
# cv2.putText は ASCII のみ描画できるためローマ字で保持する。
SUSHI_LABELS: Tuple[str, ...] = ("ikura", "maguro", "ika", "uni", "tamago", "ebi")

# モデルのクラス番号はラベル表のインデックスをそのまま指す。
# TF Object Detection API の 1 始まりのモデルでは 1 を指定する。
DEFAULT_CLASS_OFFSET = 0


class LabelTable:
    """クラスインデックスとラベル名の対応表。

    Args:
        names: 学習時のクラス順に並んだラベル名。
        offset: モデルが出力するクラス番号から引く値。
    """

    def __init__(self, names: Sequence[str] = SUSHI_LABELS, offset: int = DEFAULT_CLASS_OFFSET) -> None:
        if not names:
            raise ValueError("label table must not be empty")
        self._names: Tuple[str, ...] = tuple(names)
        self.offset = int(offset)

    def __len__(self) -> int:
        return len(self._names)

    def __getitem__(self, index: int) -> str:
        return self._names[index]

    @property
    def names(self) -> Tuple[str, ...]:
        return self._names

    def index_for(self, raw_class: float) -> int:
        """モデル出力のクラス番号をテーブルのインデックスに変換する。"""
        index = int(round(float(raw_class))) - self.offset
        if not 0 <= index < len(self._names):
            raise DecodeError(f"class index {raw_class!r} is outside the label table (offset={self.offset})")
        return index

    def resolve(self, raw_class: float) -> str:
        return self._names[self.index_for(raw_class)]
