"""Error types raised by the sushi detector components."""

from __future__ import annotations


class DetectorError(Exception):
    """検出システム共通の基底例外。"""


class ModelLoadError(DetectorError):
    """モデルファイルが見つからない、または読み込めない。"""


class CameraAccessError(DetectorError):
    """カメラの権限がない、または利用可能なデバイスがない。"""


class InferenceError(DetectorError):
    """1サイクル分の推論呼び出しが失敗した。"""


class DecodeError(InferenceError):
    """モデル出力のテンソル構成が想定と異なる。"""
