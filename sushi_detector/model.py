"""Model handle wrapping a TensorFlow SavedModel detection graph."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Callable, List, Mapping, Optional, Sequence, Union

import numpy as np

from .config import DEFAULT_OUTPUT_KEYS
from .errors import InferenceError, ModelLoadError

logger = logging.getLogger(__name__)

RawOutputs = Union[Mapping[str, Any], Sequence[Any]]
Runner = Callable[[np.ndarray], RawOutputs]


class ModelHandle:
    """読み込み済み推論グラフ。``execute`` のみを公開する。

    Args:
        runner: 入力テンソルを受け取り、出力を辞書または列で返す呼び出し可能オブジェクト。
        output_keys: 辞書出力を位置付きリストに並べ替えるためのキー順。
        name: ログ表示用の名前。
    """

    def __init__(
        self,
        runner: Runner,
        output_keys: Sequence[str] = DEFAULT_OUTPUT_KEYS,
        name: str = "model",
    ) -> None:
        self._runner = runner
        self.output_keys = tuple(output_keys)
        self.name = name

    @classmethod
    def load(cls, model_path: Union[str, Path], output_keys: Sequence[str] = DEFAULT_OUTPUT_KEYS) -> "ModelHandle":
        """SavedModel を読み込み ``serving_default`` シグネチャを推論に使う。"""
        path = Path(model_path)
        if not path.exists():
            raise ModelLoadError(f"model not found: {path}")

        import tensorflow as tf

        try:
            loaded = tf.saved_model.load(str(path))
            signature = loaded.signatures["serving_default"]
        except (OSError, KeyError, ValueError, tf.errors.OpError) as exc:
            raise ModelLoadError(f"failed to load model {path}: {exc}") from exc

        try:
            input_specs = dict(signature.structured_input_signature[1])
        except (AttributeError, IndexError, TypeError, ValueError) as exc:
            raise ModelLoadError(f"unreadable input signature in {path}: {exc}") from exc
        if len(input_specs) != 1:
            raise ModelLoadError(f"expected a single model input, got {sorted(input_specs)}")
        input_name, input_spec = next(iter(input_specs.items()))

        def _run(tensor: np.ndarray) -> Mapping[str, Any]:
            outputs = signature(**{input_name: tf.convert_to_tensor(tensor, dtype=input_spec.dtype)})
            return {key: value.numpy() for key, value in outputs.items()}

        # loaded への参照を保持しないと変数が解放される
        _run.saved_model = loaded  # type: ignore[attr-defined]
        logger.info("model loaded: %s (input=%s %s)", path, input_name, input_spec.shape)
        return cls(_run, output_keys=output_keys, name=path.name)

    def execute(self, frame_tensor: np.ndarray) -> List[Any]:
        """推論を実行し、位置契約に沿った出力リストを返す。"""
        try:
            outputs = self._runner(frame_tensor)
        except Exception as exc:
            raise InferenceError(f"{self.name}: inference failed: {exc}") from exc
        return self._order_outputs(outputs)

    async def execute_async(self, frame_tensor: np.ndarray) -> List[Any]:
        """推論をワーカースレッドで実行する。"""
        return await asyncio.to_thread(self.execute, frame_tensor)

    def _order_outputs(self, outputs: RawOutputs) -> List[Any]:
        if isinstance(outputs, Mapping):
            missing = [key for key in self.output_keys if key not in outputs]
            if missing:
                raise InferenceError(f"{self.name}: model outputs missing {missing}")
            return [outputs[key] for key in self.output_keys]
        return list(outputs)


async def load_model_async(
    model_path: Union[str, Path],
    output_keys: Sequence[str] = DEFAULT_OUTPUT_KEYS,
) -> Optional[ModelHandle]:
    """起動時に一度だけモデルを非同期で読み込む。失敗してもシステムは止めない。"""
    try:
        return await asyncio.to_thread(ModelHandle.load, model_path, output_keys)
    except ModelLoadError as exc:
        logger.error("Failed to load model: %s", exc)
        return None
    except Exception:
        logger.exception("Failed to load model: %s", model_path)
        return None
