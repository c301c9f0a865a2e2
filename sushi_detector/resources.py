"""Scoped per-cycle tensor resources."""

from __future__ import annotations

import threading
from typing import Any, Generic, Iterable, List, Optional, TypeVar

T = TypeVar("T")


class TensorRegistry:
    """生存中のテンソル数を数える。サイクル間では 0 になっていなければならない。"""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._live = 0
        self._acquired = 0

    @property
    def live(self) -> int:
        with self._lock:
            return self._live

    @property
    def acquired(self) -> int:
        with self._lock:
            return self._acquired

    def lease(self, value: T) -> "TensorLease[T]":
        with self._lock:
            self._live += 1
            self._acquired += 1
        return TensorLease(self, value)

    def lease_all(self, values: Iterable[Any]) -> "TensorLeaseGroup":
        return TensorLeaseGroup([self.lease(value) for value in values])

    def _released(self) -> None:
        with self._lock:
            self._live -= 1


class TensorLease(Generic[T]):
    """1サイクルだけ有効なテンソルの所有権。

    ``release`` は何度呼んでも解放は一度だけ行われる。with 文でも使える。
    """

    def __init__(self, registry: TensorRegistry, value: T) -> None:
        self._registry = registry
        self._value: Optional[T] = value
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    @property
    def value(self) -> T:
        if self._released:
            raise RuntimeError("tensor lease already released")
        return self._value  # type: ignore[return-value]

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        self._value = None
        self._registry._released()

    def __enter__(self) -> "TensorLease[T]":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


class TensorLeaseGroup:
    """モデル出力一式をまとめて解放するためのグループ。"""

    def __init__(self, leases: List[TensorLease]) -> None:
        self._leases = leases

    @property
    def values(self) -> List[Any]:
        return [lease.value for lease in self._leases]

    def __len__(self) -> int:
        return len(self._leases)

    def release(self) -> None:
        for lease in self._leases:
            lease.release()

    def __enter__(self) -> "TensorLeaseGroup":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
