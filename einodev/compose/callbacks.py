"""Compile-time callbacks: observers notified with the GraphInfo of every compiled graph."""

from __future__ import annotations

import threading
from typing import Protocol, runtime_checkable


from einodev.compose.types import GraphInfo
from einodev.utils.log import get_logger

logger = get_logger(__name__)


@runtime_checkable
class GraphCompileCallback(Protocol):
    def on_finish(self, info: GraphInfo) -> None:
        ...


_global_lock = threading.Lock()
_global_callbacks: list[GraphCompileCallback] = []


def add_global_compile_callback(callback: GraphCompileCallback) -> None:
    """Install ``callback`` for every later top-level compile in this process."""
    with _global_lock:
        if callback not in _global_callbacks:
            _global_callbacks.append(callback)


def remove_global_compile_callback(callback: GraphCompileCallback) -> None:
    with _global_lock:
        if callback in _global_callbacks:
            _global_callbacks.remove(callback)


def global_compile_callbacks() -> list[GraphCompileCallback]:
    with _global_lock:
        return list(_global_callbacks)


def notify_compiled(info: GraphInfo, callbacks: list[GraphCompileCallback]) -> None:
    for callback in callbacks:
        logger.debug("graph_compiled", graph=info.name, key=info.key, callback=type(callback).__name__)
        callback.on_finish(info)
