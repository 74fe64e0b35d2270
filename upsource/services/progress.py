"""拉取进度通道

ProgressListener 是接收 ProgressEvent 的回调；同一个包的事件按顺序到达，
不同包之间没有顺序保证（并行拉取时来自不同线程）。
"""

from __future__ import annotations

import logging
import threading
from typing import Callable

from upsource.core.models import ProgressEvent, ProgressStatus

logger = logging.getLogger(__name__)

ProgressListener = Callable[[ProgressEvent], None]


def null_listener(event: ProgressEvent) -> None:  # noqa: ARG001
    return None


class ProgressBoard:
    """线程安全的进度看板，每个包只保留最新状态"""

    def __init__(self, on_update: ProgressListener | None = None) -> None:
        self._lock = threading.Lock()
        self._states: dict[str, ProgressEvent] = {}
        self._on_update = on_update

    def __call__(self, event: ProgressEvent) -> None:
        with self._lock:
            previous = self._states.get(event.package_name)
            if previous is not None and previous.status.terminal:
                logger.debug("忽略终态之后的事件: %s -> %s", event.package_name, event.status.value)
                return
            if previous is not None and event.version is None and previous.version:
                event = ProgressEvent(
                    package_name=event.package_name, status=event.status,
                    version=previous.version, error=event.error,
                    from_cache=event.from_cache, skip_reason=event.skip_reason,
                )
            self._states[event.package_name] = event
        if self._on_update is not None:
            self._on_update(event)

    def get(self, package_name: str) -> ProgressEvent | None:
        with self._lock:
            return self._states.get(package_name)

    def snapshot(self) -> dict[str, ProgressEvent]:
        with self._lock:
            return dict(self._states)

    def count(self, status: ProgressStatus) -> int:
        with self._lock:
            return sum(1 for e in self._states.values() if e.status == status)

    @property
    def done(self) -> bool:
        with self._lock:
            return all(e.status.terminal for e in self._states.values())
