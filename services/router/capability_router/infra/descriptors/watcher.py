"""描述符热重载：后台轮询搜索路径下的 JSON 文件指纹，变化后重新扫描并替换快照。"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from pathlib import Path

from capability_router.domain.tools.registry import DescriptorStore

logger = logging.getLogger(__name__)

Fingerprint = frozenset[tuple[str, int, int]]


def fingerprint(paths: Iterable[Path]) -> Fingerprint:
    """汇总搜索路径下所有描述符 JSON 的 (路径, mtime, 大小)。"""
    entries: set[tuple[str, int, int]] = set()
    for base in paths:
        if not base.is_dir():
            continue
        for candidate in base.rglob("*.json"):
            try:
                stat = candidate.stat()
            except OSError:
                continue
            entries.add((str(candidate), stat.st_mtime_ns, stat.st_size))
    return frozenset(entries)


class DescriptorWatcher:
    """描述符目录监视器，检测到变化时调用 store.scan()。"""

    def __init__(
        self,
        store: DescriptorStore,
        paths: Iterable[Path],
        *,
        interval_seconds: float = 1.0,
        debounce_seconds: float = 0.1,
        on_reload: Callable[[DescriptorStore], None] | None = None,
    ) -> None:
        self._store = store
        self._paths = list(paths)
        self._interval = interval_seconds
        self._debounce = debounce_seconds
        self._on_reload = on_reload
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._last = fingerprint(self._paths)

    @property
    def running(self) -> bool:
        return self._thread is not None

    def set_on_reload(self, callback: Callable[[DescriptorStore], None] | None) -> None:
        self._on_reload = callback

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="cmp-descriptor-watcher", daemon=True)
        self._thread.start()
        logger.info("hot reload enabled", extra={"event": "registry.watch.started", "payload_preview": [str(p) for p in self._paths]})

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=self._interval * 2)
            self._thread = None

    def check_once(self) -> bool:
        """检测一次指纹变化；变化时等待去抖窗口后重新扫描，返回是否触发了重载。"""
        current = fingerprint(self._paths)
        if current == self._last:
            return False
        # 去抖：等待批量写入结束，以最后一次指纹为准。
        if self._debounce > 0 and self._stop.wait(self._debounce):
            return False
        self._last = fingerprint(self._paths)
        self._store.scan()
        logger.info(
            "descriptors reloaded",
            extra={"event": "registry.watch.reloaded", "payload_preview": {"tools": len(self._store.all_manifests())}},
        )
        if self._on_reload is not None:
            self._on_reload(self._store)
        return True

    def _loop(self) -> None:
        while not self._stop.wait(self._interval):
            try:
                self.check_once()
            except Exception as exc:
                logger.error(
                    "hot reload failed",
                    extra={"event": "registry.watch.failed", "error_type": type(exc).__name__, "error": str(exc)},
                )
