"""stdio 传输：在标准输入/输出上按行交换 JSON-RPC 帧，供宿主进程以子进程方式嵌入。"""

from __future__ import annotations

import json
import logging
import sys
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, TextIO

from capability_router.application.dispatch import RpcDispatcher
from capability_router.infra.logging.context import bind_log_context

logger = logging.getLogger(__name__)


class StdioServer:
    """按行读取请求并在线程池中处理，响应按完成顺序逐行写回。

    stdout 只写协议帧；日志一律走文件与 stderr。
    """

    def __init__(
        self,
        dispatcher: RpcDispatcher,
        *,
        input_stream: TextIO | None = None,
        output_stream: TextIO | None = None,
        max_workers: int = 8,
    ) -> None:
        self._dispatcher = dispatcher
        self._input = input_stream or sys.stdin
        self._output = output_stream or sys.stdout
        self._max_workers = max_workers
        self._write_lock = threading.Lock()
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def send(self, message: dict[str, Any]) -> None:
        line = json.dumps(message, ensure_ascii=False)
        with self._write_lock:
            self._output.write(line + "\n")
            self._output.flush()

    def serve_forever(self) -> None:
        """发送 cmp.ready 通知后持续处理，直到输入流结束且在途请求全部完成。"""
        self._running = True
        self.send(self._dispatcher.ready_notification())
        logger.info("stdio server started", extra={"event": "stdio.server.started"})
        try:
            with ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="cmp-stdio") as pool:
                for line in self._input:
                    if not line.strip():
                        continue
                    pool.submit(self._handle_line, line)
        finally:
            self._running = False
            logger.info("stdio server stopped", extra={"event": "stdio.server.stopped"})

    def stop(self) -> None:
        self._running = False
        try:
            self._input.close()
        except OSError:
            pass

    def _handle_line(self, line: str) -> None:
        with bind_log_context(transport="stdio"):
            try:
                response = self._dispatcher.handle_line(line)
                self.send(response)
            except Exception as exc:
                logger.error(
                    "stdio frame failed",
                    extra={"event": "stdio.frame.failed", "error_type": type(exc).__name__, "error": str(exc)},
                )
