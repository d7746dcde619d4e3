"""Unix 域套接字传输：长连接上按行交换 JSON-RPC 帧，适合本机进程间通信。"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

from capability_router.application.dispatch import RpcDispatcher
from capability_router.infra.logging.context import bind_log_context

logger = logging.getLogger(__name__)

# 单帧上限，超过时 asyncio 读取会抛出 LimitOverrunError。
MAX_FRAME_BYTES = 4 * 1024 * 1024


class SocketServer:
    """基于 asyncio 的 Unix socket 服务端，每帧请求在工作线程中处理。"""

    def __init__(self, dispatcher: RpcDispatcher, socket_path: Path) -> None:
        self._dispatcher = dispatcher
        self._socket_path = Path(socket_path)
        self._server: asyncio.AbstractServer | None = None

    @property
    def socket_path(self) -> Path:
        return self._socket_path

    async def start(self) -> None:
        """创建套接字目录、清理残留套接字文件并开始监听。"""
        self._socket_path.parent.mkdir(parents=True, exist_ok=True)
        if self._socket_path.exists():
            try:
                self._socket_path.unlink()
            except OSError as exc:
                logger.error(
                    "failed to remove existing socket",
                    extra={"event": "socket.cleanup.failed", "error": str(exc)},
                )
        self._server = await asyncio.start_unix_server(
            self._handle_connection,
            path=str(self._socket_path),
            limit=MAX_FRAME_BYTES,
        )
        logger.info("socket server listening", extra={"event": "socket.server.started", "op": str(self._socket_path)})

    async def serve_forever(self) -> None:
        if self._server is None:
            await self.start()
        assert self._server is not None
        async with self._server:
            await self._server.serve_forever()

    async def close(self) -> None:
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
        if self._socket_path.exists():
            self._socket_path.unlink()

    async def _handle_connection(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        lock = asyncio.Lock()
        pending: set[asyncio.Task[None]] = set()
        try:
            while True:
                try:
                    raw = await reader.readline()
                except (asyncio.LimitOverrunError, ValueError) as exc:
                    logger.warning("socket frame too large", extra={"event": "socket.frame.rejected", "error": str(exc)})
                    break
                if not raw:
                    break
                line = raw.decode("utf-8", errors="replace")
                if not line.strip():
                    continue
                # 同一连接上的请求并发处理，慢命令不阻塞后续请求。
                task = asyncio.create_task(self._respond(line, writer, lock))
                pending.add(task)
                task.add_done_callback(pending.discard)
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
        except ConnectionError as exc:
            logger.warning("socket connection error", extra={"event": "socket.connection.failed", "error": str(exc)})
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except ConnectionError:
                pass

    async def _respond(self, line: str, writer: asyncio.StreamWriter, lock: asyncio.Lock) -> None:
        with bind_log_context(transport="socket"):
            response = await asyncio.to_thread(self._dispatcher.handle_line, line)
        async with lock:
            writer.write((json.dumps(response, ensure_ascii=False) + "\n").encode("utf-8"))
            await writer.drain()
