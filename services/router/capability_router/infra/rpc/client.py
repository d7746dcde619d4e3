"""路由器 HTTP 客户端：供 CLI 连接已运行的路由服务，错误信封还原为 RouterError。"""

from __future__ import annotations

import itertools
import logging
import time
from typing import Any

import httpx

from capability_router.domain.enums import ErrorKind
from capability_router.domain.errors import ERROR_CODES, RouterError

logger = logging.getLogger(__name__)

# -32602 同时对应参数错误与校验失败，由 data.errors 区分。
_KINDS_BY_CODE: dict[int, ErrorKind] = {}
for _kind, _code in ERROR_CODES.items():
    _KINDS_BY_CODE.setdefault(_code, _kind)


def error_from_payload(error: dict[str, Any]) -> RouterError:
    """把 JSON-RPC error 对象还原为 RouterError。"""
    code = error.get("code")
    data = error.get("data")
    kind = _KINDS_BY_CODE.get(code, ErrorKind.internal_error) if isinstance(code, int) else ErrorKind.internal_error
    if kind is ErrorKind.invalid_params and isinstance(data, dict) and "errors" in data:
        kind = ErrorKind.validation_failed
    return RouterError(kind, str(error.get("message") or "Unknown error"), data if isinstance(data, dict) else None)


class RouterClient:
    """能力路由器同步 HTTP 客户端封装。"""

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 60,
        *,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._closed = False
        self._ids = itertools.count(1)
        self._client = httpx.Client(base_url=self._base_url, timeout=httpx.Timeout(timeout_seconds), transport=transport)

    def __enter__(self) -> RouterClient:
        return self

    def __exit__(self, *_exc: object) -> None:
        self.close()

    def close(self) -> None:
        """关闭底层 HTTP 客户端连接池。"""
        if self._closed:
            return
        self._client.close()
        self._closed = True

    def call(self, method: str, params: dict[str, Any] | None = None) -> Any:
        """发送一次 JSON-RPC 调用，成功返回 result，失败抛出 RouterError。"""
        if self._closed:
            raise RuntimeError("RouterClient is already closed")
        body = {"jsonrpc": "2.0", "method": method, "params": params or {}, "id": next(self._ids)}
        started = time.perf_counter()
        try:
            response = self._client.post("/rpc", json=body)
            # parse error 以 400 返回，但仍带 JSON-RPC 信封。
            if response.status_code != 400:
                response.raise_for_status()
            payload = response.json()
        except Exception as exc:
            duration_ms = round((time.perf_counter() - started) * 1000, 2)
            status_code = None
            if isinstance(exc, httpx.HTTPStatusError) and exc.response is not None:
                status_code = exc.response.status_code
            logger.error(
                "router request failed",
                extra={
                    "event": "client.request.failed",
                    "external_service": "capability-router",
                    "op": method,
                    "duration_ms": duration_ms,
                    "status_code": status_code,
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                },
            )
            raise

        if not isinstance(payload, dict):
            raise RouterError.internal("Malformed response from router")
        if "error" in payload and isinstance(payload["error"], dict):
            raise error_from_payload(payload["error"])
        return payload.get("result")
