"""协议分发：校验 JSON-RPC 信封并把方法调用路由到编排服务，三种传输共用此入口。"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from capability_router.application.router import CapabilityRouter
from capability_router.config import PROTOCOL_VERSION
from capability_router.domain.enums import ErrorKind
from capability_router.domain.errors import RouterError
from capability_router.infra.logging.context import bind_log_context

logger = logging.getLogger(__name__)


class RpcRequest(BaseModel):
    """JSON-RPC 2.0 请求信封。"""
    model_config = ConfigDict(extra="ignore")

    jsonrpc: Literal["2.0"]
    method: str
    params: dict[str, Any] = Field(default_factory=dict)
    id: str | int | None = None


class RpcDispatcher:
    """把解码后的请求对象分发到 CapabilityRouter，并统一封装响应与错误。"""

    def __init__(self, router: CapabilityRouter) -> None:
        self._router = router
        self._methods: dict[str, Callable[[dict[str, Any]], Any]] = {
            "cmp.domains": lambda params: self._router.domains(),
            "cmp.manifests": lambda params: self._router.manifests(params.get("domain")),
            "cmp.capabilities": self._capabilities,
            "cmp.schema": self._schema,
            "cmp.intent": self._intent,
            "cmp.context": lambda params: {"snippet": self._router.context_snippet()},
        }

    @property
    def router(self) -> CapabilityRouter:
        return self._router

    def handle_line(self, line: str) -> dict[str, Any]:
        """解码单帧文本并处理；无法解析的 JSON 返回 parse error。"""
        try:
            payload = json.loads(line)
        except json.JSONDecodeError as exc:
            return self.error_response(RouterError(ErrorKind.parse_error, "Parse error", {"error": str(exc)}), None)
        return self.handle(payload)

    def handle(self, payload: Any) -> dict[str, Any]:
        """处理一个已解码的请求对象，任何异常都转换为 JSON-RPC 错误响应。"""
        request_id = payload.get("id") if isinstance(payload, dict) else None
        try:
            request = RpcRequest.model_validate(payload)
        except ValidationError as exc:
            return self.error_response(
                RouterError(
                    ErrorKind.invalid_request,
                    "Invalid request: must be JSON-RPC 2.0",
                    {"errors": [error["msg"] for error in exc.errors()]},
                ),
                request_id if isinstance(request_id, (str, int)) else None,
            )

        started = time.perf_counter()
        with bind_log_context(method=request.method):
            try:
                handler = self._methods.get(request.method)
                if handler is None:
                    raise RouterError(ErrorKind.method_not_found, f"Method not found: {request.method}")
                result = handler(request.params)
            except RouterError as exc:
                logger.info(
                    "rpc call rejected",
                    extra={
                        "event": "rpc.call.failed",
                        "op": request.method,
                        "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                        "error_type": exc.kind.value,
                        "error": exc.message,
                    },
                )
                return self.error_response(exc, request.id)
            except Exception as exc:
                logger.exception(
                    "rpc call crashed",
                    extra={"event": "rpc.call.crashed", "op": request.method, "error_type": type(exc).__name__},
                )
                return self.error_response(RouterError.internal(str(exc), {"error": str(exc)}), request.id)

            logger.info(
                "rpc call completed",
                extra={
                    "event": "rpc.call.succeeded",
                    "op": request.method,
                    "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                },
            )
        return {"jsonrpc": "2.0", "result": result, "id": request.id, "cmp": PROTOCOL_VERSION}

    @staticmethod
    def error_response(error: RouterError, request_id: str | int | None) -> dict[str, Any]:
        return {"jsonrpc": "2.0", "error": error.to_dict(), "id": request_id, "cmp": PROTOCOL_VERSION}

    @staticmethod
    def ready_notification() -> dict[str, Any]:
        return {"jsonrpc": "2.0", "method": "cmp.ready", "params": {"version": PROTOCOL_VERSION}}

    def _capabilities(self, params: dict[str, Any]) -> Any:
        tool = params.get("tool")
        if not tool or not isinstance(tool, str):
            raise RouterError.invalid_params("Missing required param: tool")
        return self._router.capabilities(tool)

    def _schema(self, params: dict[str, Any]) -> Any:
        tool = params.get("tool")
        pattern = params.get("pattern")
        if not tool or not pattern or not isinstance(tool, str) or not isinstance(pattern, str):
            raise RouterError.invalid_params("Missing required params: tool, pattern")
        return self._router.schema(tool, pattern)

    def _intent(self, params: dict[str, Any]) -> Any:
        if not params.get("want"):
            raise RouterError.invalid_params("Missing required param: want")
        return self._router.intent(params)
