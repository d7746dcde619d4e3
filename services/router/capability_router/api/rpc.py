"""JSON-RPC HTTP 接口：单次请求/响应绑定，解码后交给统一分发器处理。"""

from __future__ import annotations

import asyncio
import json
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from capability_router.application.container import get_dispatcher
from capability_router.application.dispatch import RpcDispatcher
from capability_router.domain.enums import ErrorKind
from capability_router.domain.errors import RouterError
from capability_router.infra.logging.context import bind_log_context

router = APIRouter()
logger = logging.getLogger(__name__)


def _dispatcher() -> RpcDispatcher:
    """依赖注入辅助函数，返回分发器实例。"""
    return get_dispatcher()


@router.post("/")
@router.post("/rpc")
async def rpc(request: Request, dispatcher: RpcDispatcher = Depends(_dispatcher)) -> JSONResponse:
    """接收 JSON-RPC 请求体；无法解析时返回 400 与 parse error。"""
    body = await request.body()
    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        logger.info("rpc body rejected", extra={"event": "http.rpc.parse_error", "error": str(exc)})
        return JSONResponse(
            status_code=400,
            content=dispatcher.error_response(RouterError(ErrorKind.parse_error, "Parse error"), None),
        )

    # 命令执行是阻塞调用，放到线程池中，避免阻塞其他并发请求。
    with bind_log_context(transport="http"):
        response = await asyncio.to_thread(dispatcher.handle, payload)
    return JSONResponse(content=response)
