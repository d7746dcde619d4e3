"""FastAPI 应用入口：初始化生命周期、中间件、健康检查与 JSON-RPC 路由挂载。"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from capability_router.api.rpc import router as rpc_router
from capability_router.application.container import get_descriptor_store, shutdown_container_resources
from capability_router.config import get_settings
from capability_router.infra.logging.context import bind_log_context
from capability_router.infra.logging.setup import configure_logging, shutdown_logging

settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """应用生命周期：启动时配置日志并完成工具扫描，关闭时释放资源。"""
    configure_logging(settings, process_role="http")
    logger.info("http startup begin", extra={"event": "http.startup.started"})
    store = get_descriptor_store()
    logger.info(
        "http startup ready",
        extra={"event": "http.startup.succeeded", "payload_preview": {"tools": len(store.all_manifests())}},
    )
    try:
        yield
    finally:
        logger.info("http shutdown begin", extra={"event": "http.shutdown.started"})
        shutdown_container_resources()
        shutdown_logging()


app = FastAPI(title=settings.app_name, lifespan=lifespan)

if settings.cors_allowed_origins_list():
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allowed_origins_list(),
        allow_methods=["POST", "OPTIONS"],
        allow_headers=["Content-Type", "X-Request-Id"],
    )


@app.middleware("http")
async def attach_request_id(request: Request, call_next):
    """透传或生成 X-Request-Id，并回写到响应头。"""
    request_id = request.headers.get("X-Request-Id") or str(uuid4())
    started = time.perf_counter()
    with bind_log_context(request_id=request_id):
        try:
            response = await call_next(request)
        except Exception as exc:
            duration_ms = round((time.perf_counter() - started) * 1000, 2)
            logger.exception(
                "http request failed",
                extra={
                    "event": "http.request.failed",
                    "op": f"{request.method} {request.url.path}",
                    "duration_ms": duration_ms,
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                },
            )
            raise
        duration_ms = round((time.perf_counter() - started) * 1000, 2)
        logger.info(
            "http request completed",
            extra={
                "event": "http.request.completed",
                "op": f"{request.method} {request.url.path}",
                "duration_ms": duration_ms,
                "status_code": response.status_code,
            },
        )
    response.headers["X-Request-Id"] = request_id
    return response


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


app.include_router(rpc_router)
