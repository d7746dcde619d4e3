"""日志上下文：基于 contextvars 透传 request/method/tool/transport 标识。"""

from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar, Token
from typing import Any, Iterator

_UNSET = object()

_request_id_var: ContextVar[str | None] = ContextVar("log_request_id", default=None)
_method_var: ContextVar[str | None] = ContextVar("log_method", default=None)
_tool_var: ContextVar[str | None] = ContextVar("log_tool", default=None)
_transport_var: ContextVar[str | None] = ContextVar("log_transport", default=None)

CONTEXT_FIELDS = ("request_id", "method", "tool", "transport")


def get_log_context() -> dict[str, str | None]:
    """返回当前协程/线程下的日志上下文字段。"""
    return {
        "request_id": _request_id_var.get(),
        "method": _method_var.get(),
        "tool": _tool_var.get(),
        "transport": _transport_var.get(),
    }


@contextmanager
def bind_log_context(
    *,
    request_id: str | None | object = _UNSET,
    method: str | None | object = _UNSET,
    tool: str | None | object = _UNSET,
    transport: str | None | object = _UNSET,
) -> Iterator[None]:
    """在上下文范围内绑定日志字段，并在退出时自动恢复。"""
    tokens: list[tuple[ContextVar[Any], Token[Any]]] = []
    if request_id is not _UNSET:
        tokens.append((_request_id_var, _request_id_var.set(request_id)))
    if method is not _UNSET:
        tokens.append((_method_var, _method_var.set(method)))
    if tool is not _UNSET:
        tokens.append((_tool_var, _tool_var.set(tool)))
    if transport is not _UNSET:
        tokens.append((_transport_var, _transport_var.set(transport)))
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)
