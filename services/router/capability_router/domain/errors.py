"""统一错误类型：以 kind 标签区分错误类别，序列化时不依赖异常子类判断。"""

from __future__ import annotations

from typing import Any

from capability_router.domain.enums import ErrorKind

ERROR_CODES: dict[ErrorKind, int] = {
    ErrorKind.parse_error: -32700,
    ErrorKind.invalid_request: -32600,
    ErrorKind.method_not_found: -32601,
    ErrorKind.invalid_params: -32602,
    ErrorKind.validation_failed: -32602,
    ErrorKind.internal_error: -32603,
    ErrorKind.no_match: -32000,
    ErrorKind.tool_not_found: -32001,
    ErrorKind.capability_not_found: -32002,
    ErrorKind.execution_failed: -32003,
    ErrorKind.ambiguous_intent: -32004,
    ErrorKind.confirmation_required: -32005,
}


class RouterError(Exception):
    """路由器统一异常，携带 kind、错误码、消息与结构化数据。"""

    def __init__(self, kind: ErrorKind, message: str, data: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.code = ERROR_CODES[kind]
        self.message = message
        self.data = data

    def to_dict(self) -> dict[str, Any]:
        """转换为 JSON-RPC error 对象。"""
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            payload["data"] = self.data
        return payload

    def __repr__(self) -> str:
        return f"RouterError(kind={self.kind.value!r}, code={self.code}, message={self.message!r})"

    @classmethod
    def invalid_params(cls, message: str, data: dict[str, Any] | None = None) -> RouterError:
        return cls(ErrorKind.invalid_params, message, data)

    @classmethod
    def tool_not_found(cls, tool: str) -> RouterError:
        return cls(ErrorKind.tool_not_found, f"Tool not found: {tool}", {"tool": tool})

    @classmethod
    def no_match(cls, want: str) -> RouterError:
        return cls(ErrorKind.no_match, f"No tool matches intent: {want}", {"intent": want})

    @classmethod
    def ambiguous(cls, want: str, candidates: list[dict[str, str]]) -> RouterError:
        return cls(ErrorKind.ambiguous_intent, f"Ambiguous intent: {want}", {"intent": want, "candidates": candidates})

    @classmethod
    def validation_failed(cls, message: str, errors: list[dict[str, Any]]) -> RouterError:
        return cls(ErrorKind.validation_failed, message, {"errors": errors})

    @classmethod
    def internal(cls, message: str, data: dict[str, Any] | None = None) -> RouterError:
        return cls(ErrorKind.internal_error, message, data)
