"""领域枚举定义：统一参数类型、模式类别、错误类别与意图生命周期状态取值。"""

from __future__ import annotations

from enum import Enum


class ParamType(str, Enum):
    """参数声明类型枚举；未知或缺省类型一律按无类型放行。"""
    string = "string"
    integer = "integer"
    number = "number"
    boolean = "boolean"
    string_list = "array<string>"
    integer_list = "array<integer>"

    @classmethod
    def parse(cls, value: str | None) -> ParamType | None:
        if value is None:
            return None
        try:
            return cls(value)
        except ValueError:
            return None


class PatternKind(str, Enum):
    """意图模式类别，在描述符加载时确定一次。"""
    literal = "literal"
    regex = "regex"


class IssueKind(str, Enum):
    """参数校验问题类别。"""
    missing_required = "missing_required"
    type_mismatch = "type_mismatch"
    invalid_enum = "invalid_enum"
    unsubstituted_placeholder = "unsubstituted_placeholder"


class ErrorKind(str, Enum):
    """统一错误类别，每个类别对应固定的 JSON-RPC 错误码。"""
    parse_error = "parse_error"
    invalid_request = "invalid_request"
    method_not_found = "method_not_found"
    invalid_params = "invalid_params"
    validation_failed = "validation_failed"
    internal_error = "internal_error"
    no_match = "no_match"
    tool_not_found = "tool_not_found"
    capability_not_found = "capability_not_found"
    execution_failed = "execution_failed"
    ambiguous_intent = "ambiguous_intent"
    confirmation_required = "confirmation_required"


class IntentState(str, Enum):
    """意图调用生命周期状态枚举。"""
    received = "received"
    matched = "matched"
    validated = "validated"
    confirmed = "confirmed"
    blocked_on_confirmation = "blocked_on_confirmation"
    executed = "executed"
    done = "done"


class ExecutionStatus(str, Enum):
    """命令执行结果类别。"""
    parsed = "parsed"
    raw = "raw"
    failed = "failed"
