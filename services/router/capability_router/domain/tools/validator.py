"""参数校验与 Shell 转义：按意图 schema 校验、转换类型、补默认值，并将所有取值渲染为 Shell 安全文本。"""

from __future__ import annotations

import json
import math
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from capability_router.domain.enums import IssueKind, ParamType
from capability_router.domain.models import ParamDef, ValidationIssue, ValidationOutcome

SHELL_SAFE_RE = re.compile(r"^[A-Za-z0-9_./-]+$")
PLACEHOLDER_RE = re.compile(r"\{(\w+)\}")

_UNSET = object()


@dataclass(slots=True)
class TypeCheck:
    """类型校验结果；coerced 为 _UNSET 表示原值可直接使用。"""
    valid: bool
    coerced: Any = _UNSET

    def value_or(self, original: Any) -> Any:
        return original if self.coerced is _UNSET else self.coerced


def validate_params(context: Mapping[str, Any] | None, schema: Mapping[str, ParamDef] | None) -> ValidationOutcome:
    """校验调用方参数并返回净化后的参数表。

    未声明的参数原样放行（仍做 Shell 转义）；类型或枚举错误与缺失必填项一次性全部收集，
    便于调用方一次修正。净化结果无论是否有效都会返回，方便诊断。
    """
    context = context or {}
    if not schema:
        return ValidationOutcome(valid=True, sanitized={key: sanitize_value(value) for key, value in context.items()})

    errors: list[ValidationIssue] = [
        ValidationIssue(
            kind=IssueKind.missing_required,
            param=name,
            message=f"Required parameter '{name}' is missing",
        )
        for name in check_required(context, schema)
    ]
    sanitized: dict[str, Any] = {}

    for key, value in context.items():
        param = schema.get(key)
        if param is None:
            sanitized[key] = sanitize_value(value)
            continue

        check = validate_type(value, param.type)
        if not check.valid:
            errors.append(
                ValidationIssue(
                    kind=IssueKind.type_mismatch,
                    param=key,
                    message=f"Parameter '{key}' expected type '{param.type}', got '{describe_type(value)}'",
                    expected=param.type,
                    received=describe_type(value),
                )
            )
            continue

        coerced = check.value_or(value)
        if param.enum is not None and not _enum_contains(param.enum, coerced):
            errors.append(
                ValidationIssue(
                    kind=IssueKind.invalid_enum,
                    param=key,
                    message=f"Parameter '{key}' must be one of: {', '.join(str(item) for item in param.enum)}",
                    expected=list(param.enum),
                    received=coerced,
                )
            )
            continue

        sanitized[key] = sanitize_value(coerced)

    # 默认值不做类型与枚举复核，描述符作者需保证其合法。
    for name, param in schema.items():
        if name not in sanitized and param.has_default:
            sanitized[name] = sanitize_value(param.default)

    return ValidationOutcome(valid=not errors, errors=errors, sanitized=sanitized)


def check_required(context: Mapping[str, Any], schema: Mapping[str, ParamDef]) -> list[str]:
    """返回缺失的必填参数名列表。"""
    return [name for name, param in schema.items() if param.required and name not in context]


def validate_type(value: Any, declared: str | None) -> TypeCheck:
    """按声明类型校验取值，并在允许时返回转换后的值。"""
    param_type = ParamType.parse(declared)
    if param_type is None:
        return TypeCheck(valid=True)

    if param_type is ParamType.string:
        if isinstance(value, str):
            return TypeCheck(valid=True)
        if _is_number(value):
            return TypeCheck(valid=True, coerced=str(value))
        return TypeCheck(valid=False)

    if param_type is ParamType.integer:
        parsed = _as_integer(value)
        if parsed is None:
            return TypeCheck(valid=False)
        return TypeCheck(valid=True) if parsed is value else TypeCheck(valid=True, coerced=parsed)

    if param_type is ParamType.number:
        if _is_number(value):
            return TypeCheck(valid=math.isfinite(value))
        if isinstance(value, str):
            try:
                parsed_float = float(value)
            except ValueError:
                return TypeCheck(valid=False)
            if not math.isfinite(parsed_float):
                return TypeCheck(valid=False)
            return TypeCheck(valid=True, coerced=parsed_float)
        return TypeCheck(valid=False)

    if param_type is ParamType.boolean:
        if isinstance(value, bool):
            return TypeCheck(valid=True)
        if value == "true":
            return TypeCheck(valid=True, coerced=True)
        if value == "false":
            return TypeCheck(valid=True, coerced=False)
        return TypeCheck(valid=False)

    if param_type is ParamType.string_list:
        if not isinstance(value, list):
            return TypeCheck(valid=False)
        if all(isinstance(item, str) for item in value):
            return TypeCheck(valid=True)
        return TypeCheck(valid=True, coerced=[stringify(item) for item in value])

    if param_type is ParamType.integer_list:
        if not isinstance(value, list):
            return TypeCheck(valid=False)
        items: list[int] = []
        for item in value:
            parsed = _as_integer(item)
            if parsed is None:
                return TypeCheck(valid=False)
            items.append(parsed)
        return TypeCheck(valid=True, coerced=items)

    return TypeCheck(valid=True)


def sanitize_value(value: Any) -> Any:
    """按元素净化列表；数字、布尔值与 null 不加引号，其余取值一律渲染为文本后转义。"""
    if isinstance(value, (list, tuple)):
        return [sanitize_value(item) for item in value]
    if value is None or isinstance(value, (bool, int, float)):
        return value
    return sanitize_for_shell(value)


def sanitize_for_shell(value: Any) -> str:
    """将文本转为 Shell 安全形式：安全字符集原样返回，否则单引号包裹。"""
    text = value if isinstance(value, str) else stringify(value)
    if SHELL_SAFE_RE.match(text):
        return text
    # 内部单引号替换为 '\''：结束引号、转义引号、重新开始引号。
    return "'" + text.replace("'", "'\\''") + "'"


def find_placeholders(command: str) -> list[str]:
    """返回命令文本中残留的 {name} 占位符名称（按出现顺序去重）。"""
    names: list[str] = []
    for match in PLACEHOLDER_RE.finditer(command):
        if match.group(1) not in names:
            names.append(match.group(1))
    return names


def stringify(value: Any) -> str:
    """将任意取值渲染为命令行文本，布尔值使用小写字面量，对象渲染为 JSON。"""
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    if isinstance(value, Mapping):
        return json.dumps(value, ensure_ascii=False, default=str)
    return str(value)


def describe_type(value: Any) -> str:
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple)):
        return "array"
    if value is None:
        return "null"
    return "object"


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _as_integer(value: Any) -> int | None:
    """整数判定：整型、整值浮点数，或可往返还原的整数文本。"""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, str):
        try:
            parsed = int(value, 10)
        except ValueError:
            return None
        return parsed if str(parsed) == value else None
    return None


def _enum_contains(allowed: list[Any], value: Any) -> bool:
    if isinstance(value, list):
        return all(_enum_contains(allowed, item) for item in value)
    # 布尔值与 0/1 在 Python 中相等，这里按类型区分。
    return any(item == value and isinstance(item, bool) == isinstance(value, bool) for item in allowed)
