"""领域数据结构定义：工具描述符、意图与参数定义，以及匹配、校验与执行结果值对象。"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

from capability_router.domain.enums import ExecutionStatus, IssueKind, PatternKind

REGEX_PREFIX = "re:"
_WORD_SPLIT_RE = re.compile(r"\W+")


def split_words(text: str) -> list[str]:
    """按非单词字符切分并转小写，丢弃空片段。"""
    return [word for word in _WORD_SPLIT_RE.split(text.lower()) if word]


@dataclass(slots=True, frozen=True)
class IntentPattern:
    """预编译的意图模式：类别在加载时确定，匹配时不再嗅探前缀。"""
    raw: str
    kind: PatternKind
    text: str
    words: tuple[str, ...] = ()
    regex: re.Pattern[str] | None = None

    @classmethod
    def compile(cls, raw: str) -> IntentPattern:
        if raw.startswith(REGEX_PREFIX):
            source = raw[len(REGEX_PREFIX):]
            try:
                compiled = re.compile(source, re.IGNORECASE)
            except re.error as exc:
                raise ValueError(f"invalid regex pattern {raw!r}: {exc}") from exc
            return cls(raw=raw, kind=PatternKind.regex, text=source, regex=compiled)
        lowered = raw.lower()
        return cls(raw=raw, kind=PatternKind.literal, text=lowered, words=tuple(split_words(lowered)))


class ParamDef(BaseModel):
    """单个参数的声明：类型、是否必填、默认值、枚举与说明。"""
    model_config = ConfigDict(frozen=True, extra="allow")

    type: str | None = None
    required: bool = False
    default: Any = None
    enum: list[Any] | None = None
    description: str | None = None

    @property
    def has_default(self) -> bool:
        # 显式声明 "default": null 也视为有默认值。
        return "default" in self.model_fields_set


class Intent(BaseModel):
    """可调用操作描述：模式列表、命令模板、参数 schema 与行为标记。"""
    model_config = ConfigDict(frozen=True, extra="allow")

    patterns: list[str] = Field(min_length=1)
    command: str
    params: dict[str, ParamDef] = Field(default_factory=dict)
    output: dict[str, Any] | None = None
    confirm: bool = False
    destructive: bool = False
    idempotent: bool = True

    _compiled: tuple[IntentPattern, ...] = PrivateAttr(default=())

    def model_post_init(self, __context: Any) -> None:
        self._compiled = tuple(IntentPattern.compile(pattern) for pattern in self.patterns)

    @property
    def compiled_patterns(self) -> tuple[IntentPattern, ...]:
        return self._compiled

    def summary(self) -> dict[str, Any]:
        """返回意图摘要，仅包含模式与行为标记，不暴露完整参数 schema。"""
        return {
            "patterns": list(self.patterns),
            "confirm": self.confirm,
            "destructive": self.destructive,
            "idempotent": self.idempotent,
        }


class CapabilityRecord(BaseModel):
    """单个工具的完整能力记录，按需加载。"""
    model_config = ConfigDict(frozen=True, extra="allow")

    intents: list[Intent] = Field(default_factory=list)


class ToolManifest(BaseModel):
    """工具身份描述：领域、名称、摘要与版本等最小元信息。"""
    model_config = ConfigDict(frozen=True, extra="allow")

    domain: str
    name: str
    summary: str = ""
    version: str = "0.0.0"
    binary: str | None = None
    requires: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    path: Path | None = None

    def to_public(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


@dataclass(slots=True)
class MatchCandidate:
    """匹配候选：工具、可选意图与得分（1.0 模式命中 / 0.5 摘要关键词重叠）。"""
    tool: ToolManifest
    score: float
    intent: Intent | None = None


@dataclass(slots=True)
class AmbiguousMatch:
    """并列最高分的候选集合。"""
    candidates: list[dict[str, str]]


@dataclass(slots=True)
class ValidationIssue:
    kind: IssueKind
    param: str
    message: str
    expected: Any = None
    received: Any = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": self.kind.value, "param": self.param, "message": self.message}
        if self.expected is not None:
            payload["expected"] = self.expected
        if self.received is not None:
            payload["received"] = self.received
        return payload


@dataclass(slots=True)
class ValidationOutcome:
    """参数校验结果：是否有效、全部问题列表与可直接代入模板的净化参数。"""
    valid: bool
    errors: list[ValidationIssue] = field(default_factory=list)
    sanitized: dict[str, Any] = field(default_factory=dict)

    def error_dicts(self) -> list[dict[str, Any]]:
        return [issue.to_dict() for issue in self.errors]

    def error_summary(self) -> str:
        return "; ".join(issue.message for issue in self.errors)


@dataclass(slots=True)
class ExecutionOutcome:
    """命令执行结果：结构化输出、原始文本或失败信息三者之一。"""
    status: ExecutionStatus
    output: Any = None
    exit_code: int | None = None
    timed_out: bool = False
    timeout_ms: int | None = None
    error: str | None = None
    stderr: str | None = None
    partial_stdout: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is not ExecutionStatus.failed

    def payload(self) -> Any:
        """成功结果对外的输出形态：解析后的 JSON，或 {"raw": 文本}。"""
        if self.status is ExecutionStatus.raw:
            return {"raw": self.output}
        return self.output

    def failure_data(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.timed_out:
            data["timeout"] = self.timeout_ms
            data["partial_stdout"] = self.partial_stdout or ""
        if self.exit_code is not None:
            data["exit_code"] = self.exit_code
            data["stderr"] = self.stderr or ""
        if self.error is not None:
            data["error"] = self.error
        return data
