"""命令执行器：构建已转义的命令文本，在超时约束下通过 Shell 运行并解析输出。"""

from __future__ import annotations

import json
import logging
import os
import re
import signal
import subprocess
import time
from collections.abc import Mapping
from typing import Any

from capability_router.domain.enums import ExecutionStatus, IssueKind
from capability_router.domain.errors import RouterError
from capability_router.domain.models import ExecutionOutcome, Intent, ValidationIssue
from capability_router.domain.tools.validator import find_placeholders, sanitize_value, stringify, validate_params

DEFAULT_TIMEOUT_MS = 30_000
KILL_GRACE_MS = 5_000
PARTIAL_STDOUT_LIMIT = 1000
STDERR_LIMIT = 2000
AGENT_ENV_FLAG = "CMP_AGENT"

# 替换阶段匹配任意 {token}；仅由单词字符组成且未解析的才视为缺失参数。
_TOKEN_RE = re.compile(r"\{([^{}\s]+)\}")

logger = logging.getLogger(__name__)


def format_value(value: Any) -> str:
    """将已净化的取值渲染为命令行片段，列表以单个空格连接。"""
    if isinstance(value, list):
        return " ".join(format_value(item) for item in value)
    if isinstance(value, str):
        return value
    return stringify(value)


def _reject_constant(token: str) -> Any:
    raise ValueError(f"non-standard JSON constant: {token}")


def parse_json_output(text: str) -> Any:
    """严格解析 JSON 输出；NaN 与 Infinity 不是合法 JSON，按解析失败处理。"""
    return json.loads(text, parse_constant=_reject_constant)


class CommandExecutor:
    def __init__(
        self,
        *,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        kill_grace_ms: int = KILL_GRACE_MS,
        shell: str = "/bin/sh",
    ) -> None:
        self._timeout_ms = timeout_ms
        self._kill_grace_ms = kill_grace_ms
        self._shell = shell

    @property
    def timeout_ms(self) -> int:
        return self._timeout_ms

    def build_command(self, intent: Intent, context: Mapping[str, Any] | None) -> str:
        """校验参数并以净化后的值替换模板占位符；存在任何问题时直接抛出。"""
        validation = validate_params(context, intent.params)
        if not validation.valid:
            raise RouterError.validation_failed(
                f"Parameter validation failed: {validation.error_summary()}",
                validation.error_dicts(),
            )

        sanitized = validation.sanitized
        missing: list[str] = []

        def _substitute(match: re.Match[str]) -> str:
            name = match.group(1)
            if name in sanitized:
                return format_value(sanitized[name])
            param = intent.params.get(name)
            if param is not None and param.has_default:
                return format_value(sanitize_value(param.default))
            if re.fullmatch(r"\w+", name) and name not in missing:
                missing.append(name)
            return match.group(0)

        # 单次扫描模板，已代入的取值不会被再次当作占位符处理。
        command = _TOKEN_RE.sub(_substitute, intent.command)
        if missing:
            raise self._placeholder_error(missing)
        return command

    def run(self, command: str, timeout_ms: int | None = None) -> ExecutionOutcome:
        """通过 Shell 执行命令，超时先 SIGTERM 再 SIGKILL，返回唯一的终态结果。

        命令中仍残留 {name} 占位符时拒绝执行。
        """
        unresolved = find_placeholders(command)
        if unresolved:
            raise self._placeholder_error(unresolved)

        timeout = timeout_ms or self._timeout_ms
        env = {**os.environ, AGENT_ENV_FLAG: "1"}
        started = time.perf_counter()
        logger.info(
            "command started",
            extra={"event": "executor.run.started", "op": "run", "payload_preview": {"command": command, "timeout": timeout}},
        )

        try:
            process = subprocess.Popen(
                [self._shell, "-c", command],
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=env,
                text=True,
                errors="replace",
                start_new_session=True,
            )
        except OSError as exc:
            logger.error(
                "command spawn failed",
                extra={"event": "executor.spawn.failed", "error_type": type(exc).__name__, "error": str(exc)},
            )
            return ExecutionOutcome(status=ExecutionStatus.failed, error=f"Failed to spawn command: {exc}")

        timed_out = False
        try:
            stdout, stderr = process.communicate(timeout=timeout / 1000)
        except subprocess.TimeoutExpired:
            timed_out = True
            stdout, stderr = self._terminate(process)
        finally:
            if process.poll() is None:
                self._signal(process, signal.SIGKILL)
                process.wait()

        duration_ms = round((time.perf_counter() - started) * 1000, 2)
        stdout = stdout or ""
        stderr = stderr or ""

        if timed_out:
            logger.warning(
                "command timed out",
                extra={"event": "executor.run.timeout", "duration_ms": duration_ms, "payload_preview": {"timeout": timeout}},
            )
            return ExecutionOutcome(
                status=ExecutionStatus.failed,
                timed_out=True,
                timeout_ms=timeout,
                partial_stdout=stdout[:PARTIAL_STDOUT_LIMIT],
                error=f"Command timed out after {timeout}ms",
            )

        if process.returncode != 0:
            logger.warning(
                "command failed",
                extra={
                    "event": "executor.run.failed",
                    "duration_ms": duration_ms,
                    "payload_preview": {"exit_code": process.returncode, "stderr": stderr[:500]},
                },
            )
            return ExecutionOutcome(
                status=ExecutionStatus.failed,
                exit_code=process.returncode,
                stderr=stderr[:STDERR_LIMIT],
            )

        logger.info("command completed", extra={"event": "executor.run.succeeded", "duration_ms": duration_ms})
        try:
            return ExecutionOutcome(status=ExecutionStatus.parsed, output=parse_json_output(stdout))
        except ValueError:
            return ExecutionOutcome(status=ExecutionStatus.raw, output=stdout.strip())

    def _terminate(self, process: subprocess.Popen[str]) -> tuple[str, str]:
        """向进程组发送 SIGTERM，宽限期后仍未退出则 SIGKILL，返回已捕获输出。"""
        self._signal(process, signal.SIGTERM)
        try:
            return process.communicate(timeout=self._kill_grace_ms / 1000)
        except subprocess.TimeoutExpired:
            self._signal(process, signal.SIGKILL)
            return process.communicate()

    @staticmethod
    def _signal(process: subprocess.Popen[str], sig: signal.Signals) -> None:
        try:
            os.killpg(process.pid, sig)
        except ProcessLookupError:
            pass

    @staticmethod
    def _placeholder_error(names: list[str]) -> RouterError:
        issues = [
            ValidationIssue(
                kind=IssueKind.unsubstituted_placeholder,
                param=name,
                message=f"Parameter '{name}' was not provided and has no default",
            )
            for name in names
        ]
        return RouterError.validation_failed(
            f"Command has unsubstituted placeholders: {', '.join(names)}",
            [issue.to_dict() for issue in issues],
        )
