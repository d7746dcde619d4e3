"""路由编排服务：串联匹配、校验、确认门与执行，并统一映射错误类别。"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from capability_router.application.executor import CommandExecutor
from capability_router.domain.enums import ErrorKind, IntentState
from capability_router.domain.errors import RouterError
from capability_router.domain.models import AmbiguousMatch, CapabilityRecord, Intent, ToolManifest
from capability_router.domain.tools.matcher import IntentMatcher
from capability_router.domain.tools.registry import DescriptorStore
from capability_router.domain.tools.validator import validate_params
from capability_router.infra.logging.context import bind_log_context

logger = logging.getLogger(__name__)

CONFIRMATION_MESSAGE = "This action requires confirmation. Set confirm: true to proceed."


class CapabilityRouter:
    """能力路由门面，对外提供目录查询与意图执行能力。"""

    def __init__(
        self,
        *,
        store: DescriptorStore,
        executor: CommandExecutor,
        matcher: IntentMatcher | None = None,
    ) -> None:
        self._store = store
        self._executor = executor
        self._matcher = matcher or IntentMatcher()

    @property
    def store(self) -> DescriptorStore:
        return self._store

    def domains(self) -> dict[str, Any]:
        return {"domains": self._store.domains()}

    def manifests(self, domain: str | None = None) -> dict[str, Any]:
        """返回指定领域（或全部）的工具清单。"""
        tools = self._store.manifests_by_domain(domain) if domain else self._store.all_manifests()
        return {"manifests": [tool.to_public() for tool in tools]}

    def capabilities(self, tool_name: str) -> dict[str, Any]:
        """返回工具的意图摘要（模式与确认/破坏性标记），不含完整参数 schema。"""
        tool = self._require_tool(tool_name)
        capability = self._load_capability(tool)
        return {"intents": [intent.summary() for intent in capability.intents]}

    def schema(self, tool_name: str, pattern: str) -> dict[str, Any]:
        """按模式解析出单个意图并返回其完整定义，用于按需披露参数 schema。"""
        tool = self._require_tool(tool_name)
        capability = self._load_capability(tool)
        intent = self._matcher.find_intent(capability.intents, pattern)
        if intent is None:
            raise RouterError(
                ErrorKind.no_match,
                f"No intent matches pattern: {pattern}",
                {"tool": tool_name, "pattern": pattern},
            )
        return intent.model_dump(mode="json", exclude_unset=True)

    def intent(self, params: Mapping[str, Any]) -> dict[str, Any]:
        """执行完整意图生命周期：匹配 → 校验 → 构建命令 → 确认门 → 执行。"""
        want = params.get("want")
        if not isinstance(want, str) or not want.strip():
            raise RouterError.invalid_params(
                'Missing or invalid "want" parameter',
                {"received": type(want).__name__},
            )
        context = params.get("context") or {}
        if not isinstance(context, Mapping):
            raise RouterError.invalid_params('"context" must be an object', {"received": type(context).__name__})
        confirm = params.get("confirm") is True
        timeout_ms = self._parse_timeout(params.get("timeout"))

        try:
            self._transition(IntentState.received, want=want)
            match = self._matcher.match(want, self._store)
            if match is None:
                raise RouterError.no_match(want)
            if isinstance(match, AmbiguousMatch):
                raise RouterError.ambiguous(want, match.candidates)

            tool = match.tool
            with bind_log_context(tool=tool.name):
                # 重新按模式解析意图，摘要命中的候选在此处确认具体操作。
                try:
                    capability = self._store.load_capability(tool)
                except Exception as exc:
                    raise RouterError.no_match(want) from exc
                intent = self._matcher.find_intent(capability.intents, want)
                if intent is None:
                    raise RouterError.no_match(want)
                self._transition(IntentState.matched, want=want, score=match.score)

                validation = validate_params(context, intent.params)
                if not validation.valid:
                    raise RouterError.validation_failed(
                        f"Parameter validation failed: {validation.error_summary()}",
                        validation.error_dicts(),
                    )
                self._transition(IntentState.validated, want=want)

                command = self._executor.build_command(intent, context)

                if intent.confirm and not confirm:
                    self._transition(IntentState.blocked_on_confirmation, want=want)
                    return self._confirmation_required(tool, intent, command)
                self._transition(IntentState.confirmed, want=want)

                outcome = self._executor.run(command, timeout_ms=timeout_ms)
                self._transition(IntentState.executed, want=want, status=outcome.status.value)
                if not outcome.ok:
                    raise RouterError(
                        ErrorKind.execution_failed,
                        self._failure_message(outcome.error, outcome.exit_code, outcome.stderr),
                        {"tool": tool.name, "command": command, **outcome.failure_data()},
                    )

                self._transition(IntentState.done, want=want)
                return {"success": True, "tool": tool.name, "command": command, "output": outcome.payload()}
        except RouterError:
            raise
        except Exception as exc:
            logger.exception(
                "intent execution crashed",
                extra={"event": "intent.internal_error", "error_type": type(exc).__name__, "error": str(exc)},
            )
            raise RouterError.internal(f"Intent execution failed: {exc}", {"want": want, "error": str(exc)}) from exc

    def context_snippet(self) -> str:
        """生成供 AI 代理使用的能力说明片段。"""
        domains = self._store.domains()
        manifests = self._store.all_manifests()
        tool_lines = "\n".join(f"- {tool.name} ({tool.domain}): {tool.summary}" for tool in manifests)
        return (
            f"You have access to a Capability Router with {len(manifests)} tools.\n\n"
            f"Available domains: {', '.join(domains)}\n\n"
            f"Tools:\n{tool_lines}\n\n"
            "To use tools, send intents:\n"
            '{ "want": "check email" }\n'
            '{ "want": "delete emails", "context": { "ids": [...] }, "confirm": true }\n\n'
            "Query cmp.capabilities for intent patterns. Query cmp.schema for parameters."
        )

    def _require_tool(self, tool_name: str) -> ToolManifest:
        tool = self._store.get_tool(tool_name)
        if tool is None:
            raise RouterError.tool_not_found(tool_name)
        return tool

    def _load_capability(self, tool: ToolManifest) -> CapabilityRecord:
        try:
            return self._store.load_capability(tool)
        except Exception as exc:
            raise RouterError(
                ErrorKind.capability_not_found,
                f"Failed to load capabilities for tool: {tool.name}",
                {"tool": tool.name, "error": str(exc)},
            ) from exc

    @staticmethod
    def _confirmation_required(tool: ToolManifest, intent: Intent, command: str) -> dict[str, Any]:
        return {
            "success": False,
            "reason": "confirmation_required",
            "tool": tool.name,
            "command": command,
            "intent": intent.patterns[0],
            "destructive": intent.destructive,
            "message": CONFIRMATION_MESSAGE,
        }

    @staticmethod
    def _parse_timeout(value: Any) -> int | None:
        if value is None:
            return None
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            raise RouterError.invalid_params('"timeout" must be a positive integer (ms)', {"received": value})
        return value

    @staticmethod
    def _failure_message(error: str | None, exit_code: int | None, stderr: str | None) -> str:
        if error:
            return error
        return f"Command failed with exit code {exit_code}: {(stderr or '')[:500]}"

    @staticmethod
    def _transition(state: IntentState, **fields: Any) -> None:
        logger.info(
            "intent %s",
            state.value,
            extra={"event": f"intent.{state.value}", "payload_preview": fields},
        )
