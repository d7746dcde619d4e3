"""路由编排测试：基于 fixtures 描述符验证目录查询、意图生命周期、确认门与错误映射。"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from capability_router.application.executor import CommandExecutor
from capability_router.application.router import CONFIRMATION_MESSAGE, CapabilityRouter
from capability_router.domain.enums import ErrorKind, ExecutionStatus
from capability_router.domain.errors import RouterError
from capability_router.domain.models import CapabilityRecord, ExecutionOutcome, Intent, ToolManifest
from capability_router.domain.tools.registry import DescriptorStore
from capability_router.infra.descriptors.loader import FileDescriptorLoader

FIXTURES = Path(__file__).parent / "fixtures"


class _RecordingExecutor(CommandExecutor):
    """测试用执行器：记录命令而不真正执行。"""
    def __init__(self) -> None:
        super().__init__(timeout_ms=1_000, kill_grace_ms=100)
        self.commands: list[tuple[str, int | None]] = []

    def run(self, command: str, timeout_ms: int | None = None) -> ExecutionOutcome:
        self.commands.append((command, timeout_ms))
        return ExecutionOutcome(status=ExecutionStatus.parsed, output={"ok": True})


def _memory_router(
    tools: list[tuple[ToolManifest, list[dict[str, Any]]]],
    executor: CommandExecutor | None = None,
) -> CapabilityRouter:
    manifests = [manifest for manifest, _ in tools]
    capabilities = {
        manifest.name: CapabilityRecord(intents=[Intent.model_validate(item) for item in intents])
        for manifest, intents in tools
    }
    store = DescriptorStore().load(manifests, capabilities)
    return CapabilityRouter(store=store, executor=executor or CommandExecutor(timeout_ms=5_000, kill_grace_ms=300))


def _expect_error(kind: ErrorKind, func, *args: Any) -> RouterError:
    with pytest.raises(RouterError) as exc_info:
        func(*args)
    assert exc_info.value.kind is kind
    return exc_info.value


@pytest.fixture()
def router() -> CapabilityRouter:
    loader = FileDescriptorLoader([FIXTURES])
    store = DescriptorStore(scanner=loader.scan, capability_reader=loader.read_capability).scan()
    return CapabilityRouter(store=store, executor=CommandExecutor(timeout_ms=5_000, kill_grace_ms=300))


def test_domains_and_manifests(router: CapabilityRouter) -> None:
    assert router.domains() == {"domains": ["test"]}
    manifests = router.manifests()["manifests"]
    assert [item["name"] for item in manifests] == ["mock-tool"]
    assert manifests[0]["path"].endswith("mock-tool/cmp")
    assert router.manifests("test")["manifests"][0]["domain"] == "test"
    assert router.manifests("nonexistent") == {"manifests": []}


def test_capabilities_expose_flags_without_schema(router: CapabilityRouter) -> None:
    intents = router.capabilities("mock-tool")["intents"]
    destructive = [item for item in intents if item["destructive"]]
    assert len(destructive) == 1
    assert destructive[0]["confirm"] is True
    assert destructive[0]["patterns"] == ["delete file", "remove file"]
    assert all("params" not in item for item in intents)


def test_capabilities_unknown_tool(router: CapabilityRouter) -> None:
    error = _expect_error(ErrorKind.tool_not_found, router.capabilities, "nonexistent")
    assert error.code == -32001
    assert error.data == {"tool": "nonexistent"}


def test_schema_returns_full_intent(router: CapabilityRouter) -> None:
    schema = router.schema("mock-tool", "echo message")
    assert schema["command"] == "echo {message}"
    assert schema["params"]["message"]["required"] is True


def test_schema_unknown_pattern(router: CapabilityRouter) -> None:
    error = _expect_error(ErrorKind.no_match, router.schema, "mock-tool", "unknown pattern xyz")
    assert error.data == {"tool": "mock-tool", "pattern": "unknown pattern xyz"}


def test_intent_executes_simple_command(router: CapabilityRouter) -> None:
    result = router.intent({"want": "echo message", "context": {"message": "hello"}})
    assert result == {"success": True, "tool": "mock-tool", "command": "echo hello", "output": {"raw": "hello"}}


def test_intent_uses_defaults_and_overrides(router: CapabilityRouter) -> None:
    assert router.intent({"want": "greet user"})["output"] == {"raw": "Hello, World!"}
    assert router.intent({"want": "greet user", "context": {"name": "Alice"}})["output"] == {"raw": "Hello, Alice!"}


def test_intent_confirmation_gate(router: CapabilityRouter, tmp_path: Path) -> None:
    """需要确认的意图在未确认时只返回命令预览，确认后才执行。"""
    victim = tmp_path / "victim.txt"
    victim.write_text("x", encoding="utf-8")

    preview = router.intent({"want": "delete file", "context": {"path": str(victim)}})
    assert preview["success"] is False
    assert preview["reason"] == "confirmation_required"
    assert preview["destructive"] is True
    assert preview["intent"] == "delete file"
    assert preview["message"] == CONFIRMATION_MESSAGE
    assert victim.exists()

    result = router.intent({"want": "delete file", "context": {"path": str(victim)}, "confirm": True})
    assert result["success"] is True
    assert not victim.exists()


def test_intent_no_match(router: CapabilityRouter) -> None:
    error = _expect_error(ErrorKind.no_match, router.intent, {"want": "completely unknown action xyz123"})
    assert error.code == -32000
    assert error.data == {"intent": "completely unknown action xyz123"}


def test_intent_missing_required(router: CapabilityRouter) -> None:
    error = _expect_error(ErrorKind.validation_failed, router.intent, {"want": "echo message"})
    assert error.code == -32602
    assert error.data["errors"][0]["type"] == "missing_required"


def test_intent_enum_checked(router: CapabilityRouter) -> None:
    error = _expect_error(ErrorKind.validation_failed, router.intent, {"want": "select mode", "context": {"mode": "fast"}})
    assert error.data["errors"][0]["type"] == "invalid_enum"
    assert router.intent({"want": "select mode", "context": {"mode": "debug"}})["output"] == {"raw": "mode=debug"}
    assert router.intent({"want": "select mode"})["output"] == {"raw": "mode=release"}


def test_intent_array_and_json_output(router: CapabilityRouter) -> None:
    assert router.intent({"want": "process items", "context": {"items": ["a", "b", "c"]}})["output"] == {"raw": "a b c"}
    result = router.intent({"want": "json output", "context": {"count": "3"}})
    assert result["output"] == {"status": "ok", "count": 3}


def test_intent_escapes_injection(router: CapabilityRouter) -> None:
    result = router.intent({"want": "echo message", "context": {"message": "test; rm -rf /"}})
    assert result["command"] == "echo 'test; rm -rf /'"
    assert result["output"] == {"raw": "test; rm -rf /"}


@pytest.mark.parametrize(
    "params",
    [
        {"want": ""},
        {"want": "   "},
        {"want": 42},
        {"want": "echo message", "context": ["not", "a", "map"]},
        {"want": "echo message", "context": {"message": "x"}, "timeout": 0},
        {"want": "echo message", "context": {"message": "x"}, "timeout": True},
    ],
)
def test_intent_rejects_malformed_params(router: CapabilityRouter, params: dict[str, Any]) -> None:
    _expect_error(ErrorKind.invalid_params, router.intent, params)


def test_confirmation_preview_for_list_params() -> None:
    executor = _RecordingExecutor()
    router = _memory_router(
        [
            (
                ToolManifest(domain="mail", name="mailer"),
                [
                    {
                        "patterns": ["delete emails"],
                        "command": "tool delete --ids {ids}",
                        "confirm": True,
                        "destructive": True,
                        "params": {"ids": {"type": "array<string>", "required": True}},
                    }
                ],
            )
        ],
        executor,
    )
    result = router.intent({"want": "delete emails", "context": {"ids": ["abc123", "def456"]}})
    assert result["reason"] == "confirmation_required"
    assert result["command"] == "tool delete --ids abc123 def456"
    assert executor.commands == []


def test_intent_is_idempotent_for_same_input() -> None:
    executor = _RecordingExecutor()
    router = _memory_router(
        [(ToolManifest(domain="sys", name="disk"), [{"patterns": ["disk usage"], "command": "df -h {path}", "params": {"path": {"type": "string", "default": "/"}}}])],
        executor,
    )
    first = router.intent({"want": "disk usage", "timeout": 250})
    second = router.intent({"want": "disk usage", "timeout": 250})
    assert first == second
    assert executor.commands == [("df -h /", 250), ("df -h /", 250)]


def test_intent_ambiguous() -> None:
    router = _memory_router(
        [
            (ToolManifest(domain="email", name="gmail"), [{"patterns": ["check email"], "command": "true"}]),
            (ToolManifest(domain="email", name="outlook"), [{"patterns": ["check email"], "command": "true"}]),
        ],
        _RecordingExecutor(),
    )
    error = _expect_error(ErrorKind.ambiguous_intent, router.intent, {"want": "check email"})
    assert error.code == -32004
    assert sorted(item["tool"] for item in error.data["candidates"]) == ["gmail", "outlook"]


def test_intent_execution_failure() -> None:
    router = _memory_router([(ToolManifest(domain="sys", name="failer"), [{"patterns": ["fail now"], "command": "echo bad >&2; exit 4"}])])
    error = _expect_error(ErrorKind.execution_failed, router.intent, {"want": "fail now"})
    assert error.code == -32003
    assert error.data["exit_code"] == 4
    assert error.data["stderr"] == "bad\n"
    assert error.data["tool"] == "failer"


def test_intent_timeout_override() -> None:
    router = _memory_router([(ToolManifest(domain="sys", name="sleeper"), [{"patterns": ["sleep long"], "command": "sleep 5"}])])
    error = _expect_error(ErrorKind.execution_failed, router.intent, {"want": "sleep long", "timeout": 200})
    assert error.data["timeout"] == 200
    assert error.message == "Command timed out after 200ms"


def test_capability_load_failure_during_intent_is_no_match() -> None:
    """摘要命中但能力记录无法加载时按无匹配处理。"""
    def _reader(tool: ToolManifest) -> CapabilityRecord:
        raise ValueError("broken capability.json")

    store = DescriptorStore(capability_reader=_reader).load([ToolManifest(domain="x", name="broken", summary="Weather forecast")])
    router = CapabilityRouter(store=store, executor=_RecordingExecutor())
    _expect_error(ErrorKind.no_match, router.intent, {"want": "forecast please"})
    _expect_error(ErrorKind.capability_not_found, router.capabilities, "broken")


def test_context_snippet_lists_tools(router: CapabilityRouter) -> None:
    snippet = router.context_snippet()
    assert "mock-tool (test): Mock tool for router tests" in snippet
    assert "Available domains: test" in snippet
