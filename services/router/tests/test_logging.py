"""日志测试：验证脱敏、预览截断与 JSONL 输出携带上下文字段。"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from capability_router.config import Settings
from capability_router.infra.logging.context import bind_log_context, get_log_context
from capability_router.infra.logging.setup import (
    configure_logging,
    redact_text,
    render_payload_preview,
    shutdown_logging,
)


def test_redact_text_masks_credentials() -> None:
    assert redact_text("Authorization: Bearer abc123 next", "standard") == "Authorization: Bearer *** next"
    assert redact_text("password=hunter2 rest", "standard") == "password=*** rest"
    assert redact_text("password=hunter2", "off") == "password=hunter2"
    assert redact_text("--api-key sk1 x-api-key: sk2", "standard") == "--api-key sk1 x-api-key: ***"


def test_payload_preview_truncated() -> None:
    preview = render_payload_preview({"command": "x" * 50}, max_chars=20, redaction_mode="standard")
    assert preview is not None
    assert preview.endswith("...(truncated)")
    assert len(preview) == 20 + len("...(truncated)")


def test_bind_log_context_restores_previous_values() -> None:
    with bind_log_context(method="cmp.intent"):
        with bind_log_context(tool="mock-tool"):
            assert get_log_context()["tool"] == "mock-tool"
            assert get_log_context()["method"] == "cmp.intent"
        assert get_log_context()["tool"] is None
    assert get_log_context()["method"] is None


def test_configure_logging_writes_jsonl(tmp_path: Path) -> None:
    """日志写入 <log_dir>/<role>/router.jsonl，并附带绑定的上下文字段。"""
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    settings = Settings(log_dir=tmp_path, log_level="INFO")
    try:
        log_file = configure_logging(settings, process_role="test")
        with bind_log_context(method="cmp.intent", transport="stdio"):
            logging.getLogger("capability_router.tests").info(
                "intent done",
                extra={"event": "intent.done", "payload_preview": {"token": "token=abc"}},
            )
        logging.getLogger("capability_router.tests").debug("hidden", extra={"event": "debug.hidden"})
        shutdown_logging()
    finally:
        shutdown_logging()
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)

    assert log_file == tmp_path / "test" / "router.jsonl"
    entries = [json.loads(line) for line in log_file.read_text(encoding="utf-8").splitlines()]
    assert [entry["event"] for entry in entries] == ["intent.done"]
    entry = entries[0]
    assert entry["service"] == "capability-router"
    assert entry["method"] == "cmp.intent"
    assert entry["transport"] == "stdio"
    assert "abc" not in entry["payload_preview"]
