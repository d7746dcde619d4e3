"""日志初始化：JSONL 文件经队列异步写入，ERROR 同步到 stderr；stdout 保留给协议帧。"""

from __future__ import annotations

import json
import logging
import re
import sys
from datetime import datetime, timezone
from logging.handlers import QueueHandler, QueueListener, RotatingFileHandler
from pathlib import Path
from queue import SimpleQueue
from typing import Any

from capability_router.config import Settings
from capability_router.infra.logging.context import CONTEXT_FIELDS, get_log_context

SERVICE_NAME = "capability-router"

_listener: QueueListener | None = None
_queue_handler: QueueHandler | None = None

# 命令模板与参数中常见的凭据写法：key=value、key: value、Authorization: Bearer xxx。
_CREDENTIAL_RE = re.compile(
    r"(?i)(authorization\s*[:=]\s*bearer\s+|(?:password|token|secret|api[_-]?key)\s*[:=]\s*)[^\s,;\"']+"
)

# 记录上的这些扩展字段原样写入日志行。
_EXTRA_FIELDS = ("op", "duration_ms", "status_code", "error_type")


def redact_text(value: str | None, mode: str) -> str | None:
    """脱敏凭据取值；mode 为 off 时原样返回。"""
    if value is None or mode.lower() == "off":
        return value
    return _CREDENTIAL_RE.sub(r"\1***", value)


def render_payload_preview(payload: Any, *, max_chars: int, redaction_mode: str) -> str | None:
    if payload is None:
        return None
    text = payload if isinstance(payload, str) else json.dumps(payload, ensure_ascii=False, sort_keys=True, default=str)
    text = redact_text(text, redaction_mode) or ""
    return text if len(text) <= max_chars else f"{text[:max_chars]}...(truncated)"


class _LevelFilter(logging.Filter):
    """低于配置级别的记录丢弃，但 debug_modules 下的 DEBUG 记录放行。"""

    def __init__(self, min_level: int, debug_modules: list[str]) -> None:
        super().__init__()
        self._min_level = min_level
        self._prefixes = tuple(f"{name}." for name in debug_modules)
        self._names = set(debug_modules)

    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno >= self._min_level:
            return True
        return record.levelno == logging.DEBUG and (record.name in self._names or record.name.startswith(self._prefixes))


class _ContextFilter(logging.Filter):
    # 入队前固化上下文字段，监听线程里读不到调用方的 contextvars。
    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in get_log_context().items():
            if value is not None and getattr(record, key, None) is None:
                setattr(record, key, value)
        return True


class JsonLineFormatter(logging.Formatter):
    def __init__(self, settings: Settings, process_role: str) -> None:
        super().__init__()
        self._role = process_role
        self._redaction = settings.log_redaction_mode
        self._preview_chars = settings.log_payload_preview_chars

    def format(self, record: logging.LogRecord) -> str:
        error = getattr(record, "error", None)
        if error is None and record.exc_info:
            error = self.formatException(record.exc_info)

        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "service": SERVICE_NAME,
            "process_role": self._role,
            "module": record.name,
            "event": getattr(record, "event", None),
            "message": redact_text(record.getMessage(), self._redaction),
        }
        entry.update({key: getattr(record, key, None) for key in CONTEXT_FIELDS})
        entry.update({key: getattr(record, key, None) for key in _EXTRA_FIELDS})
        entry["error"] = redact_text(str(error), self._redaction) if error is not None else None
        entry["payload_preview"] = render_payload_preview(
            getattr(record, "payload_preview", None),
            max_chars=self._preview_chars,
            redaction_mode=self._redaction,
        )
        return json.dumps(entry, ensure_ascii=False, default=str)


def configure_logging(settings: Settings, *, process_role: str) -> Path:
    """写入 <log_dir>/<role>/router.jsonl 并返回其路径；重复调用会先关闭上一次的监听器。"""
    global _listener, _queue_handler
    shutdown_logging()

    log_file = settings.log_dir / process_role / "router.jsonl"
    log_file.parent.mkdir(parents=True, exist_ok=True)

    formatter = JsonLineFormatter(settings, process_role)
    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=settings.log_max_bytes,
        backupCount=settings.log_backup_count,
        encoding="utf-8",
    )
    file_handler.setFormatter(formatter)
    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(logging.ERROR)
    stderr_handler.setFormatter(formatter)

    queue: SimpleQueue[logging.LogRecord] = SimpleQueue()
    _queue_handler = QueueHandler(queue)
    _queue_handler.addFilter(_ContextFilter())
    _queue_handler.addFilter(
        _LevelFilter(
            getattr(logging, settings.log_level.upper(), logging.INFO),
            settings.log_debug_modules_list(),
        )
    )

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    root.addHandler(_queue_handler)

    _listener = QueueListener(queue, file_handler, stderr_handler, respect_handler_level=True)
    _listener.start()

    for noisy in ("uvicorn.access", "httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
    return log_file


def shutdown_logging() -> None:
    """摘除队列句柄、停止监听器并关闭文件。"""
    global _listener, _queue_handler
    if _queue_handler is not None:
        logging.getLogger().removeHandler(_queue_handler)
        _queue_handler = None
    if _listener is None:
        return
    listener, _listener = _listener, None
    listener.stop()
    for handler in listener.handlers:
        handler.close()
