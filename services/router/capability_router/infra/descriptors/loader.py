"""描述符文件加载器：扫描搜索路径下的工具目录，读取 manifest.json 与 capability.json。"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from pathlib import Path

from pydantic import ValidationError

from capability_router.domain.models import CapabilityRecord, ToolManifest
from capability_router.domain.tools.validator import find_placeholders

MANIFEST_LOCATIONS = (Path("cmp") / "manifest.json", Path(".cmp") / "manifest.json")
CAPABILITY_FILENAME = "capability.json"

logger = logging.getLogger(__name__)


class FileDescriptorLoader:
    """基于文件系统的描述符来源。

    每个搜索路径既可以本身是工具目录，也可以是包含多个工具目录的父目录。
    工具目录下存在 ``cmp/manifest.json`` 或 ``.cmp/manifest.json`` 即视为有效工具，
    ``capability.json`` 与 manifest 位于同一目录。
    """

    def __init__(self, search_paths: Iterable[Path]) -> None:
        self._search_paths = [Path(item) for item in search_paths]

    @property
    def search_paths(self) -> list[Path]:
        return list(self._search_paths)

    def scan(self) -> list[ToolManifest]:
        manifests: list[ToolManifest] = []
        for base in self._search_paths:
            if not base.is_dir():
                continue
            own = self.read_tool_dir(base)
            if own is not None:
                manifests.append(own)
                continue
            for entry in sorted(base.iterdir()):
                if not entry.is_dir():
                    continue
                manifest = self.read_tool_dir(entry)
                if manifest is not None:
                    manifests.append(manifest)
        return manifests

    def read_tool_dir(self, tool_dir: Path) -> ToolManifest | None:
        """尝试从工具目录读取 manifest；无效文件记录告警后跳过。"""
        for location in MANIFEST_LOCATIONS:
            manifest_path = tool_dir / location
            if not manifest_path.is_file():
                continue
            try:
                payload = json.loads(manifest_path.read_text(encoding="utf-8"))
                if not isinstance(payload, dict):
                    raise ValueError("manifest must be a JSON object")
                payload["path"] = str(manifest_path.parent)
                return ToolManifest.model_validate(payload)
            except (OSError, ValueError) as exc:
                logger.warning(
                    "failed to load manifest",
                    extra={
                        "event": "registry.manifest.invalid",
                        "op": str(manifest_path),
                        "error_type": type(exc).__name__,
                        "error": str(exc),
                    },
                )
        return None

    def read_capability(self, tool: ToolManifest) -> CapabilityRecord:
        """读取并解析工具的 capability.json；文件缺失抛 LookupError，内容非法抛 ValueError。"""
        if tool.path is None:
            raise LookupError(f"No capability.json found for tool: {tool.name}")
        capability_path = tool.path / CAPABILITY_FILENAME
        if not capability_path.is_file():
            raise LookupError(f"No capability.json found for tool: {tool.name}")
        try:
            record = CapabilityRecord.model_validate_json(capability_path.read_text(encoding="utf-8"))
        except ValidationError as exc:
            raise ValueError(f"Invalid capability.json for tool {tool.name}: {exc}") from exc

        for intent in record.intents:
            undeclared = [name for name in find_placeholders(intent.command) if name not in intent.params]
            if undeclared:
                # 未声明的占位符只能由调用方传入未知参数填充，否则执行前会被拒绝。
                logger.debug(
                    "intent template references undeclared params",
                    extra={
                        "event": "registry.capability.undeclared_placeholder",
                        "op": tool.name,
                        "payload_preview": {"pattern": intent.patterns[0], "params": undeclared},
                    },
                )
        return record
