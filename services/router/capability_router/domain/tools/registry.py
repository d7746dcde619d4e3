"""工具描述符注册中心：以不可变快照保存工具清单，按需加载并缓存能力记录。"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from capability_router.domain.models import CapabilityRecord, ToolManifest

logger = logging.getLogger(__name__)

CapabilityReader = Callable[[ToolManifest], CapabilityRecord]
ManifestScanner = Callable[[], list[ToolManifest]]
ToolFilter = Callable[[ToolManifest], bool]


@dataclass(slots=True)
class DescriptorSnapshot:
    """某一时刻的描述符集合；工具表与领域表只读，能力缓存随快照一起替换。"""
    tools: Mapping[str, ToolManifest]
    domains: Mapping[str, tuple[str, ...]]
    capabilities: dict[str, CapabilityRecord] = field(default_factory=dict)

    @classmethod
    def build(
        cls,
        manifests: Iterable[ToolManifest],
        capabilities: Mapping[str, CapabilityRecord] | None = None,
    ) -> DescriptorSnapshot:
        tools: dict[str, ToolManifest] = {}
        for manifest in manifests:
            # 同名工具后注册者覆盖先注册者。
            tools[manifest.name] = manifest
        domains: dict[str, list[str]] = {}
        for manifest in tools.values():
            domains.setdefault(manifest.domain, []).append(manifest.name)
        return cls(
            tools=MappingProxyType(tools),
            domains=MappingProxyType({domain: tuple(names) for domain, names in domains.items()}),
            capabilities={name: record for name, record in (capabilities or {}).items() if name in tools},
        )


class DescriptorStore:
    """描述符存储，对外提供枚举、查找与能力记录懒加载。

    读操作只拿当前快照引用，热重载时整体替换快照，进行中的匹配不会看到半更新状态。
    """

    def __init__(
        self,
        *,
        scanner: ManifestScanner | None = None,
        capability_reader: CapabilityReader | None = None,
        tool_filter: ToolFilter | None = None,
    ) -> None:
        self._scanner = scanner
        self._capability_reader = capability_reader
        self._tool_filter = tool_filter
        self._lock = threading.Lock()
        self._snapshot = DescriptorSnapshot.build([])

    @property
    def snapshot(self) -> DescriptorSnapshot:
        return self._snapshot

    def scan(self) -> DescriptorStore:
        """重新扫描描述符来源并原子替换快照。"""
        if self._scanner is None:
            return self
        manifests = self._allowed(self._scanner())
        self._swap(DescriptorSnapshot.build(manifests))
        logger.info(
            "descriptor scan completed",
            extra={"event": "registry.scan.completed", "payload_preview": {"tools": len(manifests)}},
        )
        return self

    def load(
        self,
        manifests: Iterable[ToolManifest],
        capabilities: Mapping[str, CapabilityRecord] | None = None,
    ) -> DescriptorStore:
        """直接注入一组描述符（可附带已加载的能力记录），用于嵌入式调用与测试。"""
        self._swap(DescriptorSnapshot.build(self._allowed(list(manifests)), capabilities))
        return self

    def register(self, manifest: ToolManifest, capability: CapabilityRecord | None = None) -> bool:
        """在当前快照基础上追加单个工具；被访问策略拒绝时返回 False。"""
        if not self._allowed([manifest]):
            return False
        with self._lock:
            current = self._snapshot
            manifests = [tool for tool in current.tools.values() if tool.name != manifest.name]
            manifests.append(manifest)
            capabilities = {name: record for name, record in current.capabilities.items() if name != manifest.name}
            if capability is not None:
                capabilities[manifest.name] = capability
            self._snapshot = DescriptorSnapshot.build(manifests, capabilities)
        return True

    def all_manifests(self) -> list[ToolManifest]:
        return list(self._snapshot.tools.values())

    def get_tool(self, name: str) -> ToolManifest | None:
        return self._snapshot.tools.get(name)

    def domains(self) -> list[str]:
        return list(self._snapshot.domains.keys())

    def manifests_by_domain(self, domain: str) -> list[ToolManifest]:
        snapshot = self._snapshot
        return [snapshot.tools[name] for name in snapshot.domains.get(domain, ())]

    def load_capability(self, tool: ToolManifest) -> CapabilityRecord:
        """按需加载工具能力记录，首次加载后缓存在当前快照内。"""
        snapshot = self._snapshot
        cached = snapshot.capabilities.get(tool.name)
        if cached is not None:
            return cached
        if self._capability_reader is None:
            raise LookupError(f"No capability record available for tool: {tool.name}")
        record = self._capability_reader(tool)
        with self._lock:
            return snapshot.capabilities.setdefault(tool.name, record)

    def _swap(self, snapshot: DescriptorSnapshot) -> None:
        with self._lock:
            self._snapshot = snapshot

    def _allowed(self, manifests: list[ToolManifest]) -> list[ToolManifest]:
        if self._tool_filter is None:
            return manifests
        return [manifest for manifest in manifests if self._tool_filter(manifest)]
