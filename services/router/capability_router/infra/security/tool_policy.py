"""工具访问策略：根据允许/拒绝名单决定工具是否对调用方可见。"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from capability_router.domain.models import ToolManifest

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ToolDecision:
    """工具准入决策结果，包含是否放行与可选说明。"""
    allowed: bool
    message: str | None = None


class ToolAccessPolicy:
    """工具准入策略；拒绝名单优先于允许名单。"""

    def __init__(self, allow_list: Iterable[str] | None = None, deny_list: Iterable[str] = ()) -> None:
        # None 表示未配置允许名单，即全部放行。
        self._allow = None if allow_list is None else frozenset(allow_list)
        self._deny = frozenset(deny_list)

    def decide(self, manifest: ToolManifest) -> ToolDecision:
        """依次检查拒绝名单与允许名单，工具名或 domain/name 均可命中。"""
        keys = {manifest.name, f"{manifest.domain}/{manifest.name}"}
        if keys & self._deny:
            return ToolDecision(allowed=False, message="rejected by tool policy: deny list")
        if self._allow is not None and not keys & self._allow:
            return ToolDecision(allowed=False, message="rejected by tool policy: not in allow list")
        return ToolDecision(allowed=True)

    def __call__(self, manifest: ToolManifest) -> bool:
        decision = self.decide(manifest)
        if not decision.allowed:
            logger.info(
                "tool filtered by policy",
                extra={"event": "registry.tool.rejected", "op": manifest.name, "payload_preview": decision.message},
            )
        return decision.allowed
