"""描述符存储与加载测试：验证目录扫描、快照替换、能力缓存与访问策略过滤。"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from capability_router.domain.models import CapabilityRecord, Intent, ToolManifest
from capability_router.domain.tools.registry import DescriptorStore
from capability_router.infra.descriptors.loader import FileDescriptorLoader
from capability_router.infra.security.tool_policy import ToolAccessPolicy


def _write_tool(
    base: Path,
    name: str,
    *,
    domain: str = "demo",
    hidden: bool = False,
    intents: list[dict] | None = None,
) -> Path:
    """在 base 下生成一个工具目录，返回 manifest 所在目录。"""
    descriptor_dir = base / name / (".cmp" if hidden else "cmp")
    descriptor_dir.mkdir(parents=True)
    (descriptor_dir / "manifest.json").write_text(
        json.dumps({"domain": domain, "name": name, "summary": f"{name} summary"}),
        encoding="utf-8",
    )
    if intents is not None:
        (descriptor_dir / "capability.json").write_text(json.dumps({"intents": intents}), encoding="utf-8")
    return descriptor_dir


def test_loader_scans_parent_and_tool_dirs(tmp_path: Path) -> None:
    tools_root = tmp_path / "tools"
    _write_tool(tools_root, "alpha")
    _write_tool(tools_root, "beta", hidden=True)
    standalone = tmp_path / "standalone"
    _write_tool(standalone, "gamma")

    loader = FileDescriptorLoader([tools_root, standalone / "gamma", tmp_path / "missing"])
    names = [manifest.name for manifest in loader.scan()]
    assert names == ["alpha", "beta", "gamma"]


def test_loader_skips_invalid_manifest(tmp_path: Path) -> None:
    _write_tool(tmp_path, "good")
    broken = tmp_path / "broken" / "cmp"
    broken.mkdir(parents=True)
    (broken / "manifest.json").write_text("{not json", encoding="utf-8")
    missing_fields = tmp_path / "partial" / "cmp"
    missing_fields.mkdir(parents=True)
    (missing_fields / "manifest.json").write_text(json.dumps({"name": "partial"}), encoding="utf-8")

    names = [manifest.name for manifest in FileDescriptorLoader([tmp_path]).scan()]
    assert names == ["good"]


def test_read_capability_errors(tmp_path: Path) -> None:
    """capability.json 缺失抛 LookupError，内容非法抛 ValueError。"""
    loader = FileDescriptorLoader([tmp_path])
    _write_tool(tmp_path, "nocap")
    bad_dir = _write_tool(tmp_path, "badcap", intents=[])
    (bad_dir / "capability.json").write_text(json.dumps({"intents": [{"patterns": [], "command": "x"}]}), encoding="utf-8")
    regex_dir = _write_tool(tmp_path, "badregex", intents=[])
    (regex_dir / "capability.json").write_text(
        json.dumps({"intents": [{"patterns": ["re:(oops"], "command": "x"}]}),
        encoding="utf-8",
    )
    manifests = {manifest.name: manifest for manifest in loader.scan()}

    with pytest.raises(LookupError):
        loader.read_capability(manifests["nocap"])
    with pytest.raises(ValueError):
        loader.read_capability(manifests["badcap"])
    with pytest.raises(ValueError):
        loader.read_capability(manifests["badregex"])


def test_store_lazy_loads_and_caches_capabilities(tmp_path: Path) -> None:
    _write_tool(tmp_path, "alpha", intents=[{"patterns": ["run alpha"], "command": "true"}])
    loader = FileDescriptorLoader([tmp_path])
    calls: list[str] = []

    def _reader(tool: ToolManifest) -> CapabilityRecord:
        calls.append(tool.name)
        return loader.read_capability(tool)

    store = DescriptorStore(scanner=loader.scan, capability_reader=_reader).scan()
    tool = store.get_tool("alpha")
    assert tool is not None
    first = store.load_capability(tool)
    second = store.load_capability(tool)
    assert first is second
    assert calls == ["alpha"]
    assert first.intents[0].patterns == ["run alpha"]


def test_rescan_swaps_snapshot(tmp_path: Path) -> None:
    """重新扫描时整体替换快照，旧快照保持不变。"""
    _write_tool(tmp_path, "alpha")
    loader = FileDescriptorLoader([tmp_path])
    store = DescriptorStore(scanner=loader.scan).scan()
    before = store.snapshot

    _write_tool(tmp_path, "beta", domain="other")
    store.scan()

    assert list(before.tools) == ["alpha"]
    assert sorted(tool.name for tool in store.all_manifests()) == ["alpha", "beta"]
    assert sorted(store.domains()) == ["demo", "other"]
    assert [tool.name for tool in store.manifests_by_domain("other")] == ["beta"]
    assert store.manifests_by_domain("missing") == []


def test_later_duplicate_overrides_earlier() -> None:
    first = ToolManifest(domain="a", name="dup", summary="first")
    second = ToolManifest(domain="b", name="dup", summary="second")
    store = DescriptorStore().load([first, second])
    tool = store.get_tool("dup")
    assert tool is not None and tool.summary == "second"
    assert store.domains() == ["b"]


def test_register_adds_tool_with_capability() -> None:
    store = DescriptorStore().load([ToolManifest(domain="a", name="one")])
    capability = CapabilityRecord(intents=[Intent(patterns=["do two"], command="true")])
    assert store.register(ToolManifest(domain="a", name="two"), capability) is True
    tool = store.get_tool("two")
    assert tool is not None
    assert store.load_capability(tool) is capability
    assert [tool.name for tool in store.manifests_by_domain("a")] == ["one", "two"]


def test_load_capability_without_reader() -> None:
    store = DescriptorStore().load([ToolManifest(domain="a", name="one")])
    tool = store.get_tool("one")
    assert tool is not None
    with pytest.raises(LookupError):
        store.load_capability(tool)


def test_policy_filters_denied_tools() -> None:
    policy = ToolAccessPolicy(deny_list=["secret"])
    store = DescriptorStore(tool_filter=policy).load(
        [ToolManifest(domain="a", name="public"), ToolManifest(domain="a", name="secret")]
    )
    assert [tool.name for tool in store.all_manifests()] == ["public"]
    assert store.register(ToolManifest(domain="b", name="secret")) is False
    assert store.get_tool("secret") is None
