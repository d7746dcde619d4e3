"""依赖容器模块，负责单例化创建描述符存储、执行器、编排服务与分发器。"""

from __future__ import annotations

from functools import lru_cache

from capability_router.application.dispatch import RpcDispatcher
from capability_router.application.executor import CommandExecutor
from capability_router.application.router import CapabilityRouter
from capability_router.config import get_settings
from capability_router.domain.tools.registry import DescriptorStore
from capability_router.infra.descriptors.loader import FileDescriptorLoader
from capability_router.infra.descriptors.watcher import DescriptorWatcher
from capability_router.infra.security.tool_policy import ToolAccessPolicy


@lru_cache(maxsize=1)
def get_descriptor_loader() -> FileDescriptorLoader:
    """获取文件描述符加载器单例。"""
    return FileDescriptorLoader(get_settings().resolved_search_paths())


@lru_cache(maxsize=1)
def get_tool_policy() -> ToolAccessPolicy:
    settings = get_settings()
    return ToolAccessPolicy(allow_list=settings.allow_list, deny_list=settings.deny_list)


@lru_cache(maxsize=1)
def get_descriptor_store() -> DescriptorStore:
    """获取描述符存储单例，首次创建时完成一次扫描。"""
    loader = get_descriptor_loader()
    store = DescriptorStore(
        scanner=loader.scan,
        capability_reader=loader.read_capability,
        tool_filter=get_tool_policy(),
    )
    return store.scan()


@lru_cache(maxsize=1)
def get_executor() -> CommandExecutor:
    settings = get_settings()
    return CommandExecutor(timeout_ms=settings.timeout, kill_grace_ms=settings.kill_grace_ms, shell=settings.shell)


@lru_cache(maxsize=1)
def get_router() -> CapabilityRouter:
    """获取能力路由编排服务单例。"""
    return CapabilityRouter(store=get_descriptor_store(), executor=get_executor())


@lru_cache(maxsize=1)
def get_dispatcher() -> RpcDispatcher:
    return RpcDispatcher(get_router())


@lru_cache(maxsize=1)
def get_watcher() -> DescriptorWatcher:
    """获取热重载监视器单例（调用方负责 start）。"""
    settings = get_settings()
    return DescriptorWatcher(
        get_descriptor_store(),
        get_descriptor_loader().search_paths,
        interval_seconds=settings.hot_reload_interval_seconds,
    )


def shutdown_container_resources() -> None:
    """停止后台监视线程并清理依赖容器缓存。"""
    if get_watcher.cache_info().currsize:
        get_watcher().stop()

    # 按依赖顺序清理缓存，确保后续调用可重新构建全新实例。
    for provider in (
        get_watcher,
        get_dispatcher,
        get_router,
        get_executor,
        get_descriptor_store,
        get_tool_policy,
        get_descriptor_loader,
    ):
        provider.cache_clear()
