"""全局配置加载模块：按 默认值 < ~/.cmp/config.json < 环境变量 的优先级构建运行参数。"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import (
    BaseSettings,
    JsonConfigSettingsSource,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

CONFIG_DIR = Path.home() / ".cmp"
CONFIG_FILE = CONFIG_DIR / "config.json"
PROTOCOL_VERSION = "0.1.0"

DEFAULT_SEARCH_PATHS: tuple[Path, ...] = (
    CONFIG_DIR / "tools",
    Path("/usr/local/share/cmp/tools"),
)


def _csv_to_list(value: str, sep: str = ",") -> list[str]:
    """将分隔字符串转换为去空白列表。"""
    return [item.strip() for item in value.split(sep) if item.strip()]


class Settings(BaseSettings):
    """路由器运行配置对象，从配置文件与 CMP_* 环境变量读取。"""
    model_config = SettingsConfigDict(
        env_prefix="CMP_",
        env_file=".env",
        env_file_encoding="utf-8",
        json_file=CONFIG_FILE,
        json_file_encoding="utf-8",
        extra="ignore",
    )

    app_name: str = "CMP Capability Router"

    # 执行参数，单位毫秒。
    timeout: int = Field(default=30_000, gt=0)
    kill_grace_ms: int = Field(default=5_000, gt=0)
    shell: str = "/bin/sh"

    http_host: str = "127.0.0.1"
    http_port: int = Field(default=7890, ge=0, le=65535)
    socket_path: Path = Field(default=CONFIG_DIR / "router.sock")
    enable_socket: bool = False
    cors_allowed_origins: str = ""

    # 工具发现：search_paths 来自配置文件，tool_path 来自 CMP_TOOL_PATH（冒号分隔）。
    search_paths: list[Path] = Field(default_factory=list)
    tool_path: str = ""
    include_default_paths: bool = True
    hot_reload_interval_seconds: float = Field(default=1.0, gt=0)

    # None 表示允许全部工具。
    allow_list: list[str] | None = None
    deny_list: list[str] = Field(default_factory=list)

    log_dir: Path = Field(default=CONFIG_DIR / "logs")
    log_level: str = "INFO"
    log_max_bytes: int = 10 * 1024 * 1024
    log_backup_count: int = 5
    log_redaction_mode: str = "standard"
    log_payload_preview_chars: int = 1000
    log_debug_modules: str = ""

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # 配置文件优先级低于环境变量，便于容器内临时覆盖。
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            JsonConfigSettingsSource(settings_cls),
            file_secret_settings,
        )

    def tool_path_list(self) -> list[Path]:
        return [Path(item) for item in _csv_to_list(self.tool_path, sep=":")]

    def log_debug_modules_list(self) -> list[str]:
        return _csv_to_list(self.log_debug_modules)

    def cors_allowed_origins_list(self) -> list[str]:
        return _csv_to_list(self.cors_allowed_origins)

    def resolved_search_paths(self) -> list[Path]:
        """返回去重后的完整搜索路径：内置目录、配置文件目录与环境变量目录。"""
        paths: list[Path] = []
        candidates = [
            *(DEFAULT_SEARCH_PATHS if self.include_default_paths else ()),
            *self.search_paths,
            *self.tool_path_list(),
        ]
        for candidate in candidates:
            resolved = candidate.expanduser()
            if resolved not in paths:
                paths.append(resolved)
        return paths


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """构建并缓存 Settings，日志目录按当前工作目录解析为绝对路径。"""
    settings = Settings()
    if not settings.log_dir.is_absolute():
        settings.log_dir = (Path.cwd() / settings.log_dir).resolve()
    settings.socket_path = settings.socket_path.expanduser()
    return settings
