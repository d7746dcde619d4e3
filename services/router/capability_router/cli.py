"""cmp 命令行入口。

Commands:
- start: 启动路由服务（HTTP / Unix socket / stdio）
- domains: 列出领域
- tools: 列出工具
- register: 注册工具目录
- intent: 执行自然语言意图
- context: 输出 AI 代理能力说明
- init: 初始化 ~/.cmp 配置目录
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, NoReturn

import click
import httpx

from capability_router.application.container import (
    get_descriptor_store,
    get_dispatcher,
    get_watcher,
    shutdown_container_resources,
)
from capability_router.config import CONFIG_DIR, CONFIG_FILE, get_settings
from capability_router.domain.errors import RouterError
from capability_router.domain.tools.registry import DescriptorStore
from capability_router.infra.descriptors.loader import FileDescriptorLoader
from capability_router.infra.logging.setup import configure_logging, shutdown_logging
from capability_router.infra.rpc.client import RouterClient


def _echo_json(payload: Any) -> None:
    click.echo(json.dumps(payload, indent=2, ensure_ascii=False))


def _call(ctx: click.Context, method: str, params: dict[str, Any] | None = None) -> Any:
    """配置了 --url 时调用远程服务，否则在进程内直接分发。"""
    url = ctx.obj.get("url") if ctx.obj else None
    if url:
        try:
            with RouterClient(url) as client:
                return client.call(method, params)
        except RouterError as exc:
            _fail(exc.to_dict())
        except httpx.HTTPError as exc:
            click.echo(f"✗ Error: cannot reach router at {url}: {exc}", err=True)
            raise click.Abort()

    response = get_dispatcher().handle({"jsonrpc": "2.0", "method": method, "params": params or {}, "id": 1})
    if "error" in response:
        _fail(response["error"])
    return response["result"]


def _fail(error: dict[str, Any]) -> NoReturn:
    click.echo(json.dumps(error, indent=2, ensure_ascii=False), err=True)
    raise click.Abort()


def parse_param(raw: str) -> tuple[str, Any]:
    """解析 key=value；value 优先按 JSON 解析，失败时保留为字符串。"""
    key, sep, value = raw.partition("=")
    if not sep or not key.strip():
        raise click.BadParameter(f"expected key=value, got {raw!r}", param_hint="--param")
    try:
        parsed: Any = json.loads(value)
    except json.JSONDecodeError:
        parsed = value
    return key.strip(), parsed


@click.group()
@click.option(
    "--url",
    envvar="CMP_ROUTER_URL",
    default=None,
    help="Base URL of a running router; commands run in-process when omitted",
)
@click.pass_context
def cli(ctx: click.Context, url: str | None):
    """CMP - Capability Manifest Protocol Router."""
    ctx.ensure_object(dict)
    ctx.obj["url"] = url


@cli.command("start")
@click.option("-p", "--port", type=int, default=None, help="HTTP port (default: 7890)")
@click.option("--host", default=None, help="HTTP bind address (default: 127.0.0.1)")
@click.option("-s", "--socket", "use_socket", is_flag=True, help="Use Unix socket instead of HTTP")
@click.option("--socket-path", type=click.Path(path_type=Path), default=None, help="Unix socket path")
@click.option("--stdio", "use_stdio", is_flag=True, help="Use stdio mode (for embedded use)")
@click.option("-w", "--hot-reload", is_flag=True, help="Watch for tool changes and reload")
def start(
    port: int | None,
    host: str | None,
    use_socket: bool,
    socket_path: Path | None,
    use_stdio: bool,
    hot_reload: bool,
):
    """Start the router server.

    Examples:
        cmp start                  # HTTP on port 7890
        cmp start -p 8080          # HTTP on port 8080
        cmp start --socket         # Unix socket
        cmp start --stdio          # Stdio mode
        cmp start --hot-reload     # With hot reload
    """
    settings = get_settings()

    if use_stdio:
        # stdio 模式下 stdout 只能写协议帧。
        from capability_router.infra.transports.stdio import StdioServer

        configure_logging(settings, process_role="stdio")
        _start_watcher(hot_reload, announce=False)
        try:
            StdioServer(get_dispatcher()).serve_forever()
        finally:
            shutdown_container_resources()
            shutdown_logging()
        return

    if use_socket or settings.enable_socket:
        from capability_router.infra.transports.socket import SocketServer

        path = (socket_path or settings.socket_path).expanduser()
        configure_logging(settings, process_role="socket")
        store = get_descriptor_store()
        _start_watcher(hot_reload, announce=True)
        server = SocketServer(get_dispatcher(), path)
        click.echo(f"CMP Router listening on {path} ({len(store.all_manifests())} tools)")
        try:
            asyncio.run(server.serve_forever())
        except KeyboardInterrupt:
            click.echo("Shutting down...")
        finally:
            if path.exists():
                path.unlink()
            shutdown_container_resources()
            shutdown_logging()
        return

    import uvicorn

    from capability_router.main import app

    _start_watcher(hot_reload, announce=True)
    bind_host = host or settings.http_host
    bind_port = port if port is not None else settings.http_port
    click.echo(f"CMP Router listening on http://{bind_host}:{bind_port}")
    uvicorn.run(app, host=bind_host, port=bind_port, log_level="info")


def _start_watcher(enabled: bool, *, announce: bool) -> None:
    if not enabled:
        return

    def _report(store: DescriptorStore) -> None:
        click.echo(f"Hot reload: re-scanned {len(store.all_manifests())} tools")

    watcher = get_watcher()
    watcher.set_on_reload(_report if announce else None)
    watcher.start()


@cli.command("domains")
@click.pass_context
def domains(ctx: click.Context):
    """List available domains."""
    result = _call(ctx, "cmp.domains")
    click.echo("Available domains:")
    for domain in result["domains"]:
        tools = _call(ctx, "cmp.manifests", {"domain": domain})["manifests"]
        click.echo(f"  {domain}: {', '.join(tool['name'] for tool in tools)}")


@cli.command("tools")
@click.argument("domain", required=False)
@click.pass_context
def tools(ctx: click.Context, domain: str | None):
    """List registered tools, optionally within one DOMAIN."""
    params = {"domain": domain} if domain else {}
    result = _call(ctx, "cmp.manifests", params)
    click.echo(f"Tools in {domain}:" if domain else "All tools:")
    for manifest in result["manifests"]:
        click.echo(f"  {manifest['name']} ({manifest['domain']})")
        click.echo(f"    {manifest.get('summary', '')}")


@cli.command("register")
@click.argument("path", type=click.Path(exists=True, file_okay=False, path_type=Path))
def register(path: Path):
    """Register a tool directory (or a directory of tools) in ~/.cmp/config.json."""
    resolved = path.resolve()
    CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)

    config: dict[str, Any] = {}
    if CONFIG_FILE.exists():
        try:
            config = json.loads(CONFIG_FILE.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            click.echo(f"✗ Error: {CONFIG_FILE} is not valid JSON: {exc}", err=True)
            raise click.Abort()

    search_paths = [str(item) for item in config.get("search_paths", [])]
    if str(resolved) not in search_paths:
        search_paths.append(str(resolved))
        config["search_paths"] = search_paths
        CONFIG_FILE.write_text(json.dumps(config, indent=2) + "\n", encoding="utf-8")
        get_settings.cache_clear()

    manifests = FileDescriptorLoader([resolved]).scan()
    click.echo(f"Registered tools from {resolved}:")
    for manifest in manifests:
        click.echo(f"  {manifest.name} ({manifest.domain}): {manifest.summary}")
    if not manifests:
        click.echo("  (no tool manifests found)")


@cli.command("intent")
@click.argument("words", nargs=-1, required=True)
@click.option("--param", "params", multiple=True, help="Context parameter as key=value (value parsed as JSON)")
@click.option("-y", "--yes", is_flag=True, help="Confirm actions that require confirmation")
@click.option("--timeout", type=click.IntRange(min=1), default=None, help="Execution timeout in milliseconds")
@click.pass_context
def intent(ctx: click.Context, words: tuple[str, ...], params: tuple[str, ...], yes: bool, timeout: int | None):
    """Execute a natural language intent.

    Examples:
        cmp intent check my email
        cmp intent delete emails --param 'ids=["a1","b2"]' --yes
    """
    want = " ".join(words).strip()
    if not want:
        raise click.BadParameter("intent text must not be empty", param_hint="WORDS")
    context = dict(parse_param(raw) for raw in params)
    request: dict[str, Any] = {"want": want, "context": context, "confirm": yes}
    if timeout is not None:
        request["timeout"] = timeout
    result = _call(ctx, "cmp.intent", request)
    _echo_json(result)
    if isinstance(result, dict) and result.get("reason") == "confirmation_required":
        click.echo("Re-run with --yes to confirm.", err=True)


@cli.command("context")
@click.pass_context
def context(ctx: click.Context):
    """Show context snippet for AI agents."""
    click.echo(_call(ctx, "cmp.context")["snippet"])


@cli.command("init")
def init():
    """Initialize the CMP config directory."""
    tools_dir = CONFIG_DIR / "tools"
    tools_dir.mkdir(parents=True, exist_ok=True)
    click.echo("CMP initialized:")
    click.echo(f"  Config: {CONFIG_DIR}")
    click.echo(f"  Tools:  {tools_dir}")
    click.echo("\nTo register a tool:")
    click.echo("  cmp register /path/to/tool")
    click.echo("\nTo start the router:")
    click.echo("  cmp start")


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
