"""
Dev-server plugin wiring trunk into the host lifecycle.

The host drives the sequence; the plugin implements one method per
lifecycle point:

    config(root)                  read Cargo.toml (fatal if unusable)
    config_resolved(config, log)  build the shared PluginContext
    build_start()                 create the cache dir, initial dev build
    configure_server(server)      returns a post-hook installing the middleware
    transform_index_html(html)    inject the current module/loader pair
    handle_hot_update(ctx)        rebuild on Rust source changes
    write_bundle(out_dir)         assemble the release bundle

Usage:
    plugin = TrunkPlugin(load_options(root))
    plugin.config(root)
    plugin.config_resolved(ResolvedConfig.for_project(root), get_logger('host'))
    await plugin.build_start()
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, List, Optional, Protocol, Sequence, Union

from aiohttp import web

from trunkbridge.artifacts import ensure_cache_dir, locate_async
from trunkbridge.assembler import ProductionAssembler
from trunkbridge.compiler import BuildProfile, CompilerInvoker
from trunkbridge.config import PluginOptions, ResolvedConfig
from trunkbridge.errors import ConfigurationError, DirectoryUnavailable
from trunkbridge.injector import TransformResult, build_dev_tags
from trunkbridge.logging import BridgeLogger
from trunkbridge.manifest import read_package_name
from trunkbridge.messages import LiveUpdateChannel
from trunkbridge.middleware import create_artifact_middleware
from trunkbridge.rebuild import RebuildTrigger

PLUGIN_NAME = 'trunkbridge'


class DevServerHost(Protocol):
    """What the plugin needs from a running dev server."""
    app: web.Application
    channel: LiveUpdateChannel


@dataclass
class HotUpdateContext:
    """A changed file as reported by the host's watcher."""
    file: Path
    server: DevServerHost
    modules: List[Any] = field(default_factory=list)


@dataclass
class PluginContext:
    """State shared by every component, built once at config resolution."""
    options: PluginOptions
    package_name: str
    config: ResolvedConfig
    logger: BridgeLogger

    @property
    def cache_dir(self) -> Path:
        return self.config.trunk_cache_dir

    @property
    def serving(self) -> bool:
        return self.config.command == 'serve'


class DevServerPlugin(ABC):
    """Lifecycle hooks a host dev server calls, in this order."""

    name: str = 'plugin'

    def config(self, root: Path) -> None:
        pass

    @abstractmethod
    def config_resolved(self, config: ResolvedConfig, logger: BridgeLogger) -> None:
        pass

    async def build_start(self) -> None:
        pass

    def configure_server(self, server: DevServerHost) -> Optional[Callable[[], None]]:
        return None

    async def transform_index_html(self, html: str) -> Union[str, TransformResult]:
        return html

    async def handle_hot_update(self, ctx: HotUpdateContext) -> Optional[List[Any]]:
        return None

    async def write_bundle(self, out_dir: Path) -> None:
        pass


class TrunkPlugin(DevServerPlugin):
    """Serves, rebuilds and bundles a trunk (Rust/wasm) project."""

    name = PLUGIN_NAME

    def __init__(self, options: Optional[PluginOptions] = None):
        self.options = options or PluginOptions()
        self._package_name: Optional[str] = None
        self._context: Optional[PluginContext] = None
        self._invoker: Optional[CompilerInvoker] = None
        self._trigger: Optional[RebuildTrigger] = None

    @property
    def context(self) -> PluginContext:
        if self._context is None:
            raise ConfigurationError("Plugin used before config_resolved()")
        return self._context

    @property
    def invoker(self) -> CompilerInvoker:
        if self._invoker is None:
            ctx = self.context
            self._invoker = CompilerInvoker(
                self.options.compiler_command,
                ctx.cache_dir,
                cwd=ctx.config.root,
                timeout=self.options.compile_timeout,
            )
        return self._invoker

    @property
    def trigger(self) -> Optional[RebuildTrigger]:
        return self._trigger

    def config(self, root: Path) -> None:
        self._package_name = read_package_name(root)

    def config_resolved(self, config: ResolvedConfig, logger: BridgeLogger) -> None:
        if self._package_name is None:
            self.config(config.root)
        self._context = PluginContext(
            options=self.options,
            package_name=self._package_name,
            config=config,
            logger=logger,
        )
        self._invoker = None

    async def build_start(self) -> None:
        ctx = self.context
        ensure_cache_dir(ctx.cache_dir)
        if not ctx.serving:
            # The release compile happens in write_bundle
            return

        outcome = await self.invoker.invoke(BuildProfile.DEVELOPMENT)
        if outcome.success:
            ctx.logger.info("trunk build successfully on start")
        else:
            ctx.logger.error(outcome.diagnostic or "unknown trunk error")
            ctx.logger.warning("Serving without wasm until the next successful build")

    def _make_trigger(self, channel: LiveUpdateChannel) -> RebuildTrigger:
        ctx = self.context
        return RebuildTrigger(
            self.invoker,
            channel,
            root=ctx.config.root,
            plugin_name=self.name,
            source_extensions=self.options.source_extensions,
            excluded_dirs=self.options.excluded_dirs,
            ignored_paths=[ctx.config.cache_dir],
        )

    def configure_server(self, server: DevServerHost) -> Optional[Callable[[], None]]:
        ctx = self.context
        self._trigger = self._make_trigger(server.channel)
        middleware = create_artifact_middleware(ctx.package_name, ctx.cache_dir, debug=self.options.debug)

        def install() -> None:
            # Runs after the host's own middlewares are in place
            server.app.middlewares.append(middleware)

        return install

    async def transform_index_html(self, html: str) -> Union[str, TransformResult]:
        ctx = self.context
        if not ctx.serving:
            return html
        try:
            artifacts = await locate_async(ctx.cache_dir)
        except DirectoryUnavailable:
            return html

        tags = build_dev_tags(artifacts, self.options.bindings_global)
        if not tags:
            return html
        if self.options.debug:
            ctx.logger.info(
                f"injecting wasm file {artifacts.binary_module.name} and "
                f"js file {artifacts.loader_script.name} into {self.options.html_entry}"
            )
        return TransformResult(html=html, tags=tags)

    async def handle_hot_update(self, ctx: HotUpdateContext) -> Optional[List[Any]]:
        if self._trigger is None:
            self._trigger = self._make_trigger(ctx.server.channel)
        return await self._trigger.handle_change(Path(ctx.file), ctx.modules)

    async def write_bundle(self, out_dir: Path) -> None:
        ctx = self.context
        if ctx.serving:
            return
        assembler = ProductionAssembler(self.invoker, ctx.config.root, self.options.html_entry)
        await assembler.finalize(Path(out_dir))


def trunk_plugin(options: Optional[PluginOptions] = None, **kwargs: Any) -> TrunkPlugin:
    """Create the plugin from options or keyword arguments (e.g. debug=True)."""
    if options is None:
        options = PluginOptions(**kwargs)
    return TrunkPlugin(options)


def installed_hooks(plugins: Sequence[DevServerPlugin], server: DevServerHost) -> List[Callable[[], None]]:
    """Collect post-hooks from configure_server in plugin order."""
    hooks = []
    for plugin in plugins:
        hook = plugin.configure_server(server)
        if hook is not None:
            hooks.append(hook)
    return hooks
