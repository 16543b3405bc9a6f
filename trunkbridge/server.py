"""
Reference dev server and production build driver for trunkbridge.

Serves the project root with:
- Proper MIME types (especially for .mjs, .wasm)
- CORS and no-cache headers for development
- index.html run through the plugins' HTML transform, plus a live-reload client
- A WebSocket live-update channel at /__trunkbridge/ws
- A watchdog observer feeding file changes into the plugins' hot-update hook

Usage:
    run_dev_server(root, [trunk_plugin()], port=8080)
    await build_production(root, [trunk_plugin()], out_dir)
"""

import asyncio
import mimetypes
import shutil
from functools import partial
from pathlib import Path
from typing import Any, List, Optional, Sequence, Set

from aiohttp import WSMsgType, web
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from trunkbridge.config import ResolvedConfig
from trunkbridge.errors import ConfigurationError
from trunkbridge.injector import HtmlTag, TransformResult, apply_tags
from trunkbridge.logging import get_logger
from trunkbridge.messages import FullReloadMessage, LiveUpdateMessage
from trunkbridge.plugin import DevServerPlugin, HotUpdateContext, installed_hooks

log = get_logger('server')

# Ensure proper MIME types
mimetypes.add_type('application/javascript', '.mjs')
mimetypes.add_type('application/javascript', '.js')
mimetypes.add_type('application/wasm', '.wasm')

WS_PATH = '/__trunkbridge/ws'
CLIENT_PATH = '/__trunkbridge/client.js'

# Changes to these are reloaded by the host itself when no plugin claims them
RELOAD_SUFFIXES = frozenset({'.html', '.css', '.js', '.mjs'})
IGNORED_DIRS = frozenset({'.git', 'target', 'node_modules', '__pycache__'})

RELOAD_CLIENT = """\
const socket = new WebSocket(
  (location.protocol === 'https:' ? 'wss://' : 'ws://') + location.host + '%(ws_path)s'
);
socket.addEventListener('message', (event) => {
  const payload = JSON.parse(event.data);
  if (payload.type === 'full-reload') {
    location.reload();
  } else if (payload.type === 'error') {
    let overlay = document.getElementById('trunkbridge-error');
    if (!overlay) {
      overlay = document.createElement('pre');
      overlay.id = 'trunkbridge-error';
      overlay.style.cssText = 'position:fixed;inset:0;margin:0;padding:20px;overflow:auto;' +
        'background:rgba(26,26,46,0.95);color:#ff5252;font:13px monospace;z-index:99999;';
      document.body.appendChild(overlay);
    }
    overlay.textContent = '[' + payload.err.plugin + ']\\n' + payload.err.message;
  }
});
"""


@web.middleware
async def cors_middleware(request: web.Request, handler):
    """Add CORS headers to all responses."""
    if request.method == 'OPTIONS':
        return web.Response(headers={
            'Access-Control-Allow-Origin': '*',
            'Access-Control-Allow-Methods': 'GET, OPTIONS',
            'Access-Control-Allow-Headers': '*',
        })
    response = await handler(request)
    response.headers['Access-Control-Allow-Origin'] = '*'
    return response


class WebSocketChannel:
    """Live-update channel broadcasting to every connected browser."""

    def __init__(self):
        self.active_connections: Set[web.WebSocketResponse] = set()

    def connect(self, ws: web.WebSocketResponse) -> None:
        self.active_connections.add(ws)
        log.debug("WebSocket connected. Total connections: %d", len(self.active_connections))

    def disconnect(self, ws: web.WebSocketResponse) -> None:
        self.active_connections.discard(ws)
        log.debug("WebSocket disconnected. Total connections: %d", len(self.active_connections))

    async def send(self, message: LiveUpdateMessage) -> None:
        """Send message to all connected clients."""
        if not self.active_connections:
            return

        payload = message.model_dump_json()
        disconnected = []
        for ws in list(self.active_connections):
            try:
                await ws.send_str(payload)
            except (ConnectionError, RuntimeError) as e:
                log.warning("Failed to send to WebSocket: %s", e)
                disconnected.append(ws)

        for ws in disconnected:
            self.disconnect(ws)

    async def close(self) -> None:
        for ws in list(self.active_connections):
            await ws.close()
        self.active_connections.clear()


class _ChangeHandler(FileSystemEventHandler):
    """Hands watchdog events (observer thread) to the event loop."""

    def __init__(self, server: 'DevServer', loop: asyncio.AbstractEventLoop):
        self._server = server
        self._loop = loop

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory or event.event_type not in ('modified', 'created', 'moved'):
            return
        path = getattr(event, 'dest_path', '') or event.src_path
        self._loop.call_soon_threadsafe(self._server.file_changed, Path(path))


class DevServer:
    """Development host driving the plugin lifecycle."""

    def __init__(self, config: ResolvedConfig, plugins: Sequence[DevServerPlugin],
                 html_entry: str = 'index.html', watch: bool = True):
        self.config = config
        self.plugins = list(plugins)
        self.html_entry = html_entry
        self.watch = watch
        self.channel = WebSocketChannel()
        self.app = web.Application(middlewares=[cors_middleware])
        self._observer: Optional[Observer] = None
        self._tasks: Set[asyncio.Task] = set()

        for plugin in self.plugins:
            plugin.config(config.root)
            plugin.config_resolved(config, get_logger(plugin.name))

        self.app.router.add_get(WS_PATH, self._websocket)
        self.app.router.add_get(CLIENT_PATH, self._client_script)
        self.app.router.add_get('/', self._serve_file)
        self.app.router.add_get('/{path:.*}', self._serve_file)
        self.app.on_startup.append(self._on_startup)
        self.app.on_cleanup.append(self._on_cleanup)

        # Post hooks install plugin middlewares after the built-in ones
        for install in installed_hooks(self.plugins, self):
            install()

    async def _on_startup(self, app: web.Application) -> None:
        for plugin in self.plugins:
            await plugin.build_start()
        if self.watch:
            self._start_watcher()

    async def _on_cleanup(self, app: web.Application) -> None:
        if self._observer is not None:
            self._observer.stop()
            self._observer.join()
            self._observer = None
        for task in list(self._tasks):
            task.cancel()
        await self.channel.close()

    def _start_watcher(self) -> None:
        loop = asyncio.get_running_loop()
        self._observer = Observer()
        self._observer.schedule(_ChangeHandler(self, loop), str(self.config.root), recursive=True)
        self._observer.start()
        log.info("Watching %s for changes", self.config.root)

    def is_watched(self, path: Path) -> bool:
        """Host-level filter: cache output and tool directories are never sources."""
        if path.is_relative_to(self.config.cache_dir):
            return False
        try:
            parts = path.relative_to(self.config.root).parts
        except ValueError:
            return False
        return not any(part in IGNORED_DIRS for part in parts[:-1])

    def file_changed(self, path: Path) -> None:
        """Called on the event loop for every filesystem change."""
        if not self.is_watched(path):
            return
        task = asyncio.get_running_loop().create_task(self.handle_change(path))
        self._tasks.add(task)
        task.add_done_callback(self._change_done)

    def _change_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.exception("Handling a file change failed", exc=exc)

    async def handle_change(self, path: Path) -> List[Any]:
        """Run the hot-update hooks; reload for web assets nobody claimed."""
        modules: List[Any] = [path]
        for plugin in self.plugins:
            result = await plugin.handle_hot_update(HotUpdateContext(file=path, server=self, modules=modules))
            if result is not None:
                modules = list(result)
            if not modules:
                break

        if modules and path.suffix in RELOAD_SUFFIXES:
            log.info("%s changed, reloading", path.name)
            await self.channel.send(FullReloadMessage())
        return modules

    async def transform_html(self, html: str) -> str:
        tags: List[HtmlTag] = []
        for plugin in self.plugins:
            result = await plugin.transform_index_html(html)
            if isinstance(result, TransformResult):
                html = result.html
                tags.extend(result.tags)
            else:
                html = result
        tags.append(HtmlTag(tag='script', attrs={'type': 'module', 'src': CLIENT_PATH}, inject_to='head'))
        return apply_tags(html, tags)

    async def _client_script(self, request: web.Request) -> web.Response:
        return web.Response(
            text=RELOAD_CLIENT % {'ws_path': WS_PATH},
            content_type='application/javascript',
        )

    async def _websocket(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        self.channel.connect(ws)
        try:
            async for msg in ws:
                if msg.type == WSMsgType.ERROR:
                    log.warning("WebSocket error: %s", ws.exception())
        finally:
            self.channel.disconnect(ws)
        return ws

    async def _serve_file(self, request: web.Request) -> web.StreamResponse:
        """Serve a file, with index.html run through the plugins."""
        path = request.match_info.get('path', '')
        root = self.config.root.resolve()
        file_path = root / path

        # Security: prevent path traversal
        try:
            file_path = file_path.resolve()
            file_path.relative_to(root)
        except (ValueError, RuntimeError):
            return web.Response(status=403, text='Forbidden')

        if file_path.is_dir():
            file_path = file_path / self.html_entry

        if not file_path.is_file():
            return web.Response(status=404, text='Not found')

        if file_path.suffix == '.html':
            loop = asyncio.get_running_loop()
            source = await loop.run_in_executor(None, partial(file_path.read_text, encoding='utf-8'))
            html = await self.transform_html(source)
            return web.Response(text=html, content_type='text/html', headers={'Cache-Control': 'no-cache'})

        return web.FileResponse(file_path)


def create_app(config: ResolvedConfig, plugins: Sequence[DevServerPlugin],
               html_entry: str = 'index.html', watch: bool = True) -> web.Application:
    """Create the dev server application."""
    return DevServer(config, plugins, html_entry=html_entry, watch=watch).app


def run_dev_server(root: Path, plugins: Sequence[DevServerPlugin], host: str = '127.0.0.1',
                   port: int = 8080, html_entry: str = 'index.html') -> None:
    config = ResolvedConfig.for_project(root, command='serve')
    app = create_app(config, plugins, html_entry=html_entry)
    log.info("Dev server starting on http://%s:%d", host, port)
    log.info("Serving files from: %s", config.root)
    web.run_app(app, host=host, port=port, print=None)


def prepare_output_dir(config: ResolvedConfig, html_entry: str) -> Path:
    """Write the host's own output: the HTML entry plus public/ assets."""
    out_dir = config.out_dir.resolve()
    root = config.root.resolve()
    if root.is_relative_to(out_dir):
        raise ConfigurationError(f"Output directory {out_dir} would contain the project root {root}")
    if config.cache_dir.resolve().is_relative_to(out_dir):
        raise ConfigurationError(f"Output directory {out_dir} would contain the cache directory")
    if out_dir.exists():
        shutil.rmtree(out_dir)
    out_dir.mkdir(parents=True)

    public = config.root / 'public'
    if public.is_dir():
        shutil.copytree(public, out_dir, dirs_exist_ok=True)
        log.info("Copied: public/")

    entry = config.root / html_entry
    if not entry.is_file():
        raise ConfigurationError(f"No {html_entry} at project root: {config.root}")
    shutil.copy2(entry, out_dir / html_entry)
    log.info("Copied: %s", html_entry)
    return out_dir


async def build_production(root: Path, plugins: Sequence[DevServerPlugin],
                           out_dir: Optional[Path] = None, html_entry: str = 'index.html') -> Path:
    """
    Production build: host output first, then each plugin's write_bundle.

    Raises:
        ConfigurationError, CompileFailure, AssemblyError from the plugins
    """
    config = ResolvedConfig.for_project(root, command='build', out_dir=out_dir)
    for plugin in plugins:
        plugin.config(config.root)
        plugin.config_resolved(config, get_logger(plugin.name))
    for plugin in plugins:
        await plugin.build_start()

    out = prepare_output_dir(config, html_entry)
    for plugin in plugins:
        await plugin.write_bundle(out)
    log.info("Build complete! Output: %s", out)
    return out
