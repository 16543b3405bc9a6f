"""
Plugin lifecycle tests, driven against the fake compiler script.

Run with: pytest tests/test_plugin.py -v
"""
from pathlib import Path

import pytest
from aiohttp import web

from conftest import RecordingChannel
from trunkbridge.config import PluginOptions, ResolvedConfig
from trunkbridge.errors import ConfigurationError, CompileFailure
from trunkbridge.injector import TransformResult
from trunkbridge.logging import get_logger
from trunkbridge.plugin import PLUGIN_NAME, HotUpdateContext, TrunkPlugin, installed_hooks, trunk_plugin

HTML = '<html><head></head><body></body></html>'


class StubHost:
    """Just enough of a dev server for configure_server."""

    def __init__(self):
        self.app = web.Application()
        self.channel = RecordingChannel()


def make_plugin(project, fake_trunk, command='serve', **options):
    plugin = TrunkPlugin(PluginOptions(compiler_command=fake_trunk.command, **options))
    plugin.config(project)
    plugin.config_resolved(ResolvedConfig.for_project(project, command), get_logger(PLUGIN_NAME))
    return plugin


class TestConfigHooks:

    def test_reads_package_name(self, project, fake_trunk):
        plugin = make_plugin(project, fake_trunk)
        assert plugin.context.package_name == 'app'
        assert plugin.context.cache_dir == project.resolve() / '.trunkbridge' / 'cache' / '.trunk'

    def test_missing_manifest_is_fatal(self, project, fake_trunk):
        (project / 'Cargo.toml').unlink()
        plugin = TrunkPlugin(PluginOptions(compiler_command=fake_trunk.command))
        with pytest.raises(ConfigurationError):
            plugin.config(project)

    def test_context_before_resolution(self):
        with pytest.raises(ConfigurationError):
            TrunkPlugin().context

    def test_invoker_uses_options(self, project, fake_trunk):
        plugin = make_plugin(project, fake_trunk, compile_timeout=30)
        assert plugin.invoker.command == fake_trunk.command
        assert plugin.invoker.cache_dir == plugin.context.cache_dir
        assert plugin.invoker.cwd == project.resolve()
        assert plugin.invoker.timeout == 30

    def test_factory_keywords(self):
        plugin = trunk_plugin(debug=True)
        assert plugin.options.debug is True
        assert plugin.name == 'trunkbridge'


class TestBuildStart:

    async def test_serve_mode_runs_dev_build(self, project, fake_trunk, capsys):
        plugin = make_plugin(project, fake_trunk)

        await plugin.build_start()

        assert len(fake_trunk.calls) == 1
        assert '--no-minification' in fake_trunk.calls[0]['argv']
        assert (plugin.context.cache_dir / 'app-abc123_bg.wasm').exists()
        assert 'trunk build successfully on start' in capsys.readouterr().out

    async def test_failure_logged_not_raised(self, project, fake_trunk, capsys):
        fake_trunk.fail("error[E0425]: cannot find value `x`")
        plugin = make_plugin(project, fake_trunk)

        await plugin.build_start()

        out = capsys.readouterr().out
        assert 'error[E0425]: cannot find value `x`' in out
        assert plugin.context.cache_dir.is_dir()

    async def test_build_mode_only_creates_cache_dir(self, project, fake_trunk):
        plugin = make_plugin(project, fake_trunk, command='build')

        await plugin.build_start()

        assert fake_trunk.calls == []
        assert plugin.context.cache_dir.is_dir()


class TestTransformIndexHtml:

    async def test_no_cache_dir_returns_html(self, project, fake_trunk):
        plugin = make_plugin(project, fake_trunk)
        assert await plugin.transform_index_html(HTML) == HTML

    async def test_before_first_build(self, project, fake_trunk):
        plugin = make_plugin(project, fake_trunk)
        plugin.context.cache_dir.mkdir(parents=True)
        assert await plugin.transform_index_html(HTML) == HTML

    async def test_after_build(self, project, fake_trunk):
        plugin = make_plugin(project, fake_trunk)
        await plugin.build_start()

        result = await plugin.transform_index_html(HTML)

        assert isinstance(result, TransformResult)
        assert result.html == HTML
        hrefs = [tag.attrs.get('href') for tag in result.tags]
        assert '/app-abc123_bg.wasm' in hrefs
        assert '/app-abc123.js' in hrefs

    async def test_debug_logs_injection(self, project, fake_trunk, capsys):
        plugin = make_plugin(project, fake_trunk, debug=True)
        await plugin.build_start()
        capsys.readouterr()

        await plugin.transform_index_html(HTML)

        assert 'injecting wasm file app-abc123_bg.wasm and js file app-abc123.js' in capsys.readouterr().out

    async def test_build_mode_untouched(self, project, fake_trunk):
        plugin = make_plugin(project, fake_trunk, command='build')
        cache = plugin.context.cache_dir
        cache.mkdir(parents=True)
        (cache / 'app_bg.wasm').write_text('')
        (cache / 'app.js').write_text('')

        assert await plugin.transform_index_html(HTML) == HTML


class TestConfigureServer:

    def test_post_hook_appends_middleware(self, project, fake_trunk):
        plugin = make_plugin(project, fake_trunk)
        host = StubHost()
        existing = len(host.app.middlewares)

        hooks = installed_hooks([plugin], host)
        assert len(host.app.middlewares) == existing

        for install in hooks:
            install()
        assert len(host.app.middlewares) == existing + 1
        assert plugin.trigger is not None

    async def test_hot_update_rebuilds(self, project, fake_trunk):
        plugin = make_plugin(project, fake_trunk)
        host = StubHost()
        plugin.configure_server(host)

        result = await plugin.handle_hot_update(
            HotUpdateContext(file=project / 'src' / 'lib.rs', server=host, modules=['lib.rs']))

        assert result == []
        assert len(fake_trunk.calls) == 1
        assert [m.type for m in host.channel.messages] == ['full-reload']

    async def test_hot_update_ignores_other_files(self, project, fake_trunk):
        plugin = make_plugin(project, fake_trunk)
        host = StubHost()
        plugin.configure_server(host)

        result = await plugin.handle_hot_update(
            HotUpdateContext(file=project / 'index.html', server=host, modules=['index.html']))

        assert result == ['index.html']
        assert fake_trunk.calls == []

    async def test_hot_update_failure_reported(self, project, fake_trunk):
        fake_trunk.fail("error: expected `;`")
        plugin = make_plugin(project, fake_trunk)
        host = StubHost()
        plugin.configure_server(host)

        await plugin.handle_hot_update(HotUpdateContext(file=project / 'src' / 'lib.rs', server=host))

        [message] = host.channel.messages
        assert message.type == 'error'
        assert message.err.message == "error: expected `;`"
        assert message.err.plugin == 'trunkbridge'


class TestWriteBundle:

    async def test_serve_mode_is_noop(self, project, fake_trunk, tmp_path):
        plugin = make_plugin(project, fake_trunk)
        out = tmp_path / 'out'
        out.mkdir()

        await plugin.write_bundle(out)

        assert fake_trunk.calls == []
        assert list(out.iterdir()) == []

    async def test_build_mode_assembles(self, project, fake_trunk):
        plugin = make_plugin(project, fake_trunk, command='build')
        out = project / 'dist'
        out.mkdir()
        (out / 'index.html').write_text(HTML)

        await plugin.write_bundle(out)

        assert '--release' in fake_trunk.calls[0]['argv']
        assert (out / 'app-abc123_bg.wasm').read_text() == '\0asm-dev'
        assert not Path(fake_trunk.calls[0]['entry']).exists()

    async def test_build_mode_failure_raises(self, project, fake_trunk):
        fake_trunk.fail("linker error")
        plugin = make_plugin(project, fake_trunk, command='build')
        out = project / 'dist'
        out.mkdir()
        (out / 'index.html').write_text(HTML)

        with pytest.raises(CompileFailure):
            await plugin.write_bundle(out)
        assert (out / 'index.html').read_text() == HTML
