"""Pytest fixtures for trunkbridge tests."""
import asyncio
import json
import os
import sys
import textwrap
from pathlib import Path

import pytest

from trunkbridge.compiler import CompileOutcome


FAKE_TRUNK = textwrap.dedent('''
    """Stand-in for `trunk build`, driven by behavior.json next to this file."""
    import json
    import sys
    import time
    from pathlib import Path

    here = Path(__file__).parent
    behavior = json.loads((here / "behavior.json").read_text())
    argv = sys.argv[1:]
    entry = argv[-1] if argv and not argv[-1].startswith("--") else None
    with open(here / "calls.jsonl", "a") as f:
        f.write(json.dumps({
            "argv": argv,
            "entry": entry,
            "entry_existed": bool(entry) and Path(entry).exists(),
        }) + "\\n")

    if behavior.get("sleep"):
        time.sleep(behavior["sleep"])

    if behavior.get("exit", 0):
        sys.stdout.write(behavior.get("stdout", ""))
        sys.stderr.write(behavior.get("stderr", ""))
        sys.exit(behavior["exit"])

    dist = Path(next(a.split("=", 1)[1] for a in argv if a.startswith("--dist=")))
    dist.mkdir(parents=True, exist_ok=True)
    for old in dist.iterdir():
        if old.is_file():
            old.unlink()
    for name, content in behavior.get("files", {}).items():
        (dist / name).write_text(content)
''')

DEFAULT_FILES = {
    'index.html': '<html><head></head><body><script src="/app-abc123.js"></script></body></html>',
    'app-abc123_bg.wasm': '\0asm-dev',
    'app-abc123.js': 'export default function init() {}',
}

INDEX_HTML = '<!DOCTYPE html>\n<html>\n<head>\n<title>app</title>\n</head>\n<body>\n</body>\n</html>\n'


class FakeTrunk:
    """Controls the fake compiler script and reads back its invocations."""

    def __init__(self, directory: Path):
        self.directory = directory
        self.script = directory / 'fake_trunk.py'
        self.script.write_text(FAKE_TRUNK)
        self.configure(files=DEFAULT_FILES)

    @property
    def command(self):
        return [sys.executable, str(self.script), 'build']

    def configure(self, exit=0, stderr='', stdout='', files=None, sleep=0):
        (self.directory / 'behavior.json').write_text(json.dumps({
            'exit': exit,
            'stderr': stderr,
            'stdout': stdout,
            'files': files or {},
            'sleep': sleep,
        }))

    def fail(self, stderr, exit=1):
        self.configure(exit=exit, stderr=stderr)

    @property
    def calls(self):
        log = self.directory / 'calls.jsonl'
        if not log.exists():
            return []
        return [json.loads(line) for line in log.read_text().splitlines()]


class FakeInvoker:
    """Compiler invoker double; optionally blocks until `gate` is set."""

    def __init__(self, outcomes=None, cache_dir=None):
        self.calls = []
        self.outcomes = list(outcomes or [])
        self.gate = None
        self.cache_dir = cache_dir

    async def invoke(self, profile, entry_html=None):
        self.calls.append((profile, entry_html))
        if self.gate is not None:
            await self.gate.wait()
        if self.outcomes:
            outcome = self.outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        return CompileOutcome.ok()


class RecordingChannel:
    """Live-update channel that keeps every message."""

    def __init__(self):
        self.messages = []

    async def send(self, message):
        self.messages.append(message)

    def of_type(self, kind):
        return [m for m in self.messages if m.type == kind]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep TRUNKBRIDGE_* settings from the outer environment out of tests."""
    for key in list(os.environ):
        if key.startswith('TRUNKBRIDGE_'):
            monkeypatch.delenv(key)
    yield


@pytest.fixture
def cache_dir(tmp_path):
    path = tmp_path / 'cache' / '.trunk'
    path.mkdir(parents=True)
    return path


@pytest.fixture
def project(tmp_path):
    """A minimal trunk project: Cargo.toml, index.html, src/lib.rs."""
    root = tmp_path / 'project'
    (root / 'src').mkdir(parents=True)
    (root / 'Cargo.toml').write_text('[package]\nname = "app"\nversion = "0.1.0"\nedition = "2021"\n')
    (root / 'index.html').write_text(INDEX_HTML)
    (root / 'src' / 'lib.rs').write_text('pub fn answer() -> u32 { 42 }\n')
    return root


@pytest.fixture
def fake_trunk(tmp_path):
    directory = tmp_path / 'fake_trunk'
    directory.mkdir()
    return FakeTrunk(directory)


@pytest.fixture
def fake_invoker():
    return FakeInvoker()


@pytest.fixture
def channel():
    return RecordingChannel()


async def wait_until(predicate, timeout=2.0):
    """Yield to the loop until predicate() holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.01)
