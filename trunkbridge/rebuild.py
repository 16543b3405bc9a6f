"""
Rebuild trigger for source changes during development.

A relevant change (a Rust source outside the compiler's own output trees)
runs one development compile and reports the result on the live-update
channel: a full reload on success, an error overlay on failure. Changes
that arrive while a compile is running are dropped; the next save after
the build finishes triggers the next compile.
"""

from enum import Enum
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, TypeVar

from trunkbridge.compiler import BuildProfile, CompileOutcome, CompilerInvoker
from trunkbridge.logging import get_logger
from trunkbridge.messages import ErrorMessage, ErrorPayload, FullReloadMessage, LiveUpdateChannel

log = get_logger('rebuild')

M = TypeVar('M')


class RebuildState(Enum):
    IDLE = 'idle'
    BUILDING = 'building'
    REPORTED_SUCCESS = 'reported_success'
    REPORTED_FAILURE = 'reported_failure'


class RebuildTrigger:
    """State machine driving development rebuilds."""

    def __init__(
        self,
        invoker: CompilerInvoker,
        channel: LiveUpdateChannel,
        root: Path,
        plugin_name: str,
        source_extensions: Iterable[str] = ('.rs',),
        excluded_dirs: Iterable[str] = ('target',),
        ignored_paths: Iterable[Path] = (),
    ):
        """
        Args:
            invoker: Compiler invoker used for development builds
            channel: Live-update channel to report results on
            root: Project root; exclusions are matched relative to it
            plugin_name: Reported as the origin of error overlays
            source_extensions: Suffixes that make a file relevant
            excluded_dirs: Directory names never containing sources (compiler output)
            ignored_paths: Absolute directories never containing sources (cache dir)
        """
        self.invoker = invoker
        self.channel = channel
        self.root = Path(root)
        self.plugin_name = plugin_name
        self.source_extensions = tuple(source_extensions)
        self.excluded_dirs = frozenset(excluded_dirs)
        self.ignored_paths = tuple(Path(p) for p in ignored_paths)
        self.state = RebuildState.IDLE
        self.builds_started = 0
        self.dropped_events = 0

    @property
    def busy(self) -> bool:
        return self.state is RebuildState.BUILDING

    def is_relevant(self, path: Path) -> bool:
        """True if a change to path should trigger a recompile."""
        path = Path(path)
        if path.suffix not in self.source_extensions:
            return False

        absolute = path if path.is_absolute() else self.root / path
        for ignored in self.ignored_paths:
            if absolute.is_relative_to(ignored):
                return False

        try:
            parts = absolute.relative_to(self.root).parts
        except ValueError:
            parts = path.parts
        # Last part is the file itself
        return not any(part in self.excluded_dirs for part in parts[:-1])

    async def handle_change(self, path: Path, modules: Sequence[M] = ()) -> List[M]:
        """
        React to a changed file.

        Returns:
            The host's affected modules unchanged for irrelevant files,
            otherwise an empty list (the plugin handled the change).
        """
        if not self.is_relevant(path):
            return list(modules)

        if self.busy:
            self.dropped_events += 1
            log.debug("Build in progress, ignoring change to %s", path)
            return []

        await self._build(label=str(path))
        return []

    async def rebuild(self) -> Optional[CompileOutcome]:
        """Explicit rebuild request. Returns None if a build is already running."""
        if self.busy:
            self.dropped_events += 1
            return None
        return await self._build(label='project')

    async def _build(self, label: str) -> CompileOutcome:
        self.state = RebuildState.BUILDING
        self.builds_started += 1
        try:
            outcome = await self.invoker.invoke(BuildProfile.DEVELOPMENT)
            if outcome.success:
                self.state = RebuildState.REPORTED_SUCCESS
                log.info("%s recompiled successfully.", label)
                await self.channel.send(FullReloadMessage())
            else:
                self.state = RebuildState.REPORTED_FAILURE
                log.error(outcome.diagnostic or "unknown trunk error")
                await self.channel.send(ErrorMessage(err=ErrorPayload(
                    message=outcome.diagnostic,
                    stack='',
                    plugin=self.plugin_name,
                )))
            return outcome
        finally:
            self.state = RebuildState.IDLE
