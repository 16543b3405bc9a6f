"""
Production bundle assembly.

After the host has written its output, the compiler runs once more in the
release profile against a staged copy of the host's HTML. Only when that
compile succeeds are the compiled HTML, wasm modules and loader scripts
copied into the output directory, so a failed release build leaves the
host's output exactly as it was.

Steps:
    1. Copy <out_dir>/<entry> to <root>/.trunkbridge.<entry> (staging)
    2. Run the compiler with the release profile on the staged file
    3. Remove the staged file, whatever the outcome
    4. On failure raise CompileFailure with the compiler diagnostic
    5. Copy the compiled HTML over <out_dir>/<entry>, then every .wasm
       and .js from the cache directory into <out_dir>
"""

import shutil
from pathlib import Path
from typing import List

from trunkbridge.artifacts import locate
from trunkbridge.compiler import BuildProfile, CompilerInvoker
from trunkbridge.errors import AssemblyError, CompileFailure
from trunkbridge.logging import get_logger

log = get_logger('assembler')

STAGING_PREFIX = '.trunkbridge.'
# trunk always names its HTML output index.html, whatever the entry file is called
COMPILED_HTML_NAME = 'index.html'


class ProductionAssembler:
    """Relocates a release build from the cache directory into out_dir."""

    def __init__(self, invoker: CompilerInvoker, root: Path, html_entry: str = 'index.html'):
        self.invoker = invoker
        self.root = Path(root)
        self.html_entry = html_entry

    @property
    def cache_dir(self) -> Path:
        return self.invoker.cache_dir

    @property
    def staging_path(self) -> Path:
        return self.root / f"{STAGING_PREFIX}{self.html_entry}"

    def _stage_entry(self, out_dir: Path) -> Path:
        source = out_dir / self.html_entry
        if not source.is_file():
            raise AssemblyError(f"Host build output has no {self.html_entry}: {source}")
        staged = self.staging_path
        shutil.copy2(source, staged)
        log.debug("Staged %s as %s", source, staged)
        return staged

    def _remove_staged(self, staged: Path) -> None:
        try:
            staged.unlink(missing_ok=True)
        except OSError as e:
            log.warning("Could not remove staged entry %s: %s", staged, e)

    async def finalize(self, out_dir: Path) -> List[Path]:
        """
        Run the release compile and merge its output into out_dir.

        Returns:
            Paths written into out_dir (HTML first)

        Raises:
            AssemblyError: If the host HTML output is missing
            CompileFailure: If the release compile fails (out_dir untouched)
        """
        out_dir = Path(out_dir)
        self.cache_dir.mkdir(parents=True, exist_ok=True)

        staged = self._stage_entry(out_dir)
        try:
            outcome = await self.invoker.invoke(BuildProfile.PRODUCTION, entry_html=staged)
        finally:
            self._remove_staged(staged)

        if not outcome.success:
            raise CompileFailure(outcome.diagnostic, returncode=outcome.returncode or 1)

        return self._relocate(out_dir)

    def _relocate(self, out_dir: Path) -> List[Path]:
        compiled_html = self.cache_dir / COMPILED_HTML_NAME
        if not compiled_html.is_file():
            raise AssemblyError(f"Release build produced no {COMPILED_HTML_NAME} in {self.cache_dir}")

        written = []
        target_html = out_dir / self.html_entry
        shutil.copyfile(compiled_html, target_html)
        written.append(target_html)

        # Listed after the compile finished: the pre-compile set would be stale
        artifacts = locate(self.cache_dir)
        for ref in artifacts.all_files():
            target = out_dir / ref.name
            shutil.copyfile(ref.path, target)
            written.append(target)
            log.info("Copied %s", ref.name)

        log.info("Release bundle assembled in %s (%d files)", out_dir, len(written))
        return written
