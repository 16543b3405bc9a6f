"""
Artifact lookup in the compiler's build-cache directory.

The compiler rewrites the cache directory out-of-band, so nothing here is
cached: every call lists the directory again. When several generations of
a file coexist, the first entry in directory iteration order wins.

Usage:
    from trunkbridge.artifacts import locate, locate_async

    artifacts = locate(cache_dir)
    if artifacts.binary_module:
        data = artifacts.binary_module.path.read_bytes()

    # From a coroutine (listing runs in the default executor)
    artifacts = await locate_async(cache_dir)
"""

import asyncio
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

from trunkbridge.errors import DirectoryUnavailable

BINARY_MODULE_SUFFIX = '.wasm'
LOADER_SCRIPT_SUFFIX = '.js'


@dataclass(frozen=True)
class FileRef:
    """A file name inside the cache directory."""
    directory: Path
    name: str

    @property
    def path(self) -> Path:
        return self.directory / self.name

    @property
    def url(self) -> str:
        """Root-relative URL the dev server exposes the file under."""
        return f"/{self.name}"


@dataclass(frozen=True)
class ArtifactSet:
    """Snapshot of the artifacts present in the cache directory."""
    binary_modules: Tuple[FileRef, ...] = ()
    loader_scripts: Tuple[FileRef, ...] = ()

    @property
    def binary_module(self) -> Optional[FileRef]:
        return self.binary_modules[0] if self.binary_modules else None

    @property
    def loader_script(self) -> Optional[FileRef]:
        return self.loader_scripts[0] if self.loader_scripts else None

    @property
    def complete(self) -> bool:
        """True when both a module and its loader are present."""
        return self.binary_module is not None and self.loader_script is not None

    def all_files(self) -> Tuple[FileRef, ...]:
        return self.binary_modules + self.loader_scripts


def ensure_cache_dir(cache_dir: Path) -> Path:
    """Create the cache directory (and parents) if needed."""
    cache_dir = Path(cache_dir)
    cache_dir.mkdir(parents=True, exist_ok=True)
    return cache_dir


def locate(cache_dir: Path) -> ArtifactSet:
    """
    List the cache directory and partition its files by suffix.

    Only immediate regular files are considered. Entries deleted while the
    listing runs are skipped.

    Raises:
        DirectoryUnavailable: If cache_dir does not exist
    """
    cache_dir = Path(cache_dir)
    modules = []
    scripts = []
    try:
        with os.scandir(cache_dir) as entries:
            for entry in entries:
                if not entry.is_file():
                    continue
                if entry.name.endswith(BINARY_MODULE_SUFFIX):
                    modules.append(FileRef(cache_dir, entry.name))
                elif entry.name.endswith(LOADER_SCRIPT_SUFFIX):
                    scripts.append(FileRef(cache_dir, entry.name))
    except (FileNotFoundError, NotADirectoryError) as e:
        raise DirectoryUnavailable(cache_dir) from e

    return ArtifactSet(binary_modules=tuple(modules), loader_scripts=tuple(scripts))


async def locate_async(cache_dir: Path) -> ArtifactSet:
    """Non-blocking variant of locate() for use on the event loop."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, locate, cache_dir)
