"""
Compiler invocation for trunk builds.

Runs the external compiler as one subprocess per call, in either the
development or the production argument profile, and reports the outcome
without raising. Output is always written into the trunk cache directory.

Usage:
    invoker = CompilerInvoker(['trunk', 'build'], cache_dir)
    outcome = await invoker.invoke(BuildProfile.DEVELOPMENT)
    if not outcome.success:
        print(outcome.diagnostic)
"""

import asyncio
import contextlib
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Optional, Sequence

from trunkbridge.logging import get_logger

log = get_logger('compiler')

# Content-hashed file names are required: the dev server locates artifacts
# by suffix and the production bundle relies on hashed names for caching.
FILEHASH = True


class BuildProfile(Enum):
    """Compiler argument profile."""
    DEVELOPMENT = 'development'
    PRODUCTION = 'production'


def profile_args(profile: BuildProfile, cache_dir: Path) -> List[str]:
    """Fixed argument list for a profile, output directed at cache_dir."""
    filehash = f"--filehash={'true' if FILEHASH else 'false'}"
    if profile is BuildProfile.DEVELOPMENT:
        return [
            '--no-minification',
            f'--dist={cache_dir}',
            '--no-sri',
            filehash,
        ]
    return [
        '--release',
        f'--dist={cache_dir}',
        filehash,
    ]


@dataclass(frozen=True)
class CompileOutcome:
    """Result of one compiler run.

    A failure carries the compiler's diagnostic output verbatim.
    """
    success: bool
    diagnostic: str = ''
    returncode: Optional[int] = 0
    duration: float = 0.0

    @classmethod
    def ok(cls, duration: float = 0.0) -> 'CompileOutcome':
        return cls(success=True, duration=duration)

    @classmethod
    def failed(cls, diagnostic: str, returncode: Optional[int] = 1,
               duration: float = 0.0) -> 'CompileOutcome':
        return cls(success=False, diagnostic=diagnostic, returncode=returncode, duration=duration)


class CompilerInvoker:
    """Runs the external compiler against the trunk cache directory."""

    def __init__(
        self,
        command: Sequence[str],
        cache_dir: Path,
        cwd: Optional[Path] = None,
        timeout: Optional[float] = None,
    ):
        """
        Args:
            command: Executable plus leading arguments (e.g. ['trunk', 'build'])
            cache_dir: Directory passed as --dist
            cwd: Working directory for the compiler (project root)
            timeout: Seconds before the process is killed; None waits forever
        """
        self.command = list(command)
        self.cache_dir = Path(cache_dir)
        self.cwd = cwd
        self.timeout = timeout

    def build_args(self, profile: BuildProfile, entry_html: Optional[Path] = None) -> List[str]:
        args = self.command + profile_args(profile, self.cache_dir)
        if entry_html is not None:
            args.append(str(entry_html))
        return args

    async def invoke(self, profile: BuildProfile,
                     entry_html: Optional[Path] = None) -> CompileOutcome:
        """
        Run one compile and wait for it to finish.

        Args:
            profile: Argument profile to use
            entry_html: Optional HTML entry overriding the compiler default

        Returns:
            CompileOutcome; never raises for compiler-side problems
        """
        args = self.build_args(profile, entry_html)
        log.debug("Running: %s", ' '.join(args))
        started = time.monotonic()

        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                cwd=str(self.cwd) if self.cwd else None,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError:
            return CompileOutcome.failed(
                f"{self.command[0]} not found. Install it with: cargo install trunk",
                returncode=None,
            )
        except OSError as e:
            return CompileOutcome.failed(f"Failed to start {self.command[0]}: {e}", returncode=None)

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            # The child may exit on its own as the timeout fires
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            await process.wait()
            elapsed = time.monotonic() - started
            return CompileOutcome.failed(
                f"{self.command[0]} did not finish within {self.timeout:g}s and was killed",
                returncode=process.returncode,
                duration=elapsed,
            )

        elapsed = time.monotonic() - started
        if process.returncode == 0:
            log.debug("%s build finished in %.2fs", profile.value, elapsed)
            return CompileOutcome.ok(duration=elapsed)

        diagnostic = stderr.decode('utf-8', errors='replace')
        if not diagnostic.strip():
            diagnostic = stdout.decode('utf-8', errors='replace')
        return CompileOutcome.failed(diagnostic, returncode=process.returncode, duration=elapsed)
