"""
Exception types raised by trunkbridge.

Artifact absence is not represented here: a missing module or
loader script is the normal state while the first build runs.
"""


class TrunkBridgeError(Exception):
    """Base class for all trunkbridge errors."""


class ConfigurationError(TrunkBridgeError):
    """Project configuration is missing or malformed. Fatal at startup."""


class DirectoryUnavailable(TrunkBridgeError):
    """The build-cache directory does not exist (yet)."""

    def __init__(self, path):
        super().__init__(f"Cache directory does not exist: {path}")
        self.path = path


class CompileFailure(TrunkBridgeError):
    """The external compiler exited unsuccessfully.

    ``diagnostic`` is the compiler's own error output, unmodified.
    """

    def __init__(self, diagnostic: str, returncode: int = 1):
        super().__init__(diagnostic)
        self.diagnostic = diagnostic
        self.returncode = returncode


class AssemblyError(TrunkBridgeError):
    """The production bundle could not be assembled."""
