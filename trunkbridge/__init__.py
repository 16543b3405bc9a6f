"""
trunkbridge - serve and bundle trunk (Rust/WebAssembly) projects.

The dev server keeps the browser on the latest successful trunk build,
rebuilds on Rust source changes, and assembles a release bundle.
"""

from trunkbridge.artifacts import ArtifactSet, FileRef, locate, locate_async
from trunkbridge.compiler import BuildProfile, CompileOutcome, CompilerInvoker
from trunkbridge.config import PluginOptions, ResolvedConfig, load_options
from trunkbridge.errors import (
    AssemblyError,
    CompileFailure,
    ConfigurationError,
    DirectoryUnavailable,
    TrunkBridgeError,
)
from trunkbridge.plugin import DevServerPlugin, TrunkPlugin, trunk_plugin

__version__ = '0.1.0'

__all__ = [
    'ArtifactSet',
    'AssemblyError',
    'BuildProfile',
    'CompileFailure',
    'CompileOutcome',
    'CompilerInvoker',
    'ConfigurationError',
    'DevServerPlugin',
    'DirectoryUnavailable',
    'FileRef',
    'PluginOptions',
    'ResolvedConfig',
    'TrunkBridgeError',
    'TrunkPlugin',
    'load_options',
    'locate',
    'locate_async',
    'trunk_plugin',
]
