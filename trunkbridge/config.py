"""
trunkbridge - Configuration loader.

Options come from (highest priority first):
- explicit keyword arguments (CLI flags, programmatic use)
- environment variables, with a project-level .env file loaded first
- trunkbridge.yaml in the project root
- defaults on PluginOptions

Environment variables:
- TRUNKBRIDGE_DEBUG: Verbose plugin logging (true/false)
- TRUNKBRIDGE_COMPILER: Compiler command line (default: "trunk build")
- TRUNKBRIDGE_COMPILE_TIMEOUT: Seconds before a compile is killed (unset = never)
- TRUNKBRIDGE_HTML_ENTRY: HTML entry file name (default: index.html)
"""
import os
import shlex
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from trunkbridge.errors import ConfigurationError

OPTIONS_FILE = 'trunkbridge.yaml'
TRUNK_CACHE_SUBDIR = '.trunk'
DEFAULT_CACHE_DIR = Path('.trunkbridge') / 'cache'
DEFAULT_OUT_DIR = 'dist'


def _get_bool(key: str, default: Optional[bool] = None) -> Optional[bool]:
    """Get boolean from environment."""
    val = os.getenv(key)
    if val is None:
        return default
    return val.lower() in ('true', '1', 'yes')


def _get_float(key: str, default: Optional[float] = None) -> Optional[float]:
    """Get float from environment."""
    val = os.getenv(key)
    if val is None or val == '':
        return default
    try:
        return float(val)
    except ValueError:
        raise ConfigurationError(f"{key} must be a number, got {val!r}")


class PluginOptions(BaseModel):
    """User-facing plugin options."""
    model_config = ConfigDict(frozen=True, extra='forbid')

    debug: bool = Field(default=False, description="Log every injection and served artifact")
    compiler_command: List[str] = Field(
        default_factory=lambda: ['trunk', 'build'],
        description="Executable plus leading arguments of the compiler",
    )
    source_extensions: List[str] = Field(
        default_factory=lambda: ['.rs'],
        description="Suffixes of files whose change triggers a rebuild",
    )
    excluded_dirs: List[str] = Field(
        default_factory=lambda: ['target'],
        description="Directory names whose contents never trigger a rebuild",
    )
    compile_timeout: Optional[float] = Field(
        default=None, gt=0, description="Seconds before a compile is killed (None = wait forever)",
    )
    html_entry: str = Field(default='index.html', description="HTML entry file name")
    bindings_global: str = Field(
        default='wasmBindings', description="window property receiving the wasm bindings",
    )

    @field_validator('compiler_command', mode='before')
    @classmethod
    def split_command(cls, v: Any) -> Any:
        if isinstance(v, str):
            return shlex.split(v)
        return v

    @field_validator('compiler_command')
    @classmethod
    def command_not_empty(cls, v: List[str]) -> List[str]:
        if not v:
            raise ValueError("compiler_command must name an executable")
        return v

    @field_validator('source_extensions')
    @classmethod
    def dotted_extensions(cls, v: List[str]) -> List[str]:
        return [ext if ext.startswith('.') else f'.{ext}' for ext in v]


class ResolvedConfig(BaseModel):
    """Host configuration handed to the plugin once it is resolved."""
    model_config = ConfigDict(frozen=True)

    root: Path
    cache_dir: Path
    command: Literal['serve', 'build'] = 'serve'
    out_dir: Path = Path(DEFAULT_OUT_DIR)

    @property
    def trunk_cache_dir(self) -> Path:
        """Directory the compiler writes into."""
        return self.cache_dir / TRUNK_CACHE_SUBDIR

    @classmethod
    def for_project(
        cls,
        root: Path,
        command: str = 'serve',
        cache_dir: Optional[Path] = None,
        out_dir: Optional[Path] = None,
    ) -> 'ResolvedConfig':
        """Resolve relative directories against the project root."""
        root = Path(root).resolve()
        cache = Path(cache_dir) if cache_dir else DEFAULT_CACHE_DIR
        out = Path(out_dir) if out_dir else Path(DEFAULT_OUT_DIR)
        return cls(
            root=root,
            cache_dir=cache if cache.is_absolute() else root / cache,
            command=command,
            out_dir=out if out.is_absolute() else root / out,
        )


def _load_yaml_options(root: Path) -> Dict[str, Any]:
    path = root / OPTIONS_FILE
    if not path.exists():
        return {}
    try:
        with open(path, 'r') as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid {OPTIONS_FILE}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"{OPTIONS_FILE} must contain a mapping")
    return data


def _load_env_options() -> Dict[str, Any]:
    options: Dict[str, Any] = {}
    debug = _get_bool('TRUNKBRIDGE_DEBUG')
    if debug is not None:
        options['debug'] = debug
    compiler = os.getenv('TRUNKBRIDGE_COMPILER')
    if compiler:
        options['compiler_command'] = compiler
    timeout = _get_float('TRUNKBRIDGE_COMPILE_TIMEOUT')
    if timeout is not None:
        options['compile_timeout'] = timeout
    html_entry = os.getenv('TRUNKBRIDGE_HTML_ENTRY')
    if html_entry:
        options['html_entry'] = html_entry
    return options


def load_options(root: Path, **overrides: Any) -> PluginOptions:
    """
    Build PluginOptions for a project.

    Args:
        root: Project root (where Cargo.toml, .env and trunkbridge.yaml live)
        **overrides: Explicit values; None means "not given"

    Raises:
        ConfigurationError: If the YAML file or a value is invalid
    """
    root = Path(root)
    load_dotenv(root / '.env')

    merged: Dict[str, Any] = {}
    merged.update(_load_yaml_options(root))
    merged.update(_load_env_options())
    merged.update({k: v for k, v in overrides.items() if v is not None})

    try:
        return PluginOptions(**merged)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid trunkbridge options: {e}") from e
