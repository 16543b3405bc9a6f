"""Read the crate name from Cargo.toml."""
import tomllib
from pathlib import Path

from trunkbridge.errors import ConfigurationError

MANIFEST_NAME = 'Cargo.toml'


def read_package_name(root: Path) -> str:
    """Return ``package.name`` from the project's Cargo.toml.

    The name scopes which dev-server requests are treated as artifact
    requests, so a project without one cannot be served.

    Raises:
        ConfigurationError: If the manifest is missing, unparsable or has no
            package name.
    """
    path = Path(root) / MANIFEST_NAME
    try:
        raw = path.read_text(encoding='utf-8')
    except OSError as e:
        raise ConfigurationError(f"Can't find {MANIFEST_NAME} at project root: {path}") from e

    try:
        data = tomllib.loads(raw)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Can't parse {path}: {e}") from e

    package = data.get('package')
    name = package.get('name') if isinstance(package, dict) else None
    if not isinstance(name, str) or not name:
        raise ConfigurationError(f"{MANIFEST_NAME} is missing package name")
    return name
