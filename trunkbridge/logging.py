"""
trunkbridge Logging

Per-module console logging for the dev-server bridge. Every component asks
for a named logger; levels are configured globally, per module, or from the
environment.

Usage:
    from trunkbridge.logging import get_logger

    log = get_logger('rebuild')
    log.debug("Dropping change event while building")
    log.info("src/lib.rs recompiled successfully.")

Configuration:
    Environment variables:
        TRUNKBRIDGE_LOG_LEVEL=DEBUG        # Global default level
        TRUNKBRIDGE_LOG_MIDDLEWARE=DEBUG   # Module-specific level
        TRUNKBRIDGE_LOG_TIMESTAMPS=0       # Disable the HH:MM:SS prefix

    Or programmatically:
        from trunkbridge.logging import configure_logging
        configure_logging(level='DEBUG', modules={'server': 'INFO'})
"""

import os
import sys
import time
import traceback
from enum import IntEnum
from functools import lru_cache
from typing import Any, Dict, Optional, TextIO


class LogLevel(IntEnum):
    """Log levels matching Python's logging module."""
    TRACE = 5      # Even more verbose than DEBUG
    DEBUG = 10
    INFO = 20
    WARNING = 30
    ERROR = 40
    CRITICAL = 50
    OFF = 100      # Disable logging


_ENV_PREFIX = 'TRUNKBRIDGE_LOG_'

# Global configuration
_config: Dict[str, Any] = {
    'default_level': LogLevel.INFO,
    'module_levels': {},
    'timestamps': True,
    'stream': None,          # None = sys.stdout at call time
}


def _level_from_string(level_str: str) -> LogLevel:
    """Convert string to LogLevel."""
    mapping = {
        'TRACE': LogLevel.TRACE,
        'DEBUG': LogLevel.DEBUG,
        'INFO': LogLevel.INFO,
        'WARNING': LogLevel.WARNING,
        'WARN': LogLevel.WARNING,
        'ERROR': LogLevel.ERROR,
        'CRITICAL': LogLevel.CRITICAL,
        'OFF': LogLevel.OFF,
    }
    return mapping.get(level_str.upper(), LogLevel.INFO)


def _format_message(module: str, level: str, msg: str, timestamp: bool) -> str:
    """Format a log message."""
    line = f"[{module}] {level}: {msg}"
    if timestamp:
        line = f"{time.strftime('%H:%M:%S')} {line}"
    return line


def configure_logging(
    level: str = 'INFO',
    modules: Optional[Dict[str, str]] = None,
    timestamps: Optional[bool] = None,
    stream: Optional[TextIO] = None,
) -> None:
    """
    Configure the logging system.

    Args:
        level: Default log level for all modules
        modules: Dict of module_name -> level for per-module configuration
        timestamps: Prefix lines with wall-clock time (None keeps current)
        stream: Output stream (default: stdout)
    """
    _config['default_level'] = _level_from_string(level)

    if modules:
        for mod, mod_level in modules.items():
            _config['module_levels'][mod] = _level_from_string(mod_level)

    if timestamps is not None:
        _config['timestamps'] = timestamps
    if stream is not None:
        _config['stream'] = stream


def _load_env_config() -> None:
    """Load configuration from environment variables.

    TRUNKBRIDGE_LOG_LEVEL sets the default; any other TRUNKBRIDGE_LOG_<NAME>
    sets the level of module <name>.
    """
    if 'TRUNKBRIDGE_LOG_LEVEL' in os.environ:
        _config['default_level'] = _level_from_string(os.environ['TRUNKBRIDGE_LOG_LEVEL'])

    if 'TRUNKBRIDGE_LOG_TIMESTAMPS' in os.environ:
        _config['timestamps'] = os.environ['TRUNKBRIDGE_LOG_TIMESTAMPS'].lower() in ('1', 'true', 'yes')

    reserved = ('TRUNKBRIDGE_LOG_LEVEL', 'TRUNKBRIDGE_LOG_TIMESTAMPS')
    for key, value in os.environ.items():
        if key.startswith(_ENV_PREFIX) and key not in reserved:
            module_name = key[len(_ENV_PREFIX):].lower()
            _config['module_levels'][module_name] = _level_from_string(value)


# Load env config on import
_load_env_config()


class BridgeLogger:
    """
    Logger for a specific module.

    Lines go to stdout (or the configured stream), which is where the host
    dev server's own output goes as well.
    """

    def __init__(self, module: str):
        self.module = module
        self._module_key = module.lower().replace('.', '_').replace('/', '_')

    @property
    def level(self) -> LogLevel:
        """Get effective log level for this module."""
        if self._module_key in _config['module_levels']:
            return _config['module_levels'][self._module_key]
        return _config['default_level']

    def is_enabled_for(self, level: LogLevel) -> bool:
        return level >= self.level

    def _log(self, level: LogLevel, level_name: str, msg: str, *args) -> None:
        if not self.is_enabled_for(level):
            return

        if args:
            try:
                msg = msg % args
            except (TypeError, ValueError):
                msg = f"{msg} {args}"

        stream = _config['stream'] or sys.stdout
        for line in str(msg).splitlines() or ['']:
            print(_format_message(self.module, level_name, line, _config['timestamps']), file=stream)

    def debug(self, msg: str, *args) -> None:
        self._log(LogLevel.DEBUG, 'DEBUG', msg, *args)

    def info(self, msg: str, *args) -> None:
        self._log(LogLevel.INFO, 'INFO', msg, *args)

    def warning(self, msg: str, *args) -> None:
        self._log(LogLevel.WARNING, 'WARN', msg, *args)

    def error(self, msg: str, *args) -> None:
        self._log(LogLevel.ERROR, 'ERROR', msg, *args)

    def exception(self, msg: str, *args, exc: Optional[BaseException] = None) -> None:
        """
        Log an exception with traceback.

        Args:
            msg: Message describing what failed
            exc: Exception to format; defaults to the one being handled
        """
        self._log(LogLevel.ERROR, 'ERROR', msg, *args)

        if exc is None:
            exc = sys.exc_info()[1]
        if exc is None:
            return
        tb = ''.join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        for line in tb.strip().split('\n'):
            self._log(LogLevel.ERROR, 'TRACE', line)


@lru_cache(maxsize=64)
def get_logger(module: str) -> BridgeLogger:
    """
    Get a logger for the specified module.

    Loggers are cached, so calling get_logger('foo') multiple times
    returns the same logger instance.

    Args:
        module: Module name (e.g., 'rebuild', 'middleware', 'assembler')

    Returns:
        BridgeLogger instance for the module
    """
    return BridgeLogger(module)


def enable_debug_logging() -> None:
    """Enable DEBUG level for all modules (the CLI --debug toggle)."""
    _config['default_level'] = LogLevel.DEBUG
    _config['module_levels'].clear()
