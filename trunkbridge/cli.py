"""
trunkbridge command line.

Usage:
    trunkbridge [--root DIR] [--debug] serve [--host HOST] [--port PORT]
    trunkbridge [--root DIR] [--debug] build [--out-dir DIR]

Options:
    --root      Project root containing Cargo.toml and index.html (default: .)
    --debug     Verbose logging, including every injected and served artifact
"""
import argparse
import asyncio
import sys
from pathlib import Path
from typing import List, Optional

from trunkbridge.config import load_options
from trunkbridge.errors import AssemblyError, CompileFailure, ConfigurationError
from trunkbridge.logging import enable_debug_logging, get_logger
from trunkbridge.plugin import TrunkPlugin
from trunkbridge.server import build_production, run_dev_server

log = get_logger('cli')

EXIT_COMPILE_FAILED = 1
EXIT_CONFIG_ERROR = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='trunkbridge', description="Serve and bundle trunk (Rust/wasm) projects")
    parser.add_argument(
        '--root',
        type=Path,
        default=Path('.'),
        help="Project root",
    )
    parser.add_argument(
        '--debug',
        action='store_true',
        help="Enable debug logging",
    )
    sub = parser.add_subparsers(dest='command', required=True)

    serve = sub.add_parser('serve', help="Start the development server")
    serve.add_argument('--host', default='127.0.0.1', help="Host to bind to")
    serve.add_argument('--port', type=int, default=8080, help="Development server port")

    build = sub.add_parser('build', help="Build the production bundle")
    build.add_argument('--out-dir', type=Path, default=None, help="Output directory (default: dist)")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    if args.debug:
        enable_debug_logging()

    try:
        options = load_options(args.root, debug=True if args.debug else None)
        plugin = TrunkPlugin(options)

        if args.command == 'serve':
            run_dev_server(args.root, [plugin], host=args.host, port=args.port,
                           html_entry=options.html_entry)
        else:
            asyncio.run(build_production(args.root, [plugin], out_dir=args.out_dir,
                                         html_entry=options.html_entry))
    except ConfigurationError as e:
        log.error(str(e))
        return EXIT_CONFIG_ERROR
    except CompileFailure as e:
        log.error("trunk release build failed:")
        print(e.diagnostic, file=sys.stderr)
        return EXIT_COMPILE_FAILED
    except AssemblyError as e:
        log.error(str(e))
        return EXIT_COMPILE_FAILED
    return 0


if __name__ == '__main__':
    sys.exit(main())
