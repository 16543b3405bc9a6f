"""
aiohttp middleware serving the current trunk artifacts during development.

Requests whose URL contains the crate name and a ``.wasm`` or ``.js`` marker
are answered with whatever artifact of that kind is in the cache directory
right now. The URL does not change between builds, so responses must never
be cached by the browser.
"""

import asyncio
from pathlib import Path
from typing import Optional

from aiohttp import web

from trunkbridge.artifacts import ArtifactSet, FileRef, locate_async
from trunkbridge.errors import DirectoryUnavailable
from trunkbridge.logging import get_logger

log = get_logger('middleware')

NO_CACHE = 'no-cache, no-store, must-revalidate'

# (URL marker, ArtifactSet attribute, content type); checked in order
ARTIFACT_KINDS = (
    ('.wasm', 'binary_module', 'application/wasm'),
    ('.js', 'loader_script', 'application/javascript'),
)


def is_artifact_request(url: str, package_name: str) -> bool:
    return bool(package_name) and package_name in url


async def _read_artifact(ref: FileRef) -> Optional[bytes]:
    """Read an artifact, or None if the compiler removed it meanwhile."""
    loop = asyncio.get_running_loop()
    try:
        return await loop.run_in_executor(None, ref.path.read_bytes)
    except FileNotFoundError:
        return None


def artifact_response(body: bytes, content_type: str) -> web.Response:
    return web.Response(
        status=200,
        body=body,
        content_type=content_type,
        headers={'Cache-Control': NO_CACHE},
    )


def create_artifact_middleware(package_name: str, cache_dir: Path, debug: bool = False):
    """
    Build the artifact-serving middleware.

    Args:
        package_name: Crate name; only URLs containing it are intercepted
        cache_dir: Trunk cache directory to serve from
        debug: Log every served artifact
    """
    cache_dir = Path(cache_dir)

    @web.middleware
    async def trunk_artifacts(request: web.Request, handler):
        url = request.raw_path
        if is_artifact_request(url, package_name):
            for marker, attr, content_type in ARTIFACT_KINDS:
                if marker not in url:
                    continue
                try:
                    artifacts: ArtifactSet = await locate_async(cache_dir)
                except DirectoryUnavailable:
                    break
                ref = getattr(artifacts, attr)
                if ref is None:
                    continue
                body = await _read_artifact(ref)
                if body is None:
                    continue
                if debug:
                    log.info("serving %s file %s", marker.lstrip('.'), ref.name)
                return artifact_response(body, content_type)

        return await handler(request)

    return trunk_artifacts
