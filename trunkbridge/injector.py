"""
HTML injection of the current trunk artifacts.

During development the served index.html gets a preload hint for the wasm
module, a modulepreload hint for its loader, and a module script that
initialises the bindings and publishes them on ``window``.

Usage:
    tags = build_dev_tags(locate(cache_dir))
    html = apply_tags(html, tags)
"""

import re
from html import escape
from typing import Dict, List, Literal, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field

from trunkbridge.artifacts import ArtifactSet

InjectTo = Literal['head', 'head-prepend', 'body', 'body-prepend']


class HtmlTag(BaseModel):
    """A tag to be injected into the served document."""
    model_config = ConfigDict(frozen=True)

    tag: str
    attrs: Dict[str, Union[str, bool]] = Field(default_factory=dict)
    children: str = ''
    inject_to: InjectTo = 'head-prepend'


class TransformResult(BaseModel):
    """Document plus tags for the host to inject."""
    html: str
    tags: List[HtmlTag] = Field(default_factory=list)


VOID_TAGS = frozenset({'link', 'meta', 'base', 'br', 'hr', 'img', 'input'})


def bootstrap_script(loader_url: str, module_url: str, bindings_global: str = 'wasmBindings') -> str:
    """Module script that initialises the wasm bindings."""
    return (
        f"import init, * as bindings from '{loader_url}';\n"
        f"init('{module_url}');\n"
        f"window.{bindings_global} = bindings;"
    )


def build_dev_tags(artifacts: ArtifactSet, bindings_global: str = 'wasmBindings') -> List[HtmlTag]:
    """
    Tags referencing the current artifact pair.

    Returns an empty list unless both the module and its loader exist;
    a half-written cache directory simply means "not ready yet".
    """
    module = artifacts.binary_module
    loader = artifacts.loader_script
    if module is None or loader is None:
        return []

    return [
        HtmlTag(
            tag='link',
            attrs={'rel': 'preload', 'href': module.url, 'as': 'fetch', 'type': 'application/wasm'},
            inject_to='head',
        ),
        HtmlTag(
            tag='link',
            attrs={'rel': 'modulepreload', 'href': loader.url},
            inject_to='head',
        ),
        HtmlTag(
            tag='script',
            attrs={'type': 'module'},
            children=bootstrap_script(loader.url, module.url, bindings_global),
            inject_to='body',
        ),
    ]


def render_tag(tag: HtmlTag) -> str:
    parts = [tag.tag]
    for key, value in tag.attrs.items():
        if value is True:
            parts.append(key)
        elif value is not False:
            parts.append(f'{key}="{escape(str(value), quote=True)}"')
    opening = f"<{' '.join(parts)}>"
    if tag.tag in VOID_TAGS:
        return opening
    return f"{opening}{tag.children}</{tag.tag}>"


_HEAD_OPEN = re.compile(r'<head(\s[^>]*)?>', re.IGNORECASE)
_HEAD_CLOSE = re.compile(r'</head>', re.IGNORECASE)
_BODY_OPEN = re.compile(r'<body(\s[^>]*)?>', re.IGNORECASE)
_BODY_CLOSE = re.compile(r'</body>', re.IGNORECASE)


def _insert_before(html: str, pattern: re.Pattern, snippet: str) -> str:
    match = pattern.search(html)
    if match is None:
        return html + snippet
    return html[:match.start()] + snippet + html[match.start():]


def _insert_after(html: str, pattern: re.Pattern, snippet: str) -> str:
    match = pattern.search(html)
    if match is None:
        return snippet + html
    return html[:match.end()] + snippet + html[match.end():]


def apply_tags(html: str, tags: Sequence[HtmlTag]) -> str:
    """Render tags into the document. With no tags the document is unchanged."""
    if not tags:
        return html

    grouped: Dict[str, List[str]] = {}
    for tag in tags:
        grouped.setdefault(tag.inject_to, []).append(render_tag(tag))

    def block(key: str) -> str:
        return ''.join(f"\n{rendered}" for rendered in grouped[key]) + "\n"

    if 'head-prepend' in grouped:
        html = _insert_after(html, _HEAD_OPEN, block('head-prepend'))
    if 'head' in grouped:
        html = _insert_before(html, _HEAD_CLOSE, block('head'))
    if 'body-prepend' in grouped:
        html = _insert_after(html, _BODY_OPEN, block('body-prepend'))
    if 'body' in grouped:
        html = _insert_before(html, _BODY_CLOSE, block('body'))
    return html
