"""
Live-update message types.

These are the payloads the plugin sends to connected browsers through the
host's live-update channel:
- FullReloadMessage: discard page state and reload
- ErrorMessage: show an error overlay attributed to a plugin

The JSON shape matches what the reload client script expects.
"""

from typing import Literal, Protocol, Union

from pydantic import BaseModel, ConfigDict, Field


class FullReloadMessage(BaseModel):
    """Ask every client to reload the page."""
    model_config = ConfigDict(frozen=True)

    type: Literal['full-reload'] = 'full-reload'
    path: str = Field(default='*', description="Page path to reload, '*' for all")


class ErrorPayload(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str = Field(..., description="Error text, shown verbatim")
    stack: str = Field(default='', description="Stack trace, empty for compiler errors")
    plugin: str = Field(..., description="Name of the plugin reporting the error")


class ErrorMessage(BaseModel):
    """Show an error overlay in every client."""
    model_config = ConfigDict(frozen=True)

    type: Literal['error'] = 'error'
    err: ErrorPayload


LiveUpdateMessage = Union[FullReloadMessage, ErrorMessage]


class LiveUpdateChannel(Protocol):
    """Host-side channel to connected clients."""

    async def send(self, message: LiveUpdateMessage) -> None:
        ...
