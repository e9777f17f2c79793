"""Response sinks decoupling dispatch outcome from transport."""

from __future__ import annotations

import json
from typing import Any, Protocol

from aiohttp import web

from smartapp_sdk._constants import FORBIDDEN_BODY


class Responder(Protocol):
    """Receives the single outcome of a dispatch."""

    def respond(self, payload: dict[str, Any]) -> None:
        ...

    def reject(self) -> None:
        ...


class HttpResponder:
    """Builds the aiohttp response for a webhook request.

    ``respond`` produces a JSON body with status 200, ``reject`` a 401
    ``Forbidden``. The result is available as :attr:`response`.
    """

    def __init__(self, *, json_indent: int | None = None) -> None:
        self._json_indent = json_indent
        self.response: web.Response | None = None

    def respond(self, payload: dict[str, Any]) -> None:
        self.response = web.json_response(
            payload,
            status=200,
            dumps=lambda obj: json.dumps(obj, indent=self._json_indent),
        )

    def reject(self) -> None:
        self.response = web.Response(status=401, text=FORBIDDEN_BODY)


class MockResponder:
    """Captures the payload for in-process inspection."""

    def __init__(self) -> None:
        self.response: dict[str, Any] | None = None
        self.rejected = False

    def respond(self, payload: dict[str, Any]) -> None:
        self.response = payload

    def reject(self) -> None:
        self.rejected = True
        self.response = {"statusCode": 401, "message": FORBIDDEN_BODY}
