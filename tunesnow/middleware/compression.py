from __future__ import annotations

"""
GZip for JSON routes only.

Byte-range responses must reach the client exactly as described by their
`Content-Length` / `Content-Range` headers, so paths under the excluded
prefixes bypass compression entirely.
"""

from typing import Iterable, Tuple

from starlette.middleware.gzip import GZipMiddleware
from starlette.types import ASGIApp, Receive, Scope, Send


class SelectiveGZipMiddleware(GZipMiddleware):
    def __init__(
        self,
        app: ASGIApp,
        *,
        exclude_prefixes: Iterable[str] = (),
        minimum_size: int = 1024,
    ) -> None:
        super().__init__(app, minimum_size=minimum_size)
        self._exclude: Tuple[str, ...] = tuple(exclude_prefixes)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope.get("type") == "http" and self._exclude and scope.get("path", "").startswith(self._exclude):
            await self.app(scope, receive, send)
            return
        await super().__call__(scope, receive, send)


__all__ = ["SelectiveGZipMiddleware"]
