"""Response compression selected by content negotiation."""
from collections.abc import Sequence
from enum import Enum

from starlette.datastructures import Headers
from starlette.middleware.gzip import GZipResponder
from starlette.types import ASGIApp, Receive, Scope, Send

# Empty bodies (204, 304, zero-length files) stay uncompressed.
DEFAULT_MINIMUM_SIZE = 1


class Encoding(str, Enum):
    """Content codings the server can produce."""

    IDENTITY = "identity"
    GZIP = "gzip"

    def wrap(
        self,
        app: ASGIApp,
        minimum_size: int = DEFAULT_MINIMUM_SIZE,
        compresslevel: int = 6,
    ) -> ASGIApp:
        """Wrap an ASGI app so its response body is encoded.

        Args:
            app: App producing the response.
            minimum_size: Bodies shorter than this are sent unencoded.
            compresslevel: zlib compression level for gzip.

        Returns:
            ASGI app producing this encoding.
        """
        if self is Encoding.GZIP:
            return GZipResponder(app, minimum_size, compresslevel=compresslevel)
        return app


def parse_accept_encoding(header: str | None) -> dict[str, float]:
    """Parse an Accept-Encoding header into coding -> quality.

    Malformed quality values are treated as 1.0.
    """
    accepted: dict[str, float] = {}
    if not header:
        return accepted
    for item in header.split(","):
        coding, _, params = item.strip().partition(";")
        coding = coding.strip().lower()
        if not coding:
            continue
        quality = 1.0
        for param in params.split(";"):
            name, _, value = param.strip().partition("=")
            if name.strip().lower() == "q":
                try:
                    quality = float(value)
                except ValueError:
                    quality = 1.0
        accepted[coding] = quality
    return accepted


def negotiate(header: str | None, choices: Sequence[Encoding]) -> Encoding:
    """Pick the first enabled encoding the client accepts.

    Args:
        header: Value of the request's Accept-Encoding header.
        choices: Enabled encodings in order of preference.

    Returns:
        Chosen encoding; identity when nothing else is acceptable.
    """
    accepted = parse_accept_encoding(header)
    for choice in choices:
        if choice is Encoding.IDENTITY:
            return choice
        quality = accepted.get(choice.value, accepted.get("*"))
        if quality is not None and quality > 0:
            return choice
    return Encoding.IDENTITY


class CompressionMiddleware:
    """Compress responses of the wrapped app per request negotiation.

    Only HTTP requests are affected; HEAD requests and responses that are
    already encoded pass through unchanged.
    """

    def __init__(
        self,
        app: ASGIApp,
        choices: Sequence[Encoding] = (Encoding.GZIP,),
        minimum_size: int = DEFAULT_MINIMUM_SIZE,
        compresslevel: int = 6,
    ) -> None:
        self.app = app
        self.choices = tuple(choices)
        self.minimum_size = minimum_size
        self.compresslevel = compresslevel

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or scope.get("method") == "HEAD":
            await self.app(scope, receive, send)
            return

        encoding = negotiate(Headers(scope=scope).get("accept-encoding"), self.choices)
        responder = encoding.wrap(self.app, self.minimum_size, self.compresslevel)
        await responder(scope, receive, send)
