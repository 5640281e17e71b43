"""
Outbound HTTP client used by the redirect adapter.

Wraps one aiohttp.ClientSession per running server. The session is created
lazily on the server's event loop and closed when the server stops.
"""

import asyncio
import logging
from typing import Optional

import aiohttp
from multidict import CIMultiDict
from yarl import URL

from ..core.errors import UpstreamUnavailable
from ..core.messages import Request, Response, is_absolute_url
from .compression import parse_accept_encoding

logger = logging.getLogger("mockhttp.client")

# Connection-level headers that describe one hop, never the message itself.
HOP_BY_HOP_HEADERS = frozenset({
    "connection", "keep-alive", "proxy-authenticate", "proxy-authorization",
    "proxy-connection", "te", "trailer", "transfer-encoding", "upgrade",
})

# Codings aiohttp decodes transparently without optional extras.
DECODABLE_ENCODINGS = frozenset({"gzip", "x-gzip", "deflate", "identity"})
DEFAULT_ACCEPT_ENCODING = "gzip, deflate"


def strip_hop_by_hop(headers: CIMultiDict) -> CIMultiDict:
    """Copy of ``headers`` without hop-by-hop fields or Content-Length.

    Header names listed in a Connection header are dropped as well.
    """
    listed = set()
    for value in headers.getall("Connection", []):
        listed.update(token.strip().lower() for token in value.split(",") if token.strip())
    cleaned = CIMultiDict()
    for name, value in headers.items():
        lowered = name.lower()
        if lowered in HOP_BY_HOP_HEADERS or lowered in listed or lowered == "content-length":
            continue
        cleaned.add(name, value)
    return cleaned


def _filter_accept_encoding(value: str) -> Optional[str]:
    tokens = [token if quality == 1.0 else f"{token};q={quality:g}"
              for token, quality in parse_accept_encoding(value).items()
              if token in DECODABLE_ENCODINGS]
    return ", ".join(tokens) if tokens else None


class UpstreamClient:
    """Sends rewritten requests to an origin and returns its reply as a Response.

    Args:
        timeout: Default total timeout in seconds for one call
        session: Optional externally owned ClientSession (not closed by us)
    """

    def __init__(self, timeout: float = 30.0, session: Optional[aiohttp.ClientSession] = None):
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(auto_decompress=True)
            self._owns_session = True
        return self._session

    def _outbound_headers(self, request: Request) -> CIMultiDict:
        # Only codings aiohttp decodes without extras are ever offered upstream
        headers = strip_hop_by_hop(CIMultiDict(request.headers))
        if "Accept-Encoding" in headers:
            accepted = _filter_accept_encoding(", ".join(headers.popall("Accept-Encoding")))
            headers["Accept-Encoding"] = accepted or "identity"
        else:
            headers["Accept-Encoding"] = DEFAULT_ACCEPT_ENCODING
        return headers

    async def send(self, request: Request, timeout: Optional[float] = None) -> Response:
        """Perform ``request`` against the origin named by its absolute URI.

        Raises:
            UpstreamUnavailable: On connection errors, timeouts, invalid
                targets or malformed replies
        """
        url = URL(request.uri, encoded=True)
        if not is_absolute_url(url):
            raise UpstreamUnavailable(f"Outbound target is not an absolute URL: {request.uri}",
                                      url=request.uri)
        total = self.timeout if timeout is None else timeout
        try:
            async with self._get_session().request(
                request.method,
                url,
                headers=self._outbound_headers(request),
                data=request.body,
                allow_redirects=False,
                timeout=aiohttp.ClientTimeout(total=total),
            ) as reply:
                body = await reply.read()
                headers = strip_hop_by_hop(CIMultiDict(reply.headers))
                encoding = headers.get("Content-Encoding", "").strip().lower()
                if encoding in DECODABLE_ENCODINGS:
                    # aiohttp already decoded the body
                    headers.popall("Content-Encoding", None)
                return Response(status=reply.status, headers=headers, body=body)
        except asyncio.TimeoutError as e:
            raise UpstreamUnavailable(f"Timed out after {total}s waiting for {url}",
                                      url=str(url), cause=e) from e
        except aiohttp.ClientError as e:
            raise UpstreamUnavailable(f"Request to {url} failed: {e}",
                                      url=str(url), cause=e) from e

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None
