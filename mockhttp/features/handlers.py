"""
Small handler units for composing mock backends.

    server = Server(8080, chain(
        record(seen),
        route(respond(204), method="DELETE"),
        route(respond(200, b'{"ok": true}', {"Content-Type": "application/json"}), path="/health"),
        redirect(to_origin),
    ))
"""

from http import HTTPStatus
from typing import List, Optional, Union

from ..core.chain import Continuation, Handler
from ..core.messages import HeadersInit, Request, Response, make_headers


def respond(status: int = HTTPStatus.OK, body: Union[bytes, str, None] = None,
            headers: HeadersInit = None) -> Handler:
    """Terminal unit answering every request with a fixed response."""
    if isinstance(body, str):
        body = body.encode("utf-8")
    fixed_headers = make_headers(headers)

    async def respond_handler(request: Request, response: Response, next: Continuation) -> None:
        response.status = status
        response.headers.extend(fixed_headers)
        response.body = body

    return respond_handler


def route(handler: Handler, *, method: Optional[str] = None,
          path: Optional[str] = None) -> Handler:
    """Run ``handler`` for matching requests and pass the rest along.

    ``path`` matches the request path exactly (the query string is ignored).
    The wrapped handler receives the chain's own continuation, so it may
    still delegate onward.
    """
    expected_method = method.upper() if method else None

    async def route_handler(request: Request, response: Response, next: Continuation) -> None:
        if expected_method and request.method != expected_method:
            await next()
            return
        if path is not None and request.url.path != path:
            await next()
            return
        await handler(request, response, next)

    route_handler.__name__ = f"route({getattr(handler, '__name__', 'handler')})"
    return route_handler


def record(into: List[Request]) -> Handler:
    """Pass-through unit appending every request it sees to ``into``."""

    async def record_handler(request: Request, response: Response, next: Continuation) -> None:
        into.append(request)
        await next()

    return record_handler
