"""
Request and response values passed through the handler chain.

A Request is an immutable value: rewriting one produces a new Request through
replace() or with_headers(), so concurrent connections never alias each
other's state. A Response is a single mutable object per request that
handlers and transforms edit in place until the transport serializes it.
"""

import json
import uuid
from dataclasses import dataclass, field, fields, replace as _replace
from http import HTTPStatus
from typing import TYPE_CHECKING, Any, Iterable, Mapping, Optional, Tuple, Union

from multidict import CIMultiDict, CIMultiDictProxy
from yarl import URL

if TYPE_CHECKING:
    from ..features.client import UpstreamClient

HeadersInit = Union[Mapping[str, str], Iterable[Tuple[str, str]], None]


def make_headers(headers: HeadersInit = None) -> CIMultiDict:
    """Build a mutable case-insensitive multimap, keeping order and duplicates."""
    if headers is None:
        return CIMultiDict()
    return CIMultiDict(headers)


def reason_phrase(status: int) -> str:
    try:
        return HTTPStatus(status).phrase
    except ValueError:
        return ""


def is_absolute_url(url: URL) -> bool:
    return bool(url.scheme) and url.host is not None


def _frozen_headers(headers: HeadersInit) -> CIMultiDictProxy:
    if isinstance(headers, CIMultiDictProxy):
        return headers
    return CIMultiDictProxy(make_headers(headers))


@dataclass(frozen=True)
class ConnectionContext:
    """Per-connection metadata owned by the transport.

    Attributes:
        remote_address: Peer (host, port) of the client connection
        local_address: Local (host, port) the connection was accepted on
        scheme: "http" or "https"
        connection_id: Identifier used to correlate log records
        client: Outbound client the redirect adapter forwards through
    """
    remote_address: Optional[Tuple[Any, ...]] = None
    local_address: Optional[Tuple[Any, ...]] = None
    scheme: str = "http"
    connection_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    client: Optional["UpstreamClient"] = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class RequestHead:
    """Method, target, protocol version and read-only headers of a request."""

    # Headers are a multidict proxy, so heads compare by value but never hash
    __hash__ = None

    method: str
    uri: str
    version: str = "1.1"
    headers: CIMultiDictProxy = field(default_factory=lambda: CIMultiDictProxy(CIMultiDict()))

    def __post_init__(self):
        object.__setattr__(self, "method", self.method.upper())
        object.__setattr__(self, "headers", _frozen_headers(self.headers))


_HEAD_FIELDS = frozenset(f.name for f in fields(RequestHead))


@dataclass(frozen=True)
class Request:
    __hash__ = None

    head: RequestHead
    body: Optional[bytes] = None
    context: Optional[ConnectionContext] = None

    @classmethod
    def build(cls, method: str, uri: str, *, headers: HeadersInit = None,
              body: Optional[bytes] = None, version: str = "1.1",
              context: Optional[ConnectionContext] = None) -> "Request":
        """Convenience constructor for handlers and tests."""
        head = RequestHead(method=method, uri=uri, version=version,
                           headers=_frozen_headers(headers))
        return cls(head=head, body=body, context=context)

    @property
    def method(self) -> str:
        return self.head.method

    @property
    def uri(self) -> str:
        return self.head.uri

    @property
    def version(self) -> str:
        return self.head.version

    @property
    def headers(self) -> CIMultiDictProxy:
        return self.head.headers

    @property
    def url(self) -> URL:
        """Absolute URL of the request.

        Origin-form targets ("/path?query") are resolved against the Host
        header and the connection scheme.
        """
        target = URL(self.head.uri, encoded=True)
        if is_absolute_url(target):
            return target
        scheme = self.context.scheme if self.context else "http"
        host = self.head.headers.get("Host", "localhost")
        uri = self.head.uri if self.head.uri.startswith("/") else "/" + self.head.uri
        return URL(f"{scheme}://{host}{uri}", encoded=True)

    def replace(self, **changes: Any) -> "Request":
        """Return a new Request with the given head or message fields replaced.

        Head fields (method, uri, version, headers) may be passed directly
        alongside body and context.
        """
        head_changes = {k: changes.pop(k) for k in list(changes) if k in _HEAD_FIELDS}
        if "headers" in head_changes:
            head_changes["headers"] = _frozen_headers(head_changes["headers"])
        unknown = set(changes) - {"head", "body", "context"}
        if unknown:
            raise TypeError(f"Unknown request fields: {', '.join(sorted(unknown))}")
        head = changes.pop("head", self.head)
        if head_changes:
            head = _replace(head, **head_changes)
        return _replace(self, head=head, **changes)

    def with_headers(self, headers: HeadersInit = None, **extra: str) -> "Request":
        """Return a new Request with headers appended (existing values kept)."""
        merged = CIMultiDict(self.head.headers)
        merged.extend(make_headers(headers))
        merged.extend(extra)
        return self.replace(headers=merged)


class Response:
    """Mutable response shared by every unit of one chain execution."""

    __slots__ = ("status", "headers", "body")

    def __init__(self, status: Optional[int] = None, headers: HeadersInit = None,
                 body: Optional[bytes] = None):
        self.status = status
        self.headers = make_headers(headers)
        self.body = body

    def __repr__(self) -> str:
        length = len(self.body) if self.body is not None else None
        return f"<Response status={self.status} headers={len(self.headers)} body_length={length}>"

    @property
    def status_code(self) -> int:
        """Status as it will be sent; an unset status means 200 OK."""
        return int(self.status) if self.status is not None else int(HTTPStatus.OK)

    def json(self) -> Any:
        """Decode the body as JSON; an empty body decodes to None."""
        if not self.body:
            return None
        return json.loads(self.body)

    def set_json(self, value: Any) -> None:
        self.body = json.dumps(value, separators=(",", ":")).encode("utf-8")
        self.headers["Content-Type"] = "application/json"

    def reset(self) -> None:
        self.status = None
        self.headers = CIMultiDict()
        self.body = None
