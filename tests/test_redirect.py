"""
Tests for the redirect/intercept adapter and the outbound client
"""
import asyncio
import gzip
import json
from http import HTTPStatus

import pytest
from prometheus_client import REGISTRY

from mockhttp import (
    ConnectionContext, Request, Response, UpstreamClient, UpstreamUnavailable, chain, execute,
    redirect,
)


class FakeClient:
    """Stands in for UpstreamClient, recording what would have been sent"""

    def __init__(self, reply=None, error=None):
        self.reply = reply or Response(200, {"Content-Type": "application/json"}, b'{"ok": true}')
        self.error = error
        self.sent = []

    async def send(self, request, timeout=None):
        self.sent.append((request, timeout))
        if self.error is not None:
            raise self.error
        return Response(self.reply.status, self.reply.headers.copy(), self.reply.body)


def incoming(uri="/path?x=1", **kwargs):
    kwargs.setdefault("headers", {"Host": "127.0.0.1:8080"})
    return Request.build("GET", uri, **kwargs)


def to_origin(request):
    url = request.url.with_scheme("http").with_host("origin.test").with_port(9000)
    return request.replace(uri=str(url)).with_headers({"X-Mocked": "yes"})


@pytest.mark.asyncio
async def test_forwards_transformed_request_and_copies_reply():
    client = FakeClient()
    original = incoming()

    response = await execute(redirect(to_origin, client=client, timeout=5.0), original)

    sent, timeout = client.sent[0]
    assert sent.uri == "http://origin.test:9000/path?x=1"
    assert sent.headers["X-Mocked"] == "yes"
    assert timeout == 5.0
    assert "X-Mocked" not in original.headers
    assert original.uri == "/path?x=1"
    assert response.status == 200
    assert response.json() == {"ok": True}


@pytest.mark.asyncio
async def test_response_transform_edits_reply_in_place():
    def wrap(response):
        response.status = HTTPStatus.CREATED
        response.headers["Custom-Response-Header"] = "value"
        response.set_json({"response": response.json()})

    response = await execute(redirect(to_origin, wrap, client=FakeClient()), incoming())

    assert response.status == 201
    assert response.headers["Custom-Response-Header"] == "value"
    assert response.json() == {"response": {"ok": True}}


@pytest.mark.asyncio
async def test_async_transforms():
    async def to_origin_later(request):
        await asyncio.sleep(0)
        return to_origin(request)

    async def mark(response):
        await asyncio.sleep(0)
        response.headers["X-Async"] = "1"

    client = FakeClient()
    response = await execute(redirect(to_origin_later, mark, client=client), incoming())
    assert client.sent[0][0].uri.startswith("http://origin.test:9000/")
    assert response.headers["X-Async"] == "1"


@pytest.mark.asyncio
async def test_adapter_is_terminal():
    downstream = []

    async def after(request, response, next):
        downstream.append(request)

    await execute(chain(redirect(to_origin, client=FakeClient()), after), incoming())
    assert downstream == []


@pytest.mark.asyncio
async def test_failing_request_transform_yields_500():
    def broken(request):
        raise KeyError("missing")

    client = FakeClient()
    response = await execute(redirect(broken, client=client), incoming())

    assert response.status == 500
    assert b"Request transform failed" in response.body
    assert client.sent == []


@pytest.mark.asyncio
@pytest.mark.parametrize("result", [None, "http://origin.test/", Request.build("GET", "/relative")])
async def test_invalid_transform_result_yields_500(result):
    client = FakeClient()
    response = await execute(redirect(lambda request: result, client=client), incoming())
    assert response.status == 500
    assert client.sent == []


@pytest.mark.asyncio
async def test_failing_response_transform_yields_500():
    def broken(response):
        response.headers["X-Half-Done"] = "1"
        raise ValueError("bad reply")

    response = await execute(redirect(to_origin, broken, client=FakeClient()), incoming())

    assert response.status == 500
    assert "X-Half-Done" not in response.headers
    assert b"Response transform failed" in response.body


@pytest.mark.asyncio
async def test_upstream_failure_yields_bad_gateway():
    called = []

    def never(response):
        called.append(response)

    client = FakeClient(error=UpstreamUnavailable("connection refused"))
    response = await execute(redirect(to_origin, never, client=client), incoming())

    assert response.status == 502
    assert b"connection refused" in response.body
    assert called == []


@pytest.mark.asyncio
async def test_upstream_failures_counted_per_port():
    labels = {"port": "8123", "reason": "unavailable"}
    before = REGISTRY.get_sample_value("mockhttp_upstream_failures_total", labels) or 0.0

    client = FakeClient(error=UpstreamUnavailable("down"))
    context = ConnectionContext(local_address=("127.0.0.1", 8123))
    await execute(redirect(to_origin, client=client), incoming(context=context))

    assert REGISTRY.get_sample_value("mockhttp_upstream_failures_total", labels) == before + 1


@pytest.mark.asyncio
async def test_custom_failure_status():
    client = FakeClient(error=UpstreamUnavailable("down"))
    handler = redirect(to_origin, client=client, failure_status=HTTPStatus.SERVICE_UNAVAILABLE)
    response = await execute(handler, incoming())
    assert response.status == 503


@pytest.mark.asyncio
async def test_missing_client_yields_bad_gateway():
    response = await execute(redirect(to_origin), incoming())
    assert response.status == 502


@pytest.mark.asyncio
async def test_uses_connection_client():
    client = FakeClient()
    request = incoming(context=ConnectionContext(client=client))
    response = await execute(redirect(to_origin), request)
    assert len(client.sent) == 1
    assert response.status == 200


@pytest.mark.parametrize("kwargs", [{"timeout": 0}, {"failure_status": 404}])
def test_rejects_bad_arguments(kwargs):
    with pytest.raises(ValueError):
        redirect(to_origin, **kwargs)


# Round trips through real servers


async def echo(request, response, next):
    """Origin answering with a JSON description of what it received"""
    response.set_json({
        "args": dict(request.url.query),
        "data": (request.body or b"").decode("utf-8"),
        "headers": {name.lower(): value for name, value in request.headers.items()},
        "url": str(request.url),
    })


@pytest.mark.asyncio
async def test_redirect_round_trip(make_server, fetch):
    origin = make_server(echo)
    origin.start()

    def to_echo(request):
        url = request.url
        target = (url.with_scheme("http").with_host("127.0.0.1").with_port(origin.bound_port)
                  .with_path("/post").with_query(url.query))
        return request.replace(uri=str(target)).with_headers({"custom-request-header": "value"})

    def wrap(response):
        response.status = HTTPStatus.CREATED
        response.headers["custom-response-header"] = "value"
        response.set_json({"response": response.json()})

    proxy = make_server(redirect(to_echo, wrap, timeout=5.0))
    proxy.start()

    status, headers, body = await fetch(
        f"{proxy.url}/?query=value",
        method="POST",
        data=b"Hello world!",
        headers={
            "Accept-Language": "en-gb",
            "Content-Type": "text/html",
            "Accept-Encoding": "gzip",
        },
    )

    assert status == 201
    assert headers["custom-response-header"] == "value"
    reply = json.loads(body)["response"]
    assert reply["args"] == {"query": "value"}
    assert reply["data"] == "Hello world!"
    assert reply["headers"]["custom-request-header"] == "value"
    assert reply["headers"]["accept-language"] == "en-gb"
    assert reply["headers"]["content-type"] == "text/html"
    assert reply["headers"]["content-length"] == "12"
    assert reply["url"] == f"http://127.0.0.1:{proxy.bound_port}/post?query=value"


@pytest.mark.asyncio
async def test_unreachable_origin_yields_502(make_server, fetch, unused_tcp_port):
    dead_port = unused_tcp_port

    def to_dead(request):
        return request.replace(uri=f"http://127.0.0.1:{dead_port}/")

    proxy = make_server(redirect(to_dead, timeout=5.0))
    proxy.start()

    status, _, body = await fetch(proxy.url + "/")
    assert status == 502
    assert body.startswith(b"Bad Gateway")


@pytest.mark.asyncio
async def test_slow_origin_yields_502(make_server, fetch):
    async def slow(request, response, next):
        await asyncio.sleep(2)

    origin = make_server(slow, shutdown_timeout=0.1)
    origin.start()

    def to_slow(request):
        return request.replace(uri=f"{origin.url}/")

    proxy = make_server(redirect(to_slow, timeout=0.2))
    proxy.start()

    status, _, _ = await fetch(proxy.url + "/")
    assert status == 502


@pytest.mark.asyncio
async def test_client_decodes_compressed_reply(make_server):
    payload = b'{"compressed": true}'

    async def gzipped(request, response, next):
        response.headers["Content-Encoding"] = "gzip"
        response.headers["Content-Type"] = "application/json"
        response.body = gzip.compress(payload)

    origin = make_server(gzipped, compress_responses=False)
    origin.start()

    client = UpstreamClient(timeout=5.0)
    try:
        reply = await client.send(Request.build(
            "GET", f"{origin.url}/", headers={"Accept-Encoding": "gzip, br"}))
    finally:
        await client.close()

    assert reply.status == 200
    assert reply.body == payload
    assert "Content-Encoding" not in reply.headers
    assert "Content-Length" not in reply.headers


@pytest.mark.asyncio
@pytest.mark.parametrize("sent, offered", [
    (None, "gzip, deflate"),
    ("br", "identity"),
    ("br, zstd, gzip;q=0.5", "gzip;q=0.5"),
])
async def test_client_only_offers_codings_it_decodes(make_server, sent, offered):
    seen = []

    async def brotli_if_allowed(request, response, next):
        accepted = request.headers.get("Accept-Encoding", "")
        seen.append(accepted)
        if "br" in accepted:
            response.headers["Content-Encoding"] = "br"
        response.body = b'{"plain": true}'

    origin = make_server(brotli_if_allowed, compress_responses=False)
    origin.start()

    client = UpstreamClient(timeout=5.0)
    headers = {"Accept-Encoding": sent} if sent else None
    try:
        reply = await client.send(Request.build("GET", f"{origin.url}/", headers=headers))
    finally:
        await client.close()

    assert seen == [offered]
    assert reply.body == b'{"plain": true}'
    assert "Content-Encoding" not in reply.headers


@pytest.mark.asyncio
async def test_client_rejects_relative_target():
    client = UpstreamClient()
    with pytest.raises(UpstreamUnavailable):
        await client.send(Request.build("GET", "/relative"))
    await client.close()
