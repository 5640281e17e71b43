#!/usr/bin/env python3
"""
Command line entry point: run a mock server in the foreground.

    python -m mockhttp --port 8080
    python -m mockhttp --port 8080 --upstream https://api.example.com

Without --upstream every request is answered with an empty 200. With it,
every request is logged and forwarded to the upstream origin unchanged
apart from its scheme and authority.
"""

import argparse
import logging
import signal
import sys
import threading
from typing import List, Optional

from multidict import CIMultiDict
from yarl import URL

from .core.chain import Continuation, chain, pass_through
from .core.messages import Request, Response
from .core.server_core import Server
from .core.server_utils import ServerConfigError, configure_logging
from .features.redirect import redirect

logger = logging.getLogger("mockhttp.cli")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="mockhttp",
                                     description="Embeddable HTTP mock/intercept server")
    parser.add_argument("--host", default="127.0.0.1", help="Address to bind (default: 127.0.0.1)")
    parser.add_argument("--port", type=int, default=8080, help="Port to listen on (default: 8080)")
    parser.add_argument("--upstream", help="Origin URL to forward every request to")
    parser.add_argument("--timeout", type=float, default=30.0,
                        help="Upstream timeout in seconds (default: 30)")
    parser.add_argument("--log-level", default="INFO",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    parser.add_argument("--plain-logs", action="store_true", help="Plain text instead of JSON logs")
    parser.add_argument("--no-compression", action="store_true",
                        help="Never compress responses")
    parser.add_argument("--metrics-path", help="Serve Prometheus metrics on this path")
    return parser.parse_args(argv)


def build_handler(upstream: Optional[str], timeout: float):
    if not upstream:
        return pass_through

    origin = URL(upstream)
    if not origin.scheme or origin.host is None:
        raise ServerConfigError(f"Upstream must be an absolute URL: {upstream}")

    async def log_traffic(request: Request, response: Response, next: Continuation) -> None:
        logger.info("-> %s %s", request.method, request.uri,
                    extra={"headers": dict(request.headers), "body_length": len(request.body or b"")})
        await next()

    def to_upstream(request: Request) -> Request:
        target = request.url.with_scheme(origin.scheme).with_host(origin.host)
        target = target.with_port(None if origin.is_default_port() else origin.port)
        headers = CIMultiDict(request.headers)
        headers["Host"] = target.raw_host if target.is_default_port() else f"{target.raw_host}:{target.port}"
        return request.replace(uri=str(target), headers=headers)

    def log_reply(response: Response) -> None:
        logger.info("<- %s", response.status_code,
                    extra={"headers": dict(response.headers),
                           "body_length": len(response.body or b"")})

    return chain(log_traffic, redirect(to_upstream, log_reply, timeout=timeout))


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(getattr(logging, args.log_level), json_format=not args.plain_logs)

    try:
        server = Server(
            args.port,
            build_handler(args.upstream, args.timeout),
            host=args.host,
            upstream_timeout=args.timeout,
            compress_responses=not args.no_compression,
            metrics_path=args.metrics_path,
        )
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    stop_requested = threading.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, lambda s, f: stop_requested.set())

    try:
        server.start()
    except OSError as e:
        print(f"Error starting server: {e}", file=sys.stderr)
        return 1

    try:
        while not stop_requested.wait(0.5):
            pass
    finally:
        server.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
