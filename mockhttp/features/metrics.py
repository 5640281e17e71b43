"""
Prometheus metrics for the mock server.

Every series is labelled with the listening port so several servers in one
test process can be told apart.
"""

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest

from ..core.messages import Response

REQ_TOTAL = Counter("mockhttp_requests_total", "Total HTTP requests", ["port"])
REQ_ERRORS = Counter("mockhttp_request_errors_total", "Total HTTP request errors",
                     ["port", "kind"])
REQ_IN_FLIGHT = Gauge("mockhttp_in_flight_requests", "In-flight requests", ["port"])
REQ_LATENCY = Histogram("mockhttp_request_duration_seconds", "Request duration seconds",
                        ["port"])
UPSTREAM_FAILURES = Counter("mockhttp_upstream_failures_total",
                            "Failed calls from the redirect adapter to an origin",
                            ["port", "reason"])


def metrics_response() -> Response:
    """Current metrics in the Prometheus text exposition format."""
    return Response(status=200, headers={"Content-Type": CONTENT_TYPE_LATEST},
                    body=generate_latest())
