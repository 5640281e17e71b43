"""
Core server components
"""

from .chain import Continuation, Handler, chain, execute, pass_through
from .errors import (
    AlreadyStarted, MockServerError, NotRunning, ProtocolViolation, TransformFailure,
    UpstreamUnavailable,
)
from .messages import ConnectionContext, Request, RequestHead, Response
from .server_core import Server, ServerState

# Expose public interface
__all__ = [
    "Continuation", "Handler", "chain", "execute", "pass_through",
    "AlreadyStarted", "MockServerError", "NotRunning", "ProtocolViolation",
    "TransformFailure", "UpstreamUnavailable",
    "ConnectionContext", "Request", "RequestHead", "Response",
    "Server", "ServerState",
]
