from .core import (
    AlreadyStarted, ConnectionContext, Continuation, Handler, MockServerError, NotRunning,
    ProtocolViolation, Request, RequestHead, Response, Server, ServerState, TransformFailure,
    UpstreamUnavailable, chain, execute, pass_through,
)
from .features.client import UpstreamClient
from .features.handlers import record, respond, route
from .features.redirect import redirect

__version__ = '2.0.0'

__all__ = [
    # Server lifecycle
    'Server',
    'ServerState',

    # Handler chain
    'Handler',
    'Continuation',
    'chain',
    'execute',
    'pass_through',

    # Messages
    'Request',
    'RequestHead',
    'Response',
    'ConnectionContext',

    # Handler units
    'redirect',
    'respond',
    'route',
    'record',
    'UpstreamClient',

    # Errors
    'MockServerError',
    'AlreadyStarted',
    'NotRunning',
    'ProtocolViolation',
    'UpstreamUnavailable',
    'TransformFailure',
]
