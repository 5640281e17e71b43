"""
Exceptions raised by the mock server core.

Lifecycle misuse (AlreadyStarted, NotRunning) is raised straight to the caller
of start()/stop(). The per-request errors (ProtocolViolation,
UpstreamUnavailable, TransformFailure) are turned into terminal responses by
the redirect adapter or the connection handler and never stop the server.
"""

"""
Copyright 2025 Chris Bunting
File: errors.py | Purpose: Mock server exception hierarchy
@author Chris Bunting | @version 2.0.0

CHANGELOG:
2025-09-02 - Chris Bunting: Split lifecycle and per-request errors
2025-08-28 - Chris Bunting: Initial implementation
"""

from typing import Optional


class MockServerError(Exception):
    """Base class for all mock server errors."""
    pass


class AlreadyStarted(MockServerError):
    """start() called on a server that is starting or running."""

    def __init__(self, port: int):
        super().__init__(f"Server on port {port} is already started; stop it first")
        self.port = port


class NotRunning(MockServerError):
    """stop() called on a server that is not running."""

    def __init__(self, port: int, state: Optional[str] = None):
        detail = f" (state: {state})" if state else ""
        super().__init__(f"Server on port {port} is not running{detail}")
        self.port = port
        self.state = state


class ProtocolViolation(MockServerError):
    """A handler invoked its continuation more than once."""
    pass


class UpstreamUnavailable(MockServerError):
    """The origin could not be reached or did not answer in time.

    Attributes:
        url: Target URL of the failed call, when known
        cause: The underlying client exception, when there is one
    """

    def __init__(self, message: str, *, url: Optional[str] = None,
                 cause: Optional[BaseException] = None):
        super().__init__(message)
        self.url = url
        self.cause = cause


class TransformFailure(MockServerError):
    """A request or response transform raised or returned an unusable value."""

    def __init__(self, message: str, *, stage: str,
                 cause: Optional[BaseException] = None):
        super().__init__(message)
        self.stage = stage
        self.cause = cause
