"""
Handler chain composition and execution.

A handler unit is a coroutine function::

    async def unit(request: Request, response: Response, next: Continuation) -> None

Awaiting ``next()`` hands control to the following unit with the same request,
``next(new_request)`` substitutes a rewritten one. Returning without calling
``next`` ends the chain and the response as populated so far is final.
"""

from typing import Awaitable, Callable, List, Optional

from .errors import ProtocolViolation
from .messages import Request, Response

Handler = Callable[[Request, Response, "Continuation"], Awaitable[None]]


class Continuation:
    """One-shot callable passing control to the next stage of a chain.

    Calling it a second time raises ProtocolViolation before anything
    downstream runs.
    """

    __slots__ = ("_request", "_proceed", "_called", "_label")

    def __init__(self, request: Request,
                 proceed: Callable[[Request], Awaitable[None]],
                 label: str = "continuation"):
        self._request = request
        self._proceed = proceed
        self._called = False
        self._label = label

    @property
    def called(self) -> bool:
        return self._called

    def __call__(self, request: Optional[Request] = None) -> Awaitable[None]:
        if self._called:
            raise ProtocolViolation(f"{self._label} invoked more than once for "
                                    f"{self._request.method} {self._request.uri}")
        self._called = True
        return self._proceed(request if request is not None else self._request)


async def pass_through(request: Request, response: Response, next: Continuation) -> None:
    await next()


def chain(*handlers: Handler) -> Handler:
    """Compose handler units into a single unit, first to last.

    Raises:
        TypeError: If a unit is not callable
    """
    units: List[Handler] = list(handlers)
    for unit in units:
        if not callable(unit):
            raise TypeError(f"Handler units must be callable, got {unit!r}")
    if not units:
        return pass_through

    async def composed(request: Request, response: Response, next: Continuation) -> None:
        async def step(index: int, current: Request) -> None:
            if index == len(units):
                await next(current)
                return
            unit = units[index]
            label = f"continuation of {getattr(unit, '__name__', type(unit).__name__)}"
            await unit(current, response,
                       Continuation(current, lambda r: step(index + 1, r), label))

        await step(0, request)

    composed.__name__ = "chain(" + ", ".join(
        getattr(u, "__name__", type(u).__name__) for u in units) + ")"
    return composed


async def _finish(request: Request) -> None:
    return None


async def execute(handler: Handler, request: Request) -> Response:
    """Run ``handler`` as the top of a chain and return the response it produced.

    The response starts empty; the transport treats an unset status as 200 and
    an unset body as empty.
    """
    response = Response()
    await handler(request, response, Continuation(request, _finish, "outer continuation"))
    return response
