"""
Handler module contract and the value types shared by the facade.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Sequence, Tuple

logger = logging.getLogger(__name__)

FETCH = "fetch"
SCHEDULED = "scheduled"
QUEUE = "queue"
EMAIL = "email"
TAIL = "tail"
TRACE = "trace"
TEST = "test"

TRIGGERS: Tuple[str, ...] = (FETCH, SCHEDULED, QUEUE, EMAIL, TAIL, TRACE, TEST)
SECONDARY_TRIGGERS: Tuple[str, ...] = tuple(t for t in TRIGGERS if t != FETCH)

Env = Any
TriggerHandler = Callable[[Any, Env, "ExecutionContext"], Any]
EnvWrapFunction = Callable[[Env], Env]
Dispatch = Callable[[str, Dict[str, Any]], Awaitable[Any]]


class MiddlewareFunction(Protocol):
    def __call__(self, request: Any, env: Env, ctx: "ExecutionContext", middleware_ctx: Any) -> Any:
        ...


async def maybe_await(value: Any) -> Any:
    """Await ``value`` if it is awaitable; sync handlers return plain values."""
    if inspect.isawaitable(value):
        return await value
    return value


class ExecutionContext:
    """Per-invocation execution context handed to every trigger.

    ``wait_until`` schedules background work that must not hold up the
    response. Pending tasks are kept referenced until ``drain`` awaits them.
    """

    def __init__(self) -> None:
        self._pending: List[asyncio.Future] = []
        self.passthrough_on_exception = False

    def wait_until(self, awaitable: Awaitable[Any]) -> None:
        self._pending.append(asyncio.ensure_future(awaitable))

    def pass_through_on_exception(self) -> None:
        self.passthrough_on_exception = True

    @property
    def pending(self) -> int:
        return sum(1 for task in self._pending if not task.done())

    async def drain(self) -> None:
        """Wait for all background work scheduled through ``wait_until``."""
        while self._pending:
            tasks, self._pending = self._pending, []
            results = await asyncio.gather(*tasks, return_exceptions=True)
            for result in results:
                if isinstance(result, BaseException):
                    logger.warning(
                        "Background task scheduled with wait_until failed",
                        exc_info=(type(result), result, result.__traceback__),
                    )


@dataclass(frozen=True)
class HandlerModule:
    """The user supplied unit the facade wraps.

    Every trigger is optional. ``middleware`` and ``env_wrappers`` are kept in
    declaration order.
    """
    fetch: Optional[TriggerHandler] = None
    scheduled: Optional[TriggerHandler] = None
    queue: Optional[TriggerHandler] = None
    email: Optional[TriggerHandler] = None
    tail: Optional[TriggerHandler] = None
    trace: Optional[TriggerHandler] = None
    test: Optional[TriggerHandler] = None
    middleware: Tuple[MiddlewareFunction, ...] = field(default_factory=tuple)
    env_wrappers: Tuple[EnvWrapFunction, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        object.__setattr__(self, "middleware", tuple(self.middleware or ()))
        object.__setattr__(self, "env_wrappers", tuple(self.env_wrappers or ()))
        for trigger in TRIGGERS:
            handler = getattr(self, trigger)
            if handler is not None and not callable(handler):
                raise TypeError(f"Handler export {trigger!r} must be callable, got {type(handler).__name__}")

    @classmethod
    def from_object(cls, obj: Any) -> "HandlerModule":
        """Build a handler module from a Python module, class instance or mapping.

        ``envWrappers`` is accepted as an alias of ``env_wrappers``.
        """
        if isinstance(obj, HandlerModule):
            return obj

        def lookup(name: str) -> Any:
            if isinstance(obj, dict):
                return obj.get(name)
            return getattr(obj, name, None)

        kwargs: Dict[str, Any] = {trigger: lookup(trigger) for trigger in TRIGGERS}
        kwargs["middleware"] = _as_sequence(lookup("middleware"), "middleware")
        wrappers = lookup("env_wrappers")
        if wrappers is None:
            wrappers = lookup("envWrappers")
        kwargs["env_wrappers"] = _as_sequence(wrappers, "env_wrappers")
        return cls(**kwargs)

    def handler_for(self, trigger: str) -> Optional[TriggerHandler]:
        if trigger not in TRIGGERS:
            return None
        return getattr(self, trigger)

    @property
    def exports(self) -> Tuple[str, ...]:
        return tuple(t for t in TRIGGERS if getattr(self, t) is not None)


def _as_sequence(value: Any, name: str) -> Sequence[Any]:
    if value is None:
        return ()
    if isinstance(value, (list, tuple)):
        return tuple(value)
    raise TypeError(f"Handler export {name!r} must be a list or tuple, got {type(value).__name__}")
