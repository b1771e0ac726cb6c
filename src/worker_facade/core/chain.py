"""
Onion composition of middleware around a terminal handler.

``build_chain`` appends the terminal handler to the registered middleware;
``invoke_chain`` runs the head of the chain with a fresh ``MiddlewareContext``
whose ``next`` recurses into the tail. A middleware that never calls ``next``
short-circuits everything downstream.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Sequence, Tuple

from ..api.exceptions import ChainExhaustedError
from .models import Dispatch, Env, ExecutionContext, MiddlewareFunction, maybe_await

Chain = Tuple[MiddlewareFunction, ...]


class MiddlewareContext:
    """Handed to each chain step; valid for a single invocation only."""

    __slots__ = ("_ctx", "_dispatch", "_tail")

    def __init__(self, ctx: ExecutionContext, dispatch: Dispatch, tail: Chain):
        self._ctx = ctx
        self._dispatch = dispatch
        self._tail = tail

    async def next(self, request: Any, env: Env) -> Any:
        """Continue with the rest of the chain."""
        return await invoke_chain(request, env, self._ctx, self._dispatch, self._tail)

    async def dispatch(self, type: str, init: Optional[Dict[str, Any]] = None) -> Any:
        """Invoke a different trigger on the same handler module."""
        return await self._dispatch(type, init or {})


def build_chain(registered: Sequence[MiddlewareFunction], terminal: MiddlewareFunction) -> Chain:
    return (*registered, terminal)


async def invoke_chain(
    request: Any,
    env: Env,
    ctx: ExecutionContext,
    dispatch: Dispatch,
    chain: Chain,
) -> Any:
    if not chain:
        raise ChainExhaustedError()
    head, tail = chain[0], chain[1:]
    middleware_ctx = MiddlewareContext(ctx, dispatch, tail)
    return await maybe_await(head(request, env, ctx, middleware_ctx))
