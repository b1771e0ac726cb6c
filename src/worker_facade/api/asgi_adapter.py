"""
Expose a facade's ``fetch`` trigger as an ASGI application.

Any ASGI server (or ``fastapi.testclient.TestClient``) can then drive the
wrapped handler module the same way the worker host feeds it requests:
each HTTP scope becomes one ``fetch`` invocation with a fresh
``ExecutionContext`` and the instance's raw env.

Limitations:
- websocket scopes are rejected; lifespan is acknowledged and ignored.
- only the first complete response per request reaches the server.
- ``wait_until`` work is drained after the response has been sent, so
  background failures are logged before the request finishes.
"""

from __future__ import annotations

import logging
from typing import Callable

from fastapi import Request
from starlette.responses import Response
from starlette.types import Message, Receive, Scope, Send

from ..core.dispatcher import Facade
from ..core.models import Env, ExecutionContext

logger = logging.getLogger(__name__)


class FacadeASGIApp:
    def __init__(
        self,
        facade: Facade,
        env: Env,
        ctx_factory: Callable[[], ExecutionContext] = ExecutionContext,
    ):
        self.facade = facade
        self.env = env
        self.ctx_factory = ctx_factory

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        scope_type = scope.get("type")
        if scope_type == "lifespan":
            await self._lifespan(receive, send)
            return
        if scope_type != "http":
            raise ValueError(f"Unsupported ASGI scope type: {scope_type}")

        ctx = self.ctx_factory()
        try:
            await self._respond(scope, receive, send, ctx)
        finally:
            await ctx.drain()

    async def _respond(self, scope: Scope, receive: Receive, send: Send, ctx: ExecutionContext) -> None:
        request = Request(scope, receive)
        response = await self.facade.fetch(request, self.env, ctx)
        if not isinstance(response, Response):
            raise TypeError(
                f"fetch() must return a Response, got {type(response).__name__}"
            )

        response_complete = False

        async def safe_send(message: Message) -> None:
            nonlocal response_complete
            if response_complete:
                logger.debug("Dropping ASGI message sent after response completion",
                             extra={"asgi_message_type": message.get("type")})
                return
            if message.get("type") == "http.response.body" and not message.get("more_body", False):
                response_complete = True
            await send(message)

        await response(scope, receive, safe_send)

    async def _lifespan(self, receive: Receive, send: Send) -> None:
        while True:
            message = await receive()
            if message["type"] == "lifespan.startup":
                await send({"type": "lifespan.startup.complete"})
            elif message["type"] == "lifespan.shutdown":
                await send({"type": "lifespan.shutdown.complete"})
                return
