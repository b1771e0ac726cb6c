"""
Trigger dispatcher: the entry points a host runtime calls on a worker instance.

``fetch`` masks the env, merges the module's static middleware into the
registry on first use, then either calls the module's ``fetch`` directly
(empty registry) or runs the whole middleware chain. Middleware reach other
triggers only through ``MiddlewareContext.dispatch``; the remaining entry
points mask the env and call the matching export without any chain.
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Any, Callable, Dict, Optional

from ..api.app_logging import set_invocation_id, set_trigger
from ..api.exceptions import HandlerMissingError
from .chain import MiddlewareContext, build_chain, invoke_chain
from .env import EnvWrapperPipeline
from .models import (
    EMAIL,
    FETCH,
    QUEUE,
    SCHEDULED,
    TAIL,
    TEST,
    TRACE,
    Dispatch,
    Env,
    ExecutionContext,
    HandlerModule,
    maybe_await,
)
from .registry import MiddlewareRegistry
from .scheduled import ScheduledController

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


class Facade:
    """Wraps one handler module for one worker instance."""

    def __init__(
        self,
        module: HandlerModule,
        registry: Optional[MiddlewareRegistry] = None,
        pipeline: Optional[EnvWrapperPipeline] = None,
        clock: Callable[[], int] = _now_ms,
    ):
        self.module = module
        self.registry = registry if registry is not None else MiddlewareRegistry()
        self.pipeline = pipeline if pipeline is not None else EnvWrapperPipeline(module.env_wrappers)
        self._clock = clock

    def _begin(self, trigger: str) -> None:
        set_invocation_id(str(uuid.uuid4()))
        set_trigger(trigger)

    async def fetch(self, request: Any, raw_env: Env, ctx: Optional[ExecutionContext] = None) -> Any:
        self._begin(FETCH)
        ctx = ctx if ctx is not None else ExecutionContext()
        env = self.pipeline.mask(raw_env)

        self.registry.merge_static(self.module.middleware)
        if not self.registry:
            if self.module.fetch is None:
                raise HandlerMissingError(FETCH)
            logger.debug("Invoking fetch without middleware")
            return await maybe_await(self.module.fetch(request, env, ctx))

        chain = build_chain(self.registry.middleware, self._terminal_fetch)
        logger.debug("Invoking fetch through middleware chain", extra={"chain_length": len(chain)})
        return await invoke_chain(request, env, ctx, self._dispatcher(env, ctx), chain)

    async def _terminal_fetch(
        self, request: Any, env: Env, ctx: ExecutionContext, _middleware_ctx: MiddlewareContext
    ) -> Any:
        if self.module.fetch is None:
            raise HandlerMissingError(FETCH)
        return await maybe_await(self.module.fetch(request, env, ctx))

    def _dispatcher(self, env: Env, ctx: ExecutionContext) -> Dispatch:
        async def dispatch(type: str, init: Dict[str, Any]) -> Any:
            return await self.dispatch(type, init, env, ctx)

        return dispatch

    async def dispatch(
        self,
        type: str,
        init: Optional[Dict[str, Any]],
        env: Env,
        ctx: Optional[ExecutionContext] = None,
    ) -> Any:
        """Synthetically invoke another trigger with an already masked env.

        Only ``scheduled`` is dispatchable. Unsupported types and missing
        exports return None; errors raised by the dispatched handler
        propagate to the caller.
        """
        init = init or {}
        ctx = ctx if ctx is not None else ExecutionContext()
        if type == SCHEDULED and self.module.scheduled is not None:
            cron = init.get("cron")
            controller = ScheduledController(self._clock(), "" if cron is None else cron)
            logger.info("Dispatching scheduled trigger", extra={"cron": controller.cron})
            return await maybe_await(self.module.scheduled(controller, env, ctx))
        logger.debug("Dispatch ignored: trigger not supported", extra={"dispatch_type": type})
        return None

    async def _invoke_secondary(self, trigger: str, payload: Any, raw_env: Env, ctx: Optional[ExecutionContext]) -> Any:
        handler = self.module.handler_for(trigger)
        if handler is None:
            raise HandlerMissingError(trigger)
        self._begin(trigger)
        ctx = ctx if ctx is not None else ExecutionContext()
        env = self.pipeline.mask(raw_env)
        logger.debug("Invoking trigger", extra={"handler_trigger": trigger})
        return await maybe_await(handler(payload, env, ctx))

    async def scheduled(self, controller: ScheduledController, raw_env: Env, ctx: Optional[ExecutionContext] = None) -> Any:
        return await self._invoke_secondary(SCHEDULED, controller, raw_env, ctx)

    async def queue(self, batch: Any, raw_env: Env, ctx: Optional[ExecutionContext] = None) -> Any:
        return await self._invoke_secondary(QUEUE, batch, raw_env, ctx)

    async def email(self, message: Any, raw_env: Env, ctx: Optional[ExecutionContext] = None) -> Any:
        return await self._invoke_secondary(EMAIL, message, raw_env, ctx)

    async def tail(self, events: Any, raw_env: Env, ctx: Optional[ExecutionContext] = None) -> Any:
        return await self._invoke_secondary(TAIL, events, raw_env, ctx)

    async def trace(self, traces: Any, raw_env: Env, ctx: Optional[ExecutionContext] = None) -> Any:
        return await self._invoke_secondary(TRACE, traces, raw_env, ctx)

    async def test(self, controller: Any, raw_env: Env, ctx: Optional[ExecutionContext] = None) -> Any:
        return await self._invoke_secondary(TEST, controller, raw_env, ctx)

    def supports(self, trigger: str) -> bool:
        return self.module.handler_for(trigger) is not None
