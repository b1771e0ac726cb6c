"""Internal middleware mounted ahead of the handler module's own middleware."""

import logging
import traceback
from typing import Any

from fastapi import Request, status
from fastapi.responses import JSONResponse, PlainTextResponse

from .config import DEFAULT_SCHEDULED_PATH, DEFAULT_SCHEDULED_SUCCESS_BODY
from ..core.models import SCHEDULED, ExecutionContext, MiddlewareFunction

logger = logging.getLogger(__name__)


def scheduled_bridge_middleware(
    path: str = DEFAULT_SCHEDULED_PATH,
    success_body: str = DEFAULT_SCHEDULED_SUCCESS_BODY,
) -> MiddlewareFunction:
    """Let an HTTP-only client fire the scheduled trigger.

    ``GET <path>?cron=...`` dispatches ``scheduled`` with that cron string.
    """

    async def scheduled_bridge(request: Request, env: Any, ctx: ExecutionContext, middleware_ctx):
        if request.url.path != path:
            return await middleware_ctx.next(request, env)

        cron = request.query_params.get("cron", "")
        try:
            await middleware_ctx.dispatch(SCHEDULED, {"cron": cron})
        except Exception as exc:
            logger.warning("Scheduled handler failed via testing bridge", exc_info=True, extra={"cron": cron})
            return PlainTextResponse(str(exc), status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)
        return PlainTextResponse(success_body)

    return scheduled_bridge


def json_error_middleware(debug: bool = False) -> MiddlewareFunction:
    """Render anything raised downstream as a 500 JSON body (development only)."""

    async def json_error(request: Request, env: Any, ctx: ExecutionContext, middleware_ctx):
        try:
            return await middleware_ctx.next(request, env)
        except Exception as exc:
            logger.error("Unhandled error in fetch handler", exc_info=True)
            content = {"name": type(exc).__name__, "message": str(exc)}
            error_code = getattr(exc, "error_code", None)
            if error_code:
                content["error_code"] = error_code
            if debug:
                content["stack"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
            return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=content)

    return json_error
