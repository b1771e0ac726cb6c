"""Middleware, trigger dispatch and binding upgrade facade for worker handler modules."""

from .core.chain import MiddlewareContext, build_chain, invoke_chain
from .core.dispatcher import Facade
from .core.durable import DurableObjectAdapter, mask_durable_object
from .core.env import EnvWrapperPipeline
from .core.models import ExecutionContext, HandlerModule
from .core.registry import MiddlewareRegistry
from .core.scheduled import ScheduledController
from .runtime import FacadeInstance

__all__ = [
    "DurableObjectAdapter",
    "EnvWrapperPipeline",
    "ExecutionContext",
    "Facade",
    "FacadeInstance",
    "HandlerModule",
    "MiddlewareContext",
    "MiddlewareRegistry",
    "ScheduledController",
    "build_chain",
    "invoke_chain",
    "mask_durable_object",
]
