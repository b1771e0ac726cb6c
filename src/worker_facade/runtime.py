"""
Per-instance wiring of the facade around a handler module.

A ``FacadeInstance`` is created once when a worker instance starts and owns
everything that must live exactly as long as that instance: the middleware
registry (with its one-shot static merge flag), the env wrapper pipeline and
its masked-env cache, and the ``Facade`` entry points built on both.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional

from .api.app_logging import setup_logging
from .api.asgi_adapter import FacadeASGIApp
from .api.config import Settings, settings as default_settings
from .api.middleware import json_error_middleware, scheduled_bridge_middleware
from .bindings.d1 import d1_env_wrapper
from .core.dispatcher import Facade
from .core.durable import mask_durable_object
from .core.env import EnvWrapperPipeline
from .core.models import Env, EnvWrapFunction, HandlerModule, MiddlewareFunction
from .core.registry import MiddlewareRegistry

logger = logging.getLogger(__name__)


def internal_middleware(config: Settings) -> List[MiddlewareFunction]:
    """Middleware the facade mounts ahead of the module's own, per settings."""
    middleware: List[MiddlewareFunction] = []
    if config.test_scheduled:
        middleware.append(scheduled_bridge_middleware(config.scheduled_path, config.scheduled_success_body))
    if config.json_errors:
        middleware.append(json_error_middleware(debug=config.debug))
    return middleware


def internal_env_wrappers(config: Settings) -> List[EnvWrapFunction]:
    return [d1_env_wrapper(prefix=config.d1_beta_prefix, base_url=config.d1_base_url)]


@dataclass
class FacadeInstance:
    module: HandlerModule
    settings: Settings
    registry: MiddlewareRegistry
    pipeline: EnvWrapperPipeline
    facade: Facade = field(init=False)

    def __post_init__(self) -> None:
        self.facade = Facade(self.module, registry=self.registry, pipeline=self.pipeline)

    @classmethod
    def start(cls, handler: Any, settings: Optional[Settings] = None) -> "FacadeInstance":
        """Build a fresh instance around ``handler`` (module, object or mapping)."""
        config = settings or default_settings
        setup_logging("DEBUG" if config.debug else config.log_level, use_json=config.log_json)
        module = HandlerModule.from_object(handler)

        registry = MiddlewareRegistry()
        internal = internal_middleware(config)
        if internal:
            registry.register(internal)

        pipeline = EnvWrapperPipeline([*internal_env_wrappers(config), *module.env_wrappers])
        logger.info(
            "Facade instance started",
            extra={
                "exports": list(module.exports),
                "internal_middleware": len(internal),
                "module_middleware": len(module.middleware),
                "env_wrappers": len(pipeline.wrappers),
            },
        )
        return cls(module=module, settings=config, registry=registry, pipeline=pipeline)

    def mask_durable_object(self, cls: type) -> type:
        return mask_durable_object(cls, self.pipeline)

    def asgi(self, env: Env) -> FacadeASGIApp:
        return FacadeASGIApp(self.facade, env)

    def teardown(self) -> None:
        self.pipeline.clear()
