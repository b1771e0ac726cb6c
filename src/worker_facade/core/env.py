"""Environment wrapper pipeline with an identity-keyed, instance-owned cache."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Tuple

from .models import Env, EnvWrapFunction

logger = logging.getLogger(__name__)


class EnvWrapperPipeline:
    """Folds env wrap functions over a raw env, in order.

    ``mask`` memoises per raw env identity so repeated calls with the same
    raw object return the same wrapped object. The cache entry keeps the raw
    env alive, which keeps its ``id`` from being reused while cached; the
    whole cache goes away with the pipeline's owning instance.
    """

    def __init__(self, wrappers: Iterable[EnvWrapFunction] = ()) -> None:
        self._wrappers: Tuple[EnvWrapFunction, ...] = tuple(wrappers)
        for wrap in self._wrappers:
            if not callable(wrap):
                raise TypeError(f"Env wrapper must be callable, got {type(wrap).__name__}")
        self._cache: Dict[int, Tuple[Env, Env]] = {}

    @property
    def wrappers(self) -> Tuple[EnvWrapFunction, ...]:
        return self._wrappers

    def apply(self, raw_env: Env) -> Env:
        """Run every wrapper without consulting the cache."""
        env = raw_env
        for wrap in self._wrappers:
            env = wrap(env)
        return env

    def mask(self, raw_env: Env) -> Env:
        if not self._wrappers:
            return raw_env
        cached = self._cache.get(id(raw_env))
        if cached is not None and cached[0] is raw_env:
            return cached[1]
        wrapped = self.apply(raw_env)
        self._cache[id(raw_env)] = (raw_env, wrapped)
        logger.debug("Masked env cached", extra={"cached_envs": len(self._cache)})
        return wrapped

    def clear(self) -> None:
        self._cache.clear()

    def __len__(self) -> int:
        return len(self._cache)


def env_items(env: Env) -> Dict[str, Any]:
    """Read bindings from a mapping or from an attribute-style env object."""
    if env is None:
        return {}
    if isinstance(env, dict):
        return dict(env)
    if hasattr(env, "keys") and hasattr(env, "__getitem__"):
        return {key: env[key] for key in env.keys()}
    env_dict = getattr(env, "__dict__", None)
    if isinstance(env_dict, dict):
        return {key: value for key, value in env_dict.items() if not key.startswith("_")}
    raise TypeError(f"Unsupported env type: {type(env).__name__}")
