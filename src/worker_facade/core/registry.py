"""Ordered, append-only middleware registry."""

from __future__ import annotations

import logging
from typing import Any, Iterable, List, Tuple

from .models import MiddlewareFunction

logger = logging.getLogger(__name__)


def flatten_middleware(items: Any) -> List[MiddlewareFunction]:
    """Normalise a registration argument into a flat list.

    Accepts one middleware or a sequence of them; nested sequences are
    flattened one level, which is what ``register([a, [b, c]])`` callers
    expect.
    """
    if callable(items):
        return [items]
    flat: List[MiddlewareFunction] = []
    for item in items:
        if isinstance(item, (list, tuple)):
            flat.extend(item)
        else:
            flat.append(item)
    for middleware in flat:
        if not callable(middleware):
            raise TypeError(f"Middleware must be callable, got {type(middleware).__name__}")
    return flat


class MiddlewareRegistry:
    """Middleware registered on one worker instance.

    Registration order is execution order. The module's static middleware is
    merged exactly once through ``merge_static``; afterwards the registry is
    frozen for the life of the instance.
    """

    def __init__(self) -> None:
        self._middleware: List[MiddlewareFunction] = []
        self._static_merged = False

    def register(self, items: Iterable[Any]) -> None:
        if self._static_merged:
            raise RuntimeError("Middleware registry is frozen once static middleware has been merged")
        self._middleware.extend(flatten_middleware(items))

    def merge_static(self, items: Iterable[MiddlewareFunction]) -> bool:
        """Append the module's static middleware once; later calls are no-ops.

        Returns True on the call that performed the merge.
        """
        if self._static_merged:
            return False
        self._middleware.extend(flatten_middleware(items))
        self._static_merged = True
        logger.info("Static middleware merged", extra={"middleware_count": len(self._middleware)})
        return True

    @property
    def static_merged(self) -> bool:
        return self._static_merged

    @property
    def middleware(self) -> Tuple[MiddlewareFunction, ...]:
        return tuple(self._middleware)

    def __len__(self) -> int:
        return len(self._middleware)

    def __bool__(self) -> bool:
        return bool(self._middleware)
