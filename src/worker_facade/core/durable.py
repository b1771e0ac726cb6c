"""
Construction-time env masking for stateful objects the host instantiates
directly (durable objects). They never pass through ``Facade.fetch``, so the
adapter runs the env pipeline when the host constructs them and forwards
everything else to the wrapped instance.

Protocol methods (``__call__``, ``__aenter__``, ``__iter__`` and the like) are
looked up on the type, so the adapter copies a forwarder for each one the
wrapped class defines. The adapter is not a subclass of the wrapped class:
``isinstance(obj, Wrapped)`` is False; use ``obj.instance`` for that.
"""

from __future__ import annotations

from typing import Any, ClassVar, Optional

from .env import EnvWrapperPipeline
from .models import Env

_FORWARDED_DUNDERS = (
    "__call__",
    "__await__",
    "__enter__",
    "__exit__",
    "__aenter__",
    "__aexit__",
    "__iter__",
    "__aiter__",
    "__len__",
    "__contains__",
    "__getitem__",
    "__setitem__",
    "__delitem__",
    "__bool__",
    "__str__",
)


class DurableObjectAdapter:
    """Owns one instance of ``wrapped_class`` built with a wrapped env."""

    wrapped_class: ClassVar[Optional[type]] = None
    pipeline: ClassVar[Optional[EnvWrapperPipeline]] = None

    def __init__(self, state: Any, env: Env):
        cls = type(self)
        if cls.wrapped_class is None or cls.pipeline is None:
            raise TypeError("DurableObjectAdapter must be created through mask_durable_object()")
        wrapped_env = cls.pipeline.apply(env)
        object.__setattr__(self, "_instance", cls.wrapped_class(state, wrapped_env))

    @property
    def instance(self) -> Any:
        return object.__getattribute__(self, "_instance")

    def __getattr__(self, name: str) -> Any:
        if name == "_instance":
            raise AttributeError(name)
        return getattr(self.instance, name)

    def __setattr__(self, name: str, value: Any) -> None:
        setattr(self.instance, name, value)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} wrapping {self.instance!r}>"


def _forwarder(name: str):
    def forward(self, *args: Any, **kwargs: Any) -> Any:
        return getattr(self.instance, name)(*args, **kwargs)

    forward.__name__ = name
    return forward


def mask_durable_object(cls: type, pipeline: EnvWrapperPipeline) -> type:
    """Return an adapter class that applies ``pipeline`` before constructing ``cls``."""
    if not isinstance(cls, type):
        raise TypeError(f"Expected a class, got {type(cls).__name__}")
    namespace = {
        "wrapped_class": cls,
        "pipeline": pipeline,
        "__module__": cls.__module__,
        "__qualname__": cls.__qualname__,
        "__doc__": cls.__doc__,
    }
    defined = {name for base in cls.__mro__ if base is not object for name in vars(base)}
    for name in _FORWARDED_DUNDERS:
        if name in defined:
            namespace[name] = _forwarder(name)
    return type(cls.__name__, (DurableObjectAdapter,), namespace)
