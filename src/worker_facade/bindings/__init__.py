from .d1 import D1Database, D1PreparedStatement, D1Result, d1_env_wrapper, prefixed_binding_wrapper
from .fetcher import HTTPBinding

__all__ = [
    "D1Database",
    "D1PreparedStatement",
    "D1Result",
    "HTTPBinding",
    "d1_env_wrapper",
    "prefixed_binding_wrapper",
]
