"""
D1 database client built on top of a raw pre-release D1 binding.

The raw binding only knows ``await binding.fetch(url, init)``. Queries are
POSTed as JSON ``{"sql": ..., "params": [...]}`` bodies (a list of them for
batches) and the JSON answer is validated into a ``D1Result`` envelope.
Anything unusable coming back is raised as ``BindingTransportError``.
"""

from __future__ import annotations

import copy
import json
import logging
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, ValidationInfo, field_validator

from ..api.config import settings
from ..api.exceptions import BindingTransportError
from ..core.env import env_items
from ..core.models import Env, EnvWrapFunction, maybe_await

logger = logging.getLogger(__name__)

D1_ERROR = "D1_ERROR"
D1_EXEC_ERROR = "D1_EXEC_ERROR"
D1_DUMP_ERROR = "D1_DUMP_ERROR"
D1_TYPE_ERROR = "D1_TYPE_ERROR"
D1_COLUMN_NOTFOUND = "D1_COLUMN_NOTFOUND"

_JSON_HEADERS = {"content-type": "application/json"}


class RawBinding(Protocol):
    async def fetch(self, url: str, init: Dict[str, Any]) -> Any:
        ...


class D1Result(BaseModel):
    """Envelope returned for every executed statement."""

    model_config = ConfigDict(extra="ignore")

    results: List[Dict[str, Any]] = Field(default_factory=list)
    success: bool = True
    meta: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None

    @field_validator("results", "meta", mode="before")
    @classmethod
    def _empty_when_null(cls, value: Any, info: ValidationInfo) -> Any:
        if value is None:
            return [] if info.field_name == "results" else {}
        return value

    @field_validator("success", mode="before")
    @classmethod
    def _success_defaults_true(cls, value: Any) -> Any:
        return True if value is None else value


class D1ExecResult(BaseModel):
    count: int
    duration: float


def _first_if_list(result: Union[D1Result, List[D1Result]]) -> D1Result:
    if isinstance(result, list):
        return result[0]
    return result


def _is_byte_list(value: Any) -> bool:
    return isinstance(value, list) and all(
        isinstance(b, int) and not isinstance(b, bool) and 0 <= b < 256 for b in value
    )


def _bindable(value: Any) -> Any:
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value
    if isinstance(value, (bytes, bytearray, memoryview)):
        return list(bytes(value))
    if _is_byte_list(value):
        return value
    detail = f"Type '{type(value).__name__}' not supported for value '{value}'"
    raise BindingTransportError(D1_TYPE_ERROR, detail, cause=TypeError(detail))


class D1PreparedStatement:
    """An SQL statement plus its bound parameters; ``bind`` returns a copy."""

    def __init__(self, database: "D1Database", statement: str, params: Sequence[Any] = ()):
        self.database = database
        self.statement = statement
        self.params = list(params)

    def bind(self, *values: Any) -> "D1PreparedStatement":
        return D1PreparedStatement(self.database, self.statement, [_bindable(v) for v in values])

    async def first(self, column: Optional[str] = None) -> Any:
        info = _first_if_list(await self.database._send("/query", self.statement, self.params))
        results = info.results
        if column is not None:
            if results and column not in results[0]:
                raise BindingTransportError(
                    D1_COLUMN_NOTFOUND,
                    f"Column not found ({column})",
                    cause=KeyError(column),
                )
            return results[0][column] if results else None
        return results[0] if results else None

    async def run(self) -> D1Result:
        return _first_if_list(await self.database._send("/execute", self.statement, self.params))

    async def all(self) -> D1Result:
        return _first_if_list(await self.database._send("/query", self.statement, self.params))

    async def raw(self) -> List[List[Any]]:
        info = _first_if_list(await self.database._send("/query", self.statement, self.params))
        return [list(row.values()) for row in info.results]

    def __repr__(self) -> str:
        return f"D1PreparedStatement({self.statement!r}, params={self.params!r})"


class D1Database:
    """Rich client wrapped around a raw D1 binding."""

    def __init__(self, binding: RawBinding, base_url: Optional[str] = None):
        self.binding = binding
        self.base_url = (base_url or settings.d1_base_url).rstrip("/")

    def prepare(self, query: str) -> D1PreparedStatement:
        return D1PreparedStatement(self, query)

    async def batch(self, statements: Sequence[D1PreparedStatement]) -> List[D1Result]:
        result = await self._send(
            "/query",
            [s.statement for s in statements],
            [s.params for s in statements],
        )
        return result if isinstance(result, list) else [result]

    async def exec(self, query: str) -> D1ExecResult:
        lines = query.strip().split("\n")
        result = await self._send("/query", lines, [[] for _ in lines], raise_on_error=False)
        results = result if isinstance(result, list) else [result]
        for index, item in enumerate(results):
            if item.error:
                detail = f"Error in line {index + 1}: {lines[index]}: {item.error}"
                raise BindingTransportError(D1_EXEC_ERROR, detail, cause=RuntimeError(detail))
        return D1ExecResult(
            count=len(results),
            duration=sum(float(r.meta.get("duration", 0) or 0) for r in results),
        )

    async def dump(self) -> bytes:
        response = await self.binding.fetch(
            f"{self.base_url}/dump",
            {"method": "POST", "headers": dict(_JSON_HEADERS)},
        )
        if response.status_code != 200:
            message = f"Status {response.status_code}"
            try:
                payload = await maybe_await(response.json())
            except ValueError as exc:
                raise BindingTransportError(D1_DUMP_ERROR, message, cause=exc) from exc
            if isinstance(payload, dict) and payload.get("error"):
                message = str(payload["error"])
            raise BindingTransportError(D1_DUMP_ERROR, message, cause=RuntimeError(message))
        return bytes(response.content)

    async def _send(
        self,
        endpoint: str,
        query: Union[str, Sequence[str]],
        params: Sequence[Any],
        raise_on_error: bool = True,
    ) -> Union[D1Result, List[D1Result]]:
        if isinstance(query, str):
            body: Any = {"sql": query, "params": list(params)}
        else:
            body = [{"sql": sql, "params": list(params[i])} for i, sql in enumerate(query)]

        response = await self.binding.fetch(
            f"{self.base_url}{endpoint}",
            {"method": "POST", "headers": dict(_JSON_HEADERS), "body": json.dumps(body)},
        )

        try:
            answer = await maybe_await(response.json())
        except ValueError as exc:
            logger.warning(
                "D1 response body is not valid JSON",
                extra={"endpoint": endpoint, "status": response.status_code},
            )
            raise BindingTransportError(D1_ERROR, "Response body is not valid JSON", cause=exc) from exc

        if isinstance(answer, dict) and answer.get("error") and raise_on_error:
            error = str(answer["error"])
            raise BindingTransportError(D1_ERROR, error, cause=RuntimeError(error))
        if not 200 <= response.status_code < 300:
            message = f"Status {response.status_code}"
            raise BindingTransportError(D1_ERROR, message, cause=RuntimeError(message))

        try:
            if isinstance(answer, list):
                results = [D1Result.model_validate(item) for item in answer]
            else:
                return D1Result.model_validate(answer)
        except ValidationError as exc:
            raise BindingTransportError(D1_ERROR, "Malformed D1 response envelope", cause=exc) from exc

        if raise_on_error:
            for item in results:
                if item.error:
                    raise BindingTransportError(D1_ERROR, item.error, cause=RuntimeError(item.error))
        return results


def _binding_names(env: Env) -> List[str]:
    if env is None:
        return []
    if hasattr(env, "keys") and hasattr(env, "__getitem__"):
        return list(env.keys())
    return list(getattr(env, "__dict__", {}))


def prefixed_binding_wrapper(prefix: str, factory: Callable[[Any], Any]) -> EnvWrapFunction:
    """Build an env wrap function upgrading every ``prefix``-ed binding.

    ``{"__D1_BETA__DB": raw}`` becomes ``{"DB": factory(raw)}``. Other
    bindings are kept and the input env is never mutated. An env without
    prefixed bindings is returned as is; otherwise mappings come back as a
    ``dict`` and attribute envs as a shallow copy of the same type.
    """
    if not prefix:
        raise ValueError("Binding prefix must not be empty")

    def wrap(env: Env) -> Env:
        names = [name for name in _binding_names(env) if isinstance(name, str) and name.startswith(prefix)]
        if not names:
            return env

        if hasattr(env, "keys") and hasattr(env, "__getitem__"):
            wrapped = env_items(env)
            for name in names:
                wrapped[name[len(prefix):]] = factory(wrapped.pop(name))
        else:
            wrapped = copy.copy(env)
            for name in names:
                raw = getattr(wrapped, name)
                delattr(wrapped, name)
                setattr(wrapped, name[len(prefix):], factory(raw))

        logger.debug("Upgraded pre-release bindings", extra={"bindings": [n[len(prefix):] for n in names]})
        return wrapped

    return wrap


def d1_env_wrapper(prefix: Optional[str] = None, base_url: Optional[str] = None) -> EnvWrapFunction:
    return prefixed_binding_wrapper(
        prefix or settings.d1_beta_prefix,
        lambda binding: D1Database(binding, base_url=base_url),
    )
