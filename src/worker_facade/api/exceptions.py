"""
Custom exception classes for the facade.
"""

from typing import Optional


class FacadeError(Exception):
    """Base facade exception."""

    def __init__(self, detail: str, error_code: str = None):
        super().__init__(detail)
        self.detail = detail
        self.error_code = error_code or "FACADE_ERROR"


class HandlerMissingError(FacadeError):
    """A trigger was invoked but the handler module does not export it."""

    def __init__(self, trigger: str):
        super().__init__(
            detail=f"Handler does not export a {trigger}() function.",
            error_code="HANDLER_MISSING",
        )
        self.trigger = trigger


class ChainExhaustedError(FacadeError):
    """The middleware chain was advanced past its terminal handler."""

    def __init__(self, detail: str = "Middleware chain exhausted without reaching a terminal handler"):
        super().__init__(detail=detail, error_code="CHAIN_EXHAUSTED")


class IdentityViolationError(FacadeError, TypeError):
    """A receiver-bound capability was invoked on a foreign object."""

    def __init__(self, detail: str = "Illegal invocation"):
        super().__init__(detail=detail, error_code="ILLEGAL_INVOCATION")


class BindingTransportError(FacadeError):
    """A raw binding exchange failed or returned an unusable body.

    ``code`` is stable and machine readable (``D1_ERROR``, ``D1_EXEC_ERROR``...),
    ``message`` is the human readable part. The original failure is chained
    as ``__cause__``.
    """

    def __init__(self, code: str, message: str, cause: Optional[BaseException] = None):
        super().__init__(detail=f"{code}: {message}", error_code=code)
        self.code = code
        self.message = message
        if cause is not None:
            self.__cause__ = cause

    @property
    def cause(self) -> Optional[BaseException]:
        return self.__cause__
