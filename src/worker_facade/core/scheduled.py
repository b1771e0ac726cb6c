"""Controller object passed to scheduled handlers."""

from __future__ import annotations

from typing import Callable

from ..api.exceptions import IdentityViolationError


def _noop() -> None:
    return None


class ScheduledController:
    """``scheduled_time`` is milliseconds since the epoch at dispatch time.

    ``no_retry`` only works when called on the controller the facade built;
    calling it with any other receiver raises ``IdentityViolationError``.
    """

    __slots__ = ("scheduled_time", "cron", "__no_retry")

    def __init__(self, scheduled_time: int, cron: str = "", no_retry: Callable[[], None] = _noop):
        self.scheduled_time = scheduled_time
        self.cron = cron
        self.__no_retry = no_retry

    def no_retry(self) -> None:
        if not isinstance(self, ScheduledController):
            raise IdentityViolationError()
        self.__no_retry()

    def __repr__(self) -> str:
        return f"ScheduledController(scheduled_time={self.scheduled_time!r}, cron={self.cron!r})"
