"""Error handlers: the caller's policy for database failures.

The database never decides whether a failure is fatal. It hands a
DatabaseException to the ErrorHandler given with the operation, and the
handler either recovers (returns) or raises in the caller's context.

Stock policies:
    throw_all()                 raise everything
    log_all(logger)             log everything, raise nothing
    forward_handled(*types)     raise the listed types, log the rest
    custom(fn)                  fn(exc) -> True if handled, False to raise
"""

from __future__ import annotations

import logging
from typing import Callable, TypeVar

R = TypeVar("R")

logger = logging.getLogger("propdb.handlers")

Callback = Callable[[BaseException], bool]


class ErrorHandler:
    """Route an exception to a callback, forwarding selected types untouched."""

    def __init__(
        self,
        callback: Callback,
        forward: tuple[type[BaseException], ...] = (),
        unwrap: tuple[type[BaseException], ...] = (),
    ) -> None:
        self._callback = callback
        self._forward: set[type[BaseException]] = set()
        self._unwrap: set[type[BaseException]] = set()
        self.add_forwarded(*forward)
        self.add_unwrapped(*unwrap)

    def add_forwarded(self, *types: type[BaseException]) -> ErrorHandler:
        """Exceptions of exactly these types are re-raised without consulting the callback."""
        _validate(types)
        self._forward.update(types)
        return self

    def add_unwrapped(self, *types: type[BaseException]) -> ErrorHandler:
        """For exceptions of these types, handle their __cause__ instead."""
        _validate(types)
        self._unwrap.update(types)
        return self

    def handle(self, exc: BaseException) -> None:
        if type(exc) in self._unwrap and exc.__cause__ is not None:
            exc = exc.__cause__

        if type(exc) in self._forward:
            raise exc

        if not self._callback(exc):
            raise exc

    def try_catch(self, fn: Callable[..., R], *args, **kwargs) -> R | None:
        """Call fn; route any Exception it raises through handle()."""
        try:
            return fn(*args, **kwargs)
        except Exception as exc:
            self.handle(exc)
            return None


def _validate(types) -> None:
    for t in types:
        if not (isinstance(t, type) and issubclass(t, BaseException)):
            raise TypeError(f"ErrorHandler cannot handle {t!r}")


def _raise(exc: BaseException) -> bool:
    return False


def _logger_callback(log: logging.Logger, exc_info: bool) -> Callback:
    def _log(exc: BaseException) -> bool:
        log.error(
            "Caught %s: %s", type(exc).__name__, exc,
            exc_info=(type(exc), exc, exc.__traceback__) if exc_info else None,
        )
        return True

    return _log


def throw_all() -> ErrorHandler:
    return ErrorHandler(_raise)


def log_all(log: logging.Logger | None = None, exc_info: bool = False) -> ErrorHandler:
    """Log every failure at ERROR and carry on."""
    return ErrorHandler(_logger_callback(log or logger, exc_info))


def forward_handled(
    *types: type[BaseException], log: logging.Logger | None = None
) -> ErrorHandler:
    """Raise the listed types unchanged; log everything else (raise it if no log)."""
    callback = _raise if log is None else _logger_callback(log, False)
    return ErrorHandler(callback, forward=types)


def custom(fn: Callback) -> ErrorHandler:
    return ErrorHandler(fn)
