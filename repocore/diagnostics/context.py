"""
Per-call diagnostics context.

A Context carries a correlation identity and a log sink. Every lifecycle
operation of the core receives one and reports messages and failures through
it instead of raising where the failure is recovered locally.

Invariants:
    - log() accepts a message, a single exception, or an ExceptionGroup
    - Derived contexts (bind) share correlation_id and the log sink
    - on_login_failed is the only channel through which repositories signal
      authentication failure to the host

Example:
    >>> ctx = LoggingContext()
    >>> ctx.log("opening stores")
    >>> try:
    ...     raise ValueError("boom")
    ... except ValueError as exc:
    ...     ctx.log(exc)
"""

from __future__ import annotations

import logging
import threading
import uuid
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional, Union

LoginFailedHook = Callable[[], None]
Loggable = Union[str, BaseException]


class Context(ABC):
    """Abstract diagnostics context.

    Subclasses implement the three typed sinks; callers use log().

    Attributes:
        correlation_id: Identity shared by every log line of one logical call
        thread_id: Identifier of the thread that created the context
        on_login_failed: Optional host hook for authentication failures
    """

    def __init__(
        self,
        correlation_id: Optional[uuid.UUID] = None,
        on_login_failed: Optional[LoginFailedHook] = None,
    ) -> None:
        self.correlation_id = correlation_id or uuid.uuid4()
        self.thread_id = threading.get_ident()
        self.on_login_failed = on_login_failed

    def log(self, item: Loggable) -> None:
        """Log a message, an exception, or an exception group."""
        if isinstance(item, BaseExceptionGroup):
            self.log_exception_group(item)
        elif isinstance(item, BaseException):
            self.log_exception(item)
        else:
            self.log_message(str(item))

    @abstractmethod
    def log_message(self, message: str) -> None:
        ...

    @abstractmethod
    def log_exception(self, exception: BaseException) -> None:
        ...

    def log_exception_group(self, group: BaseExceptionGroup) -> None:
        """Log an aggregate, one entry per member."""
        self.log_message(f"{group.message} ({len(group.exceptions)} errors)")
        for exc in group.exceptions:
            self.log(exc)

    def login_failed(self) -> None:
        """Fire the host's login-failed hook, if one is bound."""
        if self.on_login_failed is not None:
            self.on_login_failed()

    @abstractmethod
    def bind(self, on_login_failed: Optional[LoginFailedHook] = None) -> Context:
        """Return a derived context carrying the given hook."""


class LoggingContext(Context):
    """Context backed by the standard logging module.

    Every record gets ``correlation_id`` and ``thread_id`` in its extra
    mapping, so JSON formatters emit them as fields.

    Example:
        >>> ctx = LoggingContext(logging.getLogger("app.data"))
        >>> ctx.log("ready")
    """

    def __init__(
        self,
        sink: Optional[logging.Logger] = None,
        correlation_id: Optional[uuid.UUID] = None,
        on_login_failed: Optional[LoginFailedHook] = None,
    ) -> None:
        super().__init__(correlation_id=correlation_id, on_login_failed=on_login_failed)
        self.sink = sink or logging.getLogger("repocore.context")

    def _extra(self) -> dict[str, Any]:
        return {
            "correlation_id": str(self.correlation_id),
            "thread_id": self.thread_id,
        }

    def log_message(self, message: str) -> None:
        self.sink.info(message, extra=self._extra())

    def log_exception(self, exception: BaseException) -> None:
        self.sink.error(
            f"{type(exception).__name__}: {exception}",
            exc_info=(type(exception), exception, exception.__traceback__),
            extra=self._extra(),
        )

    def bind(self, on_login_failed: Optional[LoginFailedHook] = None) -> LoggingContext:
        return LoggingContext(
            sink=self.sink,
            correlation_id=self.correlation_id,
            on_login_failed=on_login_failed,
        )
