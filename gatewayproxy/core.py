"""Core types of the proxy pipe: contexts, errors, responses and configs.

A proxy is a callable ``proxy(ctx, request) -> Response | None`` that raises
on failure. An exception may carry a partial result in a ``response``
attribute. A middleware is a callable taking one or more proxies and
returning a proxy.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

_log = logging.getLogger(__name__)


class ProxyError(Exception):
    """Base error of the proxy pipe."""

    default_message = "proxy error"

    def __init__(self, message: str | None = None, *, response: Any = None) -> None:
        super().__init__(message or self.default_message)
        self.response = response


class DeadlineExceededError(ProxyError):
    """The context deadline passed."""

    default_message = "context deadline exceeded"


class CanceledError(ProxyError):
    """The context was canceled."""

    default_message = "context canceled"


class NoBackendsError(ProxyError):
    """An endpoint has no backends defined."""

    default_message = "all endpoints must have at least one backend"


class TooManyBackendsError(ProxyError):
    """An endpoint has too many backends defined."""

    default_message = "too many backends for this proxy"


class TooManyProxiesError(ProxyError):
    """A middleware received too many proxies."""

    default_message = "too many proxies for this proxy middleware"


class NotEnoughProxiesError(ProxyError):
    """A middleware received too few proxies."""

    default_message = "not enough proxies for this endpoint"


class Context:
    """Cancellation, deadline and request-scoped values for a call."""

    def __init__(
        self,
        parent: Context | None = None,
        values: dict[Any, Any] | None = None,
        *,
        cancellable: bool = True,
    ) -> None:
        self._parent = parent
        self._values = dict(values or {})
        self._cancellable = cancellable
        self._done = threading.Event()
        self._error: BaseException | None = None
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[BaseException], None]] = []
        self._timer: threading.Timer | None = None
        self.deadline: float | None = parent.deadline if parent is not None else None
        if parent is not None:
            parent._add_done_callback(self._propagate)

    def _propagate(self, error: BaseException) -> None:
        self._finish(error)

    def _add_done_callback(self, callback: Callable[[BaseException], None]) -> None:
        if not self._cancellable:
            return
        with self._lock:
            if not self._done.is_set():
                self._callbacks.append(callback)
                return
            error = self._error
        callback(error)

    def _discard_callback(self, callback: Callable[[BaseException], None]) -> None:
        with self._lock:
            try:
                self._callbacks.remove(callback)
            except ValueError:
                pass

    def _finish(self, error: BaseException) -> None:
        if not self._cancellable:
            return
        with self._lock:
            if self._done.is_set():
                return
            self._error = error
            self._done.set()
            callbacks, self._callbacks = self._callbacks, []
            timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()
        if self._parent is not None:
            self._parent._discard_callback(self._propagate)
        for callback in callbacks:
            callback(error)

    def with_timeout(self, timeout: float) -> Context:
        """Return a child context that expires after ``timeout`` seconds."""
        child = Context(self)
        deadline = time.monotonic() + timeout
        if child.deadline is None or deadline < child.deadline:
            child.deadline = deadline
        if timeout <= 0:
            child._finish(DeadlineExceededError())
            return child
        timer = threading.Timer(timeout, lambda: child._finish(DeadlineExceededError()))
        timer.daemon = True
        with child._lock:
            if child._done.is_set():
                return child
            child._timer = timer
        timer.start()
        return child

    def with_cancel(self) -> Context:
        """Return a child context that can be canceled on its own."""
        return Context(self)

    def with_value(self, key: Any, value: Any) -> Context:
        """Return a child context carrying ``value`` under ``key``."""
        return Context(self, {key: value})

    def value(self, key: Any) -> Any:
        """Return the value stored under ``key`` here or in an ancestor."""
        ctx: Context | None = self
        while ctx is not None:
            if key in ctx._values:
                return ctx._values[key]
            ctx = ctx._parent
        return None

    def cancel(self) -> None:
        """Cancel this context and its descendants."""
        self._finish(CanceledError())

    def is_done(self) -> bool:
        """Whether the context has been canceled or has expired."""
        return self._done.is_set()

    def error(self) -> BaseException | None:
        """The reason the context is done, or None while it is not."""
        with self._lock:
            return self._error

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the context is done or ``timeout`` passes."""
        return self._done.wait(timeout)

    def __enter__(self) -> Context:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.cancel()


def background() -> Context:
    """Return a root context that is never canceled."""
    return Context(cancellable=False)


@dataclass
class Metadata:
    """Headers and status code of a response."""

    headers: dict[str, list[str]] = field(default_factory=dict)
    status_code: int = 0


@dataclass(eq=False)
class Response:
    """The entity returned by a proxy."""

    data: Optional[dict[str, Any]] = None
    is_complete: bool = False
    metadata: Metadata = field(default_factory=Metadata)
    io: Any = None


@dataclass
class Backend:
    """Configuration of one backend."""

    url_pattern: str = ""
    method: str = ""
    encoding: str = ""
    decoder: Optional[Callable[..., Any]] = None
    timeout: float = 0.0
    extra_config: dict[str, Any] = field(default_factory=dict)
    query_strings_to_pass: list[str] = field(default_factory=list)


@dataclass
class EndpointConfig:
    """Configuration of one endpoint and its backends."""

    endpoint: str = ""
    method: str = ""
    backend: list[Backend] = field(default_factory=list)
    timeout: float = 0.0
    extra_config: dict[str, Any] = field(default_factory=dict)


class ReadCloserWrapper:
    """A reader that closes the wrapped stream when the context is done."""

    def __init__(self, ctx: Context, stream: Any) -> None:
        self._stream = stream
        ctx._add_done_callback(lambda _error: self.close())

    def read(self, size: int = -1) -> bytes:
        return self._stream.read(size)

    def close(self) -> None:
        self._stream.close()

    def __enter__(self) -> ReadCloserWrapper:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


Proxy = Callable[[Context, Any], Optional[Response]]
Middleware = Callable[..., Proxy]


def empty_middleware_with_logger(logger: logging.Logger | None, *args: Proxy) -> Proxy:
    """Return the single proxy received, unchanged."""
    logger = logger if logger is not None else _log
    if len(args) > 1:
        logger.critical(
            "too many proxies for this proxy middleware: EmptyMiddleware only accepts 1 proxy, got %d",
            len(args),
        )
        raise TooManyProxiesError()
    if not args:
        raise NotEnoughProxiesError()
    return args[0]


def empty_middleware(*args: Proxy) -> Proxy:
    """Return the single proxy received, unchanged."""
    return empty_middleware_with_logger(None, *args)


def noop_proxy(ctx: Context, request: Any) -> None:
    """A proxy that forwards nowhere and returns no response."""
    _log.debug("noop proxy discarding request %r", request)
    return None