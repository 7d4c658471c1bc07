"""Shadow proxies: send requests to a second backend and ignore its answer."""

from __future__ import annotations

import logging
import re
import threading
from typing import Any

from gatewayproxy.core import (
    Backend,
    Context,
    EndpointConfig,
    NoBackendsError,
    NotEnoughProxiesError,
    Proxy,
    Response,
    TooManyProxiesError,
)
from gatewayproxy.request import clone_request
from gatewayproxy.static import NAMESPACE

_log = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 2.0

_SHADOW_KEY = "shadow"
_SHADOW_TIMEOUT_KEY = "shadow_timeout"

_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_UNIT_PATTERN = r"(?:ns|us|µs|μs|ms|s|m|h)"
_NUMBER_PATTERN = r"(?:\d+(?:\.\d*)?|\.\d+)"
_DURATION = re.compile(rf"([-+]?)((?:{_NUMBER_PATTERN}{_UNIT_PATTERN})+)")
_PART = re.compile(rf"({_NUMBER_PATTERN})({_UNIT_PATTERN})")


def parse_duration(text: str) -> float:
    """Parse a duration such as ``"1h30m"`` or ``"10s"`` into seconds."""
    if text in ("0", "+0", "-0"):
        return 0.0
    match = _DURATION.fullmatch(text)
    if match is None:
        raise ValueError(f'time: invalid duration "{text}"')
    total = sum(float(number) * _UNITS[unit] for number, unit in _PART.findall(match.group(2)))
    return -total if match.group(1) == "-" else total


def is_shadow_backend(backend: Backend) -> float | None:
    """Return the shadow timeout of ``backend``, or None if it is not a shadow."""
    section = backend.extra_config.get(NAMESPACE)
    if not isinstance(section, dict) or section.get(_SHADOW_KEY) is not True:
        return None
    timeout = backend.timeout
    text = section.get(_SHADOW_TIMEOUT_KEY)
    if isinstance(text, str):
        try:
            timeout = parse_duration(text)
        except ValueError:
            pass
    return timeout


class ShadowFactory:
    """A proxy factory wrapping another one to add shadow backends."""

    def __init__(self, factory: Any) -> None:
        self.factory = factory

    def new(self, endpoint: EndpointConfig) -> Proxy:
        """Build the proxy, sending a copy of each request to the shadow backends."""
        if not endpoint.backend:
            raise NoBackendsError()
        shadow: list[Backend] = []
        regular: list[Backend] = []
        max_timeout = 0.0
        for backend in endpoint.backend:
            timeout = is_shadow_backend(backend)
            if timeout is None:
                regular.append(backend)
                continue
            max_timeout = max(max_timeout, timeout)
            shadow.append(backend)

        endpoint.backend = regular
        proxy = self.factory.new(endpoint)
        if shadow:
            endpoint.backend = shadow
            try:
                shadow_proxy = self.factory.new(endpoint)
            except Exception as exc:
                _log.error("building the shadow proxy: %s", exc)
            else:
                proxy = shadow_middleware_with_timeout(max_timeout, proxy, shadow_proxy)
        return proxy


def new_shadow_factory(factory: Any) -> ShadowFactory:
    """Return a ShadowFactory wrapping ``factory``."""
    return ShadowFactory(factory)


def _select(logger: logging.Logger, name: str, proxies: tuple, build) -> Proxy:
    if not proxies:
        logger.critical(
            "not enough proxies for this endpoint: %s only accepts 1 or 2 proxies, got 0", name
        )
        raise NotEnoughProxiesError()
    if len(proxies) == 1:
        return proxies[0]
    if len(proxies) == 2:
        return build(proxies[0], proxies[1])
    logger.critical(
        "too many proxies for this proxy middleware: %s only accepts 1 or 2 proxies, got %d",
        name,
        len(proxies),
    )
    raise TooManyProxiesError()


def shadow_middleware_with_logger(logger: logging.Logger | None, *args: Proxy) -> Proxy:
    """Return the single proxy, or a shadow proxy over two."""
    logger = logger if logger is not None else _log
    return _select(logger, "ShadowMiddlewareWithLogger", args, new_shadow_proxy)


def shadow_middleware(*args: Proxy) -> Proxy:
    """Return the single proxy, or a shadow proxy over two."""
    return shadow_middleware_with_logger(None, *args)


def shadow_middleware_with_timeout_and_logger(
    logger: logging.Logger | None, timeout: float, *args: Proxy
) -> Proxy:
    """Return the single proxy, or a shadow proxy with ``timeout`` over two."""
    logger = logger if logger is not None else _log
    return _select(
        logger,
        "ShadowMiddlewareWithTimeoutAndLogger",
        args,
        lambda primary, shadow: new_shadow_proxy_with_timeout(timeout, primary, shadow),
    )


def shadow_middleware_with_timeout(timeout: float, *args: Proxy) -> Proxy:
    """Return the single proxy, or a shadow proxy with ``timeout`` over two."""
    return shadow_middleware_with_timeout_and_logger(None, timeout, *args)


def new_shadow_proxy(primary: Proxy, shadow: Proxy) -> Proxy:
    """Return a proxy calling both, answering with the primary's response."""
    return new_shadow_proxy_with_timeout(DEFAULT_TIMEOUT, primary, shadow)


class _DetachedContext(Context):
    """A context with its own lifetime that reads values from another one."""

    def __init__(self, parent: Context, data: Context | None) -> None:
        super().__init__(parent)
        self._data = data

    def value(self, key: Any) -> Any:
        return self._data.value(key) if self._data is not None else None


def new_shadow_proxy_with_timeout(timeout: float, primary: Proxy, shadow: Proxy) -> Proxy:
    """Like new_shadow_proxy, giving the shadow call its own ``timeout``."""

    def proxy(ctx: Context, request: Any) -> Response | None:
        root = Context()
        shadow_ctx = _DetachedContext(root.with_timeout(timeout), ctx)
        shadow_request = clone_request(request)

        def run() -> None:
            try:
                shadow(shadow_ctx, shadow_request)
            except Exception as exc:
                _log.debug("shadow backend failed: %s", exc)
            finally:
                root.cancel()

        threading.Thread(target=run, daemon=True).start()
        return primary(ctx, request)

    return proxy