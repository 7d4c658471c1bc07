"""Middleware logging the calls made to the next proxy."""

from __future__ import annotations

import logging
import time
from typing import Any

from gatewayproxy.core import (
    Middleware,
    NotEnoughProxiesError,
    Proxy,
    Response,
    TooManyProxiesError,
)

_log = logging.getLogger(__name__)


def _elapsed(begin: float) -> str:
    return f"{(time.monotonic() - begin) * 1000:.3f}ms"


def new_logging_middleware(logger: logging.Logger | None, name: str) -> Middleware:
    """Return a middleware logging the start, duration and outcome of each call."""
    logger = logger if logger is not None else _log
    prefix = f"[{name.upper()}]"

    def middleware(*proxies: Proxy) -> Proxy:
        if len(proxies) > 1:
            logger.critical(
                "too many proxies for this proxy middleware: NewLoggingMiddleware only accepts 1 proxy, got %d",
                len(proxies),
            )
            raise TooManyProxiesError()
        if not proxies:
            raise NotEnoughProxiesError()
        next_proxy = proxies[0]

        def proxy(ctx: Any, request: Any) -> Response | None:
            begin = time.monotonic()
            logger.info("%s Calling backend", prefix)
            logger.debug("%s Request %s", prefix, request)
            try:
                result = next_proxy(ctx, request)
            except Exception as exc:
                logger.info("%s Call to backend took %s", prefix, _elapsed(begin))
                logger.warning("%s Call to backend failed: %s", prefix, exc)
                raise
            logger.info("%s Call to backend took %s", prefix, _elapsed(begin))
            if result is None:
                logger.warning("%s Call to backend returned a null response", prefix)
            return result

        return proxy

    return middleware