"""Middleware filtering the query strings sent to a backend."""

from __future__ import annotations

import dataclasses
import logging
from typing import Any

from gatewayproxy.core import (
    Backend,
    Middleware,
    NotEnoughProxiesError,
    Proxy,
    Response,
    TooManyProxiesError,
    empty_middleware_with_logger,
)

_log = logging.getLogger(__name__)


def new_filter_query_strings_middleware(
    logger: logging.Logger | None, backend: Backend
) -> Middleware:
    """Return a middleware passing only the allowed query strings to the next proxy.

    The filtered query shares its value lists with the original request.
    """
    logger = logger if logger is not None else _log
    allowed = list(backend.query_strings_to_pass)
    if not allowed:
        return lambda *proxies: empty_middleware_with_logger(logger, *proxies)

    def middleware(*proxies: Proxy) -> Proxy:
        if len(proxies) > 1:
            logger.critical(
                "too many proxies for this proxy middleware: NewFilterQueryStringsMiddleware only accepts 1 proxy, got %d",
                len(proxies),
            )
            raise TooManyProxiesError()
        if not proxies:
            raise NotEnoughProxiesError()
        next_proxy = proxies[0]

        def proxy(ctx: Any, request: Any) -> Response | None:
            query = request.query or {}
            if not query:
                return next_proxy(ctx, request)
            passing = sum(1 for name in allowed if name in query)
            if passing == len(query):
                return next_proxy(ctx, request)
            filtered = {name: query[name] for name in allowed if name in query}
            return next_proxy(ctx, dataclasses.replace(request, query=filtered))

        return proxy

    return middleware