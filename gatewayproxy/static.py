"""Middleware adding static data to the responses of an endpoint."""

from __future__ import annotations

import functools
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from gatewayproxy.core import (
    EndpointConfig,
    Middleware,
    NotEnoughProxiesError,
    Proxy,
    Response,
    TooManyProxiesError,
    empty_middleware_with_logger,
)

NAMESPACE = "gatewayproxy/proxy"

_log = logging.getLogger(__name__)

_STATIC_KEY = "static"
_ALWAYS = "always"
_SUCCESS = "success"
_ERRORED = "errored"
_COMPLETE = "complete"
_INCOMPLETE = "incomplete"

Matcher = Callable[[Optional[Response], Optional[BaseException]], bool]


def _matches(
    strategy: str, response: Response | None, error: BaseException | None
) -> bool:
    """Decide whether the static data applies; unknown strategies always apply."""
    if strategy == _SUCCESS:
        return error is None
    if strategy == _ERRORED:
        return error is not None
    if strategy == _COMPLETE:
        return error is None and response is not None and response.is_complete
    if strategy == _INCOMPLETE:
        return response is None or not response.is_complete
    return strategy == _ALWAYS or strategy not in (_SUCCESS, _ERRORED, _COMPLETE, _INCOMPLETE)


@dataclass
class StaticConfig:
    """Static data to add and the strategy deciding when to add it."""

    data: dict[str, Any]
    strategy: str
    match: Matcher


def get_static_middleware_cfg(extra: dict[str, Any]) -> StaticConfig | None:
    """Parse the static section of an extra config, or return None."""
    section = extra.get(NAMESPACE)
    if not isinstance(section, dict):
        return None
    static = section.get(_STATIC_KEY)
    if not isinstance(static, dict):
        return None
    data = static.get("data")
    if not isinstance(data, dict):
        return None
    strategy = static.get("strategy")
    if not isinstance(strategy, str):
        strategy = _ALWAYS
    return StaticConfig(
        data=data, strategy=strategy, match=functools.partial(_matches, strategy)
    )


def new_static_middleware(
    logger: logging.Logger | None, endpoint: EndpointConfig
) -> Middleware:
    """Return a middleware adding the configured static data to the responses."""
    logger = logger if logger is not None else _log
    cfg = get_static_middleware_cfg(endpoint.extra_config)
    if cfg is None:
        return lambda *proxies: empty_middleware_with_logger(logger, *proxies)

    logger.debug(
        "[ENDPOINT: %s][Static] Adding a static response using '%s' strategy. Data: %s",
        endpoint.endpoint,
        cfg.strategy,
        json.dumps(cfg.data, default=str),
    )

    def middleware(*proxies: Proxy) -> Proxy:
        if len(proxies) > 1:
            logger.critical(
                "too many proxies for this proxy middleware: NewStaticMiddleware only accepts 1 proxy, got %d",
                len(proxies),
            )
            raise TooManyProxiesError()
        if not proxies:
            raise NotEnoughProxiesError()
        next_proxy = proxies[0]

        def proxy(ctx: Any, request: Any) -> Response | None:
            error: BaseException | None = None
            try:
                result = next_proxy(ctx, request)
            except Exception as exc:
                error = exc
                result = getattr(exc, "response", None)

            if not cfg.match(result, error):
                if error is not None:
                    raise error
                return result

            if result is None:
                result = Response(data={})
            elif result.data is None:
                result.data = {}
            result.data.update(cfg.data)

            if error is not None:
                try:
                    error.response = result  # type: ignore[attr-defined]
                except AttributeError:
                    pass
                raise error
            return result

        return proxy

    return middleware