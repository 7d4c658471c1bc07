"""Middleware running the registered request and response modifiers."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields
from typing import Any, Callable

from gatewayproxy.core import (
    Backend,
    EndpointConfig,
    Metadata,
    Middleware,
    NotEnoughProxiesError,
    Proxy,
    Response,
    TooManyProxiesError,
    empty_middleware_with_logger,
)
from gatewayproxy.modifiers import NAMESPACE, get_request_modifier, get_response_modifier

_log = logging.getLogger(__name__)

Modifier = Callable[[Any], Any]


@dataclass
class RequestWrapper:
    """The request as seen by the modifiers."""

    method: str = ""
    url: Any = None
    query: dict[str, list[str]] = field(default_factory=dict)
    path: str = ""
    body: Any = None
    params: dict[str, str] = field(default_factory=dict)
    headers: dict[str, list[str]] = field(default_factory=dict)


@dataclass
class ResponseWrapper:
    """The response as seen by the modifiers."""

    data: Any = None
    is_complete: bool = False
    headers: dict[str, list[str]] = field(default_factory=dict)
    status_code: int = 0
    io: Any = None


def _coerce(value: Any, cls: type) -> Any:
    if isinstance(value, cls):
        return value
    names = [f.name for f in fields(cls)]
    if value is None or not all(hasattr(value, name) for name in names):
        return None
    return cls(**{name: getattr(value, name) for name in names})


def _execute_request_modifiers(modifiers: list[Modifier], request: Any) -> Any:
    current = RequestWrapper(
        method=request.method,
        url=request.url,
        query=request.query,
        path=request.path,
        body=request.body,
        params=request.params,
        headers=request.headers,
    )
    for modifier in modifiers:
        wrapper = _coerce(modifier(current), RequestWrapper)
        if wrapper is not None:
            current = wrapper
    request.method = current.method
    request.url = current.url
    request.query = current.query
    request.path = current.path
    request.body = current.body
    request.params = current.params
    request.headers = current.headers
    return request


def _execute_response_modifiers(modifiers: list[Modifier], response: Response | None) -> Response | None:
    if response is None:
        return None
    current = ResponseWrapper(
        data=response.data,
        is_complete=response.is_complete,
        headers=response.metadata.headers,
        status_code=response.metadata.status_code,
        io=response.io,
    )
    for modifier in modifiers:
        wrapper = _coerce(modifier(current), ResponseWrapper)
        if wrapper is not None:
            current = wrapper
    response.data = current.data
    response.is_complete = current.is_complete
    response.io = current.io
    response.metadata = Metadata(headers=current.headers, status_code=current.status_code)
    return response


def _fallback(logger: logging.Logger) -> Middleware:
    return lambda *proxies: empty_middleware_with_logger(logger, *proxies)


def _build(logger: logging.Logger, tag: str, pattern: str, cfg: dict[str, Any]) -> Middleware:
    names = cfg.get("name")
    if not isinstance(names, list):
        return _fallback(logger)

    request_modifiers: list[Modifier] = []
    response_modifiers: list[Modifier] = []
    for name in names:
        if not isinstance(name, str):
            continue
        factory = get_request_modifier(name)
        if factory is not None:
            modifier = factory(cfg)
            if modifier is not None:
                request_modifiers.append(modifier)
            continue
        factory = get_response_modifier(name)
        if factory is not None:
            modifier = factory(cfg)
            if modifier is not None:
                response_modifiers.append(modifier)

    if not request_modifiers and not response_modifiers:
        return _fallback(logger)

    logger.debug(
        "[%s: %s][Modifier Plugins] Adding %d request and %d response modifiers",
        tag,
        pattern,
        len(request_modifiers),
        len(response_modifiers),
    )

    def middleware(*proxies: Proxy) -> Proxy:
        if len(proxies) > 1:
            logger.critical(
                "too many proxies for this proxy middleware: newPluginMiddleware only accepts 1 proxy, got %d tag: %s, pattern: %s",
                len(proxies),
                tag,
                pattern,
            )
            raise TooManyProxiesError()
        if not proxies:
            raise NotEnoughProxiesError()
        next_proxy = proxies[0]

        def proxy(ctx: Any, request: Any) -> Response | None:
            if request_modifiers:
                request = _execute_request_modifiers(request_modifiers, request)
            response = next_proxy(ctx, request)
            if response_modifiers:
                return _execute_response_modifiers(response_modifiers, response)
            return response

        return proxy

    return middleware


def new_plugin_middleware(logger: logging.Logger | None, endpoint: EndpointConfig) -> Middleware:
    """Return an endpoint middleware running the configured modifier plugins."""
    logger = logger if logger is not None else _log
    cfg = endpoint.extra_config.get(NAMESPACE)
    if not isinstance(cfg, dict):
        return _fallback(logger)
    return _build(logger, "ENDPOINT", endpoint.endpoint, cfg)


def new_backend_plugin_middleware(logger: logging.Logger | None, backend: Backend) -> Middleware:
    """Return a backend middleware running the configured modifier plugins."""
    logger = logger if logger is not None else _log
    cfg = backend.extra_config.get(NAMESPACE)
    if not isinstance(cfg, dict):
        return _fallback(logger)
    return _build(logger, "BACKEND", backend.url_pattern, cfg)