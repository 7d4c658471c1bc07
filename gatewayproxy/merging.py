"""Middleware merging the responses of several backends into one."""

from __future__ import annotations

import dataclasses
import logging
import math
import queue
import re
import struct
import threading
from typing import Any, Callable, Optional

from gatewayproxy.core import (
    Context,
    EndpointConfig,
    Middleware,
    NoBackendsError,
    NotEnoughProxiesError,
    Proxy,
    ProxyError,
    Response,
    empty_middleware_with_logger,
)
from gatewayproxy.registry import Untyped
from gatewayproxy.request import Request, clone_request
from gatewayproxy.static import NAMESPACE

_log = logging.getLogger(__name__)

_MERGE_KEY = "combiner"
_IS_SEQUENTIAL_KEY = "sequential"
DEFAULT_COMBINER_NAME = "default"

ResponseCombiner = Callable[[int, list], Optional[Response]]


class NullResultError(ProxyError):
    """A backend returned no response."""

    default_message = "null result"


class MergeError(ProxyError):
    """One or more backends failed while merging; may carry a partial response."""

    def __init__(self, errors: list[BaseException], *, response: Any = None) -> None:
        self.errors = list(errors)
        super().__init__("\n".join(str(error) for error in self.errors), response=response)


def combine_data(total: int, parts: list[Response | None]) -> Response:
    """Merge the data of the parts into the first usable one."""
    is_complete = len(parts) == total
    merged: Response | None = None
    for part in parts:
        if part is None or part.data is None:
            is_complete = False
            continue
        is_complete = is_complete and part.is_complete
        if merged is None:
            merged = part
            continue
        merged.data.update(part.data)
    if merged is None:
        return Response(data={}, is_complete=is_complete)
    merged.is_complete = is_complete
    return merged


class CombinerRegister:
    """A register of response combiners with a fallback for unknown names."""

    def __init__(self, combiners: dict[str, ResponseCombiner], fallback: ResponseCombiner) -> None:
        self.data = Untyped()
        for name, combiner in combiners.items():
            self.data.register(name, combiner)
        self.fallback = fallback

    def get_response_combiner(self, name: str) -> ResponseCombiner:
        """Return the combiner named ``name``, or the fallback."""
        combiner = self.data.get(name, None)
        return combiner if callable(combiner) else self.fallback

    def set_response_combiner(self, name: str, combiner: ResponseCombiner) -> None:
        """Register ``combiner`` under ``name``."""
        self.data.register(name, combiner)

    def __contains__(self, name: object) -> bool:
        return name in self.data

    def __len__(self) -> int:
        return len(self.data)


_response_combiners = CombinerRegister({DEFAULT_COMBINER_NAME: combine_data}, combine_data)


def new_register() -> CombinerRegister:
    """Return the shared register of response combiners."""
    return _response_combiners


def register_response_combiner(name: str, combiner: ResponseCombiner) -> None:
    """Add a response combiner to the shared register."""
    _response_combiners.set_response_combiner(name, combiner)


def _combiner_name(extra: dict[str, Any]) -> str:
    section = extra.get(NAMESPACE)
    if isinstance(section, dict):
        name = section.get(_MERGE_KEY)
        if isinstance(name, str) and name in _response_combiners:
            return name
    return DEFAULT_COMBINER_NAME


def _is_sequential(endpoint: EndpointConfig) -> bool:
    section = endpoint.extra_config.get(NAMESPACE)
    return isinstance(section, dict) and section.get(_IS_SEQUENTIAL_KEY) is True


def _has_unsafe_backends(endpoint: EndpointConfig) -> bool:
    if len(endpoint.backend) == 1:
        return False
    unsafe = sum(1 for b in endpoint.backend if b.method.upper() not in ("GET", "HEAD"))
    return unsafe > 1


class IncrementalMergeAccumulator:
    """Collects responses and errors as they arrive and merges them."""

    def __init__(self, total: int, combiner: ResponseCombiner) -> None:
        self.pending = total
        self.data: Response | None = None
        self.combiner = combiner
        self.errors: list[BaseException] = []

    def merge(self, response: Response | None, error: BaseException | None = None) -> None:
        """Account for one backend outcome."""
        self.pending -= 1
        if error is not None:
            self.errors.append(error)
            if self.data is not None:
                self.data.is_complete = False
            return
        if response is None:
            self.errors.append(NullResultError())
            return
        if self.data is None:
            self.data = response
            return
        self.data = self.combiner(2, [self.data, response])

    def result(self) -> Response | None:
        """Return the merged response; raise MergeError if any part failed."""
        if self.data is None:
            if self.errors:
                raise MergeError(self.errors)
            return None
        if self.pending != 0 or self.errors:
            self.data.is_complete = False
        if self.errors:
            raise MergeError(self.errors, response=self.data)
        return self.data


def _request_part(ctx: Context, proxy: Proxy, request: Any, results: queue.Queue) -> None:
    local = ctx.with_cancel()
    try:
        response = proxy(local, request)
    except Exception as exc:
        results.put((None, exc))
        return
    finally:
        local.cancel()
    if response is None:
        results.put((None, NullResultError()))
    else:
        results.put((response, None))


def _parallel_merge(
    cloner: Callable[[Any], Any], timeout: float, combiner: ResponseCombiner, proxies: tuple
) -> Proxy:
    def proxy(ctx: Context, request: Any) -> Response | None:
        local = ctx.with_timeout(timeout)
        try:
            results: queue.Queue = queue.Queue()
            for next_proxy in proxies:
                threading.Thread(
                    target=_request_part,
                    args=(local, next_proxy, cloner(request), results),
                    daemon=True,
                ).start()
            acc = IncrementalMergeAccumulator(len(proxies), combiner)
            for _ in proxies:
                response, error = results.get()
                acc.merge(response, error)
            return acc.result()
        finally:
            local.cancel()

    return proxy


_MERGE_KEY_PATTERN = re.compile(r"\{\{\.Resp(\d+)_([\w\-.]+)\}\}")


def _go_format(value: Any) -> str:
    if value is None:
        return "<nil>"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if math.isnan(value):
            return "NaN"
        if math.isinf(value):
            return "+Inf" if value > 0 else "-Inf"
        if value.is_integer() and abs(value) < 1e21:
            return str(int(value))
        return repr(value)
    if isinstance(value, (list, tuple)):
        return "[" + " ".join(_go_format(v) for v in value) + "]"
    if isinstance(value, dict):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        return "map[" + " ".join(f"{k}:{_go_format(v)}" for k, v in items) + "]"
    return str(value)


def _float32(value: float) -> float:
    return struct.unpack("f", struct.pack("f", value))[0]


def _format_float32_exponent(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    try:
        single = _float32(value)
    except OverflowError:
        single = math.inf if value > 0 else -math.inf
    if math.isinf(single):
        return "+Inf" if single > 0 else "-Inf"
    text = f"{single:.8e}"
    for digits in range(1, 10):
        candidate = f"{single:.{digits - 1}e}"
        if _float32(float(candidate)) == single:
            text = candidate
            break
    return text.upper()


def _param_value(value: Any) -> str:
    if isinstance(value, list):
        return ",".join(_go_format(v) for v in value)
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return _format_float32_exponent(value)
    return _go_format(value)


def _inject_params(pattern: str, index: int, parts: dict[int, Response], request: Any) -> None:
    if request.params is None:
        request.params = {}
    for match in _MERGE_KEY_PATTERN.finditer(pattern):
        number = int(match.group(1))
        if number >= index or number not in parts:
            continue
        key = f"Resp{match.group(1)}_{match.group(2)}"
        data = parts[number].data or {}
        *path, last = match.group(2).split(".")
        for step in path:
            nested = data.get(step)
            if not isinstance(nested, dict):
                break
            data = nested
        if last not in data:
            continue
        request.params[key] = _param_value(data[last])


def _sequential_request_part(ctx: Context, proxy: Proxy, request: Any) -> Response:
    snapshot = clone_request(request)
    local = ctx.with_cancel()
    try:
        response = proxy(local, request)
    finally:
        if isinstance(request, Request):
            for f in dataclasses.fields(request):
                setattr(request, f.name, getattr(snapshot, f.name))
        local.cancel()
    if response is None:
        raise NullResultError()
    return response


def _sequential_merge(
    cloner: Callable[[Any], Any],
    patterns: list[str],
    timeout: float,
    combiner: ResponseCombiner,
    proxies: tuple,
) -> Proxy:
    def proxy(ctx: Context, request: Any) -> Response | None:
        local = ctx.with_timeout(timeout)
        try:
            parts: dict[int, Response] = {}
            acc = IncrementalMergeAccumulator(len(proxies), combiner)
            for index, (pattern, next_proxy) in enumerate(zip(patterns, proxies)):
                if index > 0:
                    _inject_params(pattern, index, parts, request)
                try:
                    response = _sequential_request_part(local, next_proxy, cloner(request))
                except Exception as exc:
                    if index == 0:
                        raise
                    acc.merge(None, exc)
                    break
                acc.merge(response, None)
                if not response.is_complete:
                    break
                parts[index] = response
            return acc.result()
        finally:
            local.cancel()

    return proxy


def new_merge_data_middleware(
    logger: logging.Logger | None, endpoint: EndpointConfig
) -> Middleware:
    """Return a middleware merging the responses of all the endpoint backends."""
    logger = logger if logger is not None else _log
    total = len(endpoint.backend)
    if total == 0:
        logger.critical("all endpoints must have at least one backend: NewMergeDataMiddleware")
        raise NoBackendsError()
    if total == 1:
        return lambda *proxies: empty_middleware_with_logger(logger, *proxies)

    service_timeout = 0.85 * endpoint.timeout
    combiner_name = _combiner_name(endpoint.extra_config)
    combiner = _response_combiners.get_response_combiner(combiner_name)
    sequential = _is_sequential(endpoint)

    logger.debug(
        "[ENDPOINT: %s][Merge] Backends: %d, sequential: %s, combiner: %s",
        endpoint.endpoint,
        total,
        "true" if sequential else "false",
        combiner_name,
    )

    def middleware(*proxies: Proxy) -> Proxy:
        if len(proxies) != total:
            logger.critical("not enough proxies for this endpoint: NewMergeDataMiddleware")
            raise NotEnoughProxiesError()
        cloner: Callable[[Any], Any] = (
            clone_request if _has_unsafe_backends(endpoint) else (lambda r: r)
        )
        if not sequential:
            return _parallel_merge(cloner, service_timeout, combiner, proxies)
        patterns = [b.url_pattern for b in endpoint.backend]
        return _sequential_merge(cloner, patterns, service_timeout, combiner, proxies)

    return middleware