# gatewayproxy

Building blocks for the proxy layer of an API gateway. A *proxy* is any
callable `proxy(ctx, request)` that returns a `Response` (or `None`) and
raises an exception on failure; an exception may carry a partial result in
its `response` attribute. A *middleware* takes one or more proxies and
returns a new proxy, so pipelines are built by stacking them.

The package has no third-party dependencies.

## Installation

```
pip install .
```

For running the tests:

```
pip install ".[test]"
pytest
```

## Modules

- `gatewayproxy.core`
  - `Context`: cancellation, deadlines and request-scoped values
    (`with_timeout`, `with_cancel`, `with_value`, `value`, `cancel`,
    `is_done`, `error`, `wait`; usable as a context manager that cancels on
    exit). `background()` returns a root context that is never canceled.
  - Data types `Response`, `Metadata`, `Backend` and `EndpointConfig`.
    Timeouts are in seconds.
  - Errors: `ProxyError` and its subclasses `DeadlineExceededError`,
    `CanceledError`, `NoBackendsError`, `TooManyBackendsError`,
    `TooManyProxiesError`, `NotEnoughProxiesError`.
  - `empty_middleware` / `empty_middleware_with_logger` return the single
    proxy they receive; `noop_proxy` returns `None`.
  - `ReadCloserWrapper` reads from a stream and closes it once its context
    is done.
- `gatewayproxy.request`: `Request` with `generate_path` (replaces
  `{{.Name}}` placeholders by the params) and `clone` (shallow copy), plus
  `clone_request`, `clone_request_headers` and `clone_request_params` for
  deep copies. `clone_request` buffers the body so both the original and the
  copy can read it.
- `gatewayproxy.registry`: thread-safe `Untyped` and `Namespaced` registers.
- `gatewayproxy.static`: `new_static_middleware` adds static data to the
  responses according to a strategy (`always`, `success`, `errored`,
  `complete`, `incomplete`); `get_static_middleware_cfg` parses the
  configuration into a `StaticConfig`.
- `gatewayproxy.query_filter`: `new_filter_query_strings_middleware` keeps
  only the query strings listed in `Backend.query_strings_to_pass`.
- `gatewayproxy.logging_middleware`: `new_logging_middleware` logs each
  call, its duration and its failure or empty result.
- `gatewayproxy.merging`: `new_merge_data_middleware` merges the responses
  of all the backends of an endpoint, in parallel or in sequence, within 85%
  of the endpoint timeout. Combiners are kept in a `CombinerRegister`
  (`new_register`, `register_response_combiner`); the default is
  `combine_data`. `IncrementalMergeAccumulator` gathers the outcomes;
  failures are raised as `MergeError` (listing every error in `errors`) and a
  backend returning nothing counts as a `NullResultError`.
- `gatewayproxy.shadow`: shadow backends are called with a copy of the
  request and their answer is ignored (`new_shadow_factory`,
  `ShadowFactory`, `shadow_middleware`, `shadow_middleware_with_timeout`,
  `new_shadow_proxy`, `new_shadow_proxy_with_timeout`).
  `is_shadow_backend` returns a backend's shadow timeout or `None`;
  `parse_duration` reads durations such as `"1h30m"` or `"10s"` into seconds.
- `gatewayproxy.modifiers`: request and response modifier factories
  registered by name (`register_modifier`, `get_request_modifier`,
  `get_response_modifier`). `load` takes registerer objects exposing
  `register_modifiers(register_func)` and, optionally,
  `register_logger(logger)`; failures are raised together as a `LoaderError`.
- `gatewayproxy.plugin_middleware`: `new_plugin_middleware` and
  `new_backend_plugin_middleware` apply the configured modifiers in order,
  passing them a `RequestWrapper` or `ResponseWrapper`.
- `gatewayproxy.http_response`: `default_http_response_parser_factory`
  builds a parser that decodes an `HTTPResponse` body (gunzipping it when
  `Content-Encoding` is `gzip`) with the decoder and entity formatter of an
  `HTTPResponseParserConfig`; `noop_http_response_parser` exposes the raw
  body, status code and headers instead.

Each middleware constructor takes a `logging.Logger` or `None` (a module
logger is then used). Middlewares that accept a single proxy raise
`TooManyProxiesError` when given more.

## Configuration

Extra configuration is a dict on `EndpointConfig.extra_config` or
`Backend.extra_config`.

Under `"gatewayproxy/proxy"`:

- `"sequential": True` runs the merge backends one after another; a
  backend's `url_pattern` may use `{{.Resp0_field}}` or
  `{{.Resp0_a.b}}` to receive values from earlier responses as params.
- `"combiner": name` selects a registered combiner.
- `"static": {"data": {...}, "strategy": "complete"}` configures the static
  middleware.
- On a backend, `"shadow": True` and optionally `"shadow_timeout": "10s"`.

Under `"gatewayproxy/proxy/plugin"`:

- `"name": ["modifier-a", "modifier-b"]` lists the modifiers to apply.

## Example

```python
from gatewayproxy.core import Backend, EndpointConfig, Response, background
from gatewayproxy.merging import new_merge_data_middleware
from gatewayproxy.request import Request


def users(ctx, request):
    return Response(data={"user": "alice"}, is_complete=True)


def orders(ctx, request):
    return Response(data={"orders": [1, 2]}, is_complete=True)


endpoint = EndpointConfig(backend=[Backend(), Backend()], timeout=1.0)
proxy = new_merge_data_middleware(None, endpoint)(users, orders)

response = proxy(background(), Request())
print(sorted(response.data))  # ['orders', 'user']
print(response.is_complete)   # True
```

When some backends fail, merging raises a `MergeError`; if others answered,
the merged partial response is on the error's `response` attribute and is
marked incomplete. In sequential mode a failure of the first backend is
raised as it is.

## What it does not do

The package sends no HTTP requests and runs no server or router: proxies
that reach real backends, and the HTTP responses handed to the parsers in
`gatewayproxy.http_response`, are supplied by the caller. Modifier plugins
are ordinary Python objects passed to `load`; nothing is discovered or
loaded from disk. There is no command-line tool.