"""Parsers turning HTTP responses from backends into proxy responses."""

from __future__ import annotations

import copy
import gzip
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from gatewayproxy.core import Context, Metadata, ReadCloserWrapper, Response

Decoder = Callable[[Any], Optional[dict]]
EntityFormatter = Callable[[Response], Response]
HTTPResponseParser = Callable[[Context, "HTTPResponse"], Response]

_CHUNK_SIZE = 64 * 1024


@dataclass
class HTTPResponse:
    """A response received from a backend: status, headers and a readable body."""

    status_code: int = 200
    headers: dict[str, list[str]] = field(default_factory=dict)
    body: Any = None


def _header_value(headers: dict[str, list[str]], name: str) -> str:
    wanted = name.lower()
    for key, values in headers.items():
        if key.lower() == wanted and values:
            return values[0]
    return ""


def _nop_decoder(stream: Any) -> Optional[dict]:
    """Discard the body and decode no data."""
    if stream is not None:
        while stream.read(_CHUNK_SIZE):
            continue
    return None


@dataclass
class HTTPResponseParserConfig:
    """The decoder and entity formatter used by a response parser."""

    decoder: Decoder = _nop_decoder
    entity_formatter: EntityFormatter = copy.copy


DEFAULT_HTTP_RESPONSE_PARSER_CONFIG = HTTPResponseParserConfig()


def default_http_response_parser_factory(config: HTTPResponseParserConfig) -> HTTPResponseParser:
    """Return a parser decoding the body (gunzipping it if needed) and formatting it."""

    def parser(ctx: Context, response: HTTPResponse) -> Response:
        body = response.body
        try:
            if _header_value(response.headers, "Content-Encoding") == "gzip":
                with gzip.GzipFile(fileobj=body, mode="rb") as reader:
                    data = config.decoder(reader)
            else:
                data = config.decoder(body)
        finally:
            if body is not None:
                body.close()
        return config.entity_formatter(Response(data=data, is_complete=True))

    return parser


def noop_http_response_parser(ctx: Context, response: HTTPResponse) -> Response:
    """Return a response exposing the raw body, closed when ``ctx`` is done."""
    return Response(
        data={},
        is_complete=True,
        io=ReadCloserWrapper(ctx, response.body),
        metadata=Metadata(headers=response.headers, status_code=response.status_code),
    )