"""The request sent through the proxy pipe to the backends."""

from __future__ import annotations

import dataclasses
import io
from dataclasses import dataclass, field
from typing import Any


@dataclass
class Request:
    """Data to send to a backend."""

    method: str = ""
    url: str | None = None
    query: dict[str, list[str]] = field(default_factory=dict)
    path: str = ""
    body: Any = None
    params: dict[str, str] = field(default_factory=dict)
    headers: dict[str, list[str]] = field(default_factory=dict)

    def generate_path(self, url_pattern: str) -> None:
        """Set the path from ``url_pattern``, replacing ``{{.Name}}`` by the params."""
        if not self.params:
            self.path = url_pattern
            return
        path = url_pattern
        for key, value in self.params.items():
            path = path.replace("{{." + key + "}}", value)
        self.path = path

    def clone(self) -> Request:
        """Return a shallow copy sharing params, headers, query and body."""
        return dataclasses.replace(self)


def clone_request_headers(headers: dict[str, list[str]] | None) -> dict[str, list[str]]:
    """Return a copy of the headers with copied value lists."""
    return {key: list(values) for key, values in (headers or {}).items()}


def clone_request_params(params: dict[str, str] | None) -> dict[str, str]:
    """Return a copy of the params."""
    return dict(params or {})


def clone_request(request: Request) -> Request:
    """Return a deep copy of ``request``; the body is buffered and duplicated."""
    clone = dataclasses.replace(
        request,
        headers=clone_request_headers(request.headers),
        params=clone_request_params(request.params),
    )
    if request.body is None:
        return clone
    data = request.body.read()
    close = getattr(request.body, "close", None)
    if close is not None:
        close()
    request.body = io.BytesIO(data)
    clone.body = io.BytesIO(data)
    return clone