import itertools
import logging

import pytest

from gatewayproxy.core import Response, TooManyProxiesError, background, noop_proxy
from gatewayproxy.logging_middleware import new_logging_middleware
from gatewayproxy.request import Request

_counter = itertools.count()


class _Collector(logging.Handler):
    def __init__(self):
        super().__init__(level=logging.DEBUG)
        self.records = []

    def emit(self, record):
        self.records.append(record)


@pytest.fixture
def collected():
    logger = logging.getLogger(f"test.logging_middleware.{next(_counter)}")
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    handler = _Collector()
    logger.addHandler(handler)
    yield logger, handler
    logger.removeHandler(handler)


def _count(records, level):
    return sum(1 for r in records if r.levelno == level)


def _messages(records):
    return [r.getMessage() for r in records]


def test_ok(collected):
    logger, handler = collected
    resp = Response(is_complete=True)
    p = new_logging_middleware(logger, "supu")(lambda ctx, req: resp)
    assert p(background(), Request()) is resp
    assert _count(handler.records, logging.INFO) == 2
    assert _count(handler.records, logging.DEBUG) == 1
    assert _count(handler.records, logging.WARNING) == 0
    messages = _messages(handler.records)
    assert any(m.startswith("[SUPU] Calling backend") for m in messages)
    assert any(m.startswith("[SUPU] Call to backend took") for m in messages)


def test_errored_response(collected):
    logger, handler = collected
    expected = RuntimeError("NO-body expects the Spanish Inquisition!")

    def failing(ctx, req):
        raise expected

    p = new_logging_middleware(logger, "supu")(failing)
    with pytest.raises(RuntimeError) as info:
        p(background(), Request())
    assert info.value is expected
    assert _count(handler.records, logging.INFO) == 2
    assert _count(handler.records, logging.DEBUG) == 1
    assert _count(handler.records, logging.WARNING) == 1
    messages = _messages(handler.records)
    assert "[SUPU] Call to backend failed: NO-body expects the Spanish Inquisition!" in messages
    assert any(m.startswith("[SUPU] Calling backend") for m in messages)
    assert any(m.startswith("[SUPU] Call to backend took") for m in messages)


def test_null_response(collected):
    logger, handler = collected
    p = new_logging_middleware(logger, "supu")(noop_proxy)
    assert p(background(), Request()) is None
    assert _count(handler.records, logging.INFO) == 2
    assert _count(handler.records, logging.DEBUG) == 1
    assert _count(handler.records, logging.WARNING) == 1
    assert "[SUPU] Call to backend returned a null response" in _messages(handler.records)


def test_too_many_proxies(collected):
    logger, _ = collected
    with pytest.raises(TooManyProxiesError):
        new_logging_middleware(logger, "supu")(noop_proxy, noop_proxy)