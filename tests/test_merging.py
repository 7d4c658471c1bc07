import io

import pytest

from gatewayproxy import merging
from gatewayproxy.core import (
    Backend,
    DeadlineExceededError,
    EndpointConfig,
    NoBackendsError,
    NotEnoughProxiesError,
    Response,
    background,
    noop_proxy,
)
from gatewayproxy.merging import (
    CombinerRegister,
    IncrementalMergeAccumulator,
    MergeError,
    NullResultError,
    combine_data,
    new_merge_data_middleware,
    new_register,
    register_response_combiner,
)
from gatewayproxy.request import Request
from gatewayproxy.static import NAMESPACE


@pytest.fixture(autouse=True)
def fresh_combiners(monkeypatch):
    monkeypatch.setattr(
        merging,
        "_response_combiners",
        CombinerRegister({"default": combine_data}, combine_data),
    )


def dummy(resp):
    return lambda ctx, req: resp


def delayed(delay, resp):
    def proxy(ctx, req):
        if ctx.wait(delay):
            raise ctx.error()
        return resp

    return proxy


def two_backends(timeout, **kwargs):
    backend = Backend(**kwargs)
    return EndpointConfig(backend=[backend, backend], timeout=timeout)


def test_all_errored():
    expected = RuntimeError("wait for me")

    def errored(ctx, req):
        raise expected

    p = new_merge_data_middleware(None, two_backends(0.5))(errored, errored)
    with pytest.raises(MergeError) as info:
        p(background(), Request())
    assert info.value.errors == [expected, expected]
    assert info.value.response is None


def test_ok():
    p = new_merge_data_middleware(None, two_backends(0.5))(
        dummy(Response(data={"supu": 42}, is_complete=True)),
        dummy(Response(data={"tupu": True}, is_complete=True)),
    )
    out = p(background(), Request())
    assert out.data == {"supu": 42, "tupu": True}
    assert out.is_complete


def test_sequential():
    endpoint = EndpointConfig(
        backend=[
            Backend(url_pattern="/"),
            Backend(url_pattern="/aaa/{{.Resp0_array}}"),
            Backend(
                url_pattern="/aaa/{{.Resp0_int}}/{{.Resp0_string}}/{{.Resp0_bool}}/{{.Resp0_float}}/{{.Resp0_struct.foo}}"
            ),
            Backend(
                url_pattern="/aaa/{{.Resp0_int}}/{{.Resp0_string}}/{{.Resp0_bool}}/{{.Resp0_float}}/{{.Resp0_struct.foo}}?x={{.Resp1_tupu}}"
            ),
            Backend(
                url_pattern="/aaa/{{.Resp0_struct.foo}}/{{.Resp0_struct.struct.foo}}/{{.Resp0_struct.struct.struct.foo}}"
            ),
        ],
        timeout=1.0,
        extra_config={NAMESPACE: {"sequential": True}},
    )
    seen = []

    def recording(data):
        def proxy(ctx, r):
            body = r.body.read()
            r.body.close()
            seen.append((dict(r.params), body))
            return Response(data=data, is_complete=True)

        return proxy

    first = Response(
        data={
            "int": 42,
            "string": "some",
            "bool": True,
            "float": 3.14,
            "struct": {"foo": "bar", "struct": {"foo": "bar", "struct": {"foo": "bar"}}},
            "array": ["1", "2"],
        },
        is_complete=True,
    )
    p = new_merge_data_middleware(None, endpoint)(
        dummy(first),
        recording({"tupu": "foo"}),
        recording({"tupu": "foo"}),
        recording({"aaaa": [1, 2, 3]}),
        recording({"bbbb": [True, False]}),
    )
    out = p(background(), Request(params={}, body=io.BytesIO(b"foo")))
    assert len(out.data) == 9
    assert out.is_complete
    assert [body for _, body in seen] == [b"foo"] * 4
    assert seen[0][0]["Resp0_array"] == "1,2"
    second = seen[1][0]
    assert second["Resp0_int"] == "42"
    assert second["Resp0_string"] == "some"
    assert second["Resp0_float"] == "3.14E+00"
    assert second["Resp0_bool"] == "true"
    assert second["Resp0_struct.foo"] == "bar"
    assert seen[2][0]["Resp1_tupu"] == "foo"
    assert seen[2][0]["Resp0_float"] == "3.14E+00"
    fourth = seen[3][0]
    assert fourth["Resp0_struct.struct.foo"] == "bar"
    assert fourth["Resp0_struct.struct.struct.foo"] == "bar"


def test_sequential_errored_backend():
    endpoint = EndpointConfig(
        backend=[
            Backend(url_pattern="/"),
            Backend(url_pattern="/aaa/{{.Resp0_supu}}"),
            Backend(url_pattern="/aaa/{{.Resp0_supu}}?x={{.Resp1_tupu}}"),
        ],
        timeout=0.5,
        extra_config={NAMESPACE: {"sequential": True}},
    )
    expected = RuntimeError("wait for me")
    seen = []

    def failing(ctx, r):
        seen.append(r.params.get("Resp0_supu"))
        raise expected

    p = new_merge_data_middleware(None, endpoint)(
        dummy(Response(data={"supu": 42}, is_complete=True)),
        failing,
        noop_proxy,
    )
    with pytest.raises(MergeError) as info:
        p(background(), Request(params={}))
    assert seen == ["42"]
    assert info.value.errors == [expected]
    assert info.value.response.data == {"supu": 42}
    assert not info.value.response.is_complete


def test_sequential_errored_first_backend():
    endpoint = EndpointConfig(
        backend=[Backend(url_pattern="/"), Backend(url_pattern="/a"), Backend(url_pattern="/b")],
        timeout=0.5,
        extra_config={NAMESPACE: {"sequential": True}},
    )
    expected = RuntimeError("wait for me")
    calls = []

    def failing(ctx, r):
        raise expected

    def never(ctx, r):
        calls.append(r)
        return None

    p = new_merge_data_middleware(None, endpoint)(failing, never, never)
    with pytest.raises(RuntimeError) as info:
        p(background(), Request(params={}))
    assert info.value is expected
    assert calls == []


def test_merge_incomplete_results():
    p = new_merge_data_middleware(None, two_backends(0.5))(
        dummy(Response(data={"supu": 42}, is_complete=True)),
        dummy(Response(data={"tupu": True}, is_complete=False)),
    )
    out = p(background(), Request())
    assert len(out.data) == 2
    assert not out.is_complete


def test_merge_empty_results():
    p = new_merge_data_middleware(None, two_backends(0.5))(
        dummy(Response(data=None, is_complete=False)),
        dummy(Response(data=None, is_complete=False)),
    )
    out = p(background(), Request())
    assert out.data == {}
    assert not out.is_complete


def test_partial():
    p = new_merge_data_middleware(None, two_backends(0.1))(
        dummy(Response(data={"supu": 42}, is_complete=True)),
        dummy(Response()),
    )
    out = p(background(), Request())
    assert out.data == {"supu": 42}
    assert not out.is_complete


def test_null_response():
    endpoint = EndpointConfig(backend=[Backend(timeout=0.1), Backend(timeout=0.1)])
    p = new_merge_data_middleware(None, endpoint)(noop_proxy, noop_proxy)
    with pytest.raises(MergeError) as info:
        p(background(), Request())
    assert len(info.value.errors) == 2
    assert all(isinstance(e, NullResultError) for e in info.value.errors)
    assert info.value.response is None


def test_timeout():
    p = new_merge_data_middleware(None, two_backends(0.1))(
        delayed(0.5, None), delayed(0.5, None)
    )
    with pytest.raises(MergeError) as info:
        p(background(), Request())
    assert [str(e) for e in info.value.errors] == ["context deadline exceeded"] * 2
    assert info.value.response is None


def test_no_backends():
    with pytest.raises(NoBackendsError):
        new_merge_data_middleware(None, EndpointConfig())


def test_wrong_number_of_proxies():
    mw = new_merge_data_middleware(None, two_backends(0.5))
    with pytest.raises(NotEnoughProxiesError):
        mw(noop_proxy)


def test_single_backend_returns_proxy():
    endpoint = EndpointConfig(backend=[Backend()], timeout=0.5)
    proxy = dummy(Response())
    assert new_merge_data_middleware(None, endpoint)(proxy) is proxy


def test_register_response_combiner():
    assert len(new_register()) == 1
    register_response_combiner("test combiner", combine_data)
    assert len(new_register()) == 2
    endpoint = two_backends(0.5)
    endpoint.extra_config = {NAMESPACE: {"combiner": "default"}}
    p = new_merge_data_middleware(None, endpoint)(
        dummy(Response(data={"supu": 42}, is_complete=True)),
        dummy(Response(data={"tupu": True}, is_complete=True)),
    )
    out = p(background(), Request())
    assert len(out.data) == 2
    assert out.is_complete


def test_custom_combiner_is_used():
    fixed = Response(data={"custom": 1}, is_complete=True)
    register_response_combiner("custom", lambda total, parts: fixed)
    endpoint = two_backends(0.5)
    endpoint.extra_config = {NAMESPACE: {"combiner": "custom"}}
    p = new_merge_data_middleware(None, endpoint)(
        dummy(Response(data={"a": 1}, is_complete=True)),
        dummy(Response(data={"b": 2}, is_complete=True)),
    )
    assert p(background(), Request()) is fixed


def test_accumulator_invalid_response():
    acc = IncrementalMergeAccumulator(3, combine_data)
    acc.merge(None, None)
    acc.merge(None, None)
    acc.merge(None, None)
    with pytest.raises(MergeError) as info:
        acc.result()
    assert len(info.value.errors) == 3
    assert all(isinstance(e, NullResultError) for e in info.value.errors)


def test_accumulator_incomplete_response():
    acc = IncrementalMergeAccumulator(3, combine_data)
    acc.merge(Response(data={}, is_complete=True), None)
    acc.merge(Response(data={}, is_complete=False), None)
    acc.merge(Response(data={}, is_complete=True), None)
    res = acc.result()
    assert res is not None and res.is_complete is False


def test_merge_error_message():
    error = MergeError([ValueError("a"), ValueError("b")])
    assert str(error) == "a\nb"


def test_register_response_combiner_ok():
    reg = new_register()

    def pick(total, parts):
        if total < 0 or total >= len(parts):
            return None
        return parts[total]

    reg.set_response_combiner("name1", pick)
    assert "name1" in reg
    rc = reg.get_response_combiner("name1")
    result = rc(0, [Response(is_complete=True, data={"a": 42})])
    assert result.is_complete
    assert len(result.data) == 1


def test_register_fallback_if_errored():
    reg = new_register()
    reg.data.register("errored", True)
    assert "errored" in reg
    original = Response(is_complete=True, data={"a": 42})
    assert reg.get_response_combiner("errored")(0, [original]) is original


def test_register_fallback_if_unknown():
    reg = new_register()
    assert "unknown" not in reg
    original = Response(is_complete=True, data={"a": 42})
    assert reg.get_response_combiner("unknown")(0, [original]) is original