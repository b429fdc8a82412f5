"""
Tests for the Fetch request pipeline.
"""
import asyncio
import json
import time
from unittest.mock import AsyncMock, Mock

import httpx
import pytest

from fetch_pipeline import (
    AbortController,
    AbortError,
    FetchError,
    FetchResponse,
    FormData,
    RequestTimeoutError,
    URLSearchParams,
)
from stubs import StubResponse, reply, slow


@pytest.mark.asyncio
async def test_returns_decoded_json(make_fetch):
    fetch, _ = make_fetch(reply(200, {"foo": "bar"}))

    assert await fetch("https://example.com/test") == {"foo": "bar"}


@pytest.mark.asyncio
async def test_raw_returns_response_with_data(make_fetch):
    fetch, _ = make_fetch(reply(200, {"foo": "bar"}))

    response = await fetch.raw("https://example.com/test")

    assert isinstance(response, FetchResponse)
    assert response.status == 200
    assert response.ok is True
    assert response.data == {"foo": "bar"}


@pytest.mark.asyncio
async def test_native_bypasses_pipeline(make_fetch):
    fetch, transport = make_fetch(reply(500, "boom"))

    response = await fetch.native("https://example.com/test", {"method": "GET"})

    assert response.status == 500
    assert len(transport.calls) == 1


@pytest.mark.asyncio
async def test_method_is_upper_cased(make_fetch):
    fetch, transport = make_fetch(reply(200))

    await fetch("https://example.com/test", method="post")

    assert transport.last_options["method"] == "POST"


# =========================================================================
# Response decoding
# =========================================================================

@pytest.mark.asyncio
async def test_text_content_type_decodes_text(make_fetch):
    fetch, _ = make_fetch(reply(200, '{"a": 1}', {"content-type": "text/plain"}))

    assert await fetch("https://example.com/test") == '{"a": 1}'


@pytest.mark.asyncio
async def test_missing_content_type_is_parsed_leniently(make_fetch):
    fetch, _ = make_fetch(reply(200, "just text"))

    assert await fetch("https://example.com/test") == "just text"


@pytest.mark.asyncio
async def test_unknown_content_type_decodes_blob(make_fetch):
    fetch, _ = make_fetch(reply(200, b"\x89PNG", {"content-type": "image/png"}))

    blob = await fetch("https://example.com/logo.png")

    assert blob.data == b"\x89PNG"
    assert blob.content_type == "image/png"
    assert blob.size == 4


@pytest.mark.asyncio
async def test_explicit_response_type_wins(make_fetch):
    fetch, _ = make_fetch(reply(200, {"a": 1}))

    assert await fetch("https://example.com/test", response_type="text") == '{"a": 1}'
    assert await fetch("https://example.com/test", response_type="array_buffer") == b'{"a": 1}'


@pytest.mark.asyncio
async def test_stream_response_type_returns_body_unconsumed(make_fetch):
    fetch, _ = make_fetch(reply(200, b"chunk"))

    body = await fetch("https://example.com/test", response_type="stream")

    chunks = [chunk async for chunk in body]
    assert chunks == [b"chunk"]


@pytest.mark.asyncio
async def test_parse_response_forces_custom_parser(make_fetch):
    fetch, _ = make_fetch(reply(200, "a,b,c", {"content-type": "text/csv"}))

    data = await fetch("https://example.com/test", parse_response=lambda text: text.split(","))

    assert data == ["a", "b", "c"]


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [204, 205, 304])
async def test_null_body_statuses_leave_data_unset(make_fetch, status):
    stub = StubResponse(status, b'{"a": 1}')
    fetch, _ = make_fetch(lambda request, options: stub)

    response = await fetch.raw("https://example.com/test")

    assert response.data is None
    assert response.has_data is False
    assert stub.closed is True


@pytest.mark.asyncio
async def test_head_never_populates_data(make_fetch):
    fetch, _ = make_fetch(reply(200, {"a": 1}))

    response = await fetch.raw("https://example.com/test", method="HEAD")

    assert response.data is None


@pytest.mark.asyncio
async def test_empty_body_gives_none(make_fetch):
    fetch, _ = make_fetch(reply(200, b""))

    assert await fetch("https://example.com/test") is None


# =========================================================================
# Request bodies
# =========================================================================

@pytest.mark.asyncio
async def test_dict_body_is_serialized_with_json_headers(make_fetch):
    fetch, transport = make_fetch(reply(200))

    await fetch("https://example.com/test", method="POST", body={"num": 42})

    options = transport.last_options
    assert json.loads(options["body"]) == {"num": 42}
    assert options["headers"]["content-type"] == "application/json"
    assert options["headers"]["accept"] == "application/json"


@pytest.mark.asyncio
async def test_list_body_is_serialized(make_fetch):
    fetch, transport = make_fetch(reply(200))

    await fetch("https://example.com/test", method="PUT", body=[1, 2, 3])

    assert transport.last_options["body"] == "[1, 2, 3]"


@pytest.mark.asyncio
async def test_existing_content_type_is_preserved(make_fetch):
    fetch, transport = make_fetch(reply(200))

    await fetch(
        "https://example.com/test",
        method="POST",
        body={"num": 42},
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )

    headers = transport.last_options["headers"]
    assert headers["content-type"] == "application/x-www-form-urlencoded"
    assert headers["accept"] == "application/json"


@pytest.mark.asyncio
async def test_string_body_is_kept_as_is(make_fetch):
    fetch, transport = make_fetch(reply(200))

    await fetch("https://example.com/test", method="POST", body="raw text")

    assert transport.last_options["body"] == "raw text"
    assert transport.last_options["headers"]["content-type"] == "application/json"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [b"\x00\x01", FormData({"a": "1"}), URLSearchParams({"a": "1"})],
    ids=["bytes", "form-data", "url-search-params"],
)
async def test_non_json_bodies_pass_through(make_fetch, body):
    fetch, transport = make_fetch(reply(200))

    await fetch("https://example.com/test", method="POST", body=body)

    assert transport.last_options["body"] is body
    assert "content-type" not in transport.last_options["headers"]


@pytest.mark.asyncio
async def test_stream_body_sets_half_duplex(make_fetch):
    async def chunks():
        yield b"a"

    fetch, transport = make_fetch(reply(200))

    await fetch("https://example.com/test", method="POST", body=chunks())

    assert transport.last_options["duplex"] == "half"


@pytest.mark.asyncio
async def test_body_ignored_for_get(make_fetch):
    fetch, transport = make_fetch(reply(200))

    await fetch("https://example.com/test", body={"a": 1})

    assert transport.last_options["body"] == {"a": 1}
    assert "content-type" not in transport.last_options["headers"]


@pytest.mark.asyncio
async def test_empty_string_body_is_treated_as_absent(make_fetch):
    fetch, transport = make_fetch(reply(200))

    await fetch("https://example.com/test", method="POST", body="")

    assert transport.last_options["body"] == ""
    assert "content-type" not in transport.last_options["headers"]
    assert "accept" not in transport.last_options["headers"]


# =========================================================================
# URL assembly
# =========================================================================

@pytest.mark.asyncio
async def test_base_url_and_query_are_applied(make_fetch):
    fetch, transport = make_fetch(reply(200))

    await fetch("/users", base_url="https://api.example.com/v1", query={"page": 2})

    assert transport.last_request == "https://api.example.com/v1/users?page=2"
    assert "query" not in transport.last_options
    assert "params" not in transport.last_options


@pytest.mark.asyncio
async def test_params_is_an_alias_of_query(make_fetch):
    fetch, transport = make_fetch(reply(200))

    await fetch("https://example.com/test?a=1", params={"b": "2"})

    assert transport.last_request == "https://example.com/test?a=1&b=2"


@pytest.mark.asyncio
async def test_base_url_is_applied_once_across_retries(make_fetch):
    fetch, transport = make_fetch(reply(500))

    with pytest.raises(FetchError):
        await fetch("/x", base_url="https://example.com", query={"a": "1"}, retry=2)

    assert [request for request, _ in transport.calls] == ["https://example.com/x?a=1"] * 3


@pytest.mark.asyncio
async def test_request_descriptor_headers_are_merged(make_fetch):
    fetch, transport = make_fetch(reply(200))
    request = httpx.Request("PUT", "https://example.com/test", headers={"x-from": "request", "x-both": "request"})

    await fetch(request, headers={"x-both": "call"})

    headers = transport.last_options["headers"]
    assert headers["x-from"] == "request"
    assert headers["x-both"] == "call"
    assert transport.last_request is request


# =========================================================================
# Errors
# =========================================================================

@pytest.mark.asyncio
async def test_403_error_message(make_fetch):
    fetch, _ = make_fetch(reply(403))

    with pytest.raises(FetchError) as exc:
        await fetch("https://example.com/u", method="POST")

    assert exc.value.message == '[POST] "https://example.com/u": 403 Forbidden'
    assert str(exc.value) == exc.value.message
    assert exc.value.status == 403
    assert exc.value.status_code == 403
    assert exc.value.status_text == "Forbidden"
    assert exc.value.status_message == "Forbidden"


@pytest.mark.asyncio
async def test_error_data_is_response_data(make_fetch):
    fetch, _ = make_fetch(reply(404, {"a": 1}))

    with pytest.raises(FetchError) as exc:
        await fetch("https://example.com/missing")

    assert exc.value.data == {"a": 1}
    assert exc.value.response.data is exc.value.data
    assert exc.value.request == "https://example.com/missing"


@pytest.mark.asyncio
async def test_ignore_response_error_returns_data(make_fetch):
    fetch, _ = make_fetch(reply(404, {"error": "missing"}))

    data = await fetch("https://example.com/missing", ignore_response_error=True)

    assert data == {"error": "missing"}


@pytest.mark.asyncio
async def test_transport_error_is_wrapped(make_fetch):
    def handler(request, options):
        raise httpx.ConnectError("connection refused")

    fetch, _ = make_fetch(handler)

    with pytest.raises(FetchError) as exc:
        await fetch("https://example.com/test", retry=False)

    assert exc.value.message == '[GET] "https://example.com/test": <no response> connection refused'
    assert isinstance(exc.value.cause, httpx.ConnectError)
    assert exc.value.__cause__ is exc.value.cause
    assert exc.value.response is None


# =========================================================================
# Retry
# =========================================================================

@pytest.mark.asyncio
async def test_get_is_retried_once_by_default(make_fetch):
    fetch, transport = make_fetch(reply(500))

    with pytest.raises(FetchError):
        await fetch("https://example.com/test")

    assert len(transport.calls) == 2


@pytest.mark.asyncio
@pytest.mark.parametrize("method", ["POST", "PUT", "PATCH", "DELETE"])
async def test_payload_methods_are_not_retried_by_default(make_fetch, method):
    fetch, transport = make_fetch(reply(500))

    with pytest.raises(FetchError):
        await fetch("https://example.com/test", method=method)

    assert len(transport.calls) == 1


@pytest.mark.asyncio
async def test_explicit_retry_budget(make_fetch):
    fetch, transport = make_fetch(reply(503))

    with pytest.raises(FetchError):
        await fetch("https://example.com/test", method="POST", retry=3)

    assert len(transport.calls) == 4
    assert [options["retry"] for _, options in transport.calls] == [3, 2, 1, 0]


@pytest.mark.asyncio
async def test_retry_false_disables_retry(make_fetch):
    fetch, transport = make_fetch(reply(500))

    with pytest.raises(FetchError):
        await fetch("https://example.com/test", retry=False)

    assert len(transport.calls) == 1


@pytest.mark.asyncio
async def test_non_retriable_status_is_not_retried(make_fetch):
    fetch, transport = make_fetch(reply(400))

    with pytest.raises(FetchError):
        await fetch("https://example.com/test", retry=3)

    assert len(transport.calls) == 1


@pytest.mark.asyncio
async def test_custom_retry_status_codes(make_fetch):
    fetch, transport = make_fetch(reply(418))

    with pytest.raises(FetchError):
        await fetch("https://example.com/test", retry=2, retry_status_codes=[418])

    assert len(transport.calls) == 3


@pytest.mark.asyncio
async def test_retry_recovers(make_fetch):
    responses = iter([StubResponse(502), StubResponse(200, {"ok": True})])
    fetch, transport = make_fetch(lambda request, options: next(responses))

    assert await fetch("https://example.com/test") == {"ok": True}
    assert len(transport.calls) == 2


@pytest.mark.asyncio
async def test_transport_error_counts_as_500(make_fetch):
    calls = []

    def handler(request, options):
        calls.append(request)
        if len(calls) == 1:
            raise httpx.ReadError("reset")
        return StubResponse(200, {"ok": True})

    fetch, _ = make_fetch(handler)

    assert await fetch("https://example.com/test") == {"ok": True}


@pytest.mark.asyncio
async def test_superseded_stream_response_is_released(make_fetch):
    responses = []

    def handler(request, options):
        responses.append(StubResponse(500, b"boom"))
        return responses[-1]

    fetch, _ = make_fetch(handler)

    with pytest.raises(FetchError) as exc:
        await fetch("https://example.com/test", response_type="stream", retry=2)

    assert len(responses) == 3
    assert all(response.closed for response in responses[:-1])
    assert responses[-1].closed is False
    assert exc.value.response.raw is responses[-1]


@pytest.mark.asyncio
async def test_retry_delay_is_waited(make_fetch):
    fetch, _ = make_fetch(reply(500))

    start = time.monotonic()
    with pytest.raises(FetchError):
        await fetch("https://example.com/test", retry=1, retry_delay=100)

    assert time.monotonic() - start >= 0.1


@pytest.mark.asyncio
async def test_retry_delay_callable_receives_context(make_fetch):
    delay = Mock(return_value=1)
    fetch, _ = make_fetch(reply(500))

    with pytest.raises(FetchError):
        await fetch("https://example.com/test", retry=2, retry_delay=delay)

    assert delay.call_count == 2
    context = delay.call_args[0][0]
    assert context.response.status == 500


@pytest.mark.asyncio
async def test_concurrent_delays_resolve_in_delay_order(make_fetch):
    order = []

    async def call(fetch, name, delay):
        try:
            await fetch("https://example.com/test", retry=1, retry_delay=delay)
        except FetchError:
            order.append(name)

    fetch, _ = make_fetch(reply(500))

    await asyncio.gather(call(fetch, "slow", 100), call(fetch, "fast", 1))

    assert order == ["fast", "slow"]


# =========================================================================
# Timeout and cancellation
# =========================================================================

@pytest.mark.asyncio
@pytest.mark.parametrize("retry", [False, 0, 1, 5])
async def test_timeout_rejects_with_timeout_cause(make_fetch, retry):
    fetch, _ = make_fetch(slow(5))

    start = time.monotonic()
    with pytest.raises(FetchError) as exc:
        await fetch("https://example.com/slow", timeout=100, retry=retry)
    elapsed = time.monotonic() - start

    assert isinstance(exc.value.cause, RequestTimeoutError)
    assert exc.value.cause.name == "TimeoutError"
    assert exc.value.cause.code == 23
    assert "[TimeoutError]: The operation was aborted due to timeout" in exc.value.message
    assert elapsed < 1


@pytest.mark.asyncio
async def test_timeout_not_triggered_for_fast_response(make_fetch):
    fetch, _ = make_fetch(slow(0.01, 200, {"ok": True}))

    assert await fetch("https://example.com/test", timeout=1000) == {"ok": True}


@pytest.mark.asyncio
async def test_timer_is_disarmed_once_call_settles(make_fetch):
    signals = []
    fetch, _ = make_fetch(reply(200, {"ok": True}))

    await fetch(
        "https://example.com/test",
        timeout=50,
        on_response=lambda context: signals.append(context.options["signal"]),
    )
    await asyncio.sleep(0.1)

    assert len(signals) == 1
    assert signals[0] is not None
    assert signals[0].aborted is False


@pytest.mark.asyncio
async def test_timeout_retry_recovers_within_deadline(make_fetch):
    calls = []

    async def handler(request, options):
        calls.append(request)
        if len(calls) == 1:
            raise httpx.ReadError("reset")
        return StubResponse(200, {"ok": True})

    fetch, _ = make_fetch(handler)

    assert await fetch("https://example.com/test", timeout=1000) == {"ok": True}
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_caller_abort_is_not_retried(make_fetch):
    fetch, transport = make_fetch(slow(5))
    controller = AbortController()

    asyncio.get_running_loop().call_later(0.05, controller.abort)
    with pytest.raises(FetchError) as exc:
        await fetch("https://example.com/slow", signal=controller.signal, retry=3)

    assert isinstance(exc.value.cause, AbortError)
    assert not isinstance(exc.value.cause, RequestTimeoutError)
    assert len(transport.calls) == 1


@pytest.mark.asyncio
async def test_caller_signal_disables_internal_timeout(make_fetch):
    fetch, transport = make_fetch(slow(0.2, 200, {"ok": True}))
    controller = AbortController()

    data = await fetch("https://example.com/test", signal=controller.signal, timeout=50)

    assert data == {"ok": True}
    assert transport.last_options["signal"] is controller.signal


# =========================================================================
# Hooks
# =========================================================================

@pytest.mark.asyncio
async def test_hooks_run_in_order_and_are_awaited(make_fetch):
    events = []

    async def first(context):
        await asyncio.sleep(0.01)
        events.append("first")

    def second(context):
        events.append("second")

    fetch, _ = make_fetch(reply(200))

    await fetch("https://example.com/test", on_request=[first, second], on_response=lambda ctx: events.append("response"))

    assert events == ["first", "second", "response"]


@pytest.mark.asyncio
async def test_on_request_can_mutate_options(make_fetch):
    def add_header(context):
        context.options["headers"]["x-token"] = "abc"

    fetch, transport = make_fetch(reply(200))

    await fetch("https://example.com/test", on_request=add_header)

    assert transport.last_options["headers"]["x-token"] == "abc"


@pytest.mark.asyncio
async def test_on_request_sees_merged_options(make_fetch):
    seen = {}

    def inspect_options(context):
        seen["headers"] = context.options["headers"]
        seen["query"] = context.options["query"]
        seen["retry"] = context.options["retry"]

    fetch, _ = make_fetch(
        reply(200),
        defaults={"headers": {"x-default": "d", "x-shared": "default"}, "query": {"a": "1"}, "retry": 2},
    )

    await fetch(
        "https://example.com/test",
        headers={"x-shared": "call"},
        params={"b": "2"},
        on_request=inspect_options,
    )

    assert isinstance(seen["headers"], httpx.Headers)
    assert seen["headers"]["x-default"] == "d"
    assert seen["headers"]["x-shared"] == "call"
    assert seen["query"] == {"a": "1", "b": "2"}
    assert seen["retry"] == 2


@pytest.mark.asyncio
async def test_hook_call_counts_on_retried_failure(make_fetch):
    on_request = Mock()
    on_response = Mock()
    on_response_error = Mock()
    on_request_error = Mock()
    fetch, _ = make_fetch(reply(500))

    with pytest.raises(FetchError):
        await fetch(
            "https://example.com/test",
            retry=2,
            on_request=on_request,
            on_response=on_response,
            on_response_error=on_response_error,
            on_request_error=on_request_error,
        )

    assert on_request.call_count == 3
    assert on_response.call_count == 3
    assert on_response_error.call_count == 3
    on_request_error.assert_not_called()


@pytest.mark.asyncio
async def test_on_request_error_receives_error(make_fetch):
    on_request_error = AsyncMock()

    def handler(request, options):
        raise httpx.ConnectError("refused")

    fetch, _ = make_fetch(handler)

    with pytest.raises(FetchError):
        await fetch("https://example.com/test", retry=0, on_request_error=on_request_error)

    on_request_error.assert_awaited_once()
    context = on_request_error.await_args[0][0]
    assert isinstance(context.error, httpx.ConnectError)
    assert context.response is None


@pytest.mark.asyncio
async def test_raising_hook_bypasses_retry(make_fetch):
    def explode(context):
        raise RuntimeError("hook failed")

    fetch, transport = make_fetch(reply(500))

    with pytest.raises(RuntimeError, match="hook failed"):
        await fetch("https://example.com/test", retry=3, on_response=explode)

    assert len(transport.calls) == 1


@pytest.mark.asyncio
async def test_raising_on_request_hook_skips_transport(make_fetch):
    def explode(context):
        raise ValueError("bad request")

    fetch, transport = make_fetch(reply(200))

    with pytest.raises(ValueError):
        await fetch("https://example.com/test", on_request=explode)

    assert transport.calls == []


# =========================================================================
# Instances
# =========================================================================

@pytest.mark.asyncio
async def test_create_deep_merges_headers_and_query(make_fetch):
    fetch, transport = make_fetch(reply(200))
    api = fetch.create({
        "base_url": "https://api.example.com",
        "headers": {"x-a": "1", "x-shared": "base"},
        "query": {"a": "1"},
    })
    child = api.create({"headers": {"x-b": "2", "x-shared": "child"}, "query": {"b": "2"}})

    await child("/items")

    headers = transport.last_options["headers"]
    assert headers["x-a"] == "1"
    assert headers["x-b"] == "2"
    assert headers["x-shared"] == "child"
    assert transport.last_request == "https://api.example.com/items?a=1&b=2"


@pytest.mark.asyncio
async def test_call_options_override_defaults(make_fetch):
    fetch, transport = make_fetch(reply(200), defaults={"headers": {"x-a": "default"}, "retry": 5})

    await fetch("https://example.com/test", headers={"x-a": "call"}, retry=0)

    assert transport.last_options["headers"]["x-a"] == "call"
    assert transport.last_options["retry"] == 0


@pytest.mark.asyncio
async def test_create_does_not_mutate_parent(make_fetch):
    fetch, _ = make_fetch(reply(200), defaults={"headers": {"x-a": "1"}})

    child = fetch.create({"headers": {"x-b": "2"}})

    assert "x-b" not in fetch.defaults["headers"]
    assert child.defaults["headers"]["x-a"] == "1"
    assert child.capabilities.transport is fetch.capabilities.transport


@pytest.mark.asyncio
async def test_method_helpers(make_fetch):
    fetch, transport = make_fetch(reply(200, {"ok": True}))

    assert await fetch.post("https://example.com/items", {"name": "a"}) == {"ok": True}
    assert transport.last_options["method"] == "POST"
    assert json.loads(transport.last_options["body"]) == {"name": "a"}

    await fetch.delete("https://example.com/items/1")
    assert transport.last_options["method"] == "DELETE"
