"""
Tests for the lifecycle coordinator, driven through AsyncCallApiClient.

Coverage includes:
- Dedupe strategies: cancel, defer, none
- Retry loop: success after retries, abort during the retry wait, timeouts
- Hook stages: ordering, mutation, failures, on_finally exactly once
- Result shaping: result modes, throw_on_error
"""
import asyncio

import httpx
import pydantic
import pytest

from callapi import (
    AbortController,
    AbortError,
    CallApiResult,
    HookError,
    Hooks,
    HTTPError,
    HttpxTransport,
    NetworkError,
    Plugin,
    RequestTimeoutError,
    RetryConfig,
    SerializationError,
    ValidationError,
)

from conftest import FakeTransport, GatedTransport, make_response


async def wait_for_calls(transport: FakeTransport, count: int) -> None:
    while len(transport.calls) < count:
        await asyncio.sleep(0.001)


class TestCancelStrategy:
    """A duplicate call aborts the in-flight one."""

    @pytest.mark.asyncio
    async def test_get_users_twice(self, make_client):
        transport = GatedTransport([make_response(200, [{"id": 1}])])
        client = make_client(transport, dedupe_strategy="cancel")

        key = client.dedupe_key_for("/users")

        first = asyncio.ensure_future(client.get("/users"))
        await transport.started.wait()
        first_entry = client.registry.get(key)
        second = asyncio.ensure_future(client.get("/users"))
        await wait_for_calls(transport, 2)

        # One live entry per key: the second call's
        assert client.registry.size() == 1
        assert client.registry.keys() == [key]
        assert client.registry.get(key) is not first_entry
        assert first_entry.superseded is True
        transport.gate.set()

        first_result, second_result = await asyncio.gather(first, second)

        assert first_result.error.name == "AbortError"
        assert first_result.data is None
        assert second_result.error is None
        assert second_result.data == [{"id": 1}]
        assert client.registry.size() == 0

    @pytest.mark.asyncio
    async def test_manual_cancel(self, make_client):
        transport = GatedTransport()
        client = make_client(transport)

        task = asyncio.ensure_future(client.get("/users"))
        await transport.started.wait()

        assert client.cancel(client.dedupe_key_for("/users")) is True
        result = await task

        assert isinstance(result.error, AbortError)

    @pytest.mark.asyncio
    async def test_different_keys_do_not_interfere(self, make_client):
        transport = GatedTransport()
        client = make_client(transport)

        users = asyncio.ensure_future(client.get("/users"))
        posts = asyncio.ensure_future(client.get("/posts"))
        await wait_for_calls(transport, 2)
        transport.gate.set()

        results = await asyncio.gather(users, posts)

        assert all(r.error is None for r in results)


class TestDeferStrategy:
    """A duplicate call shares the in-flight call's outcome."""

    @pytest.mark.asyncio
    async def test_shares_identical_result(self, make_client):
        transport = GatedTransport([make_response(200, {"id": 1})])
        client = make_client(transport, dedupe_strategy="defer")

        first = asyncio.ensure_future(client.get("/users/1"))
        await transport.started.wait()
        second = asyncio.ensure_future(client.get("/users/1"))
        await asyncio.sleep(0.01)
        transport.gate.set()

        first_result, second_result = await asyncio.gather(first, second)

        assert first_result is second_result
        assert first_result.data == {"id": 1}
        assert len(transport.calls) == 1
        assert client.registry.size() == 0

    @pytest.mark.asyncio
    async def test_joiners_run_their_own_terminal_hooks(self, make_client):
        transport = GatedTransport()
        client = make_client(transport, dedupe_strategy="defer")
        finals = []

        first = asyncio.ensure_future(client.get("/x", hooks=Hooks(on_finally=lambda ctx: finals.append("a"))))
        await transport.started.wait()
        second = asyncio.ensure_future(client.get("/x", hooks=Hooks(on_finally=lambda ctx: finals.append("b"))))
        await asyncio.sleep(0.01)
        transport.gate.set()
        await asyncio.gather(first, second)

        assert sorted(finals) == ["a", "b"]

    @pytest.mark.asyncio
    async def test_joiner_abort_leaves_leader_running(self, make_client):
        transport = GatedTransport()
        client = make_client(transport, dedupe_strategy="defer")
        controller = AbortController()

        leader = asyncio.ensure_future(client.get("/x"))
        await transport.started.wait()
        joiner = asyncio.ensure_future(client.get("/x", signal=controller.signal))
        await asyncio.sleep(0.01)
        controller.abort()

        joiner_result = await joiner
        transport.gate.set()
        leader_result = await leader

        assert isinstance(joiner_result.error, AbortError)
        assert leader_result.error is None

    @pytest.mark.asyncio
    async def test_leader_superseded_joiner_gets_abort(self, make_client):
        transport = GatedTransport()
        client = make_client(transport)

        leader = asyncio.ensure_future(client.get("/x"))
        await transport.started.wait()
        joiner = asyncio.ensure_future(client.get("/x", dedupe_strategy="defer"))
        await asyncio.sleep(0.01)
        replacement = asyncio.ensure_future(client.get("/x", dedupe_strategy="cancel"))
        await wait_for_calls(transport, 2)
        transport.gate.set()

        leader_result, joiner_result, replacement_result = await asyncio.gather(leader, joiner, replacement)

        assert isinstance(leader_result.error, AbortError)
        assert joiner_result is leader_result
        assert replacement_result.error is None


class TestNoneStrategy:
    """Dedupe disabled: every call is independent."""

    @pytest.mark.asyncio
    async def test_two_transport_calls(self, make_client):
        transport = GatedTransport()
        client = make_client(transport, dedupe_strategy="none")

        first = asyncio.ensure_future(client.get("/users"))
        second = asyncio.ensure_future(client.get("/users"))
        await wait_for_calls(transport, 2)
        transport.gate.set()

        results = await asyncio.gather(first, second)

        assert len(transport.calls) == 2
        assert all(r.error is None for r in results)
        assert results[0] is not results[1]
        assert client.registry.size() == 0


class TestKeyResolution:
    """Key resolution never fails a call."""

    @pytest.mark.asyncio
    async def test_unparseable_url_lands_in_result(self, make_client):
        def refuse(request):
            raise httpx.ConnectError("unreachable", request=request)

        transport = HttpxTransport(client=httpx.AsyncClient(transport=httpx.MockTransport(refuse)))
        client = make_client(transport)

        result = await client.get("http://[::1/x")

        assert isinstance(result.error, NetworkError)
        assert result.data is None
        assert client.registry.size() == 0
        await transport.client.aclose()


class TestRetry:
    """Tests for the attempt loop."""

    @pytest.mark.asyncio
    async def test_500_500_200(self, make_client):
        transport = FakeTransport([
            make_response(500, {"error": "boom"}),
            make_response(500, {"error": "boom"}),
            make_response(200, {"ok": True}),
        ])
        client = make_client(transport, retry=RetryConfig(attempts=3, delay_seconds=0))

        result = await client.get("/flaky")

        assert result.error is None
        assert result.data == {"ok": True}
        assert len(transport.calls) == 3

    @pytest.mark.asyncio
    async def test_exhausted_retries_return_last_error(self, make_client):
        transport = FakeTransport([make_response(503, {"error": "down"}, status_text="Service Unavailable")])
        client = make_client(transport, retry=RetryConfig(attempts=2, delay_seconds=0))

        result = await client.get("/down")

        assert isinstance(result.error, HTTPError)
        assert result.error.status == 503
        assert result.error.error_data == {"error": "down"}
        assert result.response.status == 503
        assert len(transport.calls) == 3

    @pytest.mark.asyncio
    async def test_non_retryable_status_is_not_retried(self, make_client):
        transport = FakeTransport([make_response(404, {"detail": "missing"})])
        client = make_client(transport, retry=RetryConfig(attempts=3, delay_seconds=0))

        result = await client.get("/missing")

        assert result.error.status == 404
        assert len(transport.calls) == 1

    @pytest.mark.asyncio
    async def test_network_error_retried(self, make_client):
        transport = FakeTransport([NetworkError("reset"), make_response(200, {"ok": True})])
        client = make_client(transport, retry=RetryConfig(attempts=1, delay_seconds=0))

        result = await client.get("/x")

        assert result.data == {"ok": True}
        assert len(transport.calls) == 2

    @pytest.mark.asyncio
    async def test_unknown_transport_exception_is_network_error(self, make_client):
        transport = FakeTransport([ConnectionResetError("reset")])
        client = make_client(transport)

        result = await client.get("/x")

        assert isinstance(result.error, NetworkError)

    @pytest.mark.asyncio
    async def test_abort_during_retry_wait(self, make_client):
        transport = FakeTransport([make_response(500)])
        client = make_client(transport, retry=RetryConfig(attempts=5, delay_seconds=10))
        controller = AbortController()

        task = asyncio.ensure_future(client.get("/x", signal=controller.signal))
        await wait_for_calls(transport, 1)
        await asyncio.sleep(0.01)
        controller.abort()

        result = await asyncio.wait_for(task, 1)

        assert isinstance(result.error, AbortError)
        assert len(transport.calls) == 1

    @pytest.mark.asyncio
    async def test_on_retry_sees_attempt_and_can_cancel(self, make_client):
        transport = FakeTransport([make_response(500)])
        client = make_client(transport, retry=RetryConfig(attempts=5, delay_seconds=0))
        seen = []

        def on_retry(ctx):
            seen.append(ctx.attempt.index)
            if ctx.attempt.index == 1:
                ctx.cancel_retry = True

        result = await client.get("/x", hooks=Hooks(on_retry=on_retry))

        assert seen == [0, 1]
        assert len(transport.calls) == 2
        assert result.error.status == 500

    @pytest.mark.asyncio
    async def test_timeout(self, make_client):
        transport = FakeTransport(delay=1.0)
        client = make_client(transport, timeout=0.02)

        result = await asyncio.wait_for(client.get("/slow"), 1)

        assert isinstance(result.error, RequestTimeoutError)
        assert result.error.name == "TimeoutError"

    @pytest.mark.asyncio
    async def test_timeout_is_per_attempt_and_retryable(self, make_client):
        transport = FakeTransport(delay=1.0)
        client = make_client(transport, timeout=0.02, retry=RetryConfig(attempts=2, delay_seconds=0))

        result = await asyncio.wait_for(client.get("/slow"), 2)

        assert isinstance(result.error, RequestTimeoutError)
        assert len(transport.calls) == 3


class TestHooks:
    """Tests for hook stages around a call."""

    @pytest.mark.asyncio
    async def test_stage_order(self, make_client):
        calls = []
        hooks = Hooks(
            on_request=lambda ctx: calls.append("request"),
            on_success=lambda ctx: calls.append("success"),
            on_error=lambda ctx: calls.append("error"),
            on_finally=lambda ctx: calls.append("finally"),
        )
        client = make_client(FakeTransport(), hooks=hooks)

        await client.get("/x")

        assert calls == ["request", "success", "finally"]

    @pytest.mark.asyncio
    async def test_plugin_hooks_precede_user_hooks(self, make_client):
        calls = []
        plugin = Plugin(id="audit", hooks=Hooks(on_request=lambda ctx: calls.append("plugin")))
        client = make_client(
            FakeTransport(),
            plugins=[plugin],
            hooks=Hooks(on_request=lambda ctx: calls.append("client")),
        )

        await client.get("/x", hooks=Hooks(on_request=lambda ctx: calls.append("call")))

        assert calls == ["plugin", "client", "call"]

    @pytest.mark.asyncio
    async def test_on_request_can_replace_request(self, make_client):
        transport = FakeTransport()
        client = make_client(transport)

        def add_trace(ctx):
            ctx.request = ctx.request.with_headers({"X-Trace": "abc"})

        await client.get("/x", hooks=Hooks(on_request=add_trace))

        assert transport.calls[0].headers["X-Trace"] == "abc"

    @pytest.mark.asyncio
    async def test_on_request_abort(self, make_client):
        transport = FakeTransport()
        client = make_client(transport)

        result = await client.get("/x", hooks=Hooks(on_request=lambda ctx: ctx.abort("not today")))

        assert isinstance(result.error, AbortError)
        assert result.error.message == "not today"
        assert transport.calls == []

    @pytest.mark.asyncio
    async def test_on_success_can_replace_data(self, make_client):
        client = make_client(FakeTransport([make_response(200, {"items": [1, 2]})]))

        def unwrap(ctx):
            ctx.data = ctx.data["items"]

        result = await client.get("/x", hooks=Hooks(on_success=unwrap))

        assert result.data == [1, 2]

    @pytest.mark.asyncio
    async def test_failing_hook_is_hook_error(self, make_client):
        transport = FakeTransport()
        client = make_client(transport)

        def broken(ctx):
            raise ValueError("bad")

        result = await client.get("/x", hooks=Hooks(on_request=broken))

        assert isinstance(result.error, HookError)
        assert result.error.stage == "on_request"
        assert transport.calls == []

    @pytest.mark.asyncio
    async def test_failing_success_hook_turns_into_error(self, make_client):
        errors = []

        def broken(ctx):
            raise RuntimeError("bad")

        client = make_client(FakeTransport())
        result = await client.get("/x", hooks=Hooks(on_success=broken, on_error=lambda ctx: errors.append(ctx.error)))

        assert isinstance(result.error, HookError)
        assert errors == [result.error]

    @pytest.mark.asyncio
    async def test_finally_failure_does_not_override_result(self, make_client):
        def broken(ctx):
            raise RuntimeError("cleanup failed")

        client = make_client(FakeTransport())
        result = await client.get("/x", hooks=Hooks(on_finally=broken))

        assert result.error is None
        assert result.data == {"ok": True}

    @pytest.mark.parametrize(
        "responses",
        [
            [make_response(200, {"ok": True})],
            [make_response(500)],
            [NetworkError("down")],
        ],
    )
    @pytest.mark.asyncio
    async def test_finally_runs_exactly_once(self, make_client, responses):
        finals = []
        client = make_client(FakeTransport(responses), retry=RetryConfig(attempts=2, delay_seconds=0))

        await client.get("/x", hooks=Hooks(on_finally=lambda ctx: finals.append(ctx.error)))

        assert len(finals) == 1

    @pytest.mark.asyncio
    async def test_finally_runs_once_on_abort(self, make_client):
        transport = GatedTransport()
        client = make_client(transport)
        finals = []

        task = asyncio.ensure_future(client.get("/x", hooks=Hooks(on_finally=lambda ctx: finals.append(ctx.error))))
        await transport.started.wait()
        client.cancel_all()
        await task

        assert len(finals) == 1
        assert isinstance(finals[0], AbortError)

    @pytest.mark.asyncio
    async def test_response_stream_progress(self, make_client):
        events = []
        client = make_client(FakeTransport([make_response(200, {"ok": True})]))

        await client.get("/x", hooks=Hooks(on_response_stream=lambda ctx: events.append(ctx.progress)))

        assert len(events) == 1
        assert events[0].progress == 1.0

    @pytest.mark.asyncio
    async def test_plugin_setup_replaces_request(self, make_client):
        transport = FakeTransport()
        plugin = Plugin(id="auth", setup=lambda req: req.with_headers({"Authorization": "Bearer t"}))
        client = make_client(transport, plugins=[plugin])

        await client.get("/x")

        assert transport.calls[0].headers["Authorization"] == "Bearer t"


class TestResultShaping:
    """Tests for parsing, validation, result modes and throw_on_error."""

    @pytest.mark.asyncio
    async def test_default_result_shape(self, make_client):
        client = make_client(FakeTransport([make_response(200, {"id": 1})]))

        result = await client.get("/x")

        assert isinstance(result, CallApiResult)
        assert result.ok is True
        assert result.response.status == 200

    @pytest.mark.asyncio
    async def test_only_success(self, make_client):
        client = make_client(FakeTransport([make_response(200, {"id": 1})]), result_mode="only_success")
        assert await client.get("/x") == {"id": 1}

    @pytest.mark.asyncio
    async def test_only_error(self, make_client):
        client = make_client(FakeTransport([make_response(404)]), result_mode="only_error")

        error = await client.get("/x")

        assert isinstance(error, HTTPError)

    @pytest.mark.asyncio
    async def test_throw_on_error(self, make_client):
        finals = []
        client = make_client(FakeTransport([make_response(404, {"detail": "missing"})]), throw_on_error=True)

        with pytest.raises(HTTPError) as exc_info:
            await client.get("/x", hooks=Hooks(on_finally=lambda ctx: finals.append(1)))

        assert exc_info.value.status == 404
        assert finals == [1]
        assert client.registry.size() == 0

    @pytest.mark.asyncio
    async def test_throw_on_error_predicate(self, make_client):
        client = make_client(
            FakeTransport([make_response(404)]),
            throw_on_error=lambda error: error.status >= 500,
        )

        result = await client.get("/x")

        assert result.error.status == 404

    # Decision: a failing predicate returns the result instead of raising
    @pytest.mark.asyncio
    async def test_throw_on_error_predicate_failure(self, make_client, caplog):
        def broken(error):
            raise RuntimeError("boom")

        client = make_client(FakeTransport([make_response(404)]), throw_on_error=broken)

        result = await client.get("/x")

        assert isinstance(result.error, HTTPError)
        assert result.error.status == 404
        assert "throw_on_error predicate raised" in caplog.text

    @pytest.mark.asyncio
    async def test_response_validator_model(self, make_client):
        class User(pydantic.BaseModel):
            id: int
            name: str

        client = make_client(FakeTransport([make_response(200, {"id": 1, "name": "Ada"})]))

        result = await client.get("/users/1", response_validator=User)

        assert isinstance(result.data, User)

    @pytest.mark.asyncio
    async def test_response_validator_failure(self, make_client):
        class User(pydantic.BaseModel):
            id: int

        client = make_client(FakeTransport([make_response(200, {"id": "nope"})]))

        result = await client.get("/users/1", response_validator=User)

        assert isinstance(result.error, ValidationError)
        assert result.error.issues

    @pytest.mark.asyncio
    async def test_unserializable_body(self, make_client):
        transport = FakeTransport()
        client = make_client(transport)

        result = await client.post("/x", body={"value": object()})

        assert isinstance(result.error, SerializationError)
        assert transport.calls == []

    @pytest.mark.asyncio
    async def test_invalid_json_response(self, make_client):
        client = make_client(FakeTransport([make_response(200, "{not json")]))

        result = await client.get("/x")

        assert isinstance(result.error, SerializationError)

    @pytest.mark.asyncio
    async def test_text_response_type(self, make_client):
        client = make_client(FakeTransport([make_response(200, "plain")]))

        result = await client.get("/x", response_type="text")

        assert result.data == "plain"
