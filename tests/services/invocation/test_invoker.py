import asyncio
from collections.abc import Callable

import httpx
import pytest

from src.core.exceptions import (
    FatalInvocationError,
    InvocationCancelledError,
    InvocationExhaustedError,
    ResponseParseError,
)
from src.services.invocation.cancellation import CancellationSignal
from src.services.invocation.invoker import Invoker
from src.services.invocation.models import RequestDescriptor, TransportResult
from src.services.provider.transport import HttpTransport
from src.services.rotation.pool import CredentialPool, EgressPool, EgressRoute

OK = TransportResult(status_code=200, body=b"payload")
QUOTA = TransportResult(status_code=429, body=b'{"error": "quota exceeded"}')
FATAL = TransportResult(status_code=400, body=b'{"error": "bad voice id"}')


def _timeout() -> TransportResult:
    return TransportResult(error=httpx.ReadTimeout("timed out"))


class ScriptedTransport:
    """按 (凭据, 出口) 返回预设结果，并记录每次调用"""

    def __init__(self, script: Callable[[str, EgressRoute | None], TransportResult]) -> None:
        self.script = script
        self.calls: list[tuple[str, str | None]] = []

    async def send(
        self, request: RequestDescriptor, credential: str, egress: EgressRoute | None
    ) -> TransportResult:
        self.calls.append((credential, egress.host if egress else None))
        result = self.script(credential, egress)
        if result.error is not None and egress is not None:
            return TransportResult(error=result.error, egress=egress)
        if egress is not None:
            return TransportResult(
                status_code=result.status_code, body=result.body, headers=result.headers, egress=egress
            )
        return result


def _request(parser=None) -> RequestDescriptor:
    kwargs = {"parser": parser} if parser is not None else {}
    return RequestDescriptor(
        provider="elevenlabs",
        method="POST",
        url="https://api.example.com/tts",
        auth_header="xi-api-key",
        **kwargs,
    )


def _invoker(
    transport: ScriptedTransport,
    keys: list[str],
    proxies: list[str] | None = None,
    max_transient_retries: int = 3,
) -> Invoker:
    egress = EgressPool.from_urls("proxies", proxies) if proxies else None
    return Invoker(
        "elevenlabs",
        CredentialPool("keys", keys),
        transport,
        egress=egress,
        retry_delay=0,
        max_transient_retries=max_transient_retries,
    )


class TestCredentialRotation:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("size", [1, 3])
    async def test_quota_on_every_credential_exhausts_after_one_attempt_each(self, size: int) -> None:
        keys = [f"key-{i}" for i in range(size)]
        transport = ScriptedTransport(lambda key, egress: QUOTA)
        invoker = _invoker(transport, keys)

        with pytest.raises(InvocationExhaustedError) as exc_info:
            await invoker.invoke(_request())

        assert [call[0] for call in transport.calls] == keys
        assert exc_info.value.attempts == size

    @pytest.mark.asyncio
    async def test_success_on_second_credential_leaves_cursor_there(self) -> None:
        transport = ScriptedTransport(lambda key, egress: OK if key == "key-1" else QUOTA)
        invoker = _invoker(transport, ["key-0", "key-1", "key-2"])

        payload = await invoker.invoke(_request())

        assert payload == b"payload"
        assert len(transport.calls) == 2
        assert invoker.credentials.position == 1
        assert invoker.credentials.current() == "key-1"

    @pytest.mark.asyncio
    async def test_call_starting_mid_pool_still_tries_every_credential(self) -> None:
        transport = ScriptedTransport(lambda key, egress: QUOTA)
        invoker = _invoker(transport, ["key-0", "key-1", "key-2"])
        invoker.credentials.advance()

        with pytest.raises(InvocationExhaustedError):
            await invoker.invoke(_request())

        assert [call[0] for call in transport.calls] == ["key-1", "key-2", "key-0"]

    @pytest.mark.asyncio
    async def test_rotation_is_visible_to_later_calls(self) -> None:
        transport = ScriptedTransport(lambda key, egress: OK if key == "key-1" else QUOTA)
        invoker = _invoker(transport, ["key-0", "key-1"])

        await invoker.invoke(_request())
        transport.calls.clear()
        await invoker.invoke(_request())

        # 第二次调用直接从已轮换到的凭据开始
        assert transport.calls == [("key-1", None)]


class TestFatal:
    @pytest.mark.asyncio
    async def test_fatal_stops_after_one_attempt_without_rotation(self) -> None:
        transport = ScriptedTransport(lambda key, egress: FATAL)
        invoker = _invoker(transport, ["key-0", "key-1"])

        with pytest.raises(FatalInvocationError) as exc_info:
            await invoker.invoke(_request())

        assert len(transport.calls) == 1
        assert invoker.credentials.position == 0
        assert exc_info.value.status_code == 400
        assert exc_info.value.detail == 'HTTP 400: {"error": "bad voice id"}'

    @pytest.mark.asyncio
    async def test_unparseable_success_is_fatal(self) -> None:
        def parser(result: TransportResult) -> bytes:
            raise ResponseParseError("no content")

        transport = ScriptedTransport(lambda key, egress: OK)
        invoker = _invoker(transport, ["key-0", "key-1"])

        with pytest.raises(FatalInvocationError) as exc_info:
            await invoker.invoke(_request(parser))

        assert "no content" in exc_info.value.detail
        assert len(transport.calls) == 1


class TestTransient:
    @pytest.mark.asyncio
    async def test_transient_retries_same_credential(self) -> None:
        results = iter([_timeout(), _timeout(), OK])
        transport = ScriptedTransport(lambda key, egress: next(results))
        invoker = _invoker(transport, ["key-0", "key-1"])

        assert await invoker.invoke(_request()) == b"payload"
        assert transport.calls == [("key-0", None)] * 3
        assert invoker.credentials.position == 0

    @pytest.mark.asyncio
    async def test_transient_retries_are_capped(self) -> None:
        transport = ScriptedTransport(lambda key, egress: _timeout())
        invoker = _invoker(transport, ["key-0", "key-1"], max_transient_retries=2)

        with pytest.raises(InvocationExhaustedError) as exc_info:
            await invoker.invoke(_request())

        # 1 次初始尝试 + 2 次重试
        assert len(transport.calls) == 3
        assert invoker.credentials.position == 0
        assert "transient" in (exc_info.value.reason or "")

    @pytest.mark.asyncio
    async def test_transient_budget_resets_after_rotation(self) -> None:
        def script(key: str, egress: EgressRoute | None) -> TransportResult:
            if key == "key-0":
                return QUOTA
            return _timeout()

        transport = ScriptedTransport(script)
        invoker = _invoker(transport, ["key-0", "key-1"], max_transient_retries=1)

        with pytest.raises(InvocationExhaustedError):
            await invoker.invoke(_request())

        assert transport.calls == [("key-0", None), ("key-1", None), ("key-1", None)]

    @pytest.mark.asyncio
    async def test_proxy_error_without_egress_pool_does_not_rotate_credential(self) -> None:
        results = iter([TransportResult(error=httpx.ProxyError("proxyconnect")), OK])
        transport = ScriptedTransport(lambda key, egress: next(results))
        invoker = _invoker(transport, ["key-0", "key-1"])

        assert await invoker.invoke(_request()) == b"payload"
        assert invoker.credentials.position == 0


class TestEgressRotation:
    @pytest.mark.asyncio
    async def test_egress_failure_rotates_egress_and_keeps_credential(self) -> None:
        def script(key: str, egress: EgressRoute | None) -> TransportResult:
            if egress is not None and egress.host == "p0":
                return TransportResult(error=httpx.ProxyError("proxy refused"))
            return OK

        transport = ScriptedTransport(script)
        invoker = _invoker(transport, ["key-0", "key-1"], ["http://p0:1", "http://p1:1"])

        assert await invoker.invoke(_request()) == b"payload"
        assert transport.calls == [("key-0", "p0"), ("key-0", "p1")]
        assert invoker.credentials.position == 0
        assert invoker.egress is not None and invoker.egress.position == 1

    @pytest.mark.asyncio
    async def test_all_egress_failing_moves_to_next_credential(self) -> None:
        def script(key: str, egress: EgressRoute | None) -> TransportResult:
            if key == "key-0":
                return TransportResult(error=httpx.ConnectError("refused"))
            return OK

        transport = ScriptedTransport(script)
        invoker = _invoker(transport, ["key-0", "key-1"], ["http://p0:1", "http://p1:1"])

        assert await invoker.invoke(_request()) == b"payload"
        assert transport.calls == [("key-0", "p0"), ("key-0", "p1"), ("key-1", "p0")]

    @pytest.mark.asyncio
    async def test_worst_case_is_credentials_times_egress(self) -> None:
        transport = ScriptedTransport(
            lambda key, egress: TransportResult(error=httpx.ProxyError("down"))
        )
        invoker = _invoker(
            transport, ["key-0", "key-1", "key-2"], ["http://p0:1", "http://p1:1"]
        )

        with pytest.raises(InvocationExhaustedError) as exc_info:
            await invoker.invoke(_request())

        assert invoker.max_rotation_attempts == 6
        assert len(transport.calls) == 6
        assert exc_info.value.attempts == 6

    @pytest.mark.asyncio
    async def test_credential_rotation_does_not_reset_egress_cursor(self) -> None:
        def script(key: str, egress: EgressRoute | None) -> TransportResult:
            if egress is not None and egress.host == "p0":
                return TransportResult(error=httpx.ProxyError("down"))
            if key == "key-0":
                return QUOTA
            return OK

        transport = ScriptedTransport(script)
        invoker = _invoker(
            transport, ["key-0", "key-1"], ["http://p0:1", "http://p1:1", "http://p2:1"]
        )

        assert await invoker.invoke(_request()) == b"payload"
        # 新凭据从共享出口游标当前位置（p1）继续，而不是回到 p0
        assert transport.calls == [("key-0", "p0"), ("key-0", "p1"), ("key-1", "p1")]


class TestCancellation:
    @pytest.mark.asyncio
    async def test_pre_set_signal_issues_no_attempt(self) -> None:
        transport = ScriptedTransport(lambda key, egress: OK)
        invoker = _invoker(transport, ["key-0"])
        signal = CancellationSignal()
        signal.cancel()

        with pytest.raises(InvocationCancelledError) as exc_info:
            await invoker.invoke(_request(), signal)

        assert transport.calls == []
        assert exc_info.value.attempts == 0

    @pytest.mark.asyncio
    async def test_in_flight_attempt_is_aborted(self) -> None:
        started = asyncio.Event()
        aborted = asyncio.Event()

        class HangingTransport:
            async def send(self, request, credential, egress):
                started.set()
                try:
                    await asyncio.sleep(60)
                except asyncio.CancelledError:
                    aborted.set()
                    raise
                return OK

        invoker = Invoker("gemini", CredentialPool("keys", ["key-0"]), HangingTransport())
        signal = CancellationSignal()

        call = asyncio.ensure_future(invoker.invoke(_request(), signal))
        await started.wait()
        signal.cancel()

        with pytest.raises(InvocationCancelledError):
            await asyncio.wait_for(call, timeout=5)
        assert aborted.is_set()

    @pytest.mark.asyncio
    async def test_cancel_during_retry_delay(self) -> None:
        signal = CancellationSignal()
        transport = ScriptedTransport(lambda key, egress: _timeout())
        invoker = Invoker(
            "gemini",
            CredentialPool("keys", ["key-0"]),
            transport,
            retry_delay=60,
        )

        call = asyncio.ensure_future(invoker.invoke(_request(), signal))
        while not transport.calls:
            await asyncio.sleep(0)
        signal.cancel()

        with pytest.raises(InvocationCancelledError):
            await asyncio.wait_for(call, timeout=5)
        assert len(transport.calls) == 1


@pytest.mark.asyncio
async def test_concurrent_invocations_share_one_pool() -> None:
    keys = [f"key-{i}" for i in range(4)]
    counter = {"n": 0}

    async def flaky(key: str) -> TransportResult:
        counter["n"] += 1
        await asyncio.sleep(0)
        return QUOTA if counter["n"] % 3 else OK

    class SharedTransport:
        async def send(self, request, credential, egress):
            return await flaky(credential)

    pool = CredentialPool("keys", keys)
    invokers = [Invoker("gemini", pool, SharedTransport(), retry_delay=0) for _ in range(10)]

    results = await asyncio.gather(
        *(invoker.invoke(_request()) for invoker in invokers), return_exceptions=True
    )

    for result in results:
        assert result == b"payload" or isinstance(result, InvocationExhaustedError)
    assert 0 <= pool.position < len(keys)
    assert pool.current() in keys


class _MockClientPool:
    def __init__(self, handler) -> None:
        self.handler = handler

    async def get_proxy_client(self, egress=None) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler), follow_redirects=True)

    async def invalidate(self, egress) -> bool:
        return True


class TestHttpErrorsStayInsideTaxonomy:
    @pytest.mark.asyncio
    async def test_corrupt_compressed_body_is_retried_then_exhausted(self) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.headers["xi-api-key"])
            return httpx.Response(200, content=b"not-gzip-at-all", headers={"content-encoding": "gzip"})

        invoker = Invoker(
            "elevenlabs",
            CredentialPool("keys", ["key-0", "key-1"]),
            HttpTransport(client_pool=_MockClientPool(handler)),
            retry_delay=0,
            max_transient_retries=1,
        )

        with pytest.raises(InvocationExhaustedError) as exc_info:
            await invoker.invoke(_request())

        assert calls == ["key-0", "key-0"]
        assert "DecodingError" in (exc_info.value.reason or "")

    @pytest.mark.asyncio
    async def test_redirect_loop_is_fatal_after_one_attempt(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(302, headers={"location": str(request.url)})

        invoker = Invoker(
            "elevenlabs",
            CredentialPool("keys", ["key-0", "key-1"]),
            HttpTransport(client_pool=_MockClientPool(handler)),
            retry_delay=0,
        )

        with pytest.raises(FatalInvocationError) as exc_info:
            await invoker.invoke(_request())

        assert "TooManyRedirects" in exc_info.value.detail
        assert exc_info.value.attempts == 1
        assert invoker.credentials.position == 0


@pytest.mark.asyncio
async def test_fatal_detail_keeps_full_upstream_body() -> None:
    body = '{"detail": "' + "x" * 5000 + '"}'
    transport = ScriptedTransport(lambda key, egress: TransportResult(status_code=400, body=body.encode()))
    invoker = _invoker(transport, ["key-0"])

    with pytest.raises(FatalInvocationError) as exc_info:
        await invoker.invoke(_request())

    assert exc_info.value.detail == f"HTTP 400: {body}"
    assert "truncated" not in exc_info.value.detail
