"""Tests for the probe executor."""

import asyncio
import socket
import ssl
import time

import httpx
import pytest

from cronprobe.config import ProbeConfig
from cronprobe.scheduler.models import TRANSPORT_FAILURE_STATUS
from cronprobe.scheduler.probe import ProbeExecutor, ProbeFailure, classify_failure


def _raise_from(outer: Exception, cause: BaseException) -> Exception:
    """Return ``outer`` raised from ``cause``, as httpx does for socket errors."""
    try:
        try:
            raise cause
        except BaseException as inner:
            raise outer from inner
    except Exception as exc:
        return exc


class TestClassifyFailure:
    """Tests for classify_failure."""

    def test_asyncio_timeout(self) -> None:
        assert classify_failure(asyncio.TimeoutError()) is ProbeFailure.TIMEOUT

    def test_httpx_timeout(self) -> None:
        assert classify_failure(httpx.ReadTimeout("slow")) is ProbeFailure.TIMEOUT

    def test_dns_error(self) -> None:
        exc = _raise_from(
            httpx.ConnectError("lookup failed"),
            socket.gaierror(-2, "Name or service not known"),
        )
        assert classify_failure(exc) is ProbeFailure.DNS_ERROR

    def test_connection_refused(self) -> None:
        exc = _raise_from(httpx.ConnectError("connect failed"), ConnectionRefusedError(111, "refused"))
        assert classify_failure(exc) is ProbeFailure.CONNECTION_REFUSED

    def test_connection_reset(self) -> None:
        exc = _raise_from(httpx.ReadError("read failed"), ConnectionResetError(104, "reset"))
        assert classify_failure(exc) is ProbeFailure.CONNECTION_RESET

    def test_tls_error(self) -> None:
        exc = _raise_from(httpx.ConnectError("handshake failed"), ssl.SSLError("bad cert"))
        assert classify_failure(exc) is ProbeFailure.TLS_ERROR

    def test_tls_error_from_message(self) -> None:
        exc = httpx.ConnectError("[SSL: CERTIFICATE_VERIFY_FAILED] certificate verify failed")
        assert classify_failure(exc) is ProbeFailure.TLS_ERROR

    def test_plain_connect_error(self) -> None:
        assert classify_failure(httpx.ConnectError("unreachable")) is ProbeFailure.CONNECT_ERROR

    def test_protocol_error(self) -> None:
        exc = httpx.RemoteProtocolError("server disconnected")
        assert classify_failure(exc) is ProbeFailure.PROTOCOL_ERROR

    def test_network_error(self) -> None:
        assert classify_failure(httpx.ReadError("broken")) is ProbeFailure.NETWORK_ERROR

    def test_too_many_redirects(self) -> None:
        exc = httpx.TooManyRedirects("loop")
        assert classify_failure(exc) is ProbeFailure.TOO_MANY_REDIRECTS

    def test_invalid_url(self) -> None:
        assert classify_failure(httpx.UnsupportedProtocol("ftp")) is ProbeFailure.INVALID_URL

    def test_unknown_error(self) -> None:
        assert classify_failure(RuntimeError("?")) is ProbeFailure.REQUEST_ERROR


class TestProbeExecutor:
    """Tests for ProbeExecutor.execute."""

    @staticmethod
    def _executor(handler, **kwargs) -> ProbeExecutor:
        return ProbeExecutor(transport=httpx.MockTransport(handler), **kwargs)

    @pytest.mark.asyncio
    async def test_success_records_status(self, make_job) -> None:
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(204)

        job = make_job(4, url="https://example.com/ping")
        outcome = await self._executor(handler).execute(job)

        assert outcome.status == 204
        assert outcome.error_message is None
        assert outcome.job_id == 4
        assert outcome.user_id == job.user_id
        assert outcome.response_time_ms >= 0
        assert seen[0].method == "GET"
        assert str(seen[0].url) == "https://example.com/ping"

    @pytest.mark.asyncio
    async def test_server_error_is_not_a_transport_failure(self, make_job) -> None:
        """Test that a 5xx is recorded verbatim."""
        outcome = await self._executor(lambda request: httpx.Response(503)).execute(make_job())

        assert outcome.status == 503
        assert outcome.error_message is None
        assert not outcome.transport_failed

    @pytest.mark.asyncio
    async def test_not_found_is_recorded(self, make_job) -> None:
        outcome = await self._executor(lambda request: httpx.Response(404)).execute(make_job())

        assert outcome.status == 404

    @pytest.mark.asyncio
    async def test_connect_failure(self, make_job) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connect failed", request=request) from ConnectionRefusedError()

        outcome = await self._executor(handler).execute(make_job())

        assert outcome.status == TRANSPORT_FAILURE_STATUS
        assert outcome.error_message == "CONNECTION_REFUSED"
        assert outcome.transport_failed

    @pytest.mark.asyncio
    async def test_timeout_is_enforced_at_the_ceiling(self, make_job) -> None:
        async def handler(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(5)
            return httpx.Response(200)

        started = time.monotonic()
        outcome = await self._executor(handler, timeout=0.05).execute(make_job())
        elapsed = time.monotonic() - started

        assert outcome.status == TRANSPORT_FAILURE_STATUS
        assert outcome.error_message == "TIMEOUT"
        assert 50 <= outcome.response_time_ms < 1000
        assert elapsed < 1.0

    @pytest.mark.asyncio
    async def test_unexpected_error_never_raises(self, make_job) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise RuntimeError("bug in transport")

        outcome = await self._executor(handler).execute(make_job())

        assert outcome.status == TRANSPORT_FAILURE_STATUS
        assert outcome.error_message == "REQUEST_ERROR"

    @pytest.mark.asyncio
    async def test_follows_redirects(self, make_job) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/old":
                return httpx.Response(301, headers={"Location": "https://example.com/new"})
            return httpx.Response(200)

        job = make_job(url="https://example.com/old")
        outcome = await self._executor(handler).execute(job)

        assert outcome.status == 200

    @pytest.mark.asyncio
    async def test_redirects_not_followed_when_disabled(self, make_job) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(302, headers={"Location": "https://example.com/new"})

        job = make_job(url="https://example.com/old")
        outcome = await self._executor(handler, follow_redirects=False).execute(job)

        assert outcome.status == 302

    @pytest.mark.asyncio
    async def test_user_agent_header(self, make_job) -> None:
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.headers.get("user-agent"))
            return httpx.Response(200)

        await self._executor(handler, user_agent="cronprobe-test").execute(make_job())

        assert seen == ["cronprobe-test"]

    def test_from_config(self) -> None:
        config = ProbeConfig(timeout=3.0, follow_redirects=False, user_agent="ua")

        executor = ProbeExecutor.from_config(config)

        assert executor.timeout == 3.0
        assert executor.follow_redirects is False
        assert executor.user_agent == "ua"
