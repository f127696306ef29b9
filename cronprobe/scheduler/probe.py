"""Probe executor: one bounded HTTP GET per job fire.

Every HTTP status, 4xx and 5xx included, counts as a completed probe
and is recorded verbatim. Only transport failures (DNS, connect, TLS,
timeout) produce status 0, with a short failure code as the message.
There is no retry: the timeout is a ceiling, not a budget.
"""

import asyncio
import logging
import socket
import ssl
import time
from enum import Enum
from typing import Iterator, Optional

import httpx

from cronprobe.config import ProbeConfig
from cronprobe.scheduler.models import TRANSPORT_FAILURE_STATUS, ExecutionOutcome, Job

logger = logging.getLogger(__name__)


class ProbeFailure(str, Enum):
    """Machine-readable transport failure codes."""

    TIMEOUT = "TIMEOUT"
    DNS_ERROR = "DNS_ERROR"
    CONNECTION_REFUSED = "CONNECTION_REFUSED"
    CONNECTION_RESET = "CONNECTION_RESET"
    TLS_ERROR = "TLS_ERROR"
    CONNECT_ERROR = "CONNECT_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    PROTOCOL_ERROR = "PROTOCOL_ERROR"
    TOO_MANY_REDIRECTS = "TOO_MANY_REDIRECTS"
    INVALID_URL = "INVALID_URL"
    REQUEST_ERROR = "REQUEST_ERROR"


def _exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield ``exc`` and the exceptions it was raised from."""
    seen = set()
    current: Optional[BaseException] = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__ or current.__context__


def classify_failure(exc: BaseException) -> ProbeFailure:
    """Map a request exception to a failure code.

    httpx wraps socket and TLS errors, so the underlying OS error is
    looked up through the exception chain.
    """
    if isinstance(exc, (asyncio.TimeoutError, httpx.TimeoutException)):
        return ProbeFailure.TIMEOUT
    if isinstance(exc, httpx.TooManyRedirects):
        return ProbeFailure.TOO_MANY_REDIRECTS
    if isinstance(exc, (httpx.InvalidURL, httpx.UnsupportedProtocol)):
        return ProbeFailure.INVALID_URL

    for cause in _exception_chain(exc):
        if isinstance(cause, socket.gaierror):
            return ProbeFailure.DNS_ERROR
        if isinstance(cause, ssl.SSLError):
            return ProbeFailure.TLS_ERROR
        if isinstance(cause, ConnectionRefusedError):
            return ProbeFailure.CONNECTION_REFUSED
        if isinstance(cause, ConnectionResetError):
            return ProbeFailure.CONNECTION_RESET

    if isinstance(exc, httpx.ConnectError):
        message = str(exc).lower()
        if "certificate" in message or "ssl" in message:
            return ProbeFailure.TLS_ERROR
        if "name or service not known" in message or "nodename nor servname" in message:
            return ProbeFailure.DNS_ERROR
        return ProbeFailure.CONNECT_ERROR
    if isinstance(exc, httpx.ProtocolError):
        return ProbeFailure.PROTOCOL_ERROR
    if isinstance(exc, httpx.NetworkError):
        return ProbeFailure.NETWORK_ERROR
    return ProbeFailure.REQUEST_ERROR


class ProbeExecutor:
    """Runs a single health-check request for a job.

    The executor keeps no state between calls and opens a fresh client
    per probe, so concurrent probes never share connections and the
    measured time includes connection setup.

    Example:
        executor = ProbeExecutor(timeout=30.0)
        outcome = await executor.execute(job)
    """

    def __init__(
        self,
        timeout: float = 30.0,
        follow_redirects: bool = True,
        user_agent: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """Initialize the executor.

        Args:
            timeout: Ceiling in seconds from dispatch to response
            follow_redirects: Follow 3xx responses to their target
            user_agent: User-Agent header sent with each probe
            transport: Custom httpx transport (used by tests)
        """
        self.timeout = timeout
        self.follow_redirects = follow_redirects
        self.user_agent = user_agent
        self._transport = transport

    @classmethod
    def from_config(
        cls,
        config: ProbeConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "ProbeExecutor":
        return cls(
            timeout=config.timeout,
            follow_redirects=config.follow_redirects,
            user_agent=config.user_agent,
            transport=transport,
        )

    async def execute(self, job: Job) -> ExecutionOutcome:
        """Probe ``job.url`` and return the outcome.

        Never raises for request failures; they are part of the outcome.
        """
        started = time.monotonic()

        try:
            status = await asyncio.wait_for(self._get(job.url), timeout=self.timeout)
        except Exception as e:
            failure = classify_failure(e)
            elapsed_ms = self._elapsed_ms(started)
            if failure is ProbeFailure.TIMEOUT:
                # The ceiling fired, so at least the ceiling elapsed
                elapsed_ms = max(elapsed_ms, int(self.timeout * 1000))
            if failure is ProbeFailure.REQUEST_ERROR:
                logger.warning(f"Unexpected error probing {job.url}: {e!r}")
            logger.info(f"✗ Job {job.id} \"{job.name}\" failed: {failure.value} after {elapsed_ms}ms")
            return ExecutionOutcome(
                job_id=job.id,
                user_id=job.user_id,
                status=TRANSPORT_FAILURE_STATUS,
                response_time_ms=elapsed_ms,
                error_message=failure.value,
            )

        elapsed_ms = self._elapsed_ms(started)
        logger.info(f"✓ Job {job.id} \"{job.name}\": {status} in {elapsed_ms}ms")
        return ExecutionOutcome(
            job_id=job.id,
            user_id=job.user_id,
            status=status,
            response_time_ms=elapsed_ms,
        )

    async def _get(self, url: str) -> int:
        headers = {"User-Agent": self.user_agent} if self.user_agent else None
        async with httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=self.follow_redirects,
            headers=headers,
            transport=self._transport,
        ) as client:
            response = await client.get(url)
            return response.status_code

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return max(0, int((time.monotonic() - started) * 1000))
