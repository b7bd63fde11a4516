"""Client for the executor's cancel endpoint."""

from __future__ import annotations

from dataclasses import dataclass

import httpx
from loguru import logger

from jobwarden.models import Job


@dataclass
class CancelResult:
    """Result of a cancel request."""

    ok: bool
    message: str = ""
    status_code: int | None = None


class ExecutorClient:
    """Sends best-effort cancel requests to executors.

    Never raises for transport or HTTP errors; the caller decides what a
    failed cancel means.
    """

    def __init__(
        self,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the client.

        Args:
            timeout: Seconds to wait for the executor to answer
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self._timeout = timeout
        self._transport = transport

    async def cancel(self, job: Job) -> CancelResult:
        """POST /cancel to the executor running the job."""
        base_url = job.executor_url
        if base_url is None:
            return CancelResult(False, "job has no executor address")

        try:
            async with httpx.AsyncClient(
                base_url=base_url,
                timeout=self._timeout,
                transport=self._transport,
            ) as client:
                response = await client.post("/cancel")
        except httpx.TimeoutException:
            return CancelResult(False, f"Timeout after {self._timeout}s")
        except httpx.RequestError as e:
            return CancelResult(False, f"Request error: {e}")

        body = response.text[:200]
        logger.debug(
            f"Cancel request for job '{job.id}' sent to {base_url}: "
            f"{response.status_code} {body!r}"
        )
        if response.is_success:
            return CancelResult(True, body, response.status_code)
        return CancelResult(False, f"Unexpected status: {response.status_code}", response.status_code)
