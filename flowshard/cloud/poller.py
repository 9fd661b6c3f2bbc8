"""
Cloud Upload Poller.

Polls the status of one cloud upload until it completes or the wait times
out, backing off on rate limiting and retrying transient server errors.
"""

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional, Protocol, Set

from loguru import logger

from flowshard.cloud.errors import CloudApiError, CloudPollingError
from flowshard.cloud.models import FlowResult, RunningFlows, UploadStatus
from flowshard.executor.errors import ConfigurationError

RATE_LIMITED = 429
RETRYABLE_STATUS_CODES = frozenset({500, 502, 404})


class PollState(str, Enum):
    """Poller state enumeration."""
    POLLING = "polling"         # Fetch the status
    BACKOFF = "backoff"         # Rate limited, grow the interval and wait
    RETRYING = "retrying"       # Transient server error, wait and retry
    TIMED_OUT = "timed_out"     # Wait budget exhausted
    TERMINAL = "terminal"       # Upload completed


@dataclass
class PollerConfig:
    """Cloud poller configuration."""
    min_poll_interval_ms: float = 10000
    wait_timeout_ms: float = 30 * 60 * 1000
    max_polling_retries: int = 5
    fail_on_timeout: bool = True
    backoff_multiplier: float = 1.25

    def __post_init__(self) -> None:
        """Validate poller configuration."""
        if self.min_poll_interval_ms <= 0:
            raise ConfigurationError(
                f"min_poll_interval_ms must be positive, got {self.min_poll_interval_ms}"
            )
        if self.wait_timeout_ms <= 0:
            raise ConfigurationError(
                f"wait_timeout_ms must be positive, got {self.wait_timeout_ms}"
            )
        if self.max_polling_retries < 0:
            raise ConfigurationError(
                f"max_polling_retries must not be negative, got {self.max_polling_retries}"
            )
        if self.backoff_multiplier < 1:
            raise ConfigurationError(
                f"backoff_multiplier must be at least 1, got {self.backoff_multiplier}"
            )


@dataclass
class PollResult:
    """
    Result of waiting for an upload.

    Attributes:
        status: Last status fetched (or synthesized after a failed final fetch).
        running_flows: Local view of the flows, for report generation.
        timed_out: True if the wait budget ran out before completion.
        fail_on_timeout: Exit policy for a timed out wait, copied from the poller config.
    """
    status: UploadStatus
    running_flows: RunningFlows
    timed_out: bool = False
    fail_on_timeout: bool = True


class StatusFetcher(Protocol):
    async def fetch_status(
        self,
        auth_token: str,
        upload_id: str,
        project_id: str,
    ) -> UploadStatus:
        ...


def log_flow_completion(flow: FlowResult) -> None:
    """Default completion handler: one log line per finished flow."""
    duration = f" ({flow.total_time / 1000:.1f}s)" if flow.total_time else ""
    logger.info(f"[{flow.status.value}] {flow.name}{duration}")
    for error in flow.errors:
        logger.info(f"    {error}")


class CloudUploadPoller:
    """
    Enum-driven polling loop for one upload.

    - POLLING: fetch; report newly terminal flows once; stop when completed
    - BACKOFF (429): interval grows by the multiplier, never reset
    - RETRYING (500/502/404): sleep the current interval, up to the retry budget
    - any other API error fails immediately
    - TIMED_OUT: one best-effort final fetch, then return

    Backoff interval, retry counter and state stay inspectable on the
    instance between and after runs.

    Example:
        poller = CloudUploadPoller(client, PollerConfig(wait_timeout_ms=600000))
        result = await poller.wait_for_completion(token, upload_id, project_id)
    """

    def __init__(
        self,
        client: StatusFetcher,
        config: Optional[PollerConfig] = None,
        on_flow_completed: Optional[Callable[[FlowResult], None]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.client = client
        self.config = config or PollerConfig()
        self.on_flow_completed = on_flow_completed or log_flow_completion
        self._sleep = sleep
        self._clock = clock

        self.state = PollState.POLLING
        self.interval_ms: float = self.config.min_poll_interval_ms
        self.retry_counter = 0
        self.printed_flows: Set[FlowResult] = set()
        self.last_status_code: Optional[int] = None

    def _reset(self) -> None:
        self.state = PollState.POLLING
        self.interval_ms = self.config.min_poll_interval_ms
        self.retry_counter = 0
        self.printed_flows = set()
        self.last_status_code = None

    async def wait_for_completion(
        self,
        auth_token: str,
        upload_id: str,
        project_id: str,
    ) -> PollResult:
        """
        Poll until the upload completes or the wait times out.

        Returns:
            PollResult with the final status.

        Raises:
            CloudPollingError: On a non-retryable error or exhausted retries.
        """
        self._reset()
        started = self._clock()
        upload: Optional[UploadStatus] = None

        while True:
            if self.state == PollState.POLLING:
                try:
                    upload = await self.client.fetch_status(auth_token, upload_id, project_id)
                except CloudApiError as e:
                    self.last_status_code = e.status_code
                    self.state = self._classify(e, upload_id)
                    continue

                self._report_flows(upload)
                if upload.completed:
                    self.state = PollState.TERMINAL
                    continue

                await self._wait(self.interval_ms)
                self.state = self._next_state(started)

            elif self.state == PollState.BACKOFF:
                self.interval_ms *= self.config.backoff_multiplier
                logger.debug(f"Rate limited, backing off for {self.interval_ms:.0f}ms")
                await self._wait(self.interval_ms)
                self.state = self._next_state(started)

            elif self.state == PollState.RETRYING:
                self.retry_counter += 1
                if self.retry_counter > self.config.max_polling_retries:
                    raise CloudPollingError(upload_id, self.last_status_code)
                logger.warning(
                    f"Status request failed with {self.last_status_code}, retrying "
                    f"({self.retry_counter}/{self.config.max_polling_retries})"
                )
                await self._wait(self.interval_ms)
                self.state = self._next_state(started)

            elif self.state == PollState.TIMED_OUT:
                final = await self._fetch_final(auth_token, upload_id, project_id)
                return PollResult(
                    status=final,
                    running_flows=RunningFlows.from_upload(final),
                    timed_out=True,
                    fail_on_timeout=self.config.fail_on_timeout,
                )

            else:
                logger.info(f"Upload {upload_id} completed with status {upload.status.value}")
                return PollResult(
                    status=upload,
                    running_flows=RunningFlows.from_upload(upload),
                    timed_out=False,
                    fail_on_timeout=self.config.fail_on_timeout,
                )

    def _classify(self, error: CloudApiError, upload_id: str) -> PollState:
        if error.status_code == RATE_LIMITED:
            return PollState.BACKOFF
        if error.status_code in RETRYABLE_STATUS_CODES:
            return PollState.RETRYING
        raise CloudPollingError(upload_id, error.status_code) from error

    def _next_state(self, started: float) -> PollState:
        elapsed_ms = (self._clock() - started) * 1000
        if elapsed_ms < self.config.wait_timeout_ms:
            return PollState.POLLING
        return PollState.TIMED_OUT

    async def _wait(self, interval_ms: float) -> None:
        await self._sleep(interval_ms / 1000.0)

    def _report_flows(self, upload: UploadStatus) -> None:
        for flow in upload.flows:
            if flow in self.printed_flows or not flow.status.is_terminal:
                continue
            self.printed_flows.add(flow)
            self.on_flow_completed(flow)

    async def _fetch_final(
        self,
        auth_token: str,
        upload_id: str,
        project_id: str,
    ) -> UploadStatus:
        minutes = self.config.wait_timeout_ms / 60000
        logger.warning(f"Waiting for flows to complete has timed out ({minutes:g} minutes)")
        exit_code = 1 if self.config.fail_on_timeout else 0
        logger.warning(
            f"Process will exit with code {exit_code} "
            f"({'FAIL' if exit_code else 'SUCCESS'}) on timeout"
        )

        try:
            return await self.client.fetch_status(auth_token, upload_id, project_id)
        except Exception as e:
            logger.warning(f"Could not fetch the final status of upload {upload_id}: {e}")
            return UploadStatus.unknown(upload_id)
