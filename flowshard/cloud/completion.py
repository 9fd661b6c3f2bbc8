"""
Exit code policy and report building for cloud uploads.
"""

from typing import Optional

from loguru import logger

from flowshard.cloud.models import RunningFlows, UploadStatus
from flowshard.cloud.poller import PollResult
from flowshard.events import CloudRunFinished
from flowshard.executor.types import FlowStatus, SuiteFlowResult, SuiteResult

CANCELLATION_HINT = (
    "* To change exit code on cancellation, run with "
    "`--fail-on-cancellation=<true|false>`"
)


def upload_exit_code(status: FlowStatus, fail_on_cancellation: bool = False) -> int:
    """Exit code for an upload whose completion was not waited for."""
    if status == FlowStatus.SUCCESS:
        return 0
    if status == FlowStatus.CANCELED:
        return 1 if fail_on_cancellation else 0
    return 1


def is_failed(upload: UploadStatus, fail_on_cancellation: bool = False) -> bool:
    """A cancelled upload may still contain failed flows."""
    is_cancelled = upload.status == FlowStatus.CANCELED
    is_failure = upload.status == FlowStatus.ERROR
    contains_failure = any(f.status == FlowStatus.ERROR for f in upload.flows)
    return is_failure or contains_failure or (is_cancelled and fail_on_cancellation)


def poll_exit_code(
    result: PollResult,
    fail_on_cancellation: bool = False,
    fail_on_timeout: Optional[bool] = None,
) -> int:
    """
    Exit code for a polled upload.

    Args:
        result: Outcome of CloudUploadPoller.wait_for_completion.
        fail_on_cancellation: Treat a cancelled upload as a failure.
        fail_on_timeout: Treat an exhausted wait as a failure. Defaults to the
            policy the poller ran with.

    Returns:
        0 on success, 1 on failure.
    """
    if result.timed_out:
        if fail_on_timeout is None:
            fail_on_timeout = result.fail_on_timeout
        return 1 if fail_on_timeout else 0

    upload = result.status
    failed = is_failed(upload, fail_on_cancellation)
    is_cancelled = upload.status == FlowStatus.CANCELED

    if not failed:
        logger.info("Process will exit with code 0 (SUCCESS)")
        if is_cancelled:
            logger.info(CANCELLATION_HINT)
        return 0

    logger.info("Process will exit with code 1 (FAIL)")
    contains_failure = any(f.status == FlowStatus.ERROR for f in upload.flows)
    if is_cancelled and not contains_failure:
        logger.info(CANCELLATION_HINT)
    return 1


def create_suite_result(
    passed: bool,
    upload: UploadStatus,
    running_flows: RunningFlows,
) -> SuiteResult:
    """Build the suite handed to a reporter from a finished upload."""
    flows = []
    for flow in upload.flows:
        running = running_flows.find(flow.name)
        flows.append(SuiteFlowResult(
            name=flow.name,
            status=flow.status,
            file_name=None,
            failure=flow.errors[0] if flow.errors else None,
            duration_ms=running.duration_ms if running else None,
            start_time=running.start_time if running else None,
        ))

    return SuiteResult(
        passed=passed,
        flows=flows,
        duration_ms=running_flows.duration_ms,
        start_time=running_flows.start_time,
    )


def cloud_run_finished(result: PollResult) -> CloudRunFinished:
    """Event describing a waited-for upload."""
    upload = result.status
    return CloudRunFinished(
        upload_id=upload.upload_id,
        total_flows=len(upload.flows),
        passed_flows=sum(1 for f in upload.flows if f.status == FlowStatus.SUCCESS),
        failed_flows=sum(1 for f in upload.flows if f.status == FlowStatus.ERROR),
        timed_out=result.timed_out,
    )
