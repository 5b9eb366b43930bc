"""Sequential execution of test cases against a provisioned VM."""

import logging
import time
from collections.abc import Mapping, Sequence

from vm_test_manager.cases.base import TestDescriptor, TestSkipped
from vm_test_manager.errors import ManagerError
from vm_test_manager.models.context import TestContext
from vm_test_manager.models.result import RunResult, TestOutcome, TestStatus
from vm_test_manager.runner_client import RunnerClient
from vm_test_manager.summary import SummaryLogger
from vm_test_manager.vm.base import Instance

log = logging.getLogger(__name__)

STATUS_SYMBOLS: Mapping[TestStatus, str] = {
    "pass": "✅",
    "fail": "❌",
    "skip": "⏭️",
}


class TestExecutionFailure(ManagerError):
    """Raised after teardown when at least one test failed."""

    __test__ = False

    def __init__(self, result: RunResult) -> None:
        names = ", ".join(outcome.name for outcome in result.failed)
        super().__init__(f"{len(result.failed)} test(s) failed: {names}")
        self.result = result


def log_results_summary(log: logging.Logger, result: RunResult) -> None:
    """Log a formatted summary of test outcomes."""
    log.info("=" * 80)
    log.info("Test Results Summary:")
    log.info("=" * 80)

    for outcome in result.outcomes:
        log.info(
            "%s %s: %s (%.2fs)",
            STATUS_SYMBOLS[outcome.status],
            outcome.name,
            outcome.status,
            outcome.duration,
        )
        if outcome.message:
            log.info("  Message: %s", outcome.message)

    passed = sum(1 for outcome in result.outcomes if outcome.status == "pass")
    log.info("%d/%d tests passed", passed, len(result.outcomes))


async def run(
    instance: Instance,
    tests: Sequence[TestDescriptor],
    context: TestContext,
    *,
    skip_wait: bool,
    quiet: bool,
    summary_logger: SummaryLogger | None = None,
) -> RunResult:
    """Run ``tests`` one after another, continuing past failures.

    Args:
        instance: The VM the tests run against
        tests: Tests in the order they must run
        context: Read-only context passed to every test
        skip_wait: Do not wait for the runner to come up first
        quiet: Log per-test progress at debug level and only the summary at info
        summary_logger: Optional report every outcome is appended to

    Returns:
        Outcomes of every test, in run order

    """
    progress = logging.DEBUG if quiet else logging.INFO

    async with RunnerClient.from_url(instance.runner_url) as client:
        if not skip_wait:
            log.info("Waiting for the test runner at %s", instance.runner_url)
            await client.wait_ready()

        outcomes: list[TestOutcome] = []
        for index, test in enumerate(tests, start=1):
            log.log(progress, "[%d/%d] Running %s", index, len(tests), test.name)
            outcome = await run_test(test, context, client)
            log.log(
                progress,
                "%s %s: %s",
                STATUS_SYMBOLS[outcome.status],
                test.name,
                outcome.message or outcome.status,
            )
            outcomes.append(outcome)
            if summary_logger is not None:
                await summary_logger.log_outcome(outcome)

    result = RunResult(outcomes=outcomes)
    log_results_summary(log, result)
    return result


async def run_test(
    test: TestDescriptor, context: TestContext, client: RunnerClient
) -> TestOutcome:
    """Run one test and turn whatever it raises into an outcome."""
    start = time.monotonic()
    status: TestStatus
    try:
        await test.func(context, client)
    except TestSkipped as exc:
        status, message = "skip", str(exc) or None
    except Exception as exc:
        log.debug("Test %s failed", test.name, exc_info=exc)
        status, message = "fail", f"{type(exc).__name__}: {exc}"
    else:
        status, message = "pass", None

    return TestOutcome(
        name=test.name,
        status=status,
        duration=time.monotonic() - start,
        message=message,
    )
