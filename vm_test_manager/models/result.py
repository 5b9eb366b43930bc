"""Models for test execution results."""

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Literal

type TestStatus = Literal["pass", "fail", "skip"]


@dataclass(frozen=True, kw_only=True)
class TestOutcome:
    """Result of a single test case."""

    __test__ = False

    name: str
    status: TestStatus
    duration: float = 0.0
    message: str | None = None


@dataclass(frozen=True, kw_only=True)
class RunResult:
    """Aggregate of every test that was executed."""

    outcomes: Sequence[TestOutcome]

    @property
    def failed(self) -> Sequence[TestOutcome]:
        """Outcomes of tests that failed."""
        return [outcome for outcome in self.outcomes if outcome.status == "fail"]

    @property
    def success(self) -> bool:
        """True iff no executed test failed."""
        return not self.failed
