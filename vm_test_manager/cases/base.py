"""Catalog of test cases and resolution of test filters."""

import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field

from vm_test_manager.errors import ManagerError
from vm_test_manager.models.context import TestContext
from vm_test_manager.runner_client import RunnerClient

log = logging.getLogger(__name__)

type TestFn = Callable[[TestContext, RunnerClient], Awaitable[None]]


class UnknownTestError(ManagerError):
    """Raised when a filter names a test that is not registered."""


class TestSkipped(Exception):
    """Raised by a test case that does not apply to this run."""

    __test__ = False


@dataclass(frozen=True, kw_only=True)
class TestDescriptor:
    """A registered test case."""

    __test__ = False

    name: str
    priority: int = 0
    func: TestFn = field(repr=False, compare=False)


@dataclass(kw_only=True)
class TestRegistry:
    """Test cases in declaration order."""

    __test__ = False

    tests: list[TestDescriptor] = field(default_factory=list)

    def register(self, descriptor: TestDescriptor) -> None:
        """Append a test case, rejecting duplicate names."""
        if any(test.name == descriptor.name for test in self.tests):
            raise ValueError(f"Test '{descriptor.name}' is already registered")
        self.tests.append(descriptor)

    def case(self, priority: int = 0) -> Callable[[TestFn], TestFn]:
        """Decorator registering a coroutine function under its own name."""

        def decorator(func: TestFn) -> TestFn:
            self.register(
                TestDescriptor(name=func.__name__, priority=priority, func=func)
            )
            return func

        return decorator

    def list(self) -> Sequence[TestDescriptor]:
        """All tests in registry order."""
        return tuple(self.tests)

    def resolve(self, filters: Sequence[str]) -> Sequence[TestDescriptor]:
        """Turn a filter into an ordered run list.

        An empty filter selects every test in registry order. Otherwise the
        named tests are returned in the order given by the caller.

        Raises:
            UnknownTestError: If a name is not registered

        """
        if not filters:
            return self.list()

        by_name = {test.name: test for test in self.tests}
        unknown = [name for name in filters if name not in by_name]
        if unknown:
            raise UnknownTestError(f"Unknown test(s): {', '.join(unknown)}")

        log.debug("Running filtered tests in given order: %s", ", ".join(filters))
        return [by_name[name] for name in filters]
