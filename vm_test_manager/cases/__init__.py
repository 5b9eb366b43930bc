"""Test cases and the registry that orders them."""

from collections.abc import Sequence

from vm_test_manager.cases.builtin import registry
from vm_test_manager.cases.base import (
    TestDescriptor,
    TestRegistry,
    TestSkipped,
    UnknownTestError,
)

__all__ = [
    "TestDescriptor",
    "TestRegistry",
    "TestSkipped",
    "UnknownTestError",
    "get_filtered_tests",
    "get_test_descriptions",
    "registry",
]


def get_test_descriptions() -> Sequence[TestDescriptor]:
    """All built-in tests in registry order."""
    return registry.list()


def get_filtered_tests(filters: Sequence[str]) -> Sequence[TestDescriptor]:
    """Resolve a filter against the built-in registry."""
    return registry.resolve(filters)
