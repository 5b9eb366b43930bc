"""Structured report of test outcomes, and rendering of stored reports."""

import asyncio
import html
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from pydantic import TypeAdapter, ValidationError

from vm_test_manager.errors import ManagerError
from vm_test_manager.models.base import Model
from vm_test_manager.models.config import OsType
from vm_test_manager.models.result import TestOutcome, TestStatus

log = logging.getLogger(__name__)

STATUS_CELLS: Mapping[TestStatus | None, str] = {
    "pass": "✅",
    "fail": "❌",
    "skip": "⏭️",
    None: " ",
}


class ReportError(ManagerError):
    """Raised when a report cannot be written or read."""


class HeaderRecord(Model):
    """First line of a report."""

    type: Literal["header"] = "header"
    vm: str
    os: OsType


class TestRecord(Model):
    """One line per executed test."""

    __test__ = False

    type: Literal["test"] = "test"
    name: str
    status: TestStatus
    message: str | None = None


_record_adapter: TypeAdapter[HeaderRecord | TestRecord] = TypeAdapter(
    HeaderRecord | TestRecord
)


@dataclass(kw_only=True)
class SummaryLogger:
    """Appends one record per test to a JSON-lines report file."""

    name: str
    os_type: OsType
    path: Path

    @classmethod
    async def create(cls, name: str, os_type: OsType, path: Path) -> "SummaryLogger":
        """Create (or truncate) the report at ``path`` and write its header."""
        logger = cls(name=name, os_type=os_type, path=path)
        header = HeaderRecord(vm=name, os=os_type)
        await asyncio.to_thread(logger._write, header.model_dump_json() + "\n", "w")
        log.info("Writing test report to %s", path)
        return logger

    async def log_outcome(self, outcome: TestOutcome) -> None:
        """Append the outcome of one test."""
        record = TestRecord(
            name=outcome.name, status=outcome.status, message=outcome.message
        )
        await asyncio.to_thread(self._write, record.model_dump_json() + "\n", "a")

    def _write(self, line: str, mode: str) -> None:
        try:
            with self.path.open(mode, encoding="utf-8") as report:
                report.write(line)
        except OSError as exc:
            raise ReportError(f"Failed to write test report {self.path}: {exc}") from exc


@dataclass(frozen=True, kw_only=True)
class Report:
    """A report read back from disk."""

    vm: str
    os_type: OsType
    results: Mapping[str, TestRecord]


def load_report(path: Path) -> Report:
    """Read a report written by SummaryLogger."""
    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except OSError as exc:
        raise ReportError(f"Failed to read test report {path}: {exc}") from exc

    try:
        records = [_record_adapter.validate_json(line) for line in lines if line.strip()]
    except ValidationError as exc:
        raise ReportError(f"Malformed test report {path}: {exc}") from exc

    if not records or not isinstance(records[0], HeaderRecord):
        raise ReportError(f"Test report {path} has no header")
    header = records[0]

    results: dict[str, TestRecord] = {}
    for record in records[1:]:
        if isinstance(record, TestRecord):
            results[record.name] = record
    return Report(vm=header.vm, os_type=header.os, results=results)


def load_reports(paths: Sequence[Path]) -> Sequence[Report]:
    """Read every readable report, logging and skipping the rest."""
    reports: list[Report] = []
    for path in paths:
        try:
            reports.append(load_report(path))
        except ReportError as exc:
            log.error("%s", exc)
    return reports


def format_reports(reports: Sequence[Report]) -> str:
    """Render reports as one HTML table with a column per VM."""
    test_names: list[str] = []
    for report in reports:
        for name in report.results:
            if name not in test_names:
                test_names.append(name)

    rows = ["<table>", "<tr><th>Test</th>"]
    rows += [
        f"<th>{html.escape(report.vm)} ({report.os_type})</th>" for report in reports
    ]
    rows.append("</tr>")

    for name in test_names:
        rows.append(f"<tr><td>{html.escape(name)}</td>")
        for report in reports:
            rows.append(_result_cell(report.results.get(name)))
        rows.append("</tr>")

    totals = [_totals(report) for report in reports]
    rows.append("<tr><td><b>Passed</b></td>")
    rows += [f"<td>{passed}/{total}</td>" for passed, total in totals]
    rows.append("</tr>")
    rows.append("</table>")
    return "\n".join(rows)


def _result_cell(record: TestRecord | None) -> str:
    if record is None:
        return f"<td>{STATUS_CELLS[None]}</td>"
    title = f' title="{html.escape(record.message)}"' if record.message else ""
    return f"<td{title}>{STATUS_CELLS[record.status]}</td>"


def _totals(report: Report) -> tuple[int, int]:
    passed = sum(1 for record in report.results.values() if record.status == "pass")
    return passed, len(report.results)
