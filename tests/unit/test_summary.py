"""Tests for test reports."""

import json
from pathlib import Path

import pytest

from vm_test_manager.models.result import TestOutcome
from vm_test_manager.summary import (
    ReportError,
    SummaryLogger,
    format_reports,
    load_report,
    load_reports,
)


async def write_report(
    path: Path, name: str, outcomes: list[TestOutcome]
) -> SummaryLogger:
    logger = await SummaryLogger.create(name, "linux", path)
    for outcome in outcomes:
        await logger.log_outcome(outcome)
    return logger


class TestSummaryLogger:
    """Tests for SummaryLogger."""

    async def test_writes_header_then_one_line_per_test(self, tmp_path: Path) -> None:
        """The report is JSON lines with a header first."""
        path = tmp_path / "report.jsonl"

        await write_report(
            path,
            "debian",
            [
                TestOutcome(name="test_a", status="pass"),
                TestOutcome(name="test_b", status="fail", message="boom"),
            ],
        )

        lines = [json.loads(line) for line in path.read_text().splitlines()]
        assert lines[0] == {"type": "header", "vm": "debian", "os": "linux"}
        assert lines[1]["name"] == "test_a"
        assert lines[2] == {
            "type": "test",
            "name": "test_b",
            "status": "fail",
            "message": "boom",
        }

    async def test_create_truncates_existing_report(self, tmp_path: Path) -> None:
        """A new run starts a fresh report."""
        path = tmp_path / "report.jsonl"
        path.write_text("stale\n")

        await SummaryLogger.create("debian", "linux", path)

        assert len(path.read_text().splitlines()) == 1

    async def test_unwritable_path(self, tmp_path: Path) -> None:
        """Failing to create the report is a ReportError."""
        with pytest.raises(ReportError):
            await SummaryLogger.create("debian", "linux", tmp_path / "no" / "r.jsonl")


class TestLoadReports:
    """Tests for reading reports back."""

    async def test_round_trips_outcomes(self, tmp_path: Path) -> None:
        """A written report reads back with its header and results."""
        path = tmp_path / "report.jsonl"
        await write_report(path, "debian", [TestOutcome(name="test_a", status="skip")])

        report = load_report(path)

        assert report.vm == "debian"
        assert report.os_type == "linux"
        assert report.results["test_a"].status == "skip"

    def test_report_without_header(self, tmp_path: Path) -> None:
        """A report must start with its header."""
        path = tmp_path / "report.jsonl"
        path.write_text('{"type": "test", "name": "test_a", "status": "pass"}\n')

        with pytest.raises(ReportError, match="no header"):
            load_report(path)

    def test_malformed_line(self, tmp_path: Path) -> None:
        """Lines that are not records are rejected."""
        path = tmp_path / "report.jsonl"
        path.write_text("{not json\n")

        with pytest.raises(ReportError, match="Malformed"):
            load_report(path)

    async def test_skips_unreadable_reports(self, tmp_path: Path) -> None:
        """Unreadable reports are dropped, readable ones kept."""
        good = tmp_path / "good.jsonl"
        await write_report(good, "debian", [])

        reports = load_reports([tmp_path / "missing.jsonl", good])

        assert [report.vm for report in reports] == ["debian"]


async def test_format_reports_table(tmp_path: Path) -> None:
    """Renders one column per VM and a pass count per column."""
    first = tmp_path / "debian.jsonl"
    second = tmp_path / "fedora.jsonl"
    await write_report(
        first,
        "debian",
        [
            TestOutcome(name="test_a", status="pass"),
            TestOutcome(name="test_b", status="fail", message="<boom>"),
        ],
    )
    await write_report(second, "fedora", [TestOutcome(name="test_a", status="pass")])

    table = format_reports(load_reports([first, second]))

    assert "<th>debian (linux)</th>" in table
    assert "<th>fedora (linux)</th>" in table
    assert '<td title="&lt;boom&gt;">❌</td>' in table
    assert "<td>1/2</td>" in table
    assert "<td>1/1</td>" in table
    assert table.startswith("<table>")
    assert table.endswith("</table>")
