"""Parse -> aggregate -> persist -> retrieve -> compare.

Functions:
    parse_reports(paths, parser)   -> list[ParseOutcome]
    process_coverage(paths, ...)   -> Report
    process_tests(paths, ...)      -> Report
"""

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ci_report.artifacts import ArtifactKey, ArtifactStore, RetrievalPlan, retrieve_base
from ci_report.models import CoverageSummary, ParseError, Report, TestSummary
from ci_report.reports.coverage import aggregate_coverage, compare_coverage, parse_clover_file
from ci_report.reports.junit import aggregate_tests, compare_tests, parse_junit_file

logger = logging.getLogger(__name__)


class NoValidReportsError(Exception):
    """Raised when not a single report file of a kind could be parsed."""


@dataclass(frozen=True)
class ParseOutcome:
    """Result of parsing one file: exactly one of *document* / *error* is set."""

    path: str
    document: Any = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def parse_reports(paths: Sequence[str | Path], parser: Callable[[str | Path], Any]) -> list[ParseOutcome]:
    """Parse every path; failures are logged and returned, not raised."""
    outcomes: list[ParseOutcome] = []
    for path in paths:
        logger.info("Parsing: %s", path)
        try:
            document = parser(path)
        except (ParseError, OSError) as exc:
            logger.error("Failed to parse %s: %s", path, exc)
            outcomes.append(ParseOutcome(path=str(path), error=exc))
        else:
            outcomes.append(ParseOutcome(path=str(path), document=document))
    return outcomes


def _documents(paths: Sequence[str | Path], parser, pattern: str, label: str) -> list:
    if not paths:
        raise NoValidReportsError(f"No valid {label} reports matched pattern {pattern}")
    outcomes = parse_reports(paths, parser)
    documents = [o.document for o in outcomes if o.ok]
    if not documents:
        raise NoValidReportsError(
            f"No valid {label} reports matched pattern {pattern} "
            f"({len(outcomes)} file(s) failed to parse)"
        )
    return documents


# ---------------------------------------------------------------------------
# Coverage
# ---------------------------------------------------------------------------

def process_coverage(
    paths: Sequence[str | Path],
    *,
    pattern: str = "",
    store: ArtifactStore | None = None,
    key: ArtifactKey | None = None,
    plan: RetrievalPlan | None = None,
    head_commit: str | None = None,
) -> Report:
    """Build the coverage report for *paths*, compared against a base when one is found.

    Raises:
        NoValidReportsError: no file could be parsed.
    """
    documents = _documents(paths, parse_clover_file, pattern, "coverage")
    summary = aggregate_coverage(documents)

    logger.info(
        "Coverage: lines %s%% branches %s%% (statements %s/%s, conditionals %s/%s, methods %s/%s)",
        summary.line_rate, summary.branch_rate,
        summary.statements_covered, summary.statements_total,
        summary.conditionals_covered, summary.conditionals_total,
        summary.methods_covered, summary.methods_total,
    )
    for path in summary.duplicate_paths():
        logger.warning("File '%s' is reported by more than one coverage entry", path)

    base = _exchange(summary, store, key, plan)
    if not isinstance(base, CoverageSummary):
        logger.info("No base coverage available for comparison")
        return Report(summary=summary)

    base_sha = next((t.value for t in plan.tiers if t.by == "sha"), None)
    base_branch = next((t.value for t in plan.tiers if t.by == "branch"), None)
    comparison = compare_coverage(
        base, summary, base_branch=base_branch, base_commit=base_sha, head_commit=head_commit,
    )
    logger.info(
        "Coverage change: lines %+.2f%% branches %+.2f%%, files +%d -%d ~%d",
        comparison.delta_line_rate, comparison.delta_branch_rate,
        len(comparison.files_added), len(comparison.files_removed), len(comparison.files_changed),
    )
    return Report(summary=summary, comparison=comparison)


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------

def process_tests(
    paths: Sequence[str | Path],
    *,
    pattern: str = "",
    store: ArtifactStore | None = None,
    key: ArtifactKey | None = None,
    plan: RetrievalPlan | None = None,
) -> Report:
    """Build the test report for *paths*, compared against a base when one is found.

    Raises:
        NoValidReportsError: no file could be parsed.
    """
    documents = _documents(paths, parse_junit_file, pattern, "JUnit")
    summary = aggregate_tests(documents)

    logger.info(
        "Tests: %s total, %s passed, %s failed, %s skipped (pass rate %s%%)",
        summary.total_tests, summary.passed_tests, summary.failed_tests,
        summary.skipped_tests, summary.pass_rate,
    )

    base = _exchange(summary, store, key, plan)
    if not isinstance(base, TestSummary):
        logger.info("No base test results available for comparison")
        return Report(summary=summary)

    comparison = compare_tests(base, summary)
    logger.info(
        "Test change: total %+d, passed %+d, failed %+d; added %d, removed %d, fixed %d, broken %d",
        comparison.delta_total, comparison.delta_passed, comparison.delta_failed,
        len(comparison.tests_added), len(comparison.tests_removed),
        len(comparison.tests_fixed), len(comparison.tests_broken),
    )
    return Report(summary=summary, comparison=comparison)


# ---------------------------------------------------------------------------
# Internal
# ---------------------------------------------------------------------------

def _exchange(summary, store: ArtifactStore | None, key: ArtifactKey | None, plan: RetrievalPlan | None):
    """Persist the finished *summary*, then look up its base. Never raises storage errors."""
    if store is None:
        return None
    if key is not None:
        store.put(summary, key)
    if plan is None:
        return None
    return retrieve_base(store, plan)
