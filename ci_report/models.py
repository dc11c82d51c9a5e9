"""Data models for test-result and coverage reports.

Contains frozen dataclasses used across the pipeline, plus the JSON
serialization helpers used for artifacts and CLI output:
    - LineRecord, FileCoverage, CoverageDocument, CoverageSummary
    - TestCase, TestDocument, TestSummary
    - FileComparison, CoverageComparison, TestComparison
    - Report            (summary + optional comparison)

The persisted JSON uses camelCase keys (``totalStatements``, ``lineRate``...)
so that artifacts uploaded by earlier releases remain readable.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

LineKind = Literal["stmt", "cond", "method"]
TestStatus = Literal["passed", "failed", "skipped"]


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class ParseError(Exception):
    """Base exception for report files that cannot be decoded."""


class MalformedDocument(ParseError):
    """Raised when a report is not well-formed XML or has no usable root."""


class MissingRootElement(ParseError):
    """Raised when a structurally required element is absent."""


# ---------------------------------------------------------------------------
# Rates
# ---------------------------------------------------------------------------

def percent(covered: int | float, total: int | float) -> float:
    """Return ``covered / total`` as a percentage rounded to 2 decimals (0 when total is 0)."""
    if total <= 0:
        return 0.0
    return round(covered / total * 100, 2)


def rate_delta(current: float, base: float) -> float:
    return round(current - base, 2)


# ---------------------------------------------------------------------------
# Coverage
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LineRecord:
    line_number: int
    hit_count: int
    kind: LineKind = "stmt"
    true_branch_hits: int | None = None
    false_branch_hits: int | None = None

    @property
    def is_partial(self) -> bool:
        """A conditional line where exactly one branch was never taken."""
        if self.kind != "cond" or self.true_branch_hits is None or self.false_branch_hits is None:
            return False
        return (self.true_branch_hits > 0) != (self.false_branch_hits > 0)


@dataclass(frozen=True)
class FileCoverage:
    name: str
    path: str
    statements_total: int = 0
    statements_covered: int = 0
    conditionals_total: int = 0
    conditionals_covered: int = 0
    methods_total: int = 0
    methods_covered: int = 0
    lines: tuple[LineRecord, ...] = ()

    @property
    def line_rate(self) -> float:
        return percent(self.statements_covered, self.statements_total)

    @property
    def branch_rate(self) -> float:
        return percent(self.conditionals_covered, self.conditionals_total)

    @property
    def missing_lines(self) -> list[int]:
        return [ln.line_number for ln in self.lines if ln.hit_count == 0]

    @property
    def partial_lines(self) -> list[int]:
        return [ln.line_number for ln in self.lines if ln.is_partial]


@dataclass(frozen=True)
class CoverageTotals:
    """Counter block shared by parsed documents and aggregated summaries."""

    statements_total: int = 0
    statements_covered: int = 0
    conditionals_total: int = 0
    conditionals_covered: int = 0
    methods_total: int = 0
    methods_covered: int = 0

    @property
    def line_rate(self) -> float:
        return percent(self.statements_covered, self.statements_total)

    @property
    def branch_rate(self) -> float:
        return percent(self.conditionals_covered, self.conditionals_total)


@dataclass(frozen=True)
class CoverageDocument(CoverageTotals):
    """One parsed Clover file."""

    timestamp: int = 0
    files: tuple[FileCoverage, ...] = ()


@dataclass(frozen=True)
class CoverageSummary(CoverageTotals):
    """Coverage aggregated over every report file of one run."""

    files: tuple[FileCoverage, ...] = ()

    @property
    def total_files(self) -> int:
        return len(self.files)

    @property
    def total_lines(self) -> int:
        return sum(len(f.lines) for f in self.files)

    @property
    def total_hits(self) -> int:
        return sum(1 for f in self.files for ln in f.lines if ln.hit_count > 0)

    @property
    def total_misses(self) -> int:
        return sum(1 for f in self.files for ln in f.lines if ln.hit_count == 0)

    @property
    def total_partials(self) -> int:
        return sum(1 for f in self.files for ln in f.lines if ln.is_partial)

    @property
    def total_branches(self) -> int:
        return self.conditionals_total

    def duplicate_paths(self) -> list[str]:
        """Paths reported by more than one file entry, in first-seen order."""
        seen: set[str] = set()
        dupes: list[str] = []
        for f in self.files:
            if f.path in seen and f.path not in dupes:
                dupes.append(f.path)
            seen.add(f.path)
        return dupes


@dataclass(frozen=True)
class FileComparison:
    name: str
    path: str
    base_line_rate: float
    current_line_rate: float
    base_branch_rate: float
    current_branch_rate: float
    delta_line_rate: float
    delta_branch_rate: float
    delta_statements: int
    delta_covered_statements: int
    delta_conditionals: int
    delta_covered_conditionals: int
    missing_lines: int = 0
    partial_lines: int = 0


@dataclass(frozen=True)
class CoverageComparison:
    files_added: tuple[FileCoverage, ...]
    files_removed: tuple[FileCoverage, ...]
    files_changed: tuple[FileComparison, ...]
    delta_line_rate: float
    delta_branch_rate: float
    delta_total_statements: int
    delta_covered_statements: int
    delta_total_conditionals: int
    delta_covered_conditionals: int
    delta_total_methods: int
    delta_covered_methods: int
    # derived line-level counters, keyed "files", "lines", "hits", ...
    base_counts: dict[str, int] = field(default_factory=dict)
    current_counts: dict[str, int] = field(default_factory=dict)
    base_branch: str | None = None
    base_commit: str | None = None
    head_commit: str | None = None

    @property
    def improvement(self) -> bool:
        return self.delta_line_rate > 0 or (
            self.delta_line_rate == 0 and self.delta_branch_rate > 0
        )

    @property
    def delta_counts(self) -> dict[str, int]:
        return {
            k: self.current_counts.get(k, 0) - self.base_counts.get(k, 0)
            for k in self.current_counts
        }


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TestCase:
    __test__ = False  # not a pytest class

    suite_name: str
    name: str
    status: TestStatus = "passed"
    duration_seconds: float = 0.0
    failure_message: str | None = None

    @property
    def identity(self) -> tuple[str, str]:
        return (self.suite_name, self.name)


@dataclass(frozen=True)
class TestDocument:
    """One parsed JUnit file."""

    __test__ = False

    cases: tuple[TestCase, ...] = ()


@dataclass(frozen=True)
class TestSummary:
    __test__ = False

    total_tests: int = 0
    passed_tests: int = 0
    failed_tests: int = 0
    skipped_tests: int = 0
    total_time: float = 0.0
    cases: tuple[TestCase, ...] = ()

    @property
    def pass_rate(self) -> float:
        return percent(self.passed_tests, self.total_tests)


@dataclass(frozen=True)
class TestComparison:
    __test__ = False

    tests_added: tuple[TestCase, ...]
    tests_removed: tuple[TestCase, ...]
    tests_fixed: tuple[TestCase, ...]
    tests_broken: tuple[TestCase, ...]
    delta_total: int
    delta_passed: int
    delta_failed: int
    delta_skipped: int
    delta_pass_rate: float
    delta_time: float


@dataclass(frozen=True)
class Report:
    """A current summary with the comparison against its base, if one was found."""

    summary: CoverageSummary | TestSummary
    comparison: CoverageComparison | TestComparison | None = None


# ---------------------------------------------------------------------------
# Serialization — summaries (persisted)
# ---------------------------------------------------------------------------

def _line_to_dict(line: LineRecord) -> dict[str, Any]:
    d: dict[str, Any] = {
        "lineNumber": line.line_number,
        "count": line.hit_count,
        "type": line.kind,
    }
    if line.true_branch_hits is not None:
        d["trueCount"] = line.true_branch_hits
    if line.false_branch_hits is not None:
        d["falseCount"] = line.false_branch_hits
    return d


def file_to_dict(f: FileCoverage) -> dict[str, Any]:
    return {
        "name": f.name,
        "path": f.path,
        "statements": f.statements_total,
        "coveredStatements": f.statements_covered,
        "conditionals": f.conditionals_total,
        "coveredConditionals": f.conditionals_covered,
        "methods": f.methods_total,
        "coveredMethods": f.methods_covered,
        "lineRate": f.line_rate,
        "branchRate": f.branch_rate,
        "lines": [_line_to_dict(ln) for ln in f.lines],
    }


def _file_from_dict(raw: dict[str, Any]) -> FileCoverage:
    lines = tuple(
        LineRecord(
            line_number=int(ln.get("lineNumber", 0)),
            hit_count=int(ln.get("count", 0)),
            kind=ln.get("type") or "stmt",
            true_branch_hits=ln.get("trueCount"),
            false_branch_hits=ln.get("falseCount"),
        )
        for ln in raw.get("lines") or []
    )
    return FileCoverage(
        name=raw.get("name") or "",
        path=raw.get("path") or "",
        statements_total=int(raw.get("statements", 0)),
        statements_covered=int(raw.get("coveredStatements", 0)),
        conditionals_total=int(raw.get("conditionals", 0)),
        conditionals_covered=int(raw.get("coveredConditionals", 0)),
        methods_total=int(raw.get("methods", 0)),
        methods_covered=int(raw.get("coveredMethods", 0)),
        lines=lines,
    )


def coverage_summary_to_dict(s: CoverageSummary) -> dict[str, Any]:
    return {
        "totalStatements": s.statements_total,
        "coveredStatements": s.statements_covered,
        "totalConditionals": s.conditionals_total,
        "coveredConditionals": s.conditionals_covered,
        "totalMethods": s.methods_total,
        "coveredMethods": s.methods_covered,
        "lineRate": s.line_rate,
        "branchRate": s.branch_rate,
        "totalFiles": s.total_files,
        "totalLines": s.total_lines,
        "totalHits": s.total_hits,
        "totalMisses": s.total_misses,
        "totalPartials": s.total_partials,
        "totalBranches": s.total_branches,
        "files": [file_to_dict(f) for f in s.files],
    }


def coverage_summary_from_dict(raw: dict[str, Any]) -> CoverageSummary:
    """Rebuild a summary from its JSON form; rates are recomputed, not read."""
    return CoverageSummary(
        statements_total=int(raw.get("totalStatements", 0)),
        statements_covered=int(raw.get("coveredStatements", 0)),
        conditionals_total=int(raw.get("totalConditionals", 0)),
        conditionals_covered=int(raw.get("coveredConditionals", 0)),
        methods_total=int(raw.get("totalMethods", 0)),
        methods_covered=int(raw.get("coveredMethods", 0)),
        files=tuple(_file_from_dict(f) for f in raw.get("files") or []),
    )


def _case_to_dict(case: TestCase) -> dict[str, Any]:
    return {
        "suite": case.suite_name,
        "name": case.name,
        "status": case.status,
        "time": case.duration_seconds,
        "failureMessage": case.failure_message,
    }


def junit_summary_to_dict(s: TestSummary) -> dict[str, Any]:
    return {
        "totalTests": s.total_tests,
        "passedTests": s.passed_tests,
        "failedTests": s.failed_tests,
        "skippedTests": s.skipped_tests,
        "passRate": s.pass_rate,
        "totalTime": s.total_time,
        "tests": [_case_to_dict(c) for c in s.cases],
    }


def junit_summary_from_dict(raw: dict[str, Any]) -> TestSummary:
    cases = tuple(
        TestCase(
            suite_name=c.get("suite") or "",
            name=c.get("name") or "",
            status=c.get("status") or "passed",
            duration_seconds=float(c.get("time") or 0),
            failure_message=c.get("failureMessage"),
        )
        for c in raw.get("tests") or []
    )
    return TestSummary(
        total_tests=int(raw.get("totalTests", 0)),
        passed_tests=int(raw.get("passedTests", 0)),
        failed_tests=int(raw.get("failedTests", 0)),
        skipped_tests=int(raw.get("skippedTests", 0)),
        total_time=float(raw.get("totalTime", 0)),
        cases=cases,
    )


# ---------------------------------------------------------------------------
# Serialization — comparisons (output only)
# ---------------------------------------------------------------------------

def coverage_comparison_to_dict(c: CoverageComparison) -> dict[str, Any]:
    return {
        "filesAdded": [f.path for f in c.files_added],
        "filesRemoved": [f.path for f in c.files_removed],
        "filesChanged": [
            {
                "name": fc.name,
                "path": fc.path,
                "baseLineRate": fc.base_line_rate,
                "currentLineRate": fc.current_line_rate,
                "baseBranchRate": fc.base_branch_rate,
                "currentBranchRate": fc.current_branch_rate,
                "deltaLineRate": fc.delta_line_rate,
                "deltaBranchRate": fc.delta_branch_rate,
                "deltaStatements": fc.delta_statements,
                "deltaCoveredStatements": fc.delta_covered_statements,
                "deltaConditionals": fc.delta_conditionals,
                "deltaCoveredConditionals": fc.delta_covered_conditionals,
                "missingLines": fc.missing_lines,
                "partialLines": fc.partial_lines,
            }
            for fc in c.files_changed
        ],
        "deltaLineRate": c.delta_line_rate,
        "deltaBranchRate": c.delta_branch_rate,
        "deltaTotalStatements": c.delta_total_statements,
        "deltaCoveredStatements": c.delta_covered_statements,
        "deltaTotalConditionals": c.delta_total_conditionals,
        "deltaCoveredConditionals": c.delta_covered_conditionals,
        "deltaTotalMethods": c.delta_total_methods,
        "deltaCoveredMethods": c.delta_covered_methods,
        "improvement": c.improvement,
        "base": dict(c.base_counts),
        "current": dict(c.current_counts),
        "delta": c.delta_counts,
        "baseBranch": c.base_branch,
        "baseCommit": c.base_commit,
        "headCommit": c.head_commit,
    }


def junit_comparison_to_dict(c: TestComparison) -> dict[str, Any]:
    def ids(cases: tuple[TestCase, ...]) -> list[dict[str, str]]:
        return [{"suite": t.suite_name, "name": t.name} for t in cases]

    return {
        "testsAdded": ids(c.tests_added),
        "testsRemoved": ids(c.tests_removed),
        "testsFixed": ids(c.tests_fixed),
        "testsBroken": ids(c.tests_broken),
        "deltaTotal": c.delta_total,
        "deltaPassed": c.delta_passed,
        "deltaFailed": c.delta_failed,
        "deltaSkipped": c.delta_skipped,
        "deltaPassRate": c.delta_pass_rate,
        "deltaTime": c.delta_time,
    }


def report_to_dict(report: Report) -> dict[str, Any]:
    """JSON form of a report: the summary plus a ``comparison`` key (``None`` without a base)."""
    if isinstance(report.summary, CoverageSummary):
        data = {"report_type": "coverage", **coverage_summary_to_dict(report.summary)}
        comparison = report.comparison
        data["comparison"] = (
            coverage_comparison_to_dict(comparison)
            if isinstance(comparison, CoverageComparison) else None
        )
    else:
        data = {"report_type": "tests", **junit_summary_to_dict(report.summary)}
        comparison = report.comparison
        data["comparison"] = (
            junit_comparison_to_dict(comparison)
            if isinstance(comparison, TestComparison) else None
        )
    return data
