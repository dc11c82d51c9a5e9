"""GitHub Actions step outputs (``key=value`` lines appended to $GITHUB_OUTPUT)."""

import os

from ci_report.models import CoverageComparison, Report, TestComparison


def junit_outputs(report: Report | None) -> dict[str, str]:
    values = {
        "total-tests": "0",
        "passed-tests": "0",
        "failed-tests": "0",
        "test-pass-rate": "0",
        "tests-added": "0",
        "tests-removed": "0",
        "tests-fixed": "0",
        "tests-broken": "0",
    }
    if report is None:
        return values
    s = report.summary
    values.update({
        "total-tests": str(s.total_tests),
        "passed-tests": str(s.passed_tests),
        "failed-tests": str(s.failed_tests),
        "test-pass-rate": str(s.pass_rate),
    })
    c = report.comparison
    if isinstance(c, TestComparison):
        values.update({
            "tests-added": str(len(c.tests_added)),
            "tests-removed": str(len(c.tests_removed)),
            "tests-fixed": str(len(c.tests_fixed)),
            "tests-broken": str(len(c.tests_broken)),
        })
    return values


def coverage_outputs(report: Report | None) -> dict[str, str]:
    values = {
        "line-coverage": "0",
        "branch-coverage": "0",
        "coverage-change": "0",
        "branch-coverage-change": "0",
        "coverage-improved": "false",
    }
    if report is None:
        return values
    values["line-coverage"] = str(report.summary.line_rate)
    values["branch-coverage"] = str(report.summary.branch_rate)
    c = report.comparison
    if isinstance(c, CoverageComparison):
        values["coverage-change"] = str(c.delta_line_rate)
        values["branch-coverage-change"] = str(c.delta_branch_rate)
        values["coverage-improved"] = "true" if c.improvement else "false"
    return values


def write_outputs(values: dict[str, str], path: str | None = None) -> bool:
    """Append *values* to the step output file; return False outside GitHub Actions."""
    path = path or os.environ.get("GITHUB_OUTPUT")
    if not path:
        return False
    with open(path, "a", encoding="utf-8") as f:
        for key, value in values.items():
            f.write(f"{key}={value}\n")
    return True
