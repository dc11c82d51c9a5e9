"""Project coverage status evaluation.

The check is computed here; posting it as a commit status is left to the
caller.
"""

from dataclasses import dataclass
from typing import Literal

from ci_report.config import StatusSettings
from ci_report.models import CoverageComparison, CoverageSummary, Report


@dataclass(frozen=True)
class StatusCheck:
    state: Literal["success", "failure"]
    description: str


def evaluate_project_status(report: Report, settings: StatusSettings) -> StatusCheck | None:
    """Judge a coverage report against the project status settings.

    ``target: auto`` compares against the base: the check fails when line
    coverage dropped by more than ``threshold`` points. A numeric target fails
    when line coverage is below ``target - threshold``. Informational checks
    always succeed. Returns ``None`` when the check is disabled.
    """
    if not settings.enabled:
        return None
    summary = report.summary
    if not isinstance(summary, CoverageSummary):
        raise TypeError("Project status applies to coverage reports only")

    threshold = settings.threshold or 0.0
    comparison = report.comparison

    if settings.target == "auto":
        if not isinstance(comparison, CoverageComparison):
            return StatusCheck("success", f"{summary.line_rate}% (no base to compare against)")
        delta = comparison.delta_line_rate
        passed = delta >= -threshold
        description = f"{summary.line_rate}% ({delta:+.2f}%) compared to base"
    else:
        target = float(settings.target)
        passed = summary.line_rate >= target - threshold
        description = f"{summary.line_rate}% (target {target:g}%)"

    if not passed and settings.informational:
        return StatusCheck("success", f"{description} [informational]")
    return StatusCheck("success" if passed else "failure", description)
