"""Clover coverage reports: parse, aggregate, compare.

Functions:
    parse_clover(content)            -> CoverageDocument
    parse_clover_file(path)          -> CoverageDocument
    aggregate_coverage(documents)    -> CoverageSummary
    compare_coverage(base, current)  -> CoverageComparison

Structure of a Clover report:

    <coverage generated="...">
      <project timestamp="...">
        <metrics statements=".." coveredstatements=".." conditionals=".." .../>
        <file name="a.ts" path="src/a.ts">
          <metrics .../>
          <line num="1" type="stmt" count="1"/>
          <line num="5" type="cond" count="0" truecount="1" falsecount="0"/>
        </file>
        <package name="..."><file ...>...</file></package>
      </project>
    </coverage>

Rates are always recomputed from counters; the ``*rate`` attributes some
generators emit are ignored.
"""

import logging
import xml.etree.ElementTree as ET
from collections.abc import Iterable
from pathlib import Path

from ci_report.models import (
    CoverageComparison,
    CoverageDocument,
    CoverageSummary,
    FileComparison,
    FileCoverage,
    LineRecord,
    MissingRootElement,
    rate_delta,
)
from ci_report.reports.common import load_root, local_name, parse_int

logger = logging.getLogger(__name__)

_LINE_KINDS = ("stmt", "cond", "method")


# --------------------------------------------------------------------------- #
# Parser
# --------------------------------------------------------------------------- #

def parse_clover(content: bytes | str) -> CoverageDocument:
    """Decode one Clover XML report.

    Raises:
        MalformedDocument:  not well-formed XML
        MissingRootElement: no ``<coverage>`` root or no ``<project>`` inside it
    """
    root = load_root(content, "Clover")
    if local_name(root.tag) != "coverage":
        raise MissingRootElement("Invalid Clover XML: missing coverage element")

    project = _child(root, "project")
    if project is None:
        raise MissingRootElement("Invalid Clover XML: missing project element")

    files = tuple(_parse_file(el) for el in _file_elements(project))

    metrics = _child(project, "metrics")
    if metrics is not None:
        counters = _counters(metrics)
    else:
        counters = _sum_counters(files)

    return CoverageDocument(
        timestamp=parse_int(root.get("generated") or project.get("timestamp")),
        files=files,
        **counters,
    )


def parse_clover_file(path: str | Path) -> CoverageDocument:
    return parse_clover(Path(path).read_bytes())


# --------------------------------------------------------------------------- #
# Aggregation
# --------------------------------------------------------------------------- #

def aggregate_coverage(documents: Iterable[CoverageDocument]) -> CoverageSummary:
    """Sum counters over *documents* and concatenate their files in order.

    Rates on the result are derived from the summed counters; the per-document
    rates are never averaged. An empty input gives a zero summary.
    """
    totals = dict.fromkeys(_COUNTER_FIELDS, 0)
    files: list[FileCoverage] = []
    for doc in documents:
        for name in _COUNTER_FIELDS:
            totals[name] += getattr(doc, name)
        files.extend(doc.files)
    return CoverageSummary(files=tuple(files), **totals)


# --------------------------------------------------------------------------- #
# Comparison
# --------------------------------------------------------------------------- #

def compare_coverage(
    base: CoverageSummary,
    current: CoverageSummary,
    *,
    base_branch: str | None = None,
    base_commit: str | None = None,
    head_commit: str | None = None,
) -> CoverageComparison:
    """Diff *current* against *base*; every delta is ``current - base``.

    A file present in both snapshots is reported as changed only when its
    line or branch rate moved. Files whose counts changed while both rates
    stayed identical are not listed.
    """
    base_by_path = {f.path: f for f in base.files}
    current_by_path = {f.path: f for f in current.files}

    added: list[FileCoverage] = []
    changed: list[FileComparison] = []
    for path, cur in current_by_path.items():
        old = base_by_path.get(path)
        if old is None:
            added.append(cur)
            continue
        diff = _compare_files(old, cur)
        if diff.delta_line_rate != 0 or diff.delta_branch_rate != 0:
            changed.append(diff)

    removed = [f for path, f in base_by_path.items() if path not in current_by_path]

    return CoverageComparison(
        files_added=tuple(added),
        files_removed=tuple(removed),
        files_changed=tuple(changed),
        delta_line_rate=rate_delta(current.line_rate, base.line_rate),
        delta_branch_rate=rate_delta(current.branch_rate, base.branch_rate),
        delta_total_statements=current.statements_total - base.statements_total,
        delta_covered_statements=current.statements_covered - base.statements_covered,
        delta_total_conditionals=current.conditionals_total - base.conditionals_total,
        delta_covered_conditionals=current.conditionals_covered - base.conditionals_covered,
        delta_total_methods=current.methods_total - base.methods_total,
        delta_covered_methods=current.methods_covered - base.methods_covered,
        base_counts=_line_counts(base),
        current_counts=_line_counts(current),
        base_branch=base_branch,
        base_commit=base_commit,
        head_commit=head_commit,
    )


# --------------------------------------------------------------------------- #
# Private helpers
# --------------------------------------------------------------------------- #

_COUNTER_FIELDS = (
    "statements_total",
    "statements_covered",
    "conditionals_total",
    "conditionals_covered",
    "methods_total",
    "methods_covered",
)

# Clover attribute -> counter field
_METRIC_ATTRS = {
    "statements": "statements_total",
    "coveredstatements": "statements_covered",
    "conditionals": "conditionals_total",
    "coveredconditionals": "conditionals_covered",
    "methods": "methods_total",
    "coveredmethods": "methods_covered",
}


def _child(element: ET.Element, name: str) -> ET.Element | None:
    for child in element:
        if local_name(child.tag) == name:
            return child
    return None


def _file_elements(project: ET.Element) -> list[ET.Element]:
    """``<file>`` elements directly under the project or inside packages, in document order."""
    found: list[ET.Element] = []
    for child in project:
        tag = local_name(child.tag)
        if tag == "file":
            found.append(child)
        elif tag == "package":
            found.extend(el for el in child if local_name(el.tag) == "file")
    return found


def _counters(metrics: ET.Element) -> dict[str, int]:
    return {field: parse_int(metrics.get(attr)) for attr, field in _METRIC_ATTRS.items()}


def _sum_counters(files: Iterable[FileCoverage]) -> dict[str, int]:
    totals = dict.fromkeys(_COUNTER_FIELDS, 0)
    for f in files:
        for name in _COUNTER_FIELDS:
            totals[name] += getattr(f, name)
    return totals


def _parse_line(el: ET.Element) -> LineRecord | None:
    num = parse_int(el.get("num"))
    if num <= 0:
        return None
    kind = el.get("type", "stmt")
    if kind not in _LINE_KINDS:
        kind = "stmt"
    true_count = el.get("truecount")
    false_count = el.get("falsecount")
    return LineRecord(
        line_number=num,
        hit_count=parse_int(el.get("count")),
        kind=kind,
        true_branch_hits=parse_int(true_count) if true_count is not None else None,
        false_branch_hits=parse_int(false_count) if false_count is not None else None,
    )


def _counters_from_lines(lines: Iterable[LineRecord]) -> dict[str, int]:
    """Derive file counters from ``<line>`` elements when ``<metrics>`` is absent."""
    counters = dict.fromkeys(_COUNTER_FIELDS, 0)
    for ln in lines:
        if ln.kind == "method":
            counters["methods_total"] += 1
            counters["methods_covered"] += ln.hit_count > 0
        elif ln.kind == "cond":
            counters["conditionals_total"] += 2
            if ln.true_branch_hits is None and ln.false_branch_hits is None:
                counters["conditionals_covered"] += 2 if ln.hit_count > 0 else 0
            else:
                counters["conditionals_covered"] += (ln.true_branch_hits or 0) > 0
                counters["conditionals_covered"] += (ln.false_branch_hits or 0) > 0
        else:
            counters["statements_total"] += 1
            counters["statements_covered"] += ln.hit_count > 0
    return counters


def _parse_file(el: ET.Element) -> FileCoverage:
    lines = []
    for child in el:
        if local_name(child.tag) != "line":
            continue
        record = _parse_line(child)
        if record is None:
            logger.debug("Skipping <line> without a valid num in %s", el.get("path"))
            continue
        lines.append(record)

    metrics = _child(el, "metrics")
    counters = _counters(metrics) if metrics is not None else _counters_from_lines(lines)

    name = el.get("name") or ""
    return FileCoverage(
        name=name,
        path=el.get("path") or name,
        lines=tuple(lines),
        **counters,
    )


def _compare_files(base: FileCoverage, current: FileCoverage) -> FileComparison:
    return FileComparison(
        name=current.name,
        path=current.path,
        base_line_rate=base.line_rate,
        current_line_rate=current.line_rate,
        base_branch_rate=base.branch_rate,
        current_branch_rate=current.branch_rate,
        delta_line_rate=rate_delta(current.line_rate, base.line_rate),
        delta_branch_rate=rate_delta(current.branch_rate, base.branch_rate),
        delta_statements=current.statements_total - base.statements_total,
        delta_covered_statements=current.statements_covered - base.statements_covered,
        delta_conditionals=current.conditionals_total - base.conditionals_total,
        delta_covered_conditionals=current.conditionals_covered - base.conditionals_covered,
        missing_lines=len(current.missing_lines),
        partial_lines=len(current.partial_lines),
    )


def _line_counts(summary: CoverageSummary) -> dict[str, int]:
    return {
        "files": summary.total_files,
        "lines": summary.total_lines,
        "hits": summary.total_hits,
        "misses": summary.total_misses,
        "partials": summary.total_partials,
        "branches": summary.total_branches,
    }
