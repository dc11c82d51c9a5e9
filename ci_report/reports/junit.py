"""JUnit test reports: parse, aggregate, compare.

Functions:
    parse_junit(content)            -> TestDocument
    parse_junit_file(path)          -> TestDocument
    aggregate_tests(documents)      -> TestSummary
    compare_tests(base, current)    -> TestComparison
"""

import logging
import xml.etree.ElementTree as ET
from collections.abc import Iterable, Iterator
from pathlib import Path

from ci_report.models import (
    MalformedDocument,
    TestCase,
    TestComparison,
    TestDocument,
    TestSummary,
    rate_delta,
)
from ci_report.reports.common import load_root, local_name, parse_float

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

def parse_junit(content: bytes | str) -> TestDocument:
    """Decode one JUnit XML report.

    The root may be ``<testsuites>`` or a single ``<testsuite>``; suites may
    nest. A ``<testcase>`` without a name is skipped, it does not fail the
    whole file.

    Raises:
        MalformedDocument: not well-formed XML, or a root that is neither
                           ``testsuites`` nor ``testsuite``.
    """
    root = load_root(content, "JUnit")
    if local_name(root.tag) not in ("testsuites", "testsuite"):
        raise MalformedDocument(
            f"Invalid JUnit XML: unexpected root element <{local_name(root.tag)}>"
        )

    cases: list[TestCase] = []
    for suite_name, el in _iter_cases(root, root.get("name") or ""):
        case = _parse_case(el, suite_name)
        if case is None:
            logger.warning("Skipping malformed <testcase> in suite '%s'", suite_name)
            continue
        cases.append(case)
    return TestDocument(cases=tuple(cases))


def parse_junit_file(path: str | Path) -> TestDocument:
    return parse_junit(Path(path).read_bytes())


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------

def aggregate_tests(documents: Iterable[TestDocument]) -> TestSummary:
    """Concatenate every case of *documents* in order and count statuses."""
    cases: list[TestCase] = []
    for doc in documents:
        cases.extend(doc.cases)

    by_status = {"passed": 0, "failed": 0, "skipped": 0}
    total_time = 0.0
    for case in cases:
        by_status[case.status] += 1
        total_time += case.duration_seconds

    return TestSummary(
        total_tests=len(cases),
        passed_tests=by_status["passed"],
        failed_tests=by_status["failed"],
        skipped_tests=by_status["skipped"],
        total_time=round(total_time, 3),
        cases=tuple(cases),
    )


# ---------------------------------------------------------------------------
# Comparison
# ---------------------------------------------------------------------------

def compare_tests(base: TestSummary, current: TestSummary) -> TestComparison:
    """Diff *current* against *base* by ``(suite, name)``.

    Cases in both snapshots are classified by status transition:
    passed -> failed is *broken*, failed -> passed is *fixed*.
    """
    base_by_id = {c.identity: c for c in base.cases}
    current_by_id = {c.identity: c for c in current.cases}

    added: list[TestCase] = []
    fixed: list[TestCase] = []
    broken: list[TestCase] = []
    for identity, cur in current_by_id.items():
        old = base_by_id.get(identity)
        if old is None:
            added.append(cur)
        elif old.status == "passed" and cur.status == "failed":
            broken.append(cur)
        elif old.status == "failed" and cur.status == "passed":
            fixed.append(cur)

    removed = [c for identity, c in base_by_id.items() if identity not in current_by_id]

    return TestComparison(
        tests_added=tuple(added),
        tests_removed=tuple(removed),
        tests_fixed=tuple(fixed),
        tests_broken=tuple(broken),
        delta_total=current.total_tests - base.total_tests,
        delta_passed=current.passed_tests - base.passed_tests,
        delta_failed=current.failed_tests - base.failed_tests,
        delta_skipped=current.skipped_tests - base.skipped_tests,
        delta_pass_rate=rate_delta(current.pass_rate, base.pass_rate),
        delta_time=round(current.total_time - base.total_time, 3),
    )


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _iter_cases(element: ET.Element, suite_name: str) -> Iterator[tuple[str, ET.Element]]:
    """Yield ``(suite name, <testcase>)`` pairs depth-first, in document order."""
    for child in element:
        tag = local_name(child.tag)
        if tag == "testcase":
            yield suite_name, child
        elif tag in ("testsuite", "testsuites"):
            yield from _iter_cases(child, child.get("name") or suite_name)


def _parse_case(el: ET.Element, suite_name: str) -> TestCase | None:
    name = (el.get("name") or "").strip()
    if not name:
        return None

    failure = None
    skipped = False
    for child in el:
        tag = local_name(child.tag)
        if tag in ("failure", "error"):
            failure = child
            break
        if tag == "skipped":
            skipped = True

    if failure is not None:
        status = "failed"
        message = failure.get("message") or (failure.text or "").strip() or None
    elif skipped:
        status = "skipped"
        message = None
    else:
        status = "passed"
        message = None

    return TestCase(
        suite_name=suite_name or el.get("classname") or "",
        name=name,
        status=status,
        duration_seconds=parse_float(el.get("time")),
        failure_message=message,
    )
