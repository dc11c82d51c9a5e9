"""Tests for ci_report/reports/junit.py"""

import pytest

from ci_report.models import MalformedDocument, TestCase, TestDocument
from ci_report.reports.junit import (
    aggregate_tests,
    compare_tests,
    parse_junit,
    parse_junit_file,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SAMPLE = """\
<?xml version="1.0" encoding="UTF-8"?>
<testsuites name="all" tests="5">
  <testsuite name="math" tests="3">
    <testcase classname="math" name="adds" time="0.5"/>
    <testcase classname="math" name="divides" time="1.25">
      <failure message="expected 2, got 3">AssertionError</failure>
    </testcase>
    <testcase classname="math" name="rounds">
      <skipped/>
    </testcase>
  </testsuite>
  <testsuite name="io" tests="2">
    <testcase classname="io" name="reads" time="abc"/>
    <testcase classname="io" name="writes" time="-3">
      <error>boom</error>
    </testcase>
  </testsuite>
</testsuites>
"""


def _case(name, status="passed", suite="s", duration=0.0) -> TestCase:
    return TestCase(suite_name=suite, name=name, status=status, duration_seconds=duration)


def _summary(*cases: TestCase):
    return aggregate_tests([TestDocument(cases=cases)])


# ---------------------------------------------------------------------------
# parse_junit
# ---------------------------------------------------------------------------

def test_parse_cases_and_statuses():
    doc = parse_junit(SAMPLE)
    assert [(c.suite_name, c.name, c.status) for c in doc.cases] == [
        ("math", "adds", "passed"),
        ("math", "divides", "failed"),
        ("math", "rounds", "skipped"),
        ("io", "reads", "passed"),
        ("io", "writes", "failed"),
    ]


def test_parse_durations_default_and_degrade_to_zero():
    doc = parse_junit(SAMPLE)
    durations = {c.name: c.duration_seconds for c in doc.cases}
    assert durations["adds"] == 0.5
    assert durations["rounds"] == 0.0   # missing
    assert durations["reads"] == 0.0    # non-numeric
    assert durations["writes"] == 0.0   # negative


def test_parse_failure_message_from_attribute_then_text():
    doc = parse_junit(SAMPLE)
    messages = {c.name: c.failure_message for c in doc.cases}
    assert messages["divides"] == "expected 2, got 3"
    assert messages["writes"] == "boom"
    assert messages["adds"] is None


def test_parse_single_testsuite_root():
    doc = parse_junit('<testsuite name="solo"><testcase name="t1"/></testsuite>')
    assert doc.cases == (TestCase(suite_name="solo", name="t1"),)


def test_parse_suite_name_falls_back_to_classname():
    doc = parse_junit('<testsuites><testcase classname="pkg.Mod" name="t"/></testsuites>')
    assert doc.cases[0].suite_name == "pkg.Mod"


def test_parse_skips_case_without_name():
    doc = parse_junit(
        '<testsuite name="s"><testcase time="1"/><testcase name="ok"/></testsuite>'
    )
    assert [c.name for c in doc.cases] == ["ok"]


def test_parse_nested_suites():
    doc = parse_junit(
        '<testsuites><testsuite name="outer"><testsuite name="inner">'
        '<testcase name="deep"/></testsuite></testsuite></testsuites>'
    )
    assert doc.cases[0].suite_name == "inner"


def test_parse_wrong_root_is_malformed():
    with pytest.raises(MalformedDocument, match="root"):
        parse_junit("<coverage/>")


def test_parse_not_xml_is_malformed():
    with pytest.raises(MalformedDocument):
        parse_junit("<testsuite><testcase></testsuite>")


def test_parse_empty_is_malformed():
    with pytest.raises(MalformedDocument):
        parse_junit("   ")


def test_parse_file(tmp_path):
    p = tmp_path / "report.junit.xml"
    p.write_bytes(SAMPLE.encode("utf-8"))
    assert parse_junit_file(p) == parse_junit(SAMPLE)


# ---------------------------------------------------------------------------
# aggregate_tests
# ---------------------------------------------------------------------------

def test_aggregate_counts_and_rate():
    s = aggregate_tests([parse_junit(SAMPLE)])
    assert s.total_tests == 5
    assert s.passed_tests == 2
    assert s.failed_tests == 2
    assert s.skipped_tests == 1
    assert s.pass_rate == 40.0
    assert s.total_time == 1.75


def test_aggregate_concatenates_documents_in_order():
    d1 = TestDocument(cases=(_case("a"), _case("b")))
    d2 = TestDocument(cases=(_case("a", status="failed"),))
    s = aggregate_tests([d1, d2])
    assert [c.name for c in s.cases] == ["a", "b", "a"]
    assert s.total_tests == 3


def test_aggregate_empty():
    s = aggregate_tests([])
    assert s.total_tests == 0
    assert s.pass_rate == 0
    assert s.total_time == 0
    assert s.cases == ()


# ---------------------------------------------------------------------------
# compare_tests
# ---------------------------------------------------------------------------

def test_compare_classifies_transitions():
    base = _summary(_case("stable"), _case("breaks"), _case("heals", "failed"), _case("gone"))
    current = _summary(_case("stable"), _case("breaks", "failed"), _case("heals"), _case("new"))
    c = compare_tests(base, current)
    assert [t.name for t in c.tests_added] == ["new"]
    assert [t.name for t in c.tests_removed] == ["gone"]
    assert [t.name for t in c.tests_broken] == ["breaks"]
    assert [t.name for t in c.tests_fixed] == ["heals"]
    assert c.delta_total == 0
    assert c.delta_failed == 0


def test_compare_identity_includes_suite():
    base = _summary(_case("t", suite="a"))
    current = _summary(_case("t", suite="b"))
    c = compare_tests(base, current)
    assert [t.suite_name for t in c.tests_added] == ["b"]
    assert [t.suite_name for t in c.tests_removed] == ["a"]


def test_compare_same_summary_is_empty():
    s = aggregate_tests([parse_junit(SAMPLE)])
    c = compare_tests(s, s)
    assert c.tests_added == c.tests_removed == c.tests_fixed == c.tests_broken == ()
    assert c.delta_total == 0
    assert c.delta_pass_rate == 0
    assert c.delta_time == 0


def test_compare_swapped_is_negated():
    a = _summary(_case("x"), _case("y", "failed", duration=1.5))
    b = _summary(_case("x", "failed"), _case("z", duration=0.2), _case("w", "skipped"))
    ab = compare_tests(a, b)
    ba = compare_tests(b, a)
    assert ab.delta_total == -ba.delta_total
    assert ab.delta_passed == -ba.delta_passed
    assert ab.delta_pass_rate == -ba.delta_pass_rate
    assert ab.delta_time == -ba.delta_time
    assert ab.tests_added == ba.tests_removed
    assert ab.tests_removed == ba.tests_added
