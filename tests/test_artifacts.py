"""Tests for ci_report/artifacts.py"""

import base64
import io
import json
import logging
import zipfile

import pytest

from ci_report.artifacts import (
    ArtifactKey,
    ArtifactStore,
    DownloadFailed,
    LookupTier,
    build_plan,
    pack_summary,
    retrieve_base,
    sanitize,
    unpack_summary,
)
from ci_report.client import GitHubClient, GitHubClientError, ResultsClient
from ci_report.models import CoverageSummary, FileCoverage, TestCase, TestSummary

REPO = "https://api.github.com/repos/owner/repo"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class RecordingUploader:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.uploads: list[tuple[str, bytes]] = []

    def upload_artifact(self, name: str, payload: bytes) -> int:
        if self.fail:
            raise GitHubClientError("quota exceeded")
        self.uploads.append((name, payload))
        return 77


COVERAGE = CoverageSummary(
    statements_total=10,
    statements_covered=8,
    conditionals_total=4,
    conditionals_covered=1,
    files=(FileCoverage(name="a.py", path="src/a.py", statements_total=10, statements_covered=8,
                        conditionals_total=4, conditionals_covered=1),),
)

TESTS = TestSummary(
    total_tests=2,
    passed_tests=1,
    failed_tests=1,
    total_time=0.75,
    cases=(
        TestCase(suite_name="s", name="ok", duration_seconds=0.25),
        TestCase(suite_name="s", name="bad", status="failed", duration_seconds=0.5,
                 failure_message="boom"),
    ),
)


@pytest.fixture
def store() -> ArtifactStore:
    return ArtifactStore(GitHubClient(token="t", repository="owner/repo"))


def _runs(*ids: int) -> dict:
    return {"workflow_runs": [{"id": i, "run_number": i} for i in ids]}


def _artifacts(*entries) -> dict:
    arts = [{"id": aid, "name": name, "expired": expired} for aid, name, expired in entries]
    return {"total_count": len(arts), "artifacts": arts}


# ---------------------------------------------------------------------------
# Naming
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("raw, expected", [
    ("main", "main"),
    ("feature/login", "feature-login"),
    ("release v1.2", "release-v1-2"),
    ("a_b-c", "a_b-c"),
])
def test_sanitize(raw, expected):
    assert sanitize(raw) == expected


def test_plain_key_names():
    key = ArtifactKey(ref="main", kind="test")
    assert key.name() == "ci-report-test-main"
    assert key.legacy_name() == "codecov-test-results-main"


def test_qualified_key_candidates_in_priority_order():
    key = ArtifactKey(ref="feature/x", kind="coverage", flags=("unit", "e2e"),
                      variant="py 3.12", job="build")
    assert key.candidates() == (
        "ci-report-coverage-feature-x__job-build__flags-e2e_unit__variant-py-3-12",
        "ci-report-coverage-feature-x__job-build",
        "codecov-coverage-results-feature-x-e2e_unit",
        "codecov-coverage-results-feature-x",
    )


def test_candidates_are_deduplicated():
    assert ArtifactKey(ref="main", kind="test").candidates() == (
        "ci-report-test-main",
        "codecov-test-results-main",
    )


def test_flag_order_and_duplicates_do_not_matter():
    a = ArtifactKey(ref="main", kind="coverage", flags=("b", "a", "a"))
    b = ArtifactKey(ref="main", kind="coverage", flags=("a", "b"))
    assert a.name() == b.name() == "ci-report-coverage-main__flags-a_b"


# ---------------------------------------------------------------------------
# Retrieval plan
# ---------------------------------------------------------------------------

def test_plan_with_sha_tries_commit_first():
    plan = build_plan("coverage", "main", "abc123")
    assert plan.tiers == (LookupTier("sha", "abc123"), LookupTier("branch", "main"))
    steps = list(plan.steps())
    assert len(steps) == 2 * len(plan.names)
    assert steps[0] == (LookupTier("sha", "abc123"), "ci-report-coverage-main")
    assert steps[-1] == (LookupTier("branch", "main"), "codecov-coverage-results-main")


def test_plan_without_sha_has_branch_tier_only():
    plan = build_plan("test", "develop")
    assert plan.tiers == (LookupTier("branch", "develop"),)
    assert plan.kind == "test"


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------

def test_pack_writes_results_file():
    with zipfile.ZipFile(io.BytesIO(pack_summary(COVERAGE))) as zf:
        assert zf.namelist() == ["coverage-results.json"]
        data = json.loads(zf.read("coverage-results.json"))
    assert data["totalStatements"] == 10
    assert data["lineRate"] == 80.0


def test_unpack_restores_summaries():
    assert unpack_summary(pack_summary(COVERAGE), "coverage") == COVERAGE
    assert unpack_summary(pack_summary(TESTS), "test") == TESTS


def test_unpack_rejects_non_zip():
    with pytest.raises(DownloadFailed, match="unreadable"):
        unpack_summary(b"definitely not a zip", "coverage")


def test_unpack_rejects_missing_results_file():
    payload = pack_summary(TESTS)
    with pytest.raises(DownloadFailed, match="coverage-results.json"):
        unpack_summary(payload, "coverage")


def test_unpack_rejects_non_object_json():
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        zf.writestr("test-results.json", "[1, 2]")
    with pytest.raises(DownloadFailed, match="JSON object"):
        unpack_summary(buffer.getvalue(), "test")


# ---------------------------------------------------------------------------
# ArtifactStore.put
# ---------------------------------------------------------------------------

def test_put_uploads_under_current_name():
    uploader = RecordingUploader()
    store = ArtifactStore(GitHubClient(token="t", repository="owner/repo"), uploader)
    key = ArtifactKey(ref="feature/x", kind="coverage", flags=("unit",))
    assert store.put(COVERAGE, key) == 77
    name, payload = uploader.uploads[0]
    assert name == "ci-report-coverage-feature-x__flags-unit"
    assert unpack_summary(payload, "coverage") == COVERAGE


def test_put_failure_is_swallowed(caplog):
    store = ArtifactStore(GitHubClient(token="t", repository="owner/repo"),
                          RecordingUploader(fail=True))
    with caplog.at_level(logging.WARNING, logger="ci_report.artifacts"):
        assert store.put(TESTS, ArtifactKey(ref="main", kind="test")) is None
    assert "quota exceeded" in caplog.text


def test_put_without_uploader_returns_none(store):
    assert store.put(TESTS, ArtifactKey(ref="main", kind="test")) is None


# ---------------------------------------------------------------------------
# retrieve_base
# ---------------------------------------------------------------------------

def test_retrieve_falls_back_from_sha_to_branch(store, requests_mock, caplog):
    requests_mock.get(f"{REPO}/actions/runs?head_sha=abc123", json=_runs())
    requests_mock.get(f"{REPO}/actions/runs?branch=main", json=_runs(101))
    requests_mock.get(f"{REPO}/actions/runs/101/artifacts",
                      json=_artifacts((7, "codecov-coverage-results-main", False)))
    requests_mock.get(f"{REPO}/actions/artifacts/7/zip", content=pack_summary(COVERAGE))

    with caplog.at_level(logging.INFO, logger="ci_report.artifacts"):
        base = retrieve_base(store, build_plan("coverage", "main", "abc123"))

    assert base == COVERAGE
    assert "No successful workflow runs found for sha 'abc123'" in caplog.text
    assert "Falling back to branch 'main'" in caplog.text


def test_retrieve_prefers_current_name_over_legacy(store, requests_mock):
    legacy = TestSummary(total_tests=1, passed_tests=1,
                         cases=(TestCase(suite_name="s", name="old"),))
    requests_mock.get(f"{REPO}/actions/runs", json=_runs(5))
    requests_mock.get(f"{REPO}/actions/runs/5/artifacts", json=_artifacts(
        (1, "codecov-test-results-main", False),
        (2, "ci-report-test-main", False),
    ))
    requests_mock.get(f"{REPO}/actions/artifacts/1/zip", content=pack_summary(legacy))
    requests_mock.get(f"{REPO}/actions/artifacts/2/zip", content=pack_summary(TESTS))

    assert retrieve_base(store, build_plan("test", "main")) == TESTS


def test_retrieve_skips_expired_artifacts(store, requests_mock):
    requests_mock.get(f"{REPO}/actions/runs", json=_runs(5))
    requests_mock.get(f"{REPO}/actions/runs/5/artifacts",
                      json=_artifacts((1, "ci-report-test-main", True)))
    download = requests_mock.get(f"{REPO}/actions/artifacts/1/zip", content=pack_summary(TESTS))

    assert retrieve_base(store, build_plan("test", "main")) is None
    assert not download.called


def test_retrieve_walks_older_runs(store, requests_mock):
    requests_mock.get(f"{REPO}/actions/runs", json=_runs(9, 8))
    requests_mock.get(f"{REPO}/actions/runs/9/artifacts", json=_artifacts((90, "unrelated", False)))
    requests_mock.get(f"{REPO}/actions/runs/8/artifacts",
                      json=_artifacts((80, "ci-report-test-main", False)))
    requests_mock.get(f"{REPO}/actions/artifacts/80/zip", content=pack_summary(TESTS))

    assert retrieve_base(store, build_plan("test", "main")) == TESTS


def test_retrieve_continues_after_download_failure(store, requests_mock, caplog):
    requests_mock.get(f"{REPO}/actions/runs", json=_runs(9, 8))
    requests_mock.get(f"{REPO}/actions/runs/9/artifacts",
                      json=_artifacts((90, "ci-report-test-main", False)))
    requests_mock.get(f"{REPO}/actions/runs/8/artifacts",
                      json=_artifacts((80, "ci-report-test-main", False)))
    requests_mock.get(f"{REPO}/actions/artifacts/90/zip", status_code=404)
    requests_mock.get(f"{REPO}/actions/artifacts/80/zip", content=pack_summary(TESTS))

    with caplog.at_level(logging.WARNING, logger="ci_report.artifacts"):
        assert retrieve_base(store, build_plan("test", "main")) == TESTS
    assert "Failed to download base test artifact" in caplog.text


def test_retrieve_continues_after_failed_tier(store, requests_mock, caplog):
    requests_mock.get(f"{REPO}/actions/runs?head_sha=abc123", status_code=500, text="oops")
    requests_mock.get(f"{REPO}/actions/runs?branch=main", json=_runs(3))
    requests_mock.get(f"{REPO}/actions/runs/3/artifacts",
                      json=_artifacts((30, "ci-report-coverage-main", False)))
    requests_mock.get(f"{REPO}/actions/artifacts/30/zip", content=pack_summary(COVERAGE))

    with caplog.at_level(logging.WARNING, logger="ci_report.artifacts"):
        assert retrieve_base(store, build_plan("coverage", "main", "abc123")) == COVERAGE
    assert "Listing runs for sha 'abc123' failed" in caplog.text


def test_retrieve_nothing_found_returns_none(store, requests_mock):
    requests_mock.get(f"{REPO}/actions/runs", json=_runs())
    assert retrieve_base(store, build_plan("coverage", "main", "abc123")) is None


def test_retrieve_ignores_unreadable_payload(store, requests_mock):
    requests_mock.get(f"{REPO}/actions/runs", json=_runs(5))
    requests_mock.get(f"{REPO}/actions/runs/5/artifacts",
                      json=_artifacts((1, "ci-report-coverage-main", False)))
    requests_mock.get(f"{REPO}/actions/artifacts/1/zip", content=b"garbage")

    assert retrieve_base(store, build_plan("coverage", "main")) is None


def test_find_falls_back_to_unexpired_legacy_name(store, requests_mock):
    requests_mock.get(f"{REPO}/actions/runs/5/artifacts", json=_artifacts(
        (1, "ci-report-test-main", True),
        (2, "codecov-test-results-main", False),
    ))
    names = build_plan("test", "main").names
    assert store.find(5, names).id == 2


def test_retrieve_moves_past_run_holding_only_expired_match(store, requests_mock):
    requests_mock.get(f"{REPO}/actions/runs", json=_runs(9, 8))
    requests_mock.get(f"{REPO}/actions/runs/9/artifacts",
                      json=_artifacts((90, "ci-report-test-main", True)))
    requests_mock.get(f"{REPO}/actions/runs/8/artifacts",
                      json=_artifacts((80, "ci-report-test-main", False)))
    expired = requests_mock.get(f"{REPO}/actions/artifacts/90/zip", content=pack_summary(TESTS))
    requests_mock.get(f"{REPO}/actions/artifacts/80/zip", content=pack_summary(TESTS))

    assert retrieve_base(store, build_plan("test", "main")) == TESTS
    assert not expired.called


# ---------------------------------------------------------------------------
# Unexpected API responses stay storage failures
# ---------------------------------------------------------------------------

def _runtime_token() -> str:
    def enc(obj) -> str:
        return base64.urlsafe_b64encode(json.dumps(obj).encode()).decode().rstrip("=")
    return f"{enc({'alg': 'none'})}.{enc({'scp': 'Actions.Results:run-1:job-1'})}.sig"


def test_retrieve_survives_html_run_listing(store, requests_mock, caplog):
    requests_mock.get(f"{REPO}/actions/runs", text="<html>maintenance</html>")
    with caplog.at_level(logging.WARNING, logger="ci_report.artifacts"):
        assert retrieve_base(store, build_plan("test", "main")) is None
    assert "not valid JSON" in caplog.text


def test_retrieve_survives_run_record_without_id(store, requests_mock):
    requests_mock.get(f"{REPO}/actions/runs", json={"workflow_runs": [{"run_number": 3}]})
    assert retrieve_base(store, build_plan("test", "main")) is None


def test_retrieve_survives_artifact_record_without_id(store, requests_mock):
    requests_mock.get(f"{REPO}/actions/runs", json=_runs(4))
    requests_mock.get(f"{REPO}/actions/runs/4/artifacts",
                      json={"total_count": 1, "artifacts": [{"name": "ci-report-test-main"}]})
    assert retrieve_base(store, build_plan("test", "main")) is None


def test_put_survives_html_upload_response(requests_mock, caplog):
    requests_mock.post(
        "https://results.example.com/twirp/github.actions.results.api.v1.ArtifactService/CreateArtifact",
        text="<html>maintenance</html>",
    )
    uploader = ResultsClient("https://results.example.com", _runtime_token())
    store = ArtifactStore(GitHubClient(token="t", repository="owner/repo"), uploader)

    with caplog.at_level(logging.WARNING, logger="ci_report.artifacts"):
        assert store.put(TestSummary(), ArtifactKey(ref="main", kind="test")) is None
    assert "Failed to upload test artifact" in caplog.text
