"""Artifact store and base-summary retrieval.

Summaries are persisted as a zip archive holding one JSON document
(``coverage-results.json`` or ``test-results.json``) and uploaded under a
name derived from an :class:`ArtifactKey`.

Naming schemes, highest priority first when reading:

    ci-report-coverage-main__job-build__flags-unit__variant-py312   current, qualified
    ci-report-coverage-main__job-build                              current, job only
    codecov-coverage-results-main-unit                              legacy, flags
    codecov-coverage-results-main                                   legacy, bare

Only the current scheme is ever written; the legacy names keep artifacts
uploaded by earlier releases discoverable.
"""

import io
import json
import logging
import re
import zipfile
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Literal

from ci_report.client import ArtifactRef, GitHubClient, GitHubClientError, ResultsClient
from ci_report.models import (
    CoverageSummary,
    TestSummary,
    coverage_summary_from_dict,
    coverage_summary_to_dict,
    junit_summary_from_dict,
    junit_summary_to_dict,
)

logger = logging.getLogger(__name__)

ReportKind = Literal["test", "coverage"]

NAME_PREFIX = "ci-report"
LEGACY_PREFIX = "codecov"
MAX_RUNS_PER_TIER = 10

_UNSAFE = re.compile(r"[^a-zA-Z0-9_-]")


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class StorageError(Exception):
    """Base exception for artifact store failures; never fatal to a run."""


class UploadFailed(StorageError):
    """Raised when the current summary could not be uploaded."""


class DownloadFailed(StorageError):
    """Raised when an artifact could not be downloaded or decoded."""


class ScanFailed(StorageError):
    """Raised when runs or artifacts could not be listed."""


# ---------------------------------------------------------------------------
# Keys and names
# ---------------------------------------------------------------------------

def sanitize(value: str) -> str:
    """Replace every character outside ``[A-Za-z0-9_-]`` with ``-``."""
    return _UNSAFE.sub("-", value)


@dataclass(frozen=True)
class ArtifactKey:
    ref: str
    kind: ReportKind
    flags: tuple[str, ...] = ()
    variant: str | None = None
    job: str | None = None

    @property
    def flag_suffix(self) -> str:
        return "_".join(sorted(sanitize(f) for f in set(self.flags) if f))

    def name(self, *, qualified: bool = True) -> str:
        """Name under the current scheme; ``qualified=False`` drops flags and variant."""
        parts = [f"{NAME_PREFIX}-{self.kind}-{sanitize(self.ref)}"]
        if self.job:
            parts.append(f"job-{sanitize(self.job)}")
        if qualified and self.flag_suffix:
            parts.append(f"flags-{self.flag_suffix}")
        if qualified and self.variant:
            parts.append(f"variant-{sanitize(self.variant)}")
        return "__".join(parts)

    def legacy_name(self, *, qualified: bool = True) -> str:
        name = f"{LEGACY_PREFIX}-{self.kind}-results-{sanitize(self.ref)}"
        if qualified and self.flag_suffix:
            name = f"{name}-{self.flag_suffix}"
        return name

    def candidates(self) -> tuple[str, ...]:
        """Every name this key may have been stored under, in read priority order."""
        ordered = [
            self.name(),
            self.name(qualified=False),
            self.legacy_name(),
            self.legacy_name(qualified=False),
        ]
        return tuple(dict.fromkeys(ordered))


# ---------------------------------------------------------------------------
# Retrieval plan
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LookupTier:
    by: Literal["sha", "branch"]
    value: str


@dataclass(frozen=True)
class RetrievalPlan:
    """Ordered run lookups crossed with ordered candidate names."""

    kind: ReportKind
    tiers: tuple[LookupTier, ...]
    names: tuple[str, ...]

    def steps(self) -> Iterator[tuple[LookupTier, str]]:
        for tier in self.tiers:
            for name in self.names:
                yield tier, name


def build_plan(
    kind: ReportKind,
    base_branch: str,
    base_sha: str | None = None,
    *,
    flags: tuple[str, ...] = (),
    variant: str | None = None,
    job: str | None = None,
) -> RetrievalPlan:
    """Lookup order for the base summary: exact commit first, then the base branch."""
    tiers = []
    if base_sha:
        tiers.append(LookupTier("sha", base_sha))
    tiers.append(LookupTier("branch", base_branch))
    key = ArtifactKey(ref=base_branch, kind=kind, flags=tuple(flags), variant=variant, job=job)
    return RetrievalPlan(kind=kind, tiers=tuple(tiers), names=key.candidates())


# ---------------------------------------------------------------------------
# Payload encoding
# ---------------------------------------------------------------------------

def payload_filename(kind: ReportKind) -> str:
    return f"{kind}-results.json"


def pack_summary(summary: CoverageSummary | TestSummary) -> bytes:
    """Zip the JSON form of *summary* into an artifact payload."""
    if isinstance(summary, CoverageSummary):
        kind, data = "coverage", coverage_summary_to_dict(summary)
    else:
        kind, data = "test", junit_summary_to_dict(summary)
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        zf.writestr(payload_filename(kind), json.dumps(data, indent=2))
    return buffer.getvalue()


def unpack_summary(payload: bytes, kind: ReportKind) -> CoverageSummary | TestSummary:
    """Decode an artifact payload.

    Raises:
        DownloadFailed: not a zip, no results file, or invalid JSON.
    """
    filename = payload_filename(kind)
    try:
        with zipfile.ZipFile(io.BytesIO(payload)) as zf:
            raw = json.loads(zf.read(filename))
    except KeyError as exc:
        raise DownloadFailed(f"Downloaded artifact does not contain {filename}") from exc
    except (zipfile.BadZipFile, ValueError) as exc:
        raise DownloadFailed(f"Downloaded artifact is unreadable: {exc}") from exc

    if not isinstance(raw, dict):
        raise DownloadFailed(f"{filename} must hold a JSON object")
    try:
        if kind == "coverage":
            return coverage_summary_from_dict(raw)
        return junit_summary_from_dict(raw)
    except (TypeError, ValueError) as exc:
        raise DownloadFailed(f"{filename} has invalid fields: {exc}") from exc


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class ArtifactStore:
    """Artifact persistence on top of a GitHub client and an optional uploader.

    *client* must provide ``list_runs``, ``list_artifacts`` and
    ``download_artifact``; *uploader* must provide ``upload_artifact``. Without
    an uploader the store is read only.
    """

    def __init__(self, client: GitHubClient, uploader: ResultsClient | None = None) -> None:
        self._client = client
        self._uploader = uploader

    def put(self, summary: CoverageSummary | TestSummary, key: ArtifactKey) -> int | None:
        """Upload *summary* under ``key.name()``; return the artifact id or ``None``.

        Failures are logged and swallowed.
        """
        name = key.name()
        try:
            artifact_id = self._upload(name, pack_summary(summary))
        except UploadFailed as exc:
            logger.warning("Failed to upload %s artifact: %s", key.kind, exc)
            return None
        logger.info("Uploaded %s artifact '%s' (id %s)", key.kind, name, artifact_id)
        return artifact_id

    def runs(self, tier: LookupTier) -> list:
        """Successful runs for one lookup tier, most recent first.

        Raises:
            ScanFailed
        """
        filters = {"head_sha": tier.value} if tier.by == "sha" else {"branch": tier.value}
        try:
            runs = self._client.list_runs(status="success", page=1, per_page=MAX_RUNS_PER_TIER, **filters)
        except GitHubClientError as exc:
            raise ScanFailed(f"Listing runs for {tier.by} '{tier.value}' failed: {exc}") from exc
        return runs[:MAX_RUNS_PER_TIER]

    def find(self, run_id: int, names: tuple[str, ...]) -> ArtifactRef | None:
        """First unexpired artifact of *run_id* matching *names*, by name priority.

        Raises:
            ScanFailed
        """
        try:
            artifacts = self._client.list_artifacts(run_id)
        except GitHubClientError as exc:
            raise ScanFailed(f"Listing artifacts of run {run_id} failed: {exc}") from exc

        live = {}
        for artifact in artifacts:
            if artifact.expired:
                logger.debug("Skipping expired artifact '%s' in run %s", artifact.name, run_id)
                continue
            live.setdefault(artifact.name, artifact)
        for name in names:
            if name in live:
                return live[name]
        return None

    def fetch(self, artifact: ArtifactRef, kind: ReportKind) -> CoverageSummary | TestSummary:
        """Download and decode one artifact.

        Raises:
            DownloadFailed
        """
        try:
            payload = self._client.download_artifact(artifact.id)
        except GitHubClientError as exc:
            raise DownloadFailed(f"Downloading artifact '{artifact.name}' failed: {exc}") from exc
        return unpack_summary(payload, kind)

    def _upload(self, name: str, payload: bytes) -> int:
        if self._uploader is None:
            raise UploadFailed("no uploader configured (store is read only)")
        try:
            return self._uploader.upload_artifact(name, payload)
        except GitHubClientError as exc:
            raise UploadFailed(str(exc)) from exc


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------

def retrieve_base(store: ArtifactStore, plan: RetrievalPlan) -> CoverageSummary | TestSummary | None:
    """Walk *plan* and return the first base summary found, or ``None``.

    Each tier is tried independently: a tier that lists no runs, whose runs
    hold no matching artifact, or whose calls fail falls through to the next
    one. A missing baseline is an expected first-run condition, not an error.
    """
    for index, tier in enumerate(plan.tiers):
        try:
            runs = store.runs(tier)
        except ScanFailed as exc:
            logger.warning("%s", exc)
            continue

        if not runs:
            logger.info("No successful workflow runs found for %s '%s'", tier.by, tier.value)
        for run in runs:
            summary = _scan_run(store, plan, run)
            if summary is not None:
                return summary

        if index + 1 < len(plan.tiers):
            nxt = plan.tiers[index + 1]
            logger.info(
                "No base %s artifact found for %s '%s'. Falling back to %s '%s'",
                plan.kind, tier.by, tier.value, nxt.by, nxt.value,
            )

    logger.info("No base %s artifact found under %s", plan.kind, ", ".join(plan.names))
    return None


def _scan_run(store: ArtifactStore, plan: RetrievalPlan, run) -> CoverageSummary | TestSummary | None:
    try:
        artifact = store.find(run.id, plan.names)
    except ScanFailed as exc:
        logger.warning("%s", exc)
        return None
    if artifact is None:
        return None

    logger.info("Found %s artifact '%s' in run #%s", plan.kind, artifact.name, run.number)
    try:
        return store.fetch(artifact, plan.kind)
    except DownloadFailed as exc:
        logger.warning("Failed to download base %s artifact: %s", plan.kind, exc)
        return None
