"""GitHub API clients.

Usage:
    client = GitHubClient(token="ghp_xxx", repository="owner/repo")
    runs   = client.list_runs(branch="main")
    arts   = client.list_artifacts(runs[0].id)
    blob   = client.download_artifact(arts[0].id)

    uploader = ResultsClient.from_env()          # inside a GitHub Actions job
    artifact_id = uploader.upload_artifact("name", zip_bytes)
"""

import base64
import hashlib
import json
import os
from dataclasses import dataclass
from typing import Any

import requests

DEFAULT_API_URL = "https://api.github.com"
RUN_PAGE_SIZE = 10
ARTIFACT_PAGE_SIZE = 100
MAX_ARTIFACT_PAGES = 1

_ARTIFACT_SERVICE = "twirp/github.actions.results.api.v1.ArtifactService"


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class GitHubClientError(Exception):
    """Base exception for all client errors."""


class AuthenticationError(GitHubClientError):
    """Raised on HTTP 401 — invalid or expired token."""


class NotFoundError(GitHubClientError):
    """Raised on HTTP 404 — repository, run or artifact not found."""


class NetworkError(GitHubClientError):
    """Raised on connection timeout or unreachable server."""


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class WorkflowRun:
    id: int
    number: int


@dataclass(frozen=True)
class ArtifactRef:
    id: int
    name: str
    expired: bool = False


# ---------------------------------------------------------------------------
# REST client
# ---------------------------------------------------------------------------

class GitHubClient:
    """Thin wrapper around the GitHub Actions REST API for one repository."""

    def __init__(
        self,
        token: str,
        repository: str,
        api_url: str = DEFAULT_API_URL,
        timeout: int = 30,
    ) -> None:
        owner, _, repo = repository.partition("/")
        if not owner or not repo:
            raise GitHubClientError(
                f"Repository must look like 'owner/repo', got '{repository}'"
            )
        self.base_url = api_url.rstrip("/")
        self.repo_path = f"/repos/{owner}/{repo}"
        self._timeout = timeout
        self._session = requests.Session()
        self._session.headers.update({
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        })

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    def get(self, endpoint: str, params: dict[str, Any] | None = None) -> dict:
        """Perform a single GET request and return the parsed JSON response.

        Raises:
            AuthenticationError: HTTP 401
            NotFoundError:       HTTP 404
            GitHubClientError:   Any other non-2xx response, or a body that
                                 is not a JSON object
            NetworkError:        Timeout or connection failure
        """
        url = f"{self.base_url}{endpoint}"
        return _json_object(self._request(endpoint, params or {}), url)

    def get_paginated(
        self,
        endpoint: str,
        params: dict[str, Any],
        results_key: str,
        *,
        per_page: int,
        max_pages: int,
    ) -> list[dict]:
        """Fetch at most *max_pages* pages and return a flat list of results.

        GitHub paginates via ``page`` and ``per_page``; the result count is in
        ``response["total_count"]``. The page ceiling keeps every scan bounded.
        """
        all_results: list[dict] = []
        page = 1

        while page <= max_pages:
            page_params = {**params, "per_page": per_page, "page": page}
            data = self.get(endpoint, page_params)

            results = data.get(results_key) or []
            if not isinstance(results, list):
                raise GitHubClientError(f"'{results_key}' in {endpoint} is not a list")
            all_results.extend(results)

            total = data.get("total_count")
            if not isinstance(total, int):
                total = len(all_results)
            if len(all_results) >= total or len(results) < per_page:
                break
            page += 1

        return all_results

    def list_runs(
        self,
        *,
        head_sha: str | None = None,
        branch: str | None = None,
        status: str = "success",
        page: int = 1,
        per_page: int = RUN_PAGE_SIZE,
    ) -> list[WorkflowRun]:
        """Workflow runs of the repository, most recent first.

        Filter by exactly one of *head_sha* or *branch*.
        """
        if bool(head_sha) == bool(branch):
            raise ValueError("Provide exactly one of head_sha or branch.")
        params: dict[str, Any] = {"status": status, "page": page, "per_page": per_page}
        if head_sha:
            params["head_sha"] = head_sha
        else:
            params["branch"] = branch
        data = self.get(f"{self.repo_path}/actions/runs", params)
        try:
            return [
                WorkflowRun(id=int(r["id"]), number=int(r.get("run_number") or 0))
                for r in data.get("workflow_runs") or []
            ]
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise GitHubClientError(f"Malformed workflow run record: {exc!r}") from exc

    def list_artifacts(self, run_id: int) -> list[ArtifactRef]:
        raw = self.get_paginated(
            f"{self.repo_path}/actions/runs/{run_id}/artifacts",
            {},
            results_key="artifacts",
            per_page=ARTIFACT_PAGE_SIZE,
            max_pages=MAX_ARTIFACT_PAGES,
        )
        try:
            return [
                ArtifactRef(id=int(a["id"]), name=a.get("name") or "", expired=bool(a.get("expired")))
                for a in raw
            ]
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise GitHubClientError(f"Malformed artifact record in run {run_id}: {exc!r}") from exc

    def download_artifact(self, artifact_id: int) -> bytes:
        """Return the zip archive of an artifact.

        GitHub answers with a redirect to blob storage; ``requests`` follows it
        and drops the Authorization header on the cross-host hop.
        """
        response = self._request(f"{self.repo_path}/actions/artifacts/{artifact_id}/zip", {})
        return response.content

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _request(self, endpoint: str, params: dict[str, Any]) -> requests.Response:
        url = f"{self.base_url}{endpoint}"
        try:
            response = self._session.get(url, params=params, timeout=self._timeout)
        except requests.exceptions.Timeout as exc:
            raise NetworkError(
                f"Request timed out after {self._timeout}s while contacting '{url}'"
            ) from exc
        except requests.exceptions.ConnectionError as exc:
            raise NetworkError(
                f"Unable to reach GitHub API at '{self.base_url}'"
            ) from exc
        except requests.exceptions.RequestException as exc:
            raise NetworkError(f"Request to '{url}' failed: {exc}") from exc

        _raise_for_status(response, url)
        return response


# ---------------------------------------------------------------------------
# Artifact upload (Actions results service)
# ---------------------------------------------------------------------------

class ResultsClient:
    """Uploads artifacts the way ``actions/upload-artifact@v4`` does.

    Three calls: CreateArtifact returns a signed blob URL, the zip is PUT to
    it, FinalizeArtifact records size and digest and returns the artifact id.
    """

    def __init__(self, results_url: str, runtime_token: str, timeout: int = 60) -> None:
        self.results_url = results_url.rstrip("/")
        self._token = runtime_token
        self._timeout = timeout
        self._session = requests.Session()
        self._run_id, self._job_id = _backend_ids(runtime_token)

    @classmethod
    def from_env(cls, env: dict[str, str] | None = None) -> "ResultsClient":
        """Build from ``ACTIONS_RESULTS_URL`` / ``ACTIONS_RUNTIME_TOKEN``.

        Raises:
            GitHubClientError: outside a GitHub Actions job.
        """
        env = os.environ if env is None else env
        url = env.get("ACTIONS_RESULTS_URL", "")
        token = env.get("ACTIONS_RUNTIME_TOKEN", "")
        if not url or not token:
            raise GitHubClientError(
                "Artifact upload needs ACTIONS_RESULTS_URL and ACTIONS_RUNTIME_TOKEN "
                "(only available inside a GitHub Actions job)"
            )
        return cls(url, token)

    def upload_artifact(self, name: str, payload: bytes) -> int:
        """Upload *payload* (a zip archive) as artifact *name*; return its id."""
        ids = {
            "workflow_run_backend_id": self._run_id,
            "workflow_job_run_backend_id": self._job_id,
        }
        created = self._call("CreateArtifact", {**ids, "name": name, "version": 4})
        upload_url = created.get("signed_upload_url")
        if not created.get("ok") or not upload_url:
            raise GitHubClientError(f"CreateArtifact rejected artifact '{name}'")

        try:
            response = self._session.put(
                upload_url,
                data=payload,
                headers={"x-ms-blob-type": "BlockBlob", "Content-Type": "application/zip"},
                timeout=self._timeout,
            )
        except requests.exceptions.RequestException as exc:
            raise NetworkError(f"Blob upload failed for artifact '{name}'") from exc
        _raise_for_status(response, "artifact blob storage")

        digest = hashlib.sha256(payload).hexdigest()
        finalized = self._call("FinalizeArtifact", {
            **ids,
            "name": name,
            "size": str(len(payload)),
            "hash": f"sha256:{digest}",
        })
        if not finalized.get("ok"):
            raise GitHubClientError(f"FinalizeArtifact rejected artifact '{name}'")
        try:
            return int(finalized.get("artifact_id") or 0)
        except (TypeError, ValueError) as exc:
            raise GitHubClientError(
                f"FinalizeArtifact returned an invalid artifact id: {finalized.get('artifact_id')!r}"
            ) from exc

    def _call(self, method: str, body: dict[str, Any]) -> dict:
        url = f"{self.results_url}/{_ARTIFACT_SERVICE}/{method}"
        try:
            response = self._session.post(
                url,
                json=body,
                headers={"Authorization": f"Bearer {self._token}"},
                timeout=self._timeout,
            )
        except requests.exceptions.Timeout as exc:
            raise NetworkError(f"Request timed out after {self._timeout}s while contacting '{url}'") from exc
        except requests.exceptions.ConnectionError as exc:
            raise NetworkError(f"Unable to reach results service at '{self.results_url}'") from exc
        except requests.exceptions.RequestException as exc:
            raise NetworkError(f"Request to '{url}' failed: {exc}") from exc
        _raise_for_status(response, url)
        return _json_object(response, url)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _raise_for_status(response: requests.Response, url: str) -> None:
    if response.status_code == 401:
        raise AuthenticationError(
            "Authentication failed — check that your token is valid and not expired."
        )
    if response.status_code == 404:
        raise NotFoundError(f"Resource not found: {url}")
    if not response.ok:
        raise GitHubClientError(
            f"Unexpected response {response.status_code} from {url}: {response.text[:200]}"
        )


def _json_object(response: requests.Response, url: str) -> dict:
    """Decode a JSON object body; anything else (e.g. a proxy HTML page) is a client error."""
    try:
        data = response.json()
    except ValueError as exc:
        raise GitHubClientError(
            f"Response from {url} is not valid JSON: {response.text[:200]!r}"
        ) from exc
    if not isinstance(data, dict):
        raise GitHubClientError(f"Response from {url} is not a JSON object")
    return data


def _backend_ids(runtime_token: str) -> tuple[str, str]:
    """Read the run/job backend ids from the runtime token's ``scp`` claim.

    The claim holds space-separated scopes, one of them
    ``Actions.Results:<run backend id>:<job backend id>``.
    """
    try:
        payload = runtime_token.split(".")[1]
        payload += "=" * (-len(payload) % 4)
        claims = json.loads(base64.urlsafe_b64decode(payload))
    except (IndexError, ValueError) as exc:
        raise GitHubClientError("ACTIONS_RUNTIME_TOKEN is not a valid JWT") from exc

    for scope in str(claims.get("scp", "")).split():
        parts = scope.split(":")
        if len(parts) == 3 and parts[0] == "Actions.Results":
            return parts[1], parts[2]
    raise GitHubClientError("ACTIONS_RUNTIME_TOKEN has no Actions.Results scope")
