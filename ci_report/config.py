"""Configuration loading and validation.

Usage:
    config = load()                           # searches .github/ci-report.yml etc.
    config = load("ci-report.yml")            # raises ConfigError on bad config
    branch = detect_branch()                  # "feature/x" from GITHUB_REF
    generate_template("ci-report.yml")        # writes example file to disk
"""

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from ci_report.client import DEFAULT_API_URL

logger = logging.getLogger(__name__)

CONFIG_CANDIDATES = (
    ".github/ci-report.yml",
    ".github/ci-report.yaml",
    ".github/coverage.yml",
    ".github/coverage.yaml",
    ".github/codecov.yml",
    ".github/codecov.yaml",
    "ci-report.yml",
    "coverage.yml",
    "codecov.yml",
)

DEFAULT_JUNIT_PATTERN = "./**/*.junit.xml"
DEFAULT_COVERAGE_PATTERN = "./**/clover.xml"

_THRESHOLD_RE = re.compile(r"^(\d+(?:\.\d+)?)%?$")


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class ConfigError(Exception):
    """Raised when the configuration is missing or invalid."""


# ---------------------------------------------------------------------------
# Config dataclasses
# ---------------------------------------------------------------------------

@dataclass
class StatusSettings:
    target: float | str = "auto"
    threshold: float | None = None
    informational: bool = False
    enabled: bool = True


@dataclass
class Config:
    token: str = ""
    repository: str = ""
    api_url: str = DEFAULT_API_URL
    base_branch: str = "main"
    junit_pattern: str = DEFAULT_JUNIT_PATTERN
    coverage_pattern: str = DEFAULT_COVERAGE_PATTERN
    flags: list[str] = field(default_factory=list)
    variant: str | None = None
    project_status: StatusSettings = field(default_factory=StatusSettings)
    source: str | None = None

    @property
    def can_reach_github(self) -> bool:
        return bool(self.token and self.repository)


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

def find_config_path(workspace: str | None = None) -> Path | None:
    """First existing candidate config file under *workspace* (default: $GITHUB_WORKSPACE or cwd)."""
    root = Path(workspace or os.environ.get("GITHUB_WORKSPACE") or os.getcwd())
    for candidate in CONFIG_CANDIDATES:
        path = root / candidate
        if path.is_file():
            return path
    return None


def load(config_path: str | None = None) -> Config:
    """Load and normalize configuration.

    With an explicit *config_path* the file must exist. Without one, the
    candidate locations are searched and defaults are used when none exists.
    Environment variables GITHUB_TOKEN, GITHUB_REPOSITORY and GITHUB_API_URL
    override file values.

    Raises:
        ConfigError: if the file is missing (explicit path), malformed, or not
                     a mapping.
    """
    if config_path is not None:
        path: Path | None = Path(config_path)
        if not path.exists():
            raise ConfigError(
                f"Config file not found: '{config_path}'\n"
                "Run `ci-report init` to generate a template."
            )
    else:
        path = find_config_path()

    raw: dict[str, Any] = {}
    if path is None:
        logger.debug("No configuration file found, using defaults")
    else:
        logger.info("Loading configuration from %s", path)
        try:
            with path.open(encoding="utf-8") as f:
                loaded = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise ConfigError(f"Failed to parse '{path}': {exc}") from exc
        if loaded is not None and not isinstance(loaded, dict):
            raise ConfigError(f"'{path}' must be a YAML mapping at the top level.")
        raw = loaded or {}

    github = _section(raw, "github")
    base = _section(raw, "base")
    reports = _section(raw, "reports")
    coverage = _section(raw, "coverage")
    status = _section(coverage, "status")

    return Config(
        token=str(os.environ.get("GITHUB_TOKEN") or github.get("token") or "").strip(),
        repository=str(os.environ.get("GITHUB_REPOSITORY") or github.get("repository") or "").strip(),
        api_url=str(os.environ.get("GITHUB_API_URL") or github.get("api_url") or DEFAULT_API_URL).strip(),
        base_branch=str(base.get("branch") or "main"),
        junit_pattern=str(reports.get("junit") or DEFAULT_JUNIT_PATTERN),
        coverage_pattern=str(reports.get("coverage") or DEFAULT_COVERAGE_PATTERN),
        flags=[str(f) for f in _as_list(coverage.get("flags"))],
        variant=str(coverage["variant"]) if coverage.get("variant") else None,
        project_status=_status_settings(status.get("project")),
        source=str(path) if path else None,
    )


def detect_branch(env: dict[str, str] | None = None) -> str:
    """Current branch name from the GitHub Actions environment."""
    env = os.environ if env is None else env
    ref = env.get("GITHUB_REF", "")
    if ref.startswith("refs/heads/"):
        return ref[len("refs/heads/"):]
    if ref.startswith("refs/pull/"):
        return env.get("GITHUB_HEAD_REF") or "unknown"
    return "unknown"


# ---------------------------------------------------------------------------
# Normalization helpers
# ---------------------------------------------------------------------------

def _section(raw: dict, name: str) -> dict:
    value = raw.get(name)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"'{name}' must be a mapping, got {type(value).__name__}")
    return value


def _as_list(value: Any) -> list:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def parse_threshold(value: Any) -> float | None:
    """Accept ``10``, ``2.5`` or ``"10%"``; anything else means no threshold."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        match = _THRESHOLD_RE.match(value.strip())
        return float(match.group(1)) if match else None
    return None


def _status_settings(raw: Any) -> StatusSettings:
    """Normalize a status block, accepting the Codecov-style ``default:`` nesting."""
    if not isinstance(raw, dict):
        return StatusSettings()
    if isinstance(raw.get("default"), dict):
        raw = raw["default"]

    target = raw.get("target", "auto")
    if isinstance(target, str) and parse_threshold(target) is not None:
        target = parse_threshold(target)   # "80%" -> 80.0
    if not isinstance(target, (int, float)) or isinstance(target, bool):
        if target != "auto":
            logger.warning("Invalid status target %r, falling back to 'auto'", target)
        target = "auto"

    return StatusSettings(
        target=float(target) if target != "auto" else "auto",
        threshold=parse_threshold(raw.get("threshold")),
        informational=bool(raw.get("informational", False)),
        enabled=bool(raw.get("enabled", True)),
    )


# ---------------------------------------------------------------------------
# Template generator (used by `init` command)
# ---------------------------------------------------------------------------

TEMPLATE = """\
github:
  repository: "owner/repo"        # or set GITHUB_REPOSITORY
  # token: "ghp_xxxxxxxxxxxx"     # prefer the GITHUB_TOKEN environment variable

base:
  branch: "main"                  # branch whose artifacts serve as the baseline

reports:
  junit: "./**/*.junit.xml"
  coverage: "./**/clover.xml"

coverage:
  flags: []                       # e.g. [unit] to keep matrix uploads apart
  variant: null
  status:
    project:
      target: auto                # or a percentage, e.g. 80
      threshold: "1%"
      informational: false
"""


def generate_template(output_path: str = "ci-report.yml") -> None:
    """Write a template ci-report.yml to *output_path*.

    Raises:
        ConfigError: if the file already exists (to avoid overwriting secrets).
    """
    path = Path(output_path)
    if path.exists():
        raise ConfigError(
            f"'{output_path}' already exists. Remove it first or choose a different path."
        )
    path.write_text(TEMPLATE, encoding="utf-8")
