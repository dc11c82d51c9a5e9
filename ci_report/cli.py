"""CLI entry point — command definitions using Click.

Commands:
    init      Generate a template config file
    parse     Parse and aggregate report files (offline)
    compare   Compare two saved summaries (offline)
    run       Full pipeline: parse, aggregate, upload, fetch base, compare
"""

import glob
import json
import sys
from pathlib import Path
from typing import Any

import click

from ci_report import __version__


# ---------------------------------------------------------------------------
# Helpers shared by all data commands
# ---------------------------------------------------------------------------

def _load_config(ctx: click.Context):
    from ci_report.config import ConfigError, load

    try:
        return load(ctx.obj["config_path"])
    except ConfigError as exc:
        click.echo(f"Configuration error: {exc}", err=True)
        sys.exit(1)


def _make_store(config):
    """Artifact store for the configured repository, or None without credentials."""
    import logging

    from ci_report.artifacts import ArtifactStore
    from ci_report.client import GitHubClient, GitHubClientError, ResultsClient

    log = logging.getLogger("ci_report.cli")
    if not config.can_reach_github:
        log.info("No GitHub token or repository configured; skipping artifact exchange")
        return None

    try:
        client = GitHubClient(token=config.token, repository=config.repository, api_url=config.api_url)
    except GitHubClientError as exc:
        log.warning("Artifact exchange disabled: %s", exc)
        return None
    try:
        uploader = ResultsClient.from_env()
    except GitHubClientError as exc:
        log.info("Artifact upload disabled: %s", exc)
        uploader = None
    return ArtifactStore(client, uploader)


def _expand(pattern: str) -> list[str]:
    """Resolve a comma-separated list of glob patterns to existing files."""
    found: dict[str, None] = {}
    for part in (p.strip() for p in pattern.split(",")):
        if not part:
            continue
        for match in sorted(glob.glob(part, recursive=True)):
            if Path(match).is_file():
                found[match] = None
    return list(found)


def _emit_json(data: Any, ctx: click.Context) -> None:
    """Write JSON to stdout or to the file specified by --output."""
    obj = ctx.obj
    indent = 2 if obj["pretty"] else None
    text = json.dumps(data, indent=indent, ensure_ascii=False)

    output_path: str | None = obj["output_path"]
    if output_path:
        with open(output_path, "w", encoding="utf-8") as f:
            f.write(text)
        click.echo(f"Report written to '{output_path}'", err=True)
    else:
        click.echo(text)


def _handle_errors(func):
    """Decorator that turns pipeline and client failures into a clean exit."""
    import functools

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        from ci_report.client import AuthenticationError, GitHubClientError
        from ci_report.pipeline import NoValidReportsError

        try:
            return func(*args, **kwargs)
        except NoValidReportsError as exc:
            click.echo(f"Error: {exc}", err=True)
            sys.exit(1)
        except AuthenticationError as exc:
            click.echo(f"Authentication error: {exc}", err=True)
            sys.exit(1)
        except GitHubClientError as exc:
            click.echo(f"GitHub error: {exc}", err=True)
            sys.exit(1)

    return wrapper


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------

@click.group()
@click.option("--config", "config_path", default=None,
              help="Path to the configuration file (default: search .github/ci-report.yml etc.).")
@click.option("--output", "output_path", default=None,
              help="Write JSON output to a file instead of stdout.")
@click.option("--pretty", is_flag=True, default=False,
              help="Pretty-print the JSON output.")
@click.option("--verbose", is_flag=True, default=False,
              help="Enable verbose logging.")
@click.version_option(__version__, prog_name="ci-report")
@click.pass_context
def cli(ctx: click.Context, config_path: str | None, output_path: str | None,
        pretty: bool, verbose: bool) -> None:
    """CI report tool — aggregate JUnit and Clover reports and compare them with a base run."""
    from ci_report.logging_config import configure_logging

    configure_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["output_path"] = output_path
    ctx.obj["pretty"] = pretty
    ctx.obj["verbose"] = verbose


# ---------------------------------------------------------------------------
# init
# ---------------------------------------------------------------------------

@cli.command("init")
@click.option("--output", "output_path", default="ci-report.yml", show_default=True,
              help="Path where the template config file will be written.")
def init_command(output_path: str) -> None:
    """Generate a template ci-report.yml file."""
    from ci_report.config import ConfigError, generate_template
    try:
        generate_template(output_path)
        click.echo(f"Template written to '{output_path}'.")
        click.echo("Edit it with your repository, base branch and report patterns.")
    except ConfigError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)


# ---------------------------------------------------------------------------
# parse
# ---------------------------------------------------------------------------

@cli.command("parse")
@click.argument("kind", type=click.Choice(["junit", "coverage"]))
@click.argument("pattern")
@click.pass_context
@_handle_errors
def parse_command(ctx: click.Context, kind: str, pattern: str) -> None:
    """Parse and aggregate the KIND reports matching PATTERN, without any upload."""
    from ci_report.models import report_to_dict
    from ci_report.pipeline import process_coverage, process_tests

    process = process_coverage if kind == "coverage" else process_tests
    report = process(_expand(pattern), pattern=pattern)
    _emit_json(report_to_dict(report), ctx)


# ---------------------------------------------------------------------------
# compare
# ---------------------------------------------------------------------------

@cli.command("compare")
@click.argument("kind", type=click.Choice(["junit", "coverage"]))
@click.argument("base_file", type=click.Path(exists=True, dir_okay=False))
@click.argument("current_file", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def compare_command(ctx: click.Context, kind: str, base_file: str, current_file: str) -> None:
    """Compare two summaries saved by `parse` (BASE_FILE vs CURRENT_FILE)."""
    from ci_report import models
    from ci_report.reports.coverage import compare_coverage
    from ci_report.reports.junit import compare_tests

    load = models.coverage_summary_from_dict if kind == "coverage" else models.junit_summary_from_dict
    try:
        summaries = []
        for path in (base_file, current_file):
            raw = json.loads(Path(path).read_text(encoding="utf-8"))
            if not isinstance(raw, dict):
                raise ValueError(f"'{path}' must hold a JSON object")
            summaries.append(load(raw))
    except (TypeError, ValueError, AttributeError) as exc:
        click.echo(f"Error: invalid JSON summary: {exc}", err=True)
        sys.exit(1)

    base, current = summaries
    if kind == "coverage":
        data = models.coverage_comparison_to_dict(compare_coverage(base, current))
    else:
        data = models.junit_comparison_to_dict(compare_tests(base, current))
    _emit_json(data, ctx)


# ---------------------------------------------------------------------------
# run
# ---------------------------------------------------------------------------

@cli.command("run")
@click.option("--junit", "junit_pattern", default=None,
              help="Glob pattern(s) for JUnit XML files (comma-separated).")
@click.option("--coverage", "coverage_pattern", default=None,
              help="Glob pattern(s) for Clover XML files (comma-separated).")
@click.option("--skip-tests", is_flag=True, default=False, help="Do not process test results.")
@click.option("--skip-coverage", is_flag=True, default=False, help="Do not process coverage.")
@click.option("--branch", default=None, help="Current branch (default: from GITHUB_REF).")
@click.option("--base-branch", default=None, help="Branch holding the baseline (overrides config).")
@click.option("--base-sha", default=None, help="Exact base commit to look up first.")
@click.option("--head-sha", default=None, envvar="GITHUB_SHA", help="Commit being reported.")
@click.option("--flag", "flags", multiple=True, help="Flag qualifier (repeatable).")
@click.option("--variant", default=None, help="Variant qualifier, e.g. a matrix leg.")
@click.option("--job", default=None, envvar="GITHUB_JOB", help="Job qualifier.")
@click.pass_context
@_handle_errors
def run_command(ctx: click.Context, junit_pattern: str | None, coverage_pattern: str | None,
                skip_tests: bool, skip_coverage: bool, branch: str | None,
                base_branch: str | None, base_sha: str | None, head_sha: str | None,
                flags: tuple[str, ...], variant: str | None, job: str | None) -> None:
    """Process test and coverage reports and compare them with the base branch."""
    from ci_report.artifacts import ArtifactKey, build_plan
    from ci_report.config import detect_branch
    from ci_report.models import report_to_dict
    from ci_report.outputs import coverage_outputs, junit_outputs, write_outputs
    from ci_report.pipeline import process_coverage, process_tests
    from ci_report.status import evaluate_project_status

    config = _load_config(ctx)
    store = _make_store(config)
    branch = branch or detect_branch()
    base_branch = base_branch or config.base_branch
    flags = tuple(flags) or tuple(config.flags)
    variant = variant or config.variant

    if ctx.obj["verbose"]:
        click.echo(f"[verbose] Branch '{branch}', base '{base_branch}'"
                   f"{f' @ {base_sha}' if base_sha else ''}", err=True)

    result: dict[str, Any] = {"branch": branch, "base_branch": base_branch}
    outputs: dict[str, str] = {}

    if not skip_tests:
        pattern = junit_pattern or config.junit_pattern
        report = process_tests(
            _expand(pattern),
            pattern=pattern,
            store=store,
            key=ArtifactKey(ref=branch, kind="test", flags=flags, variant=variant, job=job),
            plan=build_plan("test", base_branch, base_sha, flags=flags, variant=variant, job=job),
        )
        result["tests"] = report_to_dict(report)
        outputs.update(junit_outputs(report))

    if not skip_coverage:
        pattern = coverage_pattern or config.coverage_pattern
        report = process_coverage(
            _expand(pattern),
            pattern=pattern,
            store=store,
            key=ArtifactKey(ref=branch, kind="coverage", flags=flags, variant=variant, job=job),
            plan=build_plan("coverage", base_branch, base_sha, flags=flags, variant=variant, job=job),
            head_commit=head_sha,
        )
        result["coverage"] = report_to_dict(report)
        outputs.update(coverage_outputs(report))

        check = evaluate_project_status(report, config.project_status)
        if check is not None:
            result["coverage"]["status"] = {"state": check.state, "description": check.description}
            outputs["coverage-status"] = check.state

    write_outputs(outputs)
    _emit_json(result, ctx)


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
