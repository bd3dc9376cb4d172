from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from .cache import CacheManager
from .config import build_instances, load_workflow
from .errors import ExitCode, ReleasePipelineError
from .executor import StageExecutor
from .models import TRIGGER_KINDS, TriggerEvent
from .orchestrator import PipelineOrchestrator
from .publish import ReleasePublisher
from .schemas.workflow import WorkflowDefinition
from .secrets import SecretSpec, register_secret, resolve_secret_info, use_dotenv
from .versioning import extract_version, load_changelog_entry

logger = logging.getLogger(__name__)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _build_publisher(
    definition: WorkflowDefinition, event: TriggerEvent, *, dry_run: bool
) -> tuple[Optional[ReleasePublisher], Optional[str]]:
    release = definition.release
    if event.kind != "tag_push" or dry_run or release is None:
        return None, None
    register_secret(SecretSpec(name=release.token_env, description=f"Token used to publish releases to {release.repo}"))
    info = resolve_secret_info(release.token_env)
    if not info.value:
        return None, (
            f"Release token '{release.token_env}' not resolved. Checked resolvers: {info.summary()}."
        )
    return ReleasePublisher(release.repo, info.value, api_url=release.api_url), None


def _run_pipeline(args: argparse.Namespace) -> int:
    workspace = Path(args.workspace_root).resolve()
    use_dotenv(Path(args.env_file) if args.env_file else workspace / ".env")
    try:
        definition = load_workflow(args.workflow)
    except ReleasePipelineError as exc:
        print(str(exc), file=sys.stderr)
        return int(ExitCode.CONFIGURATION)

    event = TriggerEvent.from_ref(args.event, args.ref, base_branch=args.base_branch)
    publisher, problem = _build_publisher(definition, event, dry_run=args.dry_run)
    if problem:
        print(problem, file=sys.stderr)
        return int(ExitCode.CONFIGURATION)

    executor = StageExecutor(
        workspace_root=workspace,
        cache=CacheManager(workspace / definition.runner.cache_dir),
        timeout=args.timeout or definition.runner.timeout,
        isolate=definition.runner.isolate,
    )
    orchestrator = PipelineOrchestrator(
        definition,
        executor=executor,
        publisher=publisher,
        workspace_root=workspace,
        dry_run=args.dry_run,
    )
    outcome = orchestrator.run(event)
    print(json.dumps(outcome.to_dict(), indent=2))
    return int(outcome.exit_code)


def _list_matrix(args: argparse.Namespace) -> int:
    try:
        definition = load_workflow(args.workflow)
        instances = build_instances(definition)
    except ReleasePipelineError as exc:
        print(str(exc), file=sys.stderr)
        return int(ExitCode.CONFIGURATION)
    payload = [
        {
            "label": instance.label,
            "os": instance.os,
            "toolchain_version": instance.toolchain_version,
            "matrix": instance.matrix,
            "cache_key": instance.cache.render_key(instance.matrix) if instance.cache else None,
            "stages": [stage.name for stage in instance.stages],
        }
        for instance in instances
    ]
    print(json.dumps(payload, indent=2))
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="rpfm-release", description="Build matrix and release pipeline runner")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging on stderr")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Run the workflow for one triggering event")
    run.add_argument("--workflow", required=True)
    run.add_argument("--event", required=True, choices=TRIGGER_KINDS)
    run.add_argument("--ref", required=True)
    run.add_argument("--base-branch", help="Target branch of a pull request")
    run.add_argument("--workspace-root", default=".")
    run.add_argument("--env-file", help="Optional .env file consulted for the release token")
    run.add_argument("--timeout", type=float, help="Per-command timeout in seconds")
    run.add_argument("--dry-run", action=argparse.BooleanOptionalAction, default=False)

    matrix = subparsers.add_parser("matrix", help="List the run instances a workflow expands to")
    matrix.add_argument("--workflow", required=True)

    version = subparsers.add_parser("version", help="Extract the release version from a tag ref")
    version.add_argument("--ref", required=True)

    changelog = subparsers.add_parser("changelog", help="Print one changelog section")
    changelog.add_argument("--path", default="CHANGELOG.md")
    changelog.add_argument("--heading", default="Unreleased")

    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    if args.command == "run":
        return _run_pipeline(args)

    if args.command == "matrix":
        return _list_matrix(args)

    if args.command == "version":
        try:
            parsed = extract_version(args.ref)
        except ReleasePipelineError as exc:
            print(str(exc), file=sys.stderr)
            return int(exc.exit_code)
        print(json.dumps({"raw_tag": parsed.raw_tag, "semantic": parsed.semantic}, indent=2))
        return 0

    if args.command == "changelog":
        try:
            entry = load_changelog_entry(args.path, args.heading)
        except ReleasePipelineError as exc:
            print(str(exc), file=sys.stderr)
            return int(ExitCode.METADATA)
        print(json.dumps({"heading": entry.heading, "body": entry.body}, indent=2))
        return 0

    parser.error("Unknown command")
    return 2


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
