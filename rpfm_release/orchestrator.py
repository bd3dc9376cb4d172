"""Top-level driver: one triggering event through build, then release."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Dict, List, Optional, Union

from .bundle.builder import ArtifactPackager, PackageConfig
from .config import build_instances
from .errors import ConfigurationError, ExitCode, ReleasePipelineError, StageFailure
from .executor import StageExecutor
from .models import (
    Artifact,
    ChangelogEntry,
    ReleaseDraft,
    RunInstance,
    RunResult,
    TriggerEvent,
    UploadAck,
    Version,
)
from .publish.publisher import ReleasePublisher
from .schemas.workflow import ReleaseSpec, WorkflowDefinition
from .versioning import extract_version, load_changelog_entry

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    TRIGGERED = "triggered"
    EXPANDED = "expanded"
    EXECUTING = "executing"
    ALL_SUCCEEDED = "all_succeeded"
    SOME_FAILED = "some_failed"
    VERSIONING = "versioning"
    CHANGELOGGING = "changelogging"
    PACKAGING = "packaging"
    PUBLISHING = "publishing"
    DONE = "done"
    FAILED = "failed"
    IGNORED = "ignored"


_PHASE_EXIT_CODES = {
    PipelineState.VERSIONING: ExitCode.METADATA,
    PipelineState.CHANGELOGGING: ExitCode.METADATA,
    PipelineState.PACKAGING: ExitCode.PACKAGING,
    PipelineState.PUBLISHING: ExitCode.PUBLISH,
}


@dataclass
class PipelineOutcome:
    event: TriggerEvent
    state: PipelineState = PipelineState.TRIGGERED
    history: List[PipelineState] = field(default_factory=lambda: [PipelineState.TRIGGERED])
    results: List[RunResult] = field(default_factory=list)
    exit_code: ExitCode = ExitCode.OK
    failing_component: Optional[str] = None
    error: Optional[str] = None
    version: Optional[Version] = None
    changelog: Optional[ChangelogEntry] = None
    artifact: Optional[Artifact] = None
    release: Optional[ReleaseDraft] = None
    upload: Optional[UploadAck] = None

    @property
    def succeeded(self) -> bool:
        return self.state in (PipelineState.DONE, PipelineState.IGNORED)

    def to_dict(self) -> Dict[str, object]:
        return {
            "event": self.event.to_dict(),
            "state": self.state.value,
            "history": [state.value for state in self.history],
            "exit_code": int(self.exit_code),
            "failing_component": self.failing_component,
            "error": self.error,
            "results": [result.to_dict() for result in self.results],
            "version": {"raw_tag": self.version.raw_tag, "semantic": self.version.semantic} if self.version else None,
            "changelog": self.changelog.body if self.changelog else None,
            "artifact": self.artifact.to_dict() if self.artifact else None,
            "release": self.release.to_dict() if self.release else None,
            "upload": self.upload.to_dict() if self.upload else None,
        }


class PipelineOrchestrator:
    """Runs a workflow for one triggering event.

    Matrix instances are isolated: a failure in one never stops its siblings.
    Only a tag push whose instances all succeed continues into versioning,
    changelog extraction, packaging and publishing, strictly in that order.
    """

    def __init__(
        self,
        definition: WorkflowDefinition,
        *,
        executor: StageExecutor,
        packager: Optional[ArtifactPackager] = None,
        publisher: Optional[ReleasePublisher] = None,
        workspace_root: Optional[Union[str, Path]] = None,
        dry_run: bool = False,
    ) -> None:
        self.definition = definition
        self.executor = executor
        self.workspace_root = Path(workspace_root) if workspace_root else executor.workspace_root
        self.publisher = publisher
        self.dry_run = dry_run
        release = definition.release
        if packager is None and release is not None:
            packager = ArtifactPackager(
                workspace_root=self.workspace_root,
                output_dir=self.workspace_root / release.output_dir,
            )
        self.packager = packager

    def run(self, event: TriggerEvent) -> PipelineOutcome:
        outcome = PipelineOutcome(event=event)
        if not self.accepts(event):
            logger.info("Event %s on '%s' does not match workflow triggers", event.kind, event.branch_or_tag)
            self._transition(outcome, PipelineState.IGNORED)
            return outcome

        try:
            release = self._check_release_config(event)
            instances = build_instances(self.definition)
            if event.kind == "tag_push" and release is not None and release.package_from:
                labels = [instance.label for instance in instances]
                if release.package_from not in labels:
                    raise ConfigurationError(
                        f"release.package_from '{release.package_from}' matches no instance ({', '.join(labels)})."
                    )
        except ConfigurationError as exc:
            return self._fail(outcome, exc.component, exc, ExitCode.CONFIGURATION)
        self._transition(outcome, PipelineState.EXPANDED)

        self._transition(outcome, PipelineState.EXECUTING)
        try:
            outcome.results = self._execute(instances, event)
        except ConfigurationError as exc:
            return self._fail(outcome, exc.component, exc, ExitCode.CONFIGURATION)

        failed = [result for result in outcome.results if not result.succeeded]
        if failed:
            self._transition(outcome, PipelineState.SOME_FAILED)
            first = failed[0]
            if first.failing_stage:
                error: ReleasePipelineError = StageFailure(
                    first.failing_stage, first.exit_code or 1, instance=first.instance
                )
            else:
                error = ReleasePipelineError(f"Instance {first.instance} failed: {first.error}", component="stage")
            component = f"stage:{first.failing_stage}" if first.failing_stage else "stage"
            return self._fail(outcome, component, error, ExitCode.BUILD)
        self._transition(outcome, PipelineState.ALL_SUCCEEDED)

        if event.kind != "tag_push" or release is None:
            self._transition(outcome, PipelineState.DONE)
            return outcome
        return self._release(outcome, event, release)

    def accepts(self, event: TriggerEvent) -> bool:
        triggers = self.definition.on
        if event.kind == "tag_push":
            return any(fnmatchcase(event.branch_or_tag, pattern) for pattern in triggers.tags)
        branch_filter = triggers.push if event.kind == "push" else triggers.pull_request
        if branch_filter is None:
            return False
        if not branch_filter.branches:
            return True
        return any(fnmatchcase(event.branch_or_tag, pattern) for pattern in branch_filter.branches)

    def _check_release_config(self, event: TriggerEvent) -> Optional[ReleaseSpec]:
        if event.kind != "tag_push":
            return self.definition.release
        release = self.definition.release
        if release is None:
            raise ConfigurationError("Tag push received but the workflow has no 'release' section.")
        if not release.files:
            raise ConfigurationError("Release section declares no files to package.")
        try:
            release.title.format(tag="v0", version="0", product=release.product)
        except (KeyError, IndexError) as exc:
            raise ConfigurationError(f"Release title '{release.title}' has unknown placeholder {exc}.") from exc
        if self.publisher is None and not self.dry_run:
            raise ConfigurationError("No release publisher configured for a tag release (missing token?).")
        return release

    def _execute(self, instances: List[RunInstance], event: TriggerEvent) -> List[RunResult]:
        workers = max(1, min(self.definition.runner.max_parallel, len(instances) or 1))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="run-instance") as pool:
            futures = [pool.submit(self._run_instance, instance, event) for instance in instances]
            return [future.result() for future in futures]

    def _run_instance(self, instance: RunInstance, event: TriggerEvent) -> RunResult:
        try:
            return self.executor.run(instance, event)
        except ConfigurationError:
            raise
        except Exception as exc:
            logger.exception("Instance %s aborted", instance.label)
            return RunResult(instance=instance.label, status="failed", error=str(exc))

    def _release(self, outcome: PipelineOutcome, event: TriggerEvent, release: ReleaseSpec) -> PipelineOutcome:
        phase = PipelineState.VERSIONING
        try:
            self._transition(outcome, phase)
            outcome.version = extract_version(event.ref)

            phase = PipelineState.CHANGELOGGING
            self._transition(outcome, phase)
            outcome.changelog = load_changelog_entry(self.workspace_root / release.changelog, release.changelog_heading)

            phase = PipelineState.PACKAGING
            self._transition(outcome, phase)
            config = PackageConfig(
                product=release.product,
                arch=release.arch,
                platform=release.platform,
                files=list(release.files),
            )
            outcome.artifact = self.packager.package(  # type: ignore[union-attr]
                config.files,
                config.target_name(outcome.version),
                source_root=self._package_source(outcome.results, release),
            )

            if self.dry_run:
                logger.info("Dry run: skipping publish of %s", outcome.artifact.name)
                self._transition(outcome, PipelineState.DONE)
                return outcome

            phase = PipelineState.PUBLISHING
            self._transition(outcome, phase)
            title = release.title.format(
                tag=outcome.version.raw_tag,
                version=outcome.version.semantic,
                product=release.product,
            )
            outcome.release = self.publisher.create_release(  # type: ignore[union-attr]
                tag=outcome.version.raw_tag,
                title=title,
                body=outcome.changelog.body,
                draft=release.draft,
                prerelease=release.prerelease,
            )
            outcome.upload = self.publisher.upload_asset(outcome.release, outcome.artifact)  # type: ignore[union-attr]
        except ReleasePipelineError as exc:
            exit_code = _PHASE_EXIT_CODES[phase]
            if phase is PipelineState.PUBLISHING:
                exit_code = exc.exit_code
            return self._fail(outcome, phase.value, exc, exit_code)
        except (OSError, ValueError) as exc:
            return self._fail(outcome, phase.value, exc, _PHASE_EXIT_CODES[phase])

        self._transition(outcome, PipelineState.DONE)
        return outcome

    def _package_source(self, results: List[RunResult], release: ReleaseSpec) -> Optional[Path]:
        chosen = next(
            (result for result in results if not release.package_from or result.instance == release.package_from),
            None,
        )
        return Path(chosen.workdir) if chosen and chosen.workdir else None

    def _transition(self, outcome: PipelineOutcome, state: PipelineState) -> None:
        logger.info("Pipeline %s -> %s", outcome.state.value, state.value)
        outcome.state = state
        outcome.history.append(state)

    def _fail(
        self,
        outcome: PipelineOutcome,
        component: str,
        error: Exception,
        exit_code: ExitCode,
    ) -> PipelineOutcome:
        logger.error("Pipeline failed in %s: %s", component, error)
        outcome.failing_component = component
        outcome.error = str(error)
        outcome.exit_code = exit_code
        self._transition(outcome, PipelineState.FAILED)
        return outcome
