"""Error taxonomy shared by every pipeline component."""

from __future__ import annotations

from enum import IntEnum
from typing import Optional


class ExitCode(IntEnum):
    OK = 0
    CONFIGURATION = 1
    BUILD = 2
    METADATA = 3
    PACKAGING = 4
    PUBLISH = 5
    PUBLISH_PARTIAL = 6


class ReleasePipelineError(RuntimeError):
    """Base class for failures surfaced to the pipeline caller."""

    component: str = "pipeline"
    exit_code: ExitCode = ExitCode.BUILD

    def __init__(self, message: str, *, component: Optional[str] = None) -> None:
        super().__init__(message)
        if component:
            self.component = component


class ConfigurationError(ReleasePipelineError):
    """Raised for invalid workflow definitions or unknown condition references."""

    component = "configuration"
    exit_code = ExitCode.CONFIGURATION


class StageFailure(ReleasePipelineError):
    """Raised when a stage command exits non-zero (or times out)."""

    component = "stage"
    exit_code = ExitCode.BUILD

    def __init__(self, stage: str, exit_code: int, *, instance: Optional[str] = None) -> None:
        where = f" in {instance}" if instance else ""
        super().__init__(f"Stage '{stage}'{where} failed with exit code {exit_code}.")
        self.stage = stage
        self.command_exit_code = exit_code
        self.instance = instance


class MalformedRef(ReleasePipelineError):
    """Raised when a ref does not carry the refs/tags/ prefix."""

    component = "versioning"
    exit_code = ExitCode.METADATA


class HeadingNotFound(ReleasePipelineError):
    """Raised when the changelog has no section for the requested heading."""

    component = "changelog"
    exit_code = ExitCode.METADATA


class ChangelogUnreadable(ReleasePipelineError):
    """Raised when the changelog exists but cannot be read or decoded."""

    component = "changelog"
    exit_code = ExitCode.METADATA


class MissingInput(ReleasePipelineError):
    """Raised when a declared packaging input is absent."""

    component = "packaging"
    exit_code = ExitCode.PACKAGING

    def __init__(
        self, message: str, *, missing: Optional[list[str]] = None, component: Optional[str] = None
    ) -> None:
        super().__init__(message, component=component)
        self.missing = list(missing or [])


class PackagingError(ReleasePipelineError):
    """Raised when the archive cannot be staged or written."""

    component = "packaging"
    exit_code = ExitCode.PACKAGING


class PublishError(ReleasePipelineError):
    """Raised when the release record cannot be created."""

    component = "publishing"
    exit_code = ExitCode.PUBLISH

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class PublishPartialFailure(PublishError):
    """Raised when the release exists but the asset upload failed.

    The created release travels with the error so a retry can target the
    upload step alone.
    """

    exit_code = ExitCode.PUBLISH_PARTIAL

    def __init__(self, message: str, *, release: object, artifact: object, status_code: Optional[int] = None) -> None:
        super().__init__(message, status_code=status_code)
        self.release = release
        self.artifact = artifact


class CacheStoreWarning(UserWarning):
    """Emitted when a cache entry could not be persisted."""


__all__ = [
    "CacheStoreWarning",
    "ChangelogUnreadable",
    "ConfigurationError",
    "ExitCode",
    "HeadingNotFound",
    "MalformedRef",
    "MissingInput",
    "PackagingError",
    "PublishError",
    "PublishPartialFailure",
    "ReleasePipelineError",
    "StageFailure",
]
