"""Matrix build and tagged-release pipeline for RPFM."""

__version__ = "0.1.0"

from .bundle import ArtifactPackager, PackageConfig, artifact_name
from .cache import CacheManager
from .conditions import evaluate, parse_condition
from .config import build_instances, load_workflow
from .errors import (
    CacheStoreWarning,
    ChangelogUnreadable,
    ConfigurationError,
    ExitCode,
    HeadingNotFound,
    MalformedRef,
    MissingInput,
    PackagingError,
    PublishError,
    PublishPartialFailure,
    ReleasePipelineError,
    StageFailure,
)
from .executor import StageExecutor, SubprocessRunner
from .matrix import expand
from .models import TriggerEvent
from .orchestrator import PipelineOrchestrator, PipelineOutcome, PipelineState
from .publish import ReleasePublisher
from .versioning import extract_version, find_changelog_entry, load_changelog_entry

__all__ = [
    "__version__",
    "ArtifactPackager",
    "CacheManager",
    "CacheStoreWarning",
    "ChangelogUnreadable",
    "ConfigurationError",
    "ExitCode",
    "HeadingNotFound",
    "MalformedRef",
    "MissingInput",
    "PackageConfig",
    "PackagingError",
    "PipelineOrchestrator",
    "PipelineOutcome",
    "PipelineState",
    "PublishError",
    "PublishPartialFailure",
    "ReleasePipelineError",
    "ReleasePublisher",
    "StageExecutor",
    "StageFailure",
    "SubprocessRunner",
    "TriggerEvent",
    "artifact_name",
    "build_instances",
    "evaluate",
    "expand",
    "extract_version",
    "find_changelog_entry",
    "load_changelog_entry",
    "load_workflow",
    "parse_condition",
]
