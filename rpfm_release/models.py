from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple

from .conditions import Always, Condition
from .errors import ConfigurationError

TRIGGER_KINDS = ("push", "pull_request", "tag_push")

_TAG_PREFIX = "refs/tags/"
_HEAD_PREFIX = "refs/heads/"
_SLUG_RE = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass(frozen=True, slots=True)
class TriggerEvent:
    kind: str
    ref: str
    branch_or_tag: str

    def __post_init__(self) -> None:
        if self.kind not in TRIGGER_KINDS:
            raise ConfigurationError(
                f"Unknown trigger kind '{self.kind}'. Expected one of: {', '.join(TRIGGER_KINDS)}."
            )

    @classmethod
    def from_ref(cls, kind: str, ref: str, *, base_branch: Optional[str] = None) -> "TriggerEvent":
        """Build an event, deriving the branch or tag name from ``ref``.

        Pull requests are filtered on their target branch, so ``base_branch``
        wins over the ref when given.
        """

        if kind == "pull_request" and base_branch:
            name = base_branch
        elif ref.startswith(_TAG_PREFIX):
            name = ref[len(_TAG_PREFIX) :]
        elif ref.startswith(_HEAD_PREFIX):
            name = ref[len(_HEAD_PREFIX) :]
        else:
            name = ref
        return cls(kind=kind, ref=ref, branch_or_tag=name)

    def to_dict(self) -> Dict[str, object]:
        return {"kind": self.kind, "ref": self.ref, "branch_or_tag": self.branch_or_tag}


@dataclass(frozen=True, slots=True)
class Stage:
    name: str
    commands: Tuple[str, ...]
    condition: Condition = field(default_factory=Always)
    shell: Optional[str] = None
    condition_source: Optional[str] = None


@dataclass(frozen=True, slots=True)
class CachePolicy:
    key: str
    path: str

    def render_key(self, matrix: Mapping[str, str]) -> str:
        try:
            return self.key.format(**matrix)
        except (KeyError, IndexError) as exc:
            raise ConfigurationError(f"Cache key template '{self.key}' references unknown value {exc}.") from exc


@dataclass(slots=True)
class RunInstance:
    os: str
    toolchain_version: str
    stages: Tuple[Stage, ...]
    matrix: Dict[str, str] = field(default_factory=dict)
    cache: Optional[CachePolicy] = None
    env: Dict[str, str] = field(default_factory=dict)

    @property
    def label(self) -> str:
        return "/".join(self.matrix.values()) or "default"

    @property
    def slug(self) -> str:
        return _SLUG_RE.sub("_", "-".join(self.matrix.values())) or "default"


# Fields a condition may reference. ``matrix.<dim>`` is resolved separately.
CONTEXT_FIELDS = ("os", "toolchain_version", "trigger", "ref", "branch", "cache_hit")


@dataclass(slots=True)
class RunContext:
    os: str = ""
    toolchain_version: str = ""
    trigger: str = ""
    ref: str = ""
    branch: str = ""
    cache_hit: bool = False
    matrix: Dict[str, str] = field(default_factory=dict)

    def lookup(self, name: str) -> object:
        if name in CONTEXT_FIELDS:
            return getattr(self, name)
        if name.startswith("matrix."):
            dimension = name[len("matrix.") :]
            if dimension in self.matrix:
                return self.matrix[dimension]
        raise ConfigurationError(f"Unknown context field '{name}' referenced by condition.")

    @classmethod
    def for_instance(cls, instance: RunInstance, event: TriggerEvent, *, cache_hit: bool = False) -> "RunContext":
        return cls(
            os=instance.os,
            toolchain_version=instance.toolchain_version,
            trigger=event.kind,
            ref=event.ref,
            branch=event.branch_or_tag,
            cache_hit=cache_hit,
            matrix=dict(instance.matrix),
        )


@dataclass(frozen=True, slots=True)
class CacheEntry:
    key: str
    path: str
    present: bool


@dataclass(frozen=True, slots=True)
class Version:
    raw_tag: str
    semantic: str


@dataclass(frozen=True, slots=True)
class ChangelogEntry:
    heading: str
    body: str


@dataclass(frozen=True, slots=True)
class Artifact:
    path: Path
    name: str
    content_type: str = "application/zip"
    size: int = 0
    sha256: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        return {
            "path": str(self.path),
            "name": self.name,
            "content_type": self.content_type,
            "size": self.size,
            "sha256": self.sha256,
        }


@dataclass(slots=True)
class ReleaseDraft:
    tag: str
    title: str
    body: str
    draft: bool
    prerelease: bool
    upload_url: str
    id: Optional[int] = None
    html_url: Optional[str] = None
    assets: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        return {
            "tag": self.tag,
            "title": self.title,
            "draft": self.draft,
            "prerelease": self.prerelease,
            "upload_url": self.upload_url,
            "id": self.id,
            "html_url": self.html_url,
            "assets": list(self.assets),
        }


@dataclass(frozen=True, slots=True)
class UploadAck:
    name: str
    url: Optional[str]
    size: int
    status_code: int

    def to_dict(self) -> Dict[str, object]:
        return {"name": self.name, "url": self.url, "size": self.size, "status_code": self.status_code}


@dataclass(slots=True)
class StageOutcome:
    name: str
    status: str
    exit_code: Optional[int] = None
    output: str = ""
    duration: float = 0.0
    condition: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "name": self.name,
            "status": self.status,
            "exit_code": self.exit_code,
            "duration": round(self.duration, 3),
        }
        if self.condition:
            payload["condition"] = self.condition
        return payload


@dataclass(slots=True)
class RunResult:
    instance: str
    status: str
    stages: List[StageOutcome] = field(default_factory=list)
    failing_stage: Optional[str] = None
    exit_code: Optional[int] = None
    cache_hit: bool = False
    error: Optional[str] = None
    workdir: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == "success"

    @property
    def skipped(self) -> List[str]:
        return [outcome.name for outcome in self.stages if outcome.status == "skipped"]

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "instance": self.instance,
            "status": self.status,
            "failing_stage": self.failing_stage,
            "exit_code": self.exit_code,
            "cache_hit": self.cache_hit,
            "skipped": self.skipped,
            "workdir": self.workdir,
            "stages": [outcome.to_dict() for outcome in self.stages],
        }
        if self.error:
            payload["error"] = self.error
        return payload
