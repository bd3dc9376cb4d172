"""Pydantic models describing a pipeline workflow document."""

from __future__ import annotations

from typing import Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..executor import SHELLS


class BranchFilter(BaseModel):
    branches: List[str] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid")


class TriggerSpec(BaseModel):
    push: Optional[BranchFilter] = None
    pull_request: Optional[BranchFilter] = None
    tags: List[str] = Field(default_factory=lambda: ["v*"])

    model_config = ConfigDict(extra="forbid")


class StepSpec(BaseModel):
    name: str
    run: Union[str, List[str]]
    condition: Optional[str] = Field(default=None, alias="if")
    shell: Optional[str] = None

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    @field_validator("shell")
    @classmethod
    def _known_shell(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and value not in SHELLS:
            raise ValueError(f"unsupported shell '{value}' (expected one of: {', '.join(SHELLS)})")
        return value

    @field_validator("run")
    @classmethod
    def _non_empty_run(cls, value: Union[str, List[str]]) -> Union[str, List[str]]:
        commands = [value] if isinstance(value, str) else value
        if not commands or not all(command.strip() for command in commands):
            raise ValueError("run must contain at least one non-empty command")
        return value

    def commands(self) -> List[str]:
        return [self.run] if isinstance(self.run, str) else list(self.run)


class CacheSpec(BaseModel):
    key: str
    path: str

    model_config = ConfigDict(extra="forbid")


class RunnerSpec(BaseModel):
    timeout: Optional[float] = Field(default=None, gt=0, description="Per-command timeout in seconds.")
    max_parallel: int = Field(default=1, ge=1)
    cache_dir: str = ".pipeline/cache"
    isolate: bool = Field(default=True, description="Run each instance in its own copy of the checkout.")

    model_config = ConfigDict(extra="forbid")


class ReleaseSpec(BaseModel):
    product: str
    arch: str
    platform: str
    files: List[str] = Field(default_factory=list)
    changelog: str = "CHANGELOG.md"
    changelog_heading: str = "Unreleased"
    title: str = "{tag}"
    repo: str
    token_env: str = "GITHUB_TOKEN"
    draft: bool = False
    prerelease: bool = False
    api_url: str = "https://api.github.com"
    output_dir: str = "dist"
    package_from: Optional[str] = Field(
        default=None, description="Label of the instance whose outputs are packaged (first instance by default)."
    )

    model_config = ConfigDict(extra="forbid")


class WorkflowDefinition(BaseModel):
    name: str = "pipeline"
    on: TriggerSpec = Field(
        default_factory=lambda: TriggerSpec(push=BranchFilter(), pull_request=BranchFilter())
    )
    env: Dict[str, str] = Field(default_factory=dict)
    matrix: Dict[str, List[Union[str, int, float]]] = Field(default_factory=dict)
    cache: Optional[CacheSpec] = None
    runner: RunnerSpec = Field(default_factory=RunnerSpec)
    steps: List[StepSpec] = Field(default_factory=list)
    release: Optional[ReleaseSpec] = None

    model_config = ConfigDict(extra="forbid")

    @field_validator("env", mode="before")
    @classmethod
    def _stringify_env(cls, value: object) -> object:
        if isinstance(value, dict):
            return {str(key): str(item) for key, item in value.items()}
        return value
