"""Pydantic schemas for workflow documents and release host payloads."""

from .release import AssetResponse, ReleaseResponse
from .workflow import CacheSpec, ReleaseSpec, RunnerSpec, StepSpec, TriggerSpec, WorkflowDefinition

__all__ = [
    "AssetResponse",
    "CacheSpec",
    "ReleaseResponse",
    "ReleaseSpec",
    "RunnerSpec",
    "StepSpec",
    "TriggerSpec",
    "WorkflowDefinition",
]
