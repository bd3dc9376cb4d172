"""Workflow document loading and conversion into runtime objects."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Union

import yaml
from pydantic import ValidationError

from .conditions import check_fields, parse_condition
from .errors import ConfigurationError
from .matrix import expand
from .models import CachePolicy, RunInstance, Stage
from .schemas.workflow import WorkflowDefinition

logger = logging.getLogger(__name__)


def load_workflow(path: Union[str, Path]) -> WorkflowDefinition:
    workflow_path = Path(path)
    try:
        text = workflow_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigurationError(f"Unable to read workflow {workflow_path}: {exc}") from exc
    try:
        payload = yaml.safe_load(text) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid YAML in workflow {workflow_path}: {exc}") from exc
    if not isinstance(payload, dict):
        raise ConfigurationError(f"Workflow {workflow_path} must be a mapping.")
    # YAML 1.1 reads a bare ``on:`` key as boolean True.
    if True in payload:
        payload["on"] = payload.pop(True)
    try:
        definition = WorkflowDefinition.model_validate(payload)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid workflow {workflow_path}: {exc}") from exc
    build_stages(definition)
    logger.debug("Loaded workflow '%s' from %s", definition.name, workflow_path)
    return definition


def build_stages(definition: WorkflowDefinition) -> List[Stage]:
    """Parse every step into a Stage, validating its condition up front."""

    dimensions = list(definition.matrix)
    stages: List[Stage] = []
    for step in definition.steps:
        try:
            condition = parse_condition(step.condition)
            check_fields(condition, dimensions)
        except ConfigurationError as exc:
            raise ConfigurationError(f"Step '{step.name}': {exc}") from exc
        stages.append(
            Stage(
                name=step.name,
                commands=tuple(step.commands()),
                condition=condition,
                shell=step.shell,
                condition_source=step.condition,
            )
        )
    return stages


def build_instances(definition: WorkflowDefinition) -> List[RunInstance]:
    cache = CachePolicy(key=definition.cache.key, path=definition.cache.path) if definition.cache else None
    instances = expand(definition.matrix, build_stages(definition), cache=cache, env=definition.env)
    if cache:
        for instance in instances:
            cache.render_key(instance.matrix)
    return instances
