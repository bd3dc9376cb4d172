"""Matrix expansion into independent run instances."""

from __future__ import annotations

import itertools
from typing import Dict, List, Mapping, Optional, Sequence

from .errors import ConfigurationError
from .models import CachePolicy, RunInstance, Stage

_TOOLCHAIN_DIMENSIONS = ("toolchain", "version")


def expand(
    dimensions: Mapping[str, Sequence[object]],
    stages: Sequence[Stage],
    *,
    cache: Optional[CachePolicy] = None,
    env: Optional[Mapping[str, str]] = None,
) -> List[RunInstance]:
    """Return one RunInstance per cell of the cartesian product.

    Order follows dimension declaration order, then value order, so the first
    dimension varies slowest. No dimensions yields a single instance.
    """

    names = list(dimensions)
    values: List[List[str]] = []
    for name in names:
        options = [str(value) for value in dimensions[name]]
        if not options:
            raise ConfigurationError(f"Matrix dimension '{name}' has no values.")
        values.append(options)

    shared_stages = tuple(stages)
    instances: List[RunInstance] = []
    for combination in itertools.product(*values):
        cell: Dict[str, str] = dict(zip(names, combination))
        toolchain = next((cell[name] for name in _TOOLCHAIN_DIMENSIONS if name in cell), "")
        instances.append(
            RunInstance(
                os=cell.get("os", ""),
                toolchain_version=toolchain,
                stages=shared_stages,
                matrix=cell,
                cache=cache,
                env=dict(env or {}),
            )
        )
    return instances
