"""Release archive assembly."""

from .builder import ArtifactPackager, PackageConfig, artifact_name

__all__ = [
    "ArtifactPackager",
    "PackageConfig",
    "artifact_name",
]
