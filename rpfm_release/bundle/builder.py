"""Release archive staging and compression."""

from __future__ import annotations

import logging
import shutil
import tempfile
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

from ..errors import ConfigurationError, MissingInput, PackagingError
from ..models import Artifact, Version
from .utils import compute_sha256

logger = logging.getLogger(__name__)

ZIP_CONTENT_TYPE = "application/zip"


def artifact_name(product: str, version: str, arch: str, platform: str) -> str:
    """``<product>-<version>-<arch>-<platform>.zip``, e.g. ``rpfm-2.0.1-x86_64-pc-windows-msvc.zip``."""

    return f"{product}-{version}-{arch}-{platform}.zip"


@dataclass(slots=True)
class PackageConfig:
    """Configuration describing one release archive."""

    product: str
    arch: str
    platform: str
    files: Sequence[str] = field(default_factory=list)

    def target_name(self, version: Version) -> str:
        return artifact_name(self.product, version.semantic, self.arch, self.platform)


def _discard(path: Path) -> None:
    # exists() is False when a parent is not a directory.
    if path.exists():
        path.unlink()


class ArtifactPackager:
    """Stages declared build outputs and compresses them into one zip."""

    def __init__(self, *, workspace_root: Optional[Path] = None, output_dir: Optional[Path] = None) -> None:
        self.workspace_root = Path(workspace_root) if workspace_root else Path.cwd()
        self.output_dir = Path(output_dir) if output_dir else self.workspace_root / "dist"

    def package(
        self, root_files: Iterable[str], target_name: str, *, source_root: Optional[Path] = None
    ) -> Artifact:
        """Build ``target_name`` from ``root_files`` and return the artifact.

        Files land at the archive root under their basename; directories keep
        their name and inner layout (``img/`` stays ``img/...``). Every input is
        checked before anything is written, and a failed build leaves no archive.
        Relative inputs resolve against ``source_root`` (default: the workspace).
        """

        sources = self._resolve_inputs(root_files, Path(source_root) if source_root else self.workspace_root)
        archive_path = self.output_dir / target_name
        partial_path = self.output_dir / f".{target_name}.partial"

        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            with tempfile.TemporaryDirectory(prefix="rpfm-release-") as tmp_dir:
                staging_root = Path(tmp_dir)
                for arcname, source in sources.items():
                    destination = staging_root / arcname
                    if source.is_dir():
                        shutil.copytree(source, destination)
                    else:
                        shutil.copy2(source, destination)

                with zipfile.ZipFile(partial_path, "w", compression=zipfile.ZIP_DEFLATED) as bundle:
                    for staging_path in sorted(
                        staging_root.rglob("*"),
                        key=lambda path: path.relative_to(staging_root).as_posix(),
                    ):
                        bundle.write(staging_path, arcname=staging_path.relative_to(staging_root).as_posix())
            partial_path.replace(archive_path)
        except OSError as exc:
            _discard(partial_path)
            raise PackagingError(f"Failed to build {target_name} in {self.output_dir}: {exc}") from exc
        except BaseException:
            _discard(partial_path)
            raise

        logger.info("Packaged %s (%d inputs)", archive_path, len(sources))
        return Artifact(
            path=archive_path,
            name=target_name,
            content_type=ZIP_CONTENT_TYPE,
            size=archive_path.stat().st_size,
            sha256=compute_sha256(archive_path),
        )

    def _resolve_inputs(self, root_files: Iterable[str], source_root: Path) -> Dict[str, Path]:
        missing: List[str] = []
        sources: Dict[str, Path] = {}
        for entry in root_files:
            candidate = Path(entry)
            if not candidate.is_absolute():
                candidate = source_root / candidate
            if not candidate.exists():
                missing.append(str(entry))
                continue
            arcname = candidate.name
            if arcname in sources:
                raise ConfigurationError(f"Duplicate archive entry '{arcname}' (from '{entry}').")
            sources[arcname] = candidate
        if missing:
            raise MissingInput(f"Missing packaging input(s): {', '.join(missing)}", missing=missing)
        if not sources:
            raise ConfigurationError("No files declared for packaging.")
        return sources
