from __future__ import annotations

import hashlib
import zipfile
from pathlib import Path

import pytest

from rpfm_release.bundle import ArtifactPackager, PackageConfig, artifact_name
from rpfm_release.errors import ConfigurationError, ExitCode, MissingInput, PackagingError
from rpfm_release.models import Version

RPFM_FILES = ["target/release/rpfm_ui.exe", "LICENSE", "locale", "img"]


def _members(path: Path) -> list[str]:
    with zipfile.ZipFile(path) as archive:
        return sorted(name for name in archive.namelist() if not name.endswith("/"))


def test_artifact_name_layout() -> None:
    assert artifact_name("rpfm", "2.0.1", "x86_64", "pc-windows-msvc") == "rpfm-2.0.1-x86_64-pc-windows-msvc.zip"
    config = PackageConfig(product="rpfm", arch="x86_64", platform="pc-windows-msvc", files=RPFM_FILES)
    assert config.target_name(Version(raw_tag="v2.0.1", semantic="2.0.1")) == "rpfm-2.0.1-x86_64-pc-windows-msvc.zip"


def test_package_flattens_files_and_keeps_directories(release_workspace: Path) -> None:
    packager = ArtifactPackager(workspace_root=release_workspace)

    artifact = packager.package(RPFM_FILES, "rpfm-2.0.1-x86_64-pc-windows-msvc.zip")

    assert artifact.path == release_workspace / "dist" / "rpfm-2.0.1-x86_64-pc-windows-msvc.zip"
    assert artifact.content_type == "application/zip"
    assert _members(artifact.path) == [
        "LICENSE",
        "img/icons/pack.png",
        "img/rpfm.png",
        "locale/English_en.ftl",
        "rpfm_ui.exe",
    ]
    with zipfile.ZipFile(artifact.path) as archive:
        assert archive.read("rpfm_ui.exe") == b"MZ-fake-binary"


def test_package_reports_size_and_digest(release_workspace: Path) -> None:
    artifact = ArtifactPackager(workspace_root=release_workspace).package(["LICENSE"], "bundle.zip")

    data = artifact.path.read_bytes()
    assert artifact.size == len(data)
    assert artifact.sha256 == hashlib.sha256(data).hexdigest()


def test_missing_input_leaves_no_archive(release_workspace: Path) -> None:
    output_dir = release_workspace / "dist"

    with pytest.raises(MissingInput) as excinfo:
        ArtifactPackager(workspace_root=release_workspace).package(
            ["LICENSE", "target/release/rpfm_cli.exe", "docs"], "bundle.zip"
        )

    assert excinfo.value.missing == ["target/release/rpfm_cli.exe", "docs"]
    assert excinfo.value.exit_code == ExitCode.PACKAGING
    assert not output_dir.exists() or list(output_dir.iterdir()) == []


def test_write_failure_removes_partial_archive(release_workspace: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    def _boom(self, *args, **kwargs):  # type: ignore[no-untyped-def]
        raise OSError("disk full")

    monkeypatch.setattr(zipfile.ZipFile, "write", _boom)

    with pytest.raises(PackagingError, match="disk full") as excinfo:
        ArtifactPackager(workspace_root=release_workspace).package(RPFM_FILES, "bundle.zip")

    assert excinfo.value.exit_code == ExitCode.PACKAGING
    assert list((release_workspace / "dist").iterdir()) == []


def test_duplicate_basenames_are_rejected(release_workspace: Path) -> None:
    (release_workspace / "extra").mkdir()
    (release_workspace / "extra" / "LICENSE").write_text("copy", encoding="utf-8")

    with pytest.raises(ConfigurationError, match="LICENSE"):
        ArtifactPackager(workspace_root=release_workspace).package(["LICENSE", "extra/LICENSE"], "bundle.zip")


def test_empty_input_list_is_rejected(release_workspace: Path) -> None:
    with pytest.raises(ConfigurationError):
        ArtifactPackager(workspace_root=release_workspace).package([], "bundle.zip")


def test_existing_archive_is_replaced(release_workspace: Path) -> None:
    output_dir = release_workspace / "out"
    output_dir.mkdir()
    (output_dir / "bundle.zip").write_bytes(b"stale")

    artifact = ArtifactPackager(workspace_root=release_workspace, output_dir=output_dir).package(
        ["LICENSE"], "bundle.zip"
    )

    assert _members(artifact.path) == ["LICENSE"]
    assert sorted(path.name for path in output_dir.iterdir()) == ["bundle.zip"]


def test_unusable_output_dir_is_packaging_error(release_workspace: Path) -> None:
    (release_workspace / "dist").write_text("not a directory", encoding="utf-8")

    with pytest.raises(PackagingError) as excinfo:
        ArtifactPackager(workspace_root=release_workspace).package(["LICENSE"], "bundle.zip")

    assert excinfo.value.component == "packaging"
    assert (release_workspace / "dist").read_text(encoding="utf-8") == "not a directory"


def test_inputs_resolve_against_source_root(release_workspace: Path, tmp_path_factory: pytest.TempPathFactory) -> None:
    build_dir = tmp_path_factory.mktemp("instance")
    (build_dir / "LICENSE").write_text("from the build", encoding="utf-8")

    artifact = ArtifactPackager(workspace_root=release_workspace).package(
        ["LICENSE"], "bundle.zip", source_root=build_dir
    )

    assert artifact.path.parent == release_workspace / "dist"
    with zipfile.ZipFile(artifact.path) as archive:
        assert archive.read("LICENSE") == b"from the build"
