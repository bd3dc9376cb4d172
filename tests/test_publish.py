from __future__ import annotations

from pathlib import Path

import pytest
from requests.exceptions import ConnectionError as RequestsConnectionError

from rpfm_release.errors import ExitCode, PublishError, PublishPartialFailure
from rpfm_release.models import Artifact
from rpfm_release.publish import ReleasePublisher

API = "https://api.github.com"
UPLOAD_URL = "https://uploads.github.com/repos/owner/rpfm/releases/7/assets"


def _artifact(tmp_path: Path) -> Artifact:
    path = tmp_path / "rpfm-2.0.1-x86_64-pc-windows-msvc.zip"
    path.write_bytes(b"PK\x03\x04fake-zip")
    return Artifact(path=path, name=path.name, size=path.stat().st_size)


def test_create_release_posts_tag_and_body(fake_session) -> None:  # type: ignore[no-untyped-def]
    publisher = ReleasePublisher("owner/rpfm", "s3cret", session=fake_session)

    release = publisher.create_release("v2.0.1", "Release v2.0.1", "### Added\n- Table search.")

    call = fake_session.create_calls[0]
    assert call["url"] == f"{API}/repos/owner/rpfm/releases"
    assert call["headers"]["Authorization"] == "Bearer s3cret"
    assert call["json"] == {
        "tag_name": "v2.0.1",
        "name": "Release v2.0.1",
        "body": "### Added\n- Table search.",
        "draft": False,
        "prerelease": False,
    }
    assert release.upload_url == UPLOAD_URL
    assert release.id == 7
    assert release.assets == []


def test_upload_asset_sends_file_under_asset_name(fake_session, tmp_path: Path) -> None:  # type: ignore[no-untyped-def]
    publisher = ReleasePublisher("owner/rpfm", "s3cret", session=fake_session)
    release = publisher.create_release("v2.0.1", "Release v2.0.1", "notes")
    artifact = _artifact(tmp_path)

    ack = publisher.upload_asset(release, artifact)

    call = fake_session.upload_calls[0]
    assert call["url"] == UPLOAD_URL
    assert call["params"] == {"name": "rpfm-2.0.1-x86_64-pc-windows-msvc.zip"}
    assert call["headers"]["Content-Type"] == "application/zip"
    assert call["body"] == b"PK\x03\x04fake-zip"
    assert ack.name == artifact.name
    assert ack.size == artifact.size
    assert ack.url.endswith(artifact.name)
    assert release.assets == [artifact.name]


def test_create_failure_is_not_partial(make_session) -> None:  # type: ignore[no-untyped-def]
    session = make_session(create_status=422)
    publisher = ReleasePublisher("owner/rpfm", "s3cret", session=session)

    with pytest.raises(PublishError) as excinfo:
        publisher.create_release("v2.0.1", "Release v2.0.1", "notes")

    assert not isinstance(excinfo.value, PublishPartialFailure)
    assert excinfo.value.status_code == 422
    assert excinfo.value.exit_code == ExitCode.PUBLISH


def test_upload_failure_keeps_release_for_retry(make_session, tmp_path: Path) -> None:  # type: ignore[no-untyped-def]
    session = make_session(upload_status=500)
    publisher = ReleasePublisher("owner/rpfm", "s3cret", session=session)
    release = publisher.create_release("v2.0.1", "Release v2.0.1", "notes")
    artifact = _artifact(tmp_path)

    with pytest.raises(PublishPartialFailure) as excinfo:
        publisher.upload_asset(release, artifact)

    assert excinfo.value.exit_code == ExitCode.PUBLISH_PARTIAL
    assert excinfo.value.release is release
    assert excinfo.value.artifact is artifact
    assert release.assets == []


def test_missing_artifact_file_is_partial_failure(fake_session, tmp_path: Path) -> None:  # type: ignore[no-untyped-def]
    publisher = ReleasePublisher("owner/rpfm", "s3cret", session=fake_session)
    release = publisher.create_release("v2.0.1", "Release v2.0.1", "notes")
    artifact = Artifact(path=tmp_path / "gone.zip", name="gone.zip")

    with pytest.raises(PublishPartialFailure):
        publisher.upload_asset(release, artifact)

    assert fake_session.upload_calls == []


class _UnreachableSession:
    def post(self, url, **kwargs):  # type: ignore[no-untyped-def]
        raise RequestsConnectionError("connection refused")


def test_transport_error_on_create() -> None:
    publisher = ReleasePublisher("owner/rpfm", "s3cret", session=_UnreachableSession())  # type: ignore[arg-type]

    with pytest.raises(PublishError, match="connection refused"):
        publisher.create_release("v2.0.1", "Release v2.0.1", "notes")


def test_same_tag_is_not_created_twice(fake_session) -> None:  # type: ignore[no-untyped-def]
    publisher = ReleasePublisher("owner/rpfm", "s3cret", session=fake_session)
    publisher.create_release("v2.0.1", "Release v2.0.1", "notes")

    with pytest.raises(PublishError, match="already created"):
        publisher.create_release("v2.0.1", "Release v2.0.1", "notes")

    assert len(fake_session.create_calls) == 1


def test_custom_api_url_and_flags(fake_session) -> None:  # type: ignore[no-untyped-def]
    publisher = ReleasePublisher("owner/rpfm", "s3cret", api_url="https://ghe.example.com/api/v3/", session=fake_session)

    release = publisher.create_release("v3.0.0-beta", "Beta", "notes", draft=True, prerelease=True)

    call = fake_session.create_calls[0]
    assert call["url"] == "https://ghe.example.com/api/v3/repos/owner/rpfm/releases"
    assert call["json"]["draft"] is True
    assert call["json"]["prerelease"] is True
    assert release.draft is True
