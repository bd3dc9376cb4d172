"""GitHub Releases client used for tagged releases."""

from __future__ import annotations

import logging
import re
from typing import Optional, Set

import requests
from pydantic import ValidationError
from requests import Response, Session
from requests.exceptions import RequestException

from ..errors import PublishError, PublishPartialFailure
from ..models import Artifact, ReleaseDraft, UploadAck
from ..schemas.release import AssetResponse, ReleaseResponse

logger = logging.getLogger(__name__)

_URI_TEMPLATE_RE = re.compile(r"\{[^}]*\}$")


class ReleasePublisher:
    """Creates a release record and uploads one asset to it.

    The host does not deduplicate releases by tag, so a publisher refuses to
    create a second release for a tag it has already created.
    """

    def __init__(
        self,
        repo: str,
        token: str,
        *,
        api_url: str = "https://api.github.com",
        session: Optional[Session] = None,
        timeout: float = 30,
    ) -> None:
        self.repo = repo
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._token = token
        self._session = session or requests.Session()
        self._created: Set[str] = set()

    def _headers(self, **extra: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._token}",
            "Accept": "application/vnd.github+json",
            **extra,
        }

    def create_release(
        self,
        tag: str,
        title: str,
        body: str,
        draft: bool = False,
        prerelease: bool = False,
    ) -> ReleaseDraft:
        if tag in self._created:
            raise PublishError(f"Release for tag '{tag}' was already created in this run.")

        url = f"{self.api_url}/repos/{self.repo}/releases"
        payload = {
            "tag_name": tag,
            "name": title,
            "body": body,
            "draft": draft,
            "prerelease": prerelease,
        }
        try:
            response: Response = self._session.post(url, headers=self._headers(), json=payload, timeout=self.timeout)
        except RequestException as exc:
            raise PublishError(f"Create release for '{tag}' failed: {exc}") from exc

        if response.status_code not in (200, 201):
            raise PublishError(
                f"Create release for '{tag}' returned {response.status_code}: {response.text or response.reason}",
                status_code=response.status_code,
            )
        self._created.add(tag)

        try:
            created = ReleaseResponse.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise PublishError(
                f"Create release for '{tag}' returned an unexpected payload: {exc}",
                status_code=response.status_code,
            ) from exc

        logger.info("Created release %s on %s", tag, self.repo)
        return ReleaseDraft(
            tag=tag,
            title=title,
            body=body,
            draft=draft,
            prerelease=prerelease,
            upload_url=_URI_TEMPLATE_RE.sub("", created.upload_url),
            id=created.id,
            html_url=created.html_url,
        )

    def upload_asset(self, release: ReleaseDraft, artifact: Artifact) -> UploadAck:
        """Upload ``artifact`` to the release's upload URL.

        Any failure leaves the release published without the asset and raises
        PublishPartialFailure carrying the release for a later retry.
        """

        headers = self._headers(**{"Content-Type": artifact.content_type})
        try:
            with artifact.path.open("rb") as handle:
                response: Response = self._session.post(
                    release.upload_url,
                    headers=headers,
                    params={"name": artifact.name},
                    data=handle,
                    timeout=self.timeout,
                )
        except (OSError, RequestException) as exc:
            raise PublishPartialFailure(
                f"Upload of {artifact.name} to release '{release.tag}' failed: {exc}",
                release=release,
                artifact=artifact,
            ) from exc

        if response.status_code not in (200, 201):
            raise PublishPartialFailure(
                f"Upload of {artifact.name} to release '{release.tag}' returned "
                f"{response.status_code}: {response.text or response.reason}",
                release=release,
                artifact=artifact,
                status_code=response.status_code,
            )

        download_url: Optional[str] = None
        size = artifact.size
        try:
            asset = AssetResponse.model_validate(response.json())
            download_url = asset.browser_download_url
            size = asset.size or size
        except (ValueError, ValidationError):
            logger.debug("Upload response for %s had no asset payload", artifact.name)

        release.assets.append(artifact.name)
        logger.info("Uploaded %s to release %s", artifact.name, release.tag)
        return UploadAck(name=artifact.name, url=download_url, size=size, status_code=response.status_code)
