from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional

import pytest

from rpfm_release import secrets
from rpfm_release.executor import CommandResult


class FakeRunner:
    """Records commands and answers with scripted exit codes."""

    def __init__(self, decide: Optional[Callable[[str, Mapping[str, str]], int]] = None) -> None:
        self.decide = decide or (lambda command, env: 0)
        self.calls: List[Dict[str, Any]] = []

    def run(self, command, *, shell, cwd, env, timeout):  # type: ignore[no-untyped-def]
        self.calls.append({"command": command, "shell": shell, "cwd": cwd, "env": dict(env), "timeout": timeout})
        return CommandResult(exit_code=self.decide(command, env), stdout=f"ran {command}\n")

    @property
    def commands(self) -> List[str]:
        return [call["command"] for call in self.calls]


class FakeResponse:
    def __init__(self, status_code: int = 201, payload: Optional[Dict[str, Any]] = None, text: str = "") -> None:
        self.status_code = status_code
        self._payload = payload
        self.text = text
        self.reason = "Created" if status_code < 400 else "Error"

    def json(self) -> Dict[str, Any]:
        if self._payload is None:
            raise ValueError("no JSON body")
        return self._payload


class FakeSession:
    """Stands in for requests.Session; answers create and upload calls."""

    def __init__(self, *, create_status: int = 201, upload_status: int = 201) -> None:
        self.create_status = create_status
        self.upload_status = upload_status
        self.calls: List[Dict[str, Any]] = []

    def post(self, url: str, **kwargs: Any) -> FakeResponse:
        call = {"url": url, **kwargs}
        if "data" in kwargs:
            call["body"] = kwargs["data"].read()
        self.calls.append(call)
        if url.endswith("/releases"):
            if self.create_status >= 400:
                return FakeResponse(self.create_status, text="validation failed")
            return FakeResponse(
                self.create_status,
                {
                    "id": 7,
                    "tag_name": kwargs["json"]["tag_name"],
                    "html_url": "https://github.com/owner/rpfm/releases/tag/" + kwargs["json"]["tag_name"],
                    "upload_url": "https://uploads.github.com/repos/owner/rpfm/releases/7/assets{?name,label}",
                },
            )
        if self.upload_status >= 400:
            return FakeResponse(self.upload_status, text="upload rejected")
        name = kwargs["params"]["name"]
        return FakeResponse(
            self.upload_status,
            {
                "id": 99,
                "name": name,
                "size": len(call["body"]),
                "browser_download_url": f"https://github.com/owner/rpfm/releases/download/v/{name}",
            },
        )

    @property
    def create_calls(self) -> List[Dict[str, Any]]:
        return [call for call in self.calls if call["url"].endswith("/releases")]

    @property
    def upload_calls(self) -> List[Dict[str, Any]]:
        return [call for call in self.calls if "params" in call]


@pytest.fixture()
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture()
def fake_session() -> FakeSession:
    return FakeSession()


@pytest.fixture(autouse=True)
def _isolate_secret_resolvers(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(secrets, "_resolvers", [])
    secrets.register_resolver(secrets.EnvResolver(), priority=0, name="env", source="env")


@pytest.fixture()
def release_workspace(tmp_path: Path) -> Path:
    """A checkout holding build outputs, assets and a changelog."""

    (tmp_path / "target" / "release").mkdir(parents=True)
    (tmp_path / "target" / "release" / "rpfm_ui.exe").write_bytes(b"MZ-fake-binary")
    (tmp_path / "LICENSE").write_text("MIT\n", encoding="utf-8")
    (tmp_path / "locale").mkdir()
    (tmp_path / "locale" / "English_en.ftl").write_text("hello = Hello\n", encoding="utf-8")
    (tmp_path / "img" / "icons").mkdir(parents=True)
    (tmp_path / "img" / "rpfm.png").write_bytes(b"\x89PNG")
    (tmp_path / "img" / "icons" / "pack.png").write_bytes(b"\x89PNG-icon")
    (tmp_path / "CHANGELOG.md").write_text(
        "# Changelog\n\n## [Unreleased]\n### Added\n- Table search.\n\n## [2.0.0] - 2020-01-01\n- Older.\n",
        encoding="utf-8",
    )
    return tmp_path


@pytest.fixture()
def make_runner() -> Callable[..., FakeRunner]:
    return FakeRunner


@pytest.fixture()
def make_session() -> Callable[..., FakeSession]:
    return FakeSession
