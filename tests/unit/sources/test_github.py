"""Tests for the GitHub source client."""

from __future__ import annotations

import base64
import io
import json
import subprocess
import urllib.error
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from repochat.errors import SourceUnavailable
from repochat.sources.github import (
    Credentials,
    GitHubClient,
    make_source_client,
    parse_repo_url,
    sanitise_url,
)


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def _fake_clone(files: dict[str, str]):
    """subprocess.run side effect that materialises *files* in the clone dest."""

    def _run(cmd, **kwargs):
        dest = Path(cmd[-1])
        for rel, text in files.items():
            target = dest / rel
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(text)
        return subprocess.CompletedProcess(cmd, 0, "", "")

    return _run


def _json_response(data) -> MagicMock:
    resp = MagicMock()
    resp.read.return_value = json.dumps(data).encode("utf-8")
    resp.__enter__.return_value = resp
    resp.__exit__.return_value = False
    return resp


# ------------------------------------------------------------------
# URL helpers
# ------------------------------------------------------------------


@pytest.mark.parametrize(
    "url, expected",
    [
        ("https://github.com/octo/hello", ("octo", "hello")),
        ("https://github.com/octo/hello.git", ("octo", "hello")),
        ("https://github.com/octo/hello/tree/main", ("octo", "hello")),
        ("git@github.com:octo/hello.git", ("octo", "hello")),
        ("https://github.com/octo", None),
        ("not a url", None),
    ],
)
def test_parse_repo_url(url, expected):
    assert parse_repo_url(url) == expected


def test_sanitise_url_masks_credentials():
    assert sanitise_url("https://ghp_secret@github.com/o/r") == "https://***@github.com/o/r"


def test_credentials_repr_hides_token():
    assert "ghp" not in repr(Credentials(token="ghp_secret"))


def test_credentials_from_env(monkeypatch):
    monkeypatch.setenv("GITHUB_TOKEN", "ghp_x")
    assert Credentials.from_env().token == "ghp_x"
    monkeypatch.delenv("GITHUB_TOKEN")
    assert Credentials.from_env().token is None


def test_make_source_client_per_credentials():
    a = make_source_client(Credentials("a"))
    b = make_source_client(Credentials("b"))
    assert a is not b


# ------------------------------------------------------------------
# Snapshot
# ------------------------------------------------------------------


def test_snapshot_yields_checkout_and_cleans_up():
    client = GitHubClient(Credentials())
    with patch("repochat.sources.github.subprocess.run",
               side_effect=_fake_clone({"README.md": "hi"})):
        with client.fetch_default_branch_snapshot("https://github.com/o/r") as root:
            assert (root / "README.md").read_text() == "hi"
            tmp_parent = root.parent
    assert not tmp_parent.exists()


def test_snapshot_cleans_up_on_error():
    client = GitHubClient(Credentials())
    seen: list[Path] = []
    with patch("repochat.sources.github.subprocess.run",
               side_effect=_fake_clone({"a.py": "x"})):
        with pytest.raises(RuntimeError):
            with client.fetch_default_branch_snapshot("https://github.com/o/r") as root:
                seen.append(root.parent)
                raise RuntimeError("boom")
    assert not seen[0].exists()


def test_snapshot_injects_token_shell_false():
    client = GitHubClient(Credentials(token="ghp_secret"))
    with patch("repochat.sources.github.subprocess.run",
               side_effect=_fake_clone({})) as run:
        with client.fetch_default_branch_snapshot("https://github.com/o/r", timeout=5):
            pass
    cmd = run.call_args.args[0]
    assert cmd[:4] == ["git", "clone", "--depth", "1"]
    assert "https://ghp_secret@github.com/o/r" in cmd
    assert run.call_args.kwargs["shell"] is False
    assert run.call_args.kwargs["timeout"] == 5


def test_snapshot_rejects_bad_scheme():
    client = GitHubClient(Credentials())
    with pytest.raises(SourceUnavailable, match="Unsupported URL scheme"):
        with client.fetch_default_branch_snapshot("file:///etc"):
            pass


def test_clone_failure_hides_token():
    client = GitHubClient(Credentials(token="ghp_secret"))
    err = subprocess.CalledProcessError(
        128, ["git"], stderr="fatal: could not read https://ghp_secret@github.com/o/r"
    )
    with patch("repochat.sources.github.subprocess.run", side_effect=err):
        with pytest.raises(SourceUnavailable) as exc_info:
            with client.fetch_default_branch_snapshot("https://github.com/o/r"):
                pass
    assert "ghp_secret" not in str(exc_info.value)


def test_clone_timeout_maps_to_source_unavailable():
    client = GitHubClient(Credentials())
    with patch("repochat.sources.github.subprocess.run",
               side_effect=subprocess.TimeoutExpired(["git"], 1)):
        with pytest.raises(SourceUnavailable, match="timed out"):
            with client.fetch_default_branch_snapshot("https://github.com/o/r", timeout=1):
                pass


def test_git_missing_maps_to_source_unavailable():
    client = GitHubClient(Credentials())
    with patch("repochat.sources.github.subprocess.run", side_effect=FileNotFoundError()):
        with pytest.raises(SourceUnavailable, match="git executable"):
            with client.fetch_default_branch_snapshot("https://github.com/o/r"):
                pass


# ------------------------------------------------------------------
# REST API
# ------------------------------------------------------------------


def test_read_file_decodes_content():
    payload = {"content": base64.b64encode(b"print('hi')\n").decode(), "sha": "abc"}
    client = GitHubClient(Credentials(token="t"))
    with patch("repochat.sources.github.urllib.request.urlopen",
               return_value=_json_response(payload)) as urlopen:
        f = client.read_file("o", "r", "src/main.py")
    assert f.content == "print('hi')\n"
    assert f.sha == "abc"
    req = urlopen.call_args.args[0]
    assert req.full_url.endswith("/repos/o/r/contents/src/main.py")
    assert req.get_header("Authorization") == "Bearer t"


def test_read_file_directory_raises():
    client = GitHubClient(Credentials())
    with patch("repochat.sources.github.urllib.request.urlopen",
               return_value=_json_response([{"name": "a"}])):
        with pytest.raises(SourceUnavailable, match="directory"):
            client.read_file("o", "r", "src")


def test_http_error_maps_to_source_unavailable():
    client = GitHubClient(Credentials())
    err = urllib.error.HTTPError("u", 404, "Not Found", {}, io.BytesIO(b""))
    with patch("repochat.sources.github.urllib.request.urlopen", side_effect=err):
        with pytest.raises(SourceUnavailable, match="404"):
            client.read_file("o", "r", "missing.py")


def test_list_repositories():
    payload = [{
        "id": 1, "full_name": "o/r", "description": None,
        "html_url": "https://github.com/o/r", "private": True,
        "stargazers_count": 7, "updated_at": "2024-01-01T00:00:00Z",
    }]
    client = GitHubClient(Credentials(token="t"))
    with patch("repochat.sources.github.urllib.request.urlopen",
               return_value=_json_response(payload)):
        repos = client.list_repositories()
    assert len(repos) == 1
    assert repos[0].name == "o/r"
    assert repos[0].private is True
    assert repos[0].stars == 7
