import json
import subprocess
import sys
import tempfile
from pathlib import Path
from typing import Any, Dict, List

import httpx
import pytest

# Ensure repository root is on sys.path so the in-tree package imports cleanly.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from lightup.config import load_config  # noqa: E402
from lightup.db.database import SQLiteDatabase  # noqa: E402
from lightup.engines.opencode import OpenCodeClient, OpenCodeConfig  # noqa: E402
from lightup.services.base import ServiceContext  # noqa: E402
from lightup.services.events import EventBroadcaster  # noqa: E402


class FakeOpenCode:
    """In-memory OpenCode runtime served through httpx.MockTransport."""

    def __init__(self) -> None:
        self.requests: List[Dict[str, Any]] = []
        self.sessions: Dict[str, Dict[str, Any]] = {}
        self.fail = False
        self._counter = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content or b"{}") if request.content else {}
        self.requests.append({"method": request.method, "path": request.url.path, "json": body})
        if self.fail:
            return httpx.Response(503, text="runtime down")
        path = request.url.path
        if request.method == "POST" and path == "/session":
            self._counter += 1
            session_id = f"ses-{self._counter}"
            self.sessions[session_id] = {"id": session_id, "status": {"type": "busy"}}
            return httpx.Response(200, json={"id": session_id})
        if request.method == "POST" and path.endswith("/prompt_async"):
            return httpx.Response(204)
        if request.method == "POST" and path.endswith("/abort"):
            return httpx.Response(200, json=True)
        if request.method == "GET" and path.startswith("/session/"):
            session = self.sessions.get(path.rsplit("/", 1)[-1])
            if session is None:
                return httpx.Response(404, json={"error": "not found"})
            return httpx.Response(200, json=session)
        return httpx.Response(404)

    def prompts(self) -> List[str]:
        return [r["json"].get("prompt", "") for r in self.requests if r["path"].endswith("/prompt_async")]


@pytest.fixture
def db(tmp_path: Path) -> SQLiteDatabase:
    database = SQLiteDatabase(tmp_path / "lightup.sqlite")
    database.init_schema()
    return database


@pytest.fixture
def ctx() -> ServiceContext:
    return ServiceContext(config=load_config())


@pytest.fixture
def bus() -> EventBroadcaster:
    return EventBroadcaster()


@pytest.fixture
def opencode() -> FakeOpenCode:
    return FakeOpenCode()


@pytest.fixture
def opencode_client(opencode: FakeOpenCode) -> OpenCodeClient:
    client = OpenCodeClient(
        OpenCodeConfig(base_url="http://opencode.test"),
        transport=httpx.MockTransport(opencode.handler),
    )
    yield client
    client.close()


def git(repo: Path, *args: str) -> str:
    result = subprocess.run(["git", *args], cwd=repo, capture_output=True, text=True, check=True)
    return result.stdout


@pytest.fixture
def git_repo(tmp_path: Path) -> Path:
    """A repository on `main` with one committed file.txt."""
    repo = tmp_path / "repo"
    repo.mkdir()
    git(repo, "init", "-q")
    git(repo, "checkout", "-q", "-b", "main")
    git(repo, "config", "user.email", "dev@example.com")
    git(repo, "config", "user.name", "Lightup Dev")
    git(repo, "config", "commit.gpgsign", "false")
    (repo / "file.txt").write_text("base\n")
    git(repo, "add", "file.txt")
    git(repo, "commit", "-q", "-m", "initial")
    return repo


@pytest.fixture
def conflicting_repo(git_repo: Path) -> Path:
    """`ai/abc-x` and `main` both modify file.txt."""
    git(git_repo, "checkout", "-q", "-b", "ai/abc-x")
    (git_repo / "file.txt").write_text("theirs\n")
    git(git_repo, "commit", "-q", "-am", "branch change")
    git(git_repo, "checkout", "-q", "main")
    (git_repo / "file.txt").write_text("ours\n")
    git(git_repo, "commit", "-q", "-am", "main change")
    return git_repo


@pytest.fixture
def api_env(monkeypatch: pytest.MonkeyPatch):
    """Point the API at a throw-away database with background tasks off."""
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "api.sqlite"
        monkeypatch.setenv("LIGHTUP_DB_PATH", str(db_path))
        monkeypatch.setenv("LIGHTUP_BACKGROUND_TASKS", "false")
        monkeypatch.delenv("LIGHTUP_API_TOKEN", raising=False)
        yield db_path


@pytest.fixture
def api_client(api_env: Path, opencode_client: OpenCodeClient):
    """TestClient whose agent runtime is the in-memory FakeOpenCode."""
    from fastapi.testclient import TestClient

    from lightup.api.app import app
    from lightup.api.dependencies import get_opencode_client

    app.dependency_overrides[get_opencode_client] = lambda: opencode_client
    try:
        with TestClient(app) as client:
            yield client
    finally:
        app.dependency_overrides.pop(get_opencode_client, None)
