"""Shared test fixtures for bundlesmith tests."""

import base64
import gzip
import io
import os
import subprocess
import tarfile
import threading
from collections.abc import Callable, Iterator
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import NamedTuple

import pytest
import yaml
from typer.testing import CliRunner

GIT_ENV = {
    **os.environ,
    "GIT_AUTHOR_NAME": "Test",
    "GIT_AUTHOR_EMAIL": "test@test.com",
    "GIT_COMMITTER_NAME": "Test",
    "GIT_COMMITTER_EMAIL": "test@test.com",
}

REPO_USERNAME = "user"
REPO_PASSWORD = "pass"
UNAUTHORISED_BODY = b"Unauthorised."

SVC_YAML = """apiVersion: v1
kind: Service
metadata:
  name: app-service
spec:
  selector:
    app: app
  ports:
    - port: 80
"""

DEPLOYMENT_YAML = """apiVersion: apps/v1
kind: Deployment
metadata:
  name: app
spec:
  replicas: 1
  selector:
    matchLabels:
      app: app
  template:
    metadata:
      labels:
        app: app
    spec:
      containers:
        - name: app
          image: nginx:1.25
"""

SIMPLE_FILES = {"svc.yaml": SVC_YAML, "deployment.yaml": DEPLOYMENT_YAML}

CHART_NAME = "testchart"
CHART_VERSION = "0.1.0"

# Nine files, as packaged by `helm package`.
CHART_FILES = {
    "Chart.yaml": f"apiVersion: v2\nname: {CHART_NAME}\nversion: {CHART_VERSION}\n",
    "values.yaml": "replicaCount: 1\nimage:\n  repository: nginx\n",
    ".helmignore": ".git/\n*.swp\n",
    "templates/deployment.yaml": "kind: Deployment\n",
    "templates/service.yaml": "kind: Service\n",
    "templates/configmap.yaml": "kind: ConfigMap\n",
    "templates/serviceaccount.yaml": "kind: ServiceAccount\n",
    "templates/ingress.yaml": "kind: Ingress\n",
    "templates/NOTES.txt": "Thank you for installing {{ .Chart.Name }}.\n",
}


class FakeGitRepo(NamedTuple):
    """A local git repo reachable over file://."""

    url: str
    commit_hash: str
    work_dir: Path


class FakeGitServer(NamedTuple):
    """A running git smart HTTP server."""

    url: str
    commit_hash: str
    requests: list[dict[str, str]]


class FakeHelmRepo(NamedTuple):
    """A running package repository server."""

    url: str
    requests: list[dict[str, str]]


def git_commit_all(work_dir: Path, message: str) -> str:
    """Stage all changes, commit, and return the new commit hash.

    Uses GIT_ENV for deterministic author/committer identity.
    """
    subprocess.run(["git", "add", "-A"], cwd=work_dir, check=True, capture_output=True)
    subprocess.run(
        ["git", "commit", "-m", message],
        cwd=work_dir, check=True, capture_output=True, env=GIT_ENV,
    )
    return subprocess.run(
        ["git", "rev-parse", "HEAD"],
        cwd=work_dir, check=True, capture_output=True, text=True,
    ).stdout.strip()


def write_files(root: Path, files: dict[str, str]) -> None:
    """Write a mapping of relative path → text content under root."""
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)


def create_fake_git_repo(
    tmp_path: Path,
    files: dict[str, str] | None = None,
    name: str = "fake-repo",
) -> FakeGitRepo:
    """Create a git repo with the given files and one commit.

    Args:
        tmp_path: Pytest temporary directory.
        files: Relative path → content; defaults to SIMPLE_FILES.
        name: Directory name of the repo.

    Returns:
        FakeGitRepo with file:// URL and commit hash.
    """
    work_dir = tmp_path / name
    work_dir.mkdir()
    write_files(work_dir, SIMPLE_FILES if files is None else files)

    subprocess.run(["git", "init"], cwd=work_dir, check=True, capture_output=True)
    commit_hash = git_commit_all(work_dir, "Initial")

    return FakeGitRepo(url=f"file://{work_dir}", commit_hash=commit_hash, work_dir=work_dir)


def build_chart_archive(
    files: dict[str, str] | None = None,
    chart_name: str = CHART_NAME,
) -> bytes:
    """Package files as <chart_name>/<path> members of a gzip tarball."""
    buffer = io.BytesIO()
    # Fixed gzip mtime keeps the bytes, and so the digest, stable.
    with gzip.GzipFile(fileobj=buffer, mode="wb", mtime=0) as gz, tarfile.open(fileobj=gz, mode="w") as archive:
        for rel, content in (CHART_FILES if files is None else files).items():
            data = content.encode()
            info = tarfile.TarInfo(name=f"{chart_name}/{rel}")
            info.size = len(data)
            info.mtime = 0
            archive.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


def build_index(entries: dict[str, list[dict]] | None = None) -> bytes:
    """Render an index.yaml; defaults to one version of the test chart."""
    if entries is None:
        entries = {
            CHART_NAME: [
                {
                    "name": CHART_NAME,
                    "version": CHART_VERSION,
                    "urls": [f"{CHART_NAME}-{CHART_VERSION}.tgz"],
                }
            ]
        }
    return yaml.safe_dump({"apiVersion": "v1", "entries": entries}).encode()


def release_definition(repo_url: str, chart: str = CHART_NAME, version: str | None = CHART_VERSION) -> str:
    """Text of a bundle.yaml pulling the test chart from repo_url."""
    helm: dict[str, str] = {"repo": repo_url, "chart": chart}
    if version:
        helm["version"] = version
    return yaml.safe_dump({"helm": helm})


def basic_auth_header(username: str = REPO_USERNAME, password: str = REPO_PASSWORD) -> str:
    """Authorization header value for Basic Auth."""
    return "Basic " + base64.b64encode(f"{username}:{password}".encode()).decode()


def _make_handler(
    files: dict[str, bytes],
    auth_enabled: bool,
    requests: list[dict[str, str]],
) -> type[BaseHTTPRequestHandler]:
    expected = basic_auth_header()

    class Handler(BaseHTTPRequestHandler):
        def do_GET(self) -> None:  # noqa: N802
            requests.append({"path": self.path, "authorization": self.headers.get("Authorization", "")})

            if auth_enabled and self.headers.get("Authorization") != expected:
                self._reply(401, UNAUTHORISED_BODY)
                return

            body = files.get(self.path.lstrip("/"))
            if body is None:
                self._reply(404, b"404 page not found\n")
                return
            self._reply(200, body)

        def _reply(self, status: int, body: bytes) -> None:
            self.send_response(status)
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)

        def log_message(self, format: str, *args: object) -> None:  # noqa: A002
            pass

    return Handler


@pytest.fixture
def serve_helm_repo(monkeypatch: pytest.MonkeyPatch) -> Iterator[Callable[..., FakeHelmRepo]]:
    """Factory fixture starting a package repository on 127.0.0.1.

    The repository serves index.yaml and the test chart archive. With
    auth=True every request without the test Basic Auth credentials gets
    401 "Unauthorised.".
    """
    monkeypatch.setenv("NO_PROXY", "127.0.0.1,localhost")
    monkeypatch.setenv("no_proxy", "127.0.0.1,localhost")
    servers: list[ThreadingHTTPServer] = []

    def _serve(auth: bool = False, files: dict[str, bytes] | None = None) -> FakeHelmRepo:
        if files is None:
            files = {
                "index.yaml": build_index(),
                f"{CHART_NAME}-{CHART_VERSION}.tgz": build_chart_archive(),
            }
        requests: list[dict[str, str]] = []
        server = ThreadingHTTPServer(("127.0.0.1", 0), _make_handler(files, auth, requests))
        threading.Thread(target=server.serve_forever, daemon=True).start()
        servers.append(server)
        return FakeHelmRepo(url=f"http://127.0.0.1:{server.server_address[1]}", requests=requests)

    yield _serve

    for server in servers:
        server.shutdown()
        server.server_close()


# Path of the served repository under the server root.
SERVED_REPO_PATH = "test/private-repo.git"


def _read_request_body(handler: BaseHTTPRequestHandler) -> bytes:
    if handler.headers.get("Transfer-Encoding", "").lower() != "chunked":
        return handler.rfile.read(int(handler.headers.get("Content-Length", 0)))

    chunks = []
    while True:
        size = int(handler.rfile.readline().split(b";")[0].strip(), 16)
        if size == 0:
            break
        chunks.append(handler.rfile.read(size))
        handler.rfile.readline()
    # Trailer section ends with an empty line.
    while handler.rfile.readline() not in (b"\r\n", b"\n", b""):
        pass
    return b"".join(chunks)


def _split_cgi_output(output: bytes) -> tuple[int, list[tuple[str, str]], bytes]:
    head, separator, payload = output.partition(b"\r\n\r\n")
    if not separator:
        head, _, payload = output.partition(b"\n\n")

    status = 200
    headers = []
    for line in head.decode().splitlines():
        name, _, value = line.partition(":")
        value = value.strip()
        if name.lower() == "status":
            status = int(value.split()[0])
        elif name.lower() != "content-length":
            headers.append((name, value))
    return status, headers, payload


def _make_git_handler(
    project_root: Path,
    auth_enabled: bool,
    requests: list[dict[str, str]],
) -> type[BaseHTTPRequestHandler]:
    expected = basic_auth_header()

    class Handler(BaseHTTPRequestHandler):
        def do_GET(self) -> None:  # noqa: N802
            self._handle()

        def do_POST(self) -> None:  # noqa: N802
            self._handle()

        def _handle(self) -> None:
            requests.append(
                {"method": self.command, "path": self.path, "authorization": self.headers.get("Authorization", "")}
            )
            body = _read_request_body(self)

            if auth_enabled and self.headers.get("Authorization") != expected:
                self.send_response(401)
                self.send_header("WWW-Authenticate", 'Basic realm="git"')
                self.send_header("Content-Length", str(len(UNAUTHORISED_BODY)))
                self.end_headers()
                self.wfile.write(UNAUTHORISED_BODY)
                return

            path, _, query = self.path.partition("?")
            env = {key: value for key, value in os.environ.items() if not key.startswith("GIT_")}
            env.update(
                {
                    "GIT_PROJECT_ROOT": str(project_root),
                    "GIT_HTTP_EXPORT_ALL": "1",
                    "REQUEST_METHOD": self.command,
                    "PATH_INFO": path,
                    "QUERY_STRING": query,
                    "CONTENT_TYPE": self.headers.get("Content-Type", ""),
                    "CONTENT_LENGTH": str(len(body)),
                    "REMOTE_ADDR": self.client_address[0],
                    "REMOTE_USER": REPO_USERNAME,
                }
            )
            for header, variable in (
                ("Content-Encoding", "HTTP_CONTENT_ENCODING"),
                ("Git-Protocol", "HTTP_GIT_PROTOCOL"),
            ):
                if header in self.headers:
                    env[variable] = self.headers[header]

            result = subprocess.run(["git", "http-backend"], input=body, env=env, capture_output=True, check=True)
            status, headers, payload = _split_cgi_output(result.stdout)

            self.send_response(status)
            for name, value in headers:
                self.send_header(name, value)
            self.send_header("Content-Length", str(len(payload)))
            self.end_headers()
            self.wfile.write(payload)

        def log_message(self, format: str, *args: object) -> None:  # noqa: A002
            pass

    return Handler


@pytest.fixture
def serve_git_repo(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[Callable[..., FakeGitServer]]:
    """Factory fixture serving a git repository over smart HTTP on 127.0.0.1.

    The repository is a bare copy of a fake repo with the given files, served
    by `git http-backend` with partial clone enabled. With auth=True (the
    default) every request without the test Basic Auth credentials gets 401.
    """
    monkeypatch.setenv("NO_PROXY", "127.0.0.1,localhost")
    monkeypatch.setenv("no_proxy", "127.0.0.1,localhost")
    servers: list[ThreadingHTTPServer] = []

    def _serve(files: dict[str, str] | None = None, auth: bool = True) -> FakeGitServer:
        index = len(servers)
        origin = create_fake_git_repo(tmp_path, files, name=f"origin-{index}")
        project_root = tmp_path / f"git-server-{index}"
        bare = project_root / SERVED_REPO_PATH
        bare.parent.mkdir(parents=True)
        subprocess.run(["git", "clone", "--bare", str(origin.work_dir), str(bare)], check=True, capture_output=True)
        for key in ("uploadpack.allowFilter", "uploadpack.allowAnySHA1InWant"):
            subprocess.run(["git", "config", key, "true"], cwd=bare, check=True, capture_output=True)

        requests: list[dict[str, str]] = []
        server = ThreadingHTTPServer(("127.0.0.1", 0), _make_git_handler(project_root, auth, requests))
        threading.Thread(target=server.serve_forever, daemon=True).start()
        servers.append(server)
        return FakeGitServer(
            url=f"http://127.0.0.1:{server.server_address[1]}/{SERVED_REPO_PATH}",
            commit_hash=origin.commit_hash,
            requests=requests,
        )

    yield _serve

    for server in servers:
        server.shutdown()
        server.server_close()


@pytest.fixture
def cli_runner() -> CliRunner:
    """Provide a Typer CLI test runner."""
    return CliRunner()
