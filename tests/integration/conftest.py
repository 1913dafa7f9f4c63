from __future__ import annotations

import os
import socket
import subprocess
import sys
import time
from collections.abc import Iterator
from pathlib import Path

import httpx
import pytest

REPO_ROOT = Path(__file__).resolve().parents[2]


def _pick_free_port() -> int:
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.bind(("127.0.0.1", 0))
            return int(sock.getsockname()[1])
    except PermissionError:
        pytest.skip("Socket operations are blocked in this environment.")


def _wait_for_health(base_url: str, timeout_s: float = 20.0) -> None:
    deadline = time.monotonic() + timeout_s
    while time.monotonic() < deadline:
        try:
            if httpx.get(f"{base_url}/health", timeout=1.0).status_code == 200:
                return
        except httpx.HTTPError:
            pass
        time.sleep(0.2)
    raise TimeoutError(f"Console did not become healthy within {timeout_s:.1f}s")


def _start_console(env: dict[str, str], port: int) -> subprocess.Popen[str]:
    cmd = [
        sys.executable,
        "-m",
        "uvicorn",
        "task_center.api.main:app",
        "--host",
        "127.0.0.1",
        "--port",
        str(port),
    ]
    return subprocess.Popen(  # noqa: S603
        cmd,
        cwd=str(REPO_ROOT),
        env=env,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        text=True,
    )


@pytest.fixture
def console_url() -> Iterator[str]:
    if os.getenv("RUN_POSTGRES_INTEGRATION_TESTS") != "1":
        pytest.skip(
            "Set RUN_POSTGRES_INTEGRATION_TESTS=1 and TASK_CENTER_DATABASE_URL "
            "to run integration tests against PostgreSQL."
        )
    database_url = os.getenv("TASK_CENTER_DATABASE_URL")
    if not database_url:
        pytest.skip("TASK_CENTER_DATABASE_URL is required for integration tests.")

    port = _pick_free_port()
    base_url = f"http://127.0.0.1:{port}"
    env = os.environ.copy()
    env["TASK_CENTER_DATABASE_URL"] = database_url
    env["TASK_CENTER_STORAGE_BACKEND"] = "postgres"
    env["PYTHONPATH"] = os.pathsep.join(
        item for item in (str(REPO_ROOT / "src"), env.get("PYTHONPATH", "")) if item
    )

    console = _start_console(env=env, port=port)
    try:
        _wait_for_health(base_url)
        yield base_url
    finally:
        console.terminate()
        try:
            console.wait(timeout=5)
        except subprocess.TimeoutExpired:
            console.kill()
            console.wait(timeout=5)


@pytest.fixture
def console(console_url: str) -> Iterator[httpx.Client]:
    with httpx.Client(base_url=console_url, timeout=20.0) as client:
        yield client
