from __future__ import annotations

import json
from pathlib import Path

import httpx
import pytest

from scripts.import_files import import_directories
from scripts.run_remote_simulator import watch
from task_center.engine.catalog import CatalogService
from task_center.errors import PersistenceFailure
from task_center.simulator.gateway import HttpTaskGateway
from task_center.simulator.run_simulator import RunSimulator
from task_center.storage.models import TaskStatus

TASK_PAYLOAD = {
    "id": 7,
    "status": "RUNNING",
    "worker_id": 1,
    "profile_id": None,
    "script_id": 2,
    "respond": "",
    "created_at": "2024-05-01T12:00:00Z",
}


def test_import_directories_creates_scripts_and_profiles(tmp_path: Path, storage) -> None:
    scripts_dir = tmp_path / "scripts"
    profiles_dir = tmp_path / "profiles"
    scripts_dir.mkdir()
    profiles_dir.mkdir()
    (scripts_dir / "login.js").write_text("await page.goto('/login');", encoding="utf-8")
    (scripts_dir / "search.ts").write_text("const q: string = 'shoes';", encoding="utf-8")
    (scripts_dir / "notes.md").write_text("ignored", encoding="utf-8")
    (profiles_dir / "tablet.json").write_text(
        json.dumps({"viewportWidth": 820, "viewportHeight": 1180}), encoding="utf-8"
    )

    summary = import_directories(
        CatalogService(storage),
        scripts_dir=scripts_dir,
        profiles_dir=profiles_dir,
    )

    assert summary.scripts == 2
    assert summary.profiles == 1
    assert summary.skipped == []
    assert sorted(script.name for script in storage.list_scripts()) == ["login", "search"]
    assert storage.get_profile_by_name("tablet").viewport_width == 820


def test_import_directories_skips_taken_names_and_bad_files(
    tmp_path: Path, storage, seed
) -> None:
    (tmp_path / "checkout.js").write_text("duplicate", encoding="utf-8")
    (tmp_path / "empty.js").write_text("", encoding="utf-8")
    (tmp_path / "broken.json").write_text("{", encoding="utf-8")

    summary = import_directories(
        CatalogService(storage),
        scripts_dir=tmp_path,
        profiles_dir=tmp_path,
    )

    assert summary.scripts == 0
    assert summary.profiles == 0
    assert len(summary.skipped) == 3
    assert storage.get_script_by_name("checkout").content.startswith("await page.goto")


def test_import_directories_requires_existing_directory(tmp_path: Path, storage) -> None:
    with pytest.raises(FileNotFoundError):
        import_directories(CatalogService(storage), scripts_dir=tmp_path / "missing")


@pytest.mark.asyncio
async def test_watch_refetches_and_survives_failures(seed, gateway, scheduler) -> None:
    task = seed.task(TaskStatus.RUNNING)
    simulator = RunSimulator(gateway, scheduler=scheduler)
    calls = 0
    list_tasks = gateway.list_tasks

    async def flaky_list_tasks():
        nonlocal calls
        calls += 1
        if calls == 1:
            raise PersistenceFailure("console unreachable")
        return await list_tasks()

    gateway.list_tasks = flaky_list_tasks

    succeeded = await watch(simulator, interval_s=0, cycles=2)

    assert succeeded == 1
    assert simulator.has_timer(task.id)
    await simulator.close()


@pytest.mark.asyncio
async def test_watch_outlives_a_malformed_task_list(scheduler) -> None:
    payloads = iter([[{"id": "seven"}], [dict(TASK_PAYLOAD)]])

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=next(payloads))

    gateway = HttpTaskGateway(
        "http://console.test",
        client=httpx.AsyncClient(
            transport=httpx.MockTransport(handler), base_url="http://console.test"
        ),
    )
    simulator = RunSimulator(gateway, scheduler=scheduler)

    succeeded = await watch(simulator, interval_s=0, cycles=2)

    assert succeeded == 1
    assert simulator.has_timer(TASK_PAYLOAD["id"])
    await simulator.close()
    await gateway.client.aclose()
