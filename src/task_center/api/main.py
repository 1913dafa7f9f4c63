"""FastAPI app entrypoint for task-center."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any, TypeVar

from fastapi import FastAPI, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import HTMLResponse, JSONResponse
from starlette.datastructures import UploadFile

from task_center import __version__
from task_center.api.ui import render_homepage
from task_center.config.settings import Settings, get_settings
from task_center.engine.catalog import CatalogService
from task_center.engine.status import TaskStatusEngine
from task_center.errors import ConsoleError, NotFoundError, ValidationError
from task_center.simulator.gateway import EngineGateway
from task_center.simulator.run_simulator import RunSimulator
from task_center.simulator.scheduler import Scheduler
from task_center.storage.base import ConsoleStorage
from task_center.storage.memory import InMemoryConsoleStorage
from task_center.storage.models import (
    CreateTaskRequest,
    ProfileRecord,
    ProfileUpdate,
    ScriptRecord,
    ScriptUpdate,
    TaskRecord,
    TaskStatus,
    TransitionRequest,
    UpdateTaskRequest,
    WorkerCreate,
    WorkerRecord,
    WorkerUpdate,
)
from task_center.storage.postgres import PostgresConsoleStorage

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _build_storage(settings: Settings) -> ConsoleStorage:
    if settings.storage_backend == "memory":
        return InMemoryConsoleStorage()
    database_url = settings.resolved_database_url()
    if not database_url:
        raise RuntimeError(
            "Missing database URL. Set TASK_CENTER_DATABASE_URL or DATABASE_URL, "
            "or TASK_CENTER_STORAGE_BACKEND=memory for a throwaway console."
        )
    return PostgresConsoleStorage(database_url)


def _ensure_runtime_state(
    app: FastAPI,
    *,
    settings: Settings,
    storage_override: ConsoleStorage | None,
    scheduler: Scheduler | None,
) -> None:
    if not hasattr(app.state, "storage"):
        app.state.storage = storage_override or _build_storage(settings)
        app.state.storage.migrate()

    if not hasattr(app.state, "settings"):
        app.state.settings = settings

    if not hasattr(app.state, "engine"):
        app.state.engine = TaskStatusEngine(
            app.state.storage,
            enforce_edit_lock=settings.enforce_edit_lock,
        )

    if not hasattr(app.state, "catalog"):
        app.state.catalog = CatalogService(
            app.state.storage,
            max_upload_bytes=settings.max_upload_bytes,
        )

    if not hasattr(app.state, "simulator"):
        app.state.simulator = RunSimulator(EngineGateway(app.state.engine), scheduler=scheduler)


async def _refetch_loop(simulator: RunSimulator, interval_s: float) -> None:
    while True:
        await asyncio.sleep(interval_s)
        try:
            await simulator.refresh()
        except ConsoleError as exc:
            logger.warning("simulator_refetch event=failed error=%s", exc.message)


def create_app(
    *,
    storage: ConsoleStorage | None = None,
    settings_override: Settings | None = None,
    scheduler: Scheduler | None = None,
) -> FastAPI:
    settings = settings_override or get_settings()

    def _init(app: FastAPI) -> None:
        _ensure_runtime_state(
            app,
            settings=settings,
            storage_override=storage,
            scheduler=scheduler,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        _init(app)
        refetch = asyncio.create_task(
            _refetch_loop(app.state.simulator, settings.refetch_interval_s)
        )
        logger.info(
            "app_lifespan event=started backend=%s refetch_interval_s=%s",
            type(app.state.storage).__name__,
            settings.refetch_interval_s,
        )
        try:
            yield
        finally:
            refetch.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await refetch
            await app.state.simulator.close()
            logger.info("app_lifespan event=stopped")

    app = FastAPI(
        title=settings.app_name, version=__version__, debug=settings.app_debug, lifespan=lifespan
    )

    # Keep test paths reliable when lifespan is not executed by the client.
    if storage is not None:
        _init(app)

    def _state(request: Request) -> Any:
        if not hasattr(request.app.state, "simulator"):
            _init(request.app)
        return request.app.state

    async def _threaded(func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        return await asyncio.to_thread(func, *args, **kwargs)

    async def _transition(
        request: Request, action: Callable[[int], TaskRecord], task_id: int
    ) -> TaskRecord:
        record = await _threaded(action, task_id)
        _state(request).simulator.observe(record)
        return record

    async def _settle(
        request: Request, task_id: int, persist: Awaitable[TaskRecord] | None
    ) -> TaskRecord:
        if persist is not None:
            return await persist
        return await _threaded(_state(request).engine.get_task, task_id)

    async def _track(request: Request, task_id: int) -> RunSimulator:
        simulator: RunSimulator = _state(request).simulator
        if not simulator.is_tracked(task_id):
            await simulator.refresh()
        return simulator

    async def _json_body(request: Request) -> Any:
        try:
            return await request.json()
        except ValueError as exc:
            raise ValidationError("Request body must be valid JSON") from exc

    async def _upload(request: Request) -> tuple[UploadFile, dict[str, str]] | None:
        content_type = request.headers.get("content-type", "")
        if not content_type.startswith("multipart/form-data"):
            return None
        form = await request.form()
        upload = form.get("file")
        if not isinstance(upload, UploadFile):
            raise ValidationError("Multipart upload requires a 'file' field")
        fields = {key: value for key, value in form.items() if isinstance(value, str)}
        return upload, fields

    @app.exception_handler(ConsoleError)
    async def console_error_handler(request: Request, exc: ConsoleError) -> JSONResponse:
        payload: dict[str, Any] = {"error": exc.message}
        if exc.details is not None:
            payload["details"] = exc.details
        if exc.status_code >= 500:
            logger.warning(
                "request event=failed path=%s status=%s error=%s",
                request.url.path,
                exc.status_code,
                exc.message,
            )
        return JSONResponse(payload, status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        details = [
            {key: value for key, value in error.items() if key in ("loc", "msg", "type")}
            for error in exc.errors()
        ]
        return JSONResponse(
            {"error": "Invalid request", "details": jsonable_encoder(details)},
            status_code=400,
        )

    @app.get("/", response_class=HTMLResponse)
    def home() -> str:
        return render_homepage(
            app_name=settings.app_name,
            refetch_interval_s=settings.refetch_interval_s,
        )

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok", "service": settings.app_name}

    # Tasks

    @app.get("/api/tasks", response_model=list[TaskRecord])
    def list_tasks(
        request: Request,
        status: TaskStatus | None = None,
        worker_id: int | None = None,
    ) -> list[TaskRecord]:
        return _state(request).engine.list_tasks(status=status, worker_id=worker_id)

    @app.post("/api/tasks", response_model=TaskRecord, status_code=201)
    async def create_task(payload: CreateTaskRequest, request: Request) -> TaskRecord:
        record = await _threaded(_state(request).engine.create_task, payload)
        _state(request).simulator.observe(record)
        return record

    @app.get("/api/tasks/stats")
    def task_stats(request: Request) -> dict[str, int]:
        return _state(request).engine.status_counts()

    @app.get("/api/tasks/{task_id}", response_model=TaskRecord)
    def get_task(task_id: int, request: Request) -> TaskRecord:
        return _state(request).engine.get_task(task_id)

    @app.put("/api/tasks/{task_id}", response_model=TaskRecord)
    async def update_task(task_id: int, payload: UpdateTaskRequest, request: Request) -> TaskRecord:
        record = await _threaded(_state(request).engine.update_task, task_id, payload)
        _state(request).simulator.observe(record)
        return record

    @app.delete("/api/tasks/{task_id}", status_code=204)
    async def delete_task(task_id: int, request: Request) -> Response:
        await _threaded(_state(request).engine.delete_task, task_id)
        _state(request).simulator.forget(task_id)
        return Response(status_code=204)

    @app.post("/api/tasks/{task_id}/transition", response_model=TaskRecord)
    async def transition_task(
        task_id: int, payload: TransitionRequest, request: Request
    ) -> TaskRecord:
        engine: TaskStatusEngine = _state(request).engine
        return await _transition(
            request,
            lambda ident: engine.request_transition(ident, payload.status),
            task_id,
        )

    @app.post("/api/tasks/{task_id}/activate", response_model=TaskRecord)
    async def activate_task(task_id: int, request: Request) -> TaskRecord:
        return await _transition(request, _state(request).engine.activate, task_id)

    @app.post("/api/tasks/{task_id}/deactivate", response_model=TaskRecord)
    async def deactivate_task(task_id: int, request: Request) -> TaskRecord:
        return await _transition(request, _state(request).engine.deactivate, task_id)

    @app.post("/api/tasks/{task_id}/confirm", response_model=TaskRecord)
    async def confirm_task(task_id: int, request: Request) -> TaskRecord:
        return await _transition(request, _state(request).engine.confirm, task_id)

    @app.post("/api/tasks/{task_id}/reject", response_model=TaskRecord)
    async def reject_task(task_id: int, request: Request) -> TaskRecord:
        return await _transition(request, _state(request).engine.reject, task_id)

    @app.post("/api/tasks/{task_id}/run", response_model=TaskRecord)
    async def run_task(task_id: int, request: Request) -> TaskRecord:
        simulator = await _track(request, task_id)
        return await _settle(request, task_id, simulator.run(task_id))

    @app.post("/api/tasks/{task_id}/stop", response_model=TaskRecord)
    async def stop_task(task_id: int, request: Request) -> TaskRecord:
        simulator = await _track(request, task_id)
        return await _settle(request, task_id, simulator.stop(task_id))

    @app.get("/api/tasks/{task_id}/profile", response_model=ProfileRecord)
    def get_task_profile(task_id: int, request: Request) -> ProfileRecord:
        state = _state(request)
        task = state.engine.get_task(task_id)
        if task.profile_id is None:
            raise NotFoundError(f"Task {task_id} uses its worker's default profile")
        return state.catalog.get_profile(task.profile_id)

    @app.get("/api/tasks/{task_id}/script", response_model=ScriptRecord)
    def get_task_script(task_id: int, request: Request) -> ScriptRecord:
        state = _state(request)
        task = state.engine.get_task(task_id)
        return state.catalog.get_script(task.script_id)

    # Simulator

    @app.get("/api/simulator/tasks")
    async def simulator_tasks(request: Request) -> list[dict[str, Any]]:
        return [shadow.to_dict() for shadow in _state(request).simulator.snapshot()]

    @app.post("/api/simulator/refresh")
    async def simulator_refresh(request: Request) -> list[dict[str, Any]]:
        shadows = await _state(request).simulator.refresh()
        return [shadow.to_dict() for shadow in shadows]

    # Scripts

    @app.get("/api/scripts", response_model=list[ScriptRecord])
    def list_scripts(request: Request) -> list[ScriptRecord]:
        return _state(request).catalog.list_scripts()

    @app.post("/api/scripts", response_model=ScriptRecord, status_code=201)
    async def create_script(request: Request) -> ScriptRecord:
        catalog: CatalogService = _state(request).catalog
        upload = await _upload(request)
        if upload is not None:
            file, fields = upload
            raw = await file.read()
            return await _threaded(
                catalog.create_script_from_upload,
                file.filename or "",
                raw,
                description=fields.get("description", ""),
            )
        return await _threaded(catalog.create_script_from_json, await _json_body(request))

    @app.get("/api/scripts/{script_id}", response_model=ScriptRecord)
    def get_script(script_id: int, request: Request) -> ScriptRecord:
        return _state(request).catalog.get_script(script_id)

    @app.put("/api/scripts/{script_id}", response_model=ScriptRecord)
    def update_script(script_id: int, payload: ScriptUpdate, request: Request) -> ScriptRecord:
        return _state(request).catalog.update_script(script_id, payload)

    @app.delete("/api/scripts/{script_id}", status_code=204)
    def delete_script(script_id: int, request: Request) -> Response:
        _state(request).catalog.delete_script(script_id)
        return Response(status_code=204)

    @app.get("/api/scripts/{script_id}/download")
    def download_script(script_id: int, request: Request) -> Response:
        filename, content = _state(request).catalog.script_download(script_id)
        return Response(
            content,
            media_type="text/typescript",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    # Profiles

    @app.get("/api/profiles", response_model=list[ProfileRecord])
    def list_profiles(request: Request) -> list[ProfileRecord]:
        return _state(request).catalog.list_profiles()

    @app.post("/api/profiles", response_model=ProfileRecord, status_code=201)
    async def create_profile(request: Request) -> ProfileRecord:
        catalog: CatalogService = _state(request).catalog
        upload = await _upload(request)
        if upload is not None:
            file, fields = upload
            raw = await file.read()
            return await _threaded(
                catalog.create_profile_from_upload, file.filename or "", raw, form=fields
            )
        return await _threaded(catalog.create_profile_from_json, await _json_body(request))

    @app.get("/api/profiles/{profile_id}", response_model=ProfileRecord)
    def get_profile(profile_id: int, request: Request) -> ProfileRecord:
        return _state(request).catalog.get_profile(profile_id)

    @app.put("/api/profiles/{profile_id}", response_model=ProfileRecord)
    def update_profile(profile_id: int, payload: ProfileUpdate, request: Request) -> ProfileRecord:
        return _state(request).catalog.update_profile(profile_id, payload)

    @app.delete("/api/profiles/{profile_id}", status_code=204)
    def delete_profile(profile_id: int, request: Request) -> Response:
        _state(request).catalog.delete_profile(profile_id)
        return Response(status_code=204)

    @app.get("/api/profiles/{profile_id}/download")
    def download_profile(profile_id: int, request: Request) -> JSONResponse:
        filename, document = _state(request).catalog.profile_document(profile_id)
        return JSONResponse(
            document,
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    # Workers

    @app.get("/api/workers", response_model=list[WorkerRecord])
    def list_workers(request: Request) -> list[WorkerRecord]:
        return _state(request).catalog.list_workers()

    @app.post("/api/workers", response_model=WorkerRecord, status_code=201)
    def create_worker(payload: WorkerCreate, request: Request) -> WorkerRecord:
        return _state(request).catalog.create_worker(payload)

    @app.get("/api/workers/{worker_id}", response_model=WorkerRecord)
    def get_worker(worker_id: int, request: Request) -> WorkerRecord:
        return _state(request).catalog.get_worker(worker_id)

    @app.put("/api/workers/{worker_id}", response_model=WorkerRecord)
    def update_worker(worker_id: int, payload: WorkerUpdate, request: Request) -> WorkerRecord:
        return _state(request).catalog.update_worker(worker_id, payload)

    @app.delete("/api/workers/{worker_id}", status_code=204)
    def delete_worker(worker_id: int, request: Request) -> Response:
        _state(request).catalog.delete_worker(worker_id)
        return Response(status_code=204)

    return app


app = create_app()
