"""Scripts, profiles and workers referenced by tasks.

Uploads arrive either as JSON bodies or as files. Scripts must be `.js` or
`.ts` and take their name from the filename; profiles are JSON documents whose
keys may be snake_case or camelCase, with unknown keys folded into
`custom_field`. Form fields sent with a profile upload override the document.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import PurePath
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from task_center.errors import ConflictError, NotFoundError, ValidationError
from task_center.storage.base import ConsoleStorage
from task_center.storage.models import (
    ProfileCreate,
    ProfileFields,
    ProfileRecord,
    ProfileUpdate,
    ScriptCreate,
    ScriptRecord,
    ScriptUpdate,
    WorkerCreate,
    WorkerRecord,
    WorkerUpdate,
)

logger = logging.getLogger(__name__)

SCRIPT_EXTENSIONS = (".js", ".ts")
PROFILE_EXTENSION = ".json"

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])([A-Z])")
_PROFILE_KEYS = frozenset(ProfileFields.model_fields) | {"name"}
_PROFILE_DOCUMENT_EXCLUDE = {"id", "created_at", "updated_at"}
_VIEWPORT_ALIASES = {"width": "viewport_width", "height": "viewport_height"}


def _snake_case(key: str) -> str:
    return _CAMEL_BOUNDARY.sub(r"_\1", key).lower()


def _pydantic_details(exc: PydanticValidationError) -> list[dict[str, Any]]:
    return json.loads(exc.json(include_url=False))


def script_name_from_filename(filename: str) -> str:
    """`login.flow.js` -> `login.flow`; other extensions are rejected."""
    path = PurePath(filename.strip())
    if path.suffix.lower() not in SCRIPT_EXTENSIONS:
        raise ValidationError(f"Script file must end with .js or .ts, got {filename!r}")
    name = path.name[: -len(path.suffix)]
    if not name:
        raise ValidationError(f"Script filename {filename!r} has no name")
    return name


def decode_upload(raw: bytes, *, filename: str, max_bytes: int) -> str:
    if len(raw) > max_bytes:
        raise ValidationError(f"{filename} exceeds the {max_bytes} byte upload limit")
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise ValidationError(f"{filename} is not valid UTF-8") from exc


def _custom_dict(value: Any) -> dict[str, Any]:
    if isinstance(value, str):
        try:
            value = json.loads(value or "{}")
        except json.JSONDecodeError as exc:
            raise ValidationError(f"custom_field is not valid JSON: {exc.msg}") from exc
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValidationError("custom_field must be a JSON object")
    return value


def profile_fields_from_document(document: Any) -> dict[str, Any]:
    """Map a profile JSON document onto profile fields.

    Keys are normalised to snake_case and `width`/`height` stand in for the
    viewport size when the viewport keys are absent. Keys that are not profile
    fields are merged into `custom_field` so nothing in the document is dropped.
    """
    if not isinstance(document, dict):
        raise ValidationError("Profile document must be a JSON object")
    fields: dict[str, Any] = {}
    extras: dict[str, Any] = {}
    for key, value in document.items():
        normalised = _snake_case(str(key))
        if normalised in _PROFILE_KEYS:
            fields[normalised] = value
        elif normalised in _VIEWPORT_ALIASES:
            continue
        elif normalised not in _PROFILE_DOCUMENT_EXCLUDE:
            extras[key] = value
    for alias, field in _VIEWPORT_ALIASES.items():
        if field not in fields and alias in document:
            fields[field] = document[alias]
    if extras:
        fields["custom_field"] = {**extras, **_custom_dict(fields.get("custom_field"))}
    return fields


def merge_profile_fields(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    """Lay `overrides` over `base`; `custom_field` objects are merged key by key."""
    merged = {**base, **overrides}
    if "custom_field" in base and "custom_field" in overrides:
        merged["custom_field"] = {
            **_custom_dict(base["custom_field"]),
            **_custom_dict(overrides["custom_field"]),
        }
    return merged


class CatalogService:
    def __init__(self, storage: ConsoleStorage, *, max_upload_bytes: int = 10 * 1024 * 1024) -> None:
        self.storage = storage
        self.max_upload_bytes = max_upload_bytes

    # Scripts

    def list_scripts(self) -> list[ScriptRecord]:
        return self.storage.list_scripts()

    def get_script(self, script_id: int) -> ScriptRecord:
        script = self.storage.get_script(script_id)
        if script is None:
            raise NotFoundError(f"Script {script_id} not found")
        return script

    def create_script_from_json(self, body: Any) -> ScriptRecord:
        if not isinstance(body, dict):
            raise ValidationError("Script payload must be a JSON object")
        payload = dict(body)
        filename = payload.pop("filename", None)
        if filename is not None:
            if not isinstance(filename, str):
                raise ValidationError("filename must be a string")
            payload.setdefault("name", script_name_from_filename(filename))
        try:
            script = ScriptCreate.model_validate(payload)
        except PydanticValidationError as exc:
            raise ValidationError("Invalid script payload", details=_pydantic_details(exc)) from exc
        return self.create_script(script)

    def create_script_from_upload(
        self, filename: str, raw: bytes, *, description: str = ""
    ) -> ScriptRecord:
        name = script_name_from_filename(filename)
        content = decode_upload(raw, filename=filename, max_bytes=self.max_upload_bytes)
        if not content:
            raise ValidationError(f"{filename} is empty")
        return self.create_script(ScriptCreate(name=name, content=content, description=description))

    def create_script(self, payload: ScriptCreate) -> ScriptRecord:
        if self.storage.get_script_by_name(payload.name) is not None:
            raise ConflictError(f"Script with name {payload.name!r} already exists")
        script = self.storage.create_script(payload)
        logger.info(
            "catalog event=script_created script_id=%s name=%s size=%s",
            script.id,
            script.name,
            script.size,
        )
        return script

    def update_script(self, script_id: int, payload: ScriptUpdate) -> ScriptRecord:
        changes = payload.model_dump(exclude_unset=True, exclude_none=True)
        if not changes:
            return self.get_script(script_id)
        script = self.storage.update_script(script_id, changes)
        if script is None:
            raise NotFoundError(f"Script {script_id} not found")
        return script

    def delete_script(self, script_id: int) -> None:
        if not self.storage.delete_script(script_id):
            raise NotFoundError(f"Script {script_id} not found")
        logger.info("catalog event=script_deleted script_id=%s", script_id)

    def script_download(self, script_id: int) -> tuple[str, str]:
        script = self.get_script(script_id)
        return f"{script.name}.js", script.content

    # Profiles

    def list_profiles(self) -> list[ProfileRecord]:
        return self.storage.list_profiles()

    def get_profile(self, profile_id: int) -> ProfileRecord:
        profile = self.storage.get_profile(profile_id)
        if profile is None:
            raise NotFoundError(f"Profile {profile_id} not found")
        return profile

    def create_profile_from_json(self, body: Any) -> ProfileRecord:
        return self.create_profile(self._validate_profile(profile_fields_from_document(body)))

    def create_profile_from_upload(
        self,
        filename: str,
        raw: bytes,
        *,
        form: dict[str, str] | None = None,
    ) -> ProfileRecord:
        """Create a profile from an uploaded document.

        Non-empty `form` values sent alongside the file win over the document.
        """
        if PurePath(filename).suffix.lower() != PROFILE_EXTENSION:
            raise ValidationError(f"Profile file must end with .json, got {filename!r}")
        text = decode_upload(raw, filename=filename, max_bytes=self.max_upload_bytes)
        try:
            document = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ValidationError(f"{filename} is not valid JSON: {exc.msg}") from exc
        fields = profile_fields_from_document(document)
        if form:
            submitted = {key: value for key, value in form.items() if value.strip()}
            fields = merge_profile_fields(fields, profile_fields_from_document(submitted))
        fields.setdefault("name", PurePath(filename).stem)
        return self.create_profile(self._validate_profile(fields))

    def create_profile(self, payload: ProfileCreate) -> ProfileRecord:
        if self.storage.get_profile_by_name(payload.name) is not None:
            raise ConflictError(f"Profile with name {payload.name!r} already exists")
        profile = self.storage.create_profile(payload)
        logger.info("catalog event=profile_created profile_id=%s name=%s", profile.id, profile.name)
        return profile

    def update_profile(self, profile_id: int, payload: ProfileUpdate) -> ProfileRecord:
        changes = payload.model_dump(exclude_unset=True, exclude_none=True)
        if not changes:
            return self.get_profile(profile_id)
        profile = self.storage.update_profile(profile_id, changes)
        if profile is None:
            raise NotFoundError(f"Profile {profile_id} not found")
        return profile

    def delete_profile(self, profile_id: int) -> None:
        if not self.storage.delete_profile(profile_id):
            raise NotFoundError(f"Profile {profile_id} not found")
        logger.info("catalog event=profile_deleted profile_id=%s", profile_id)

    def profile_document(self, profile_id: int) -> tuple[str, dict[str, Any]]:
        profile = self.get_profile(profile_id)
        document = profile.model_dump(mode="json", exclude=_PROFILE_DOCUMENT_EXCLUDE)
        return f"{profile.name}.json", document

    @staticmethod
    def _validate_profile(fields: dict[str, Any]) -> ProfileCreate:
        try:
            return ProfileCreate.model_validate(fields)
        except PydanticValidationError as exc:
            raise ValidationError("Invalid profile data", details=_pydantic_details(exc)) from exc

    # Workers

    def list_workers(self) -> list[WorkerRecord]:
        return self.storage.list_workers()

    def get_worker(self, worker_id: int) -> WorkerRecord:
        worker = self.storage.get_worker(worker_id)
        if worker is None:
            raise NotFoundError(f"Worker {worker_id} not found")
        return worker

    def create_worker(self, payload: WorkerCreate) -> WorkerRecord:
        if self.storage.get_worker_by_username(payload.username) is not None:
            raise ConflictError(f"Worker {payload.username!r} already exists")
        worker = self.storage.create_worker(payload)
        logger.info("catalog event=worker_created worker_id=%s username=%s", worker.id, worker.username)
        return worker

    def update_worker(self, worker_id: int, payload: WorkerUpdate) -> WorkerRecord:
        changes = payload.model_dump(exclude_unset=True, exclude_none=True)
        if not changes:
            return self.get_worker(worker_id)
        username = changes.get("username")
        if username is not None:
            existing = self.storage.get_worker_by_username(username)
            if existing is not None and existing.id != worker_id:
                raise ConflictError(f"Worker {username!r} already exists")
        worker = self.storage.update_worker(worker_id, changes)
        if worker is None:
            raise NotFoundError(f"Worker {worker_id} not found")
        return worker

    def delete_worker(self, worker_id: int) -> None:
        if not self.storage.delete_worker(worker_id):
            raise NotFoundError(f"Worker {worker_id} not found")
        logger.info("catalog event=worker_deleted worker_id=%s", worker_id)
