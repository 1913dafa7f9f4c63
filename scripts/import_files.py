from __future__ import annotations

import argparse
from dataclasses import dataclass, field
from pathlib import Path

from task_center.config.settings import get_settings
from task_center.engine.catalog import PROFILE_EXTENSION, SCRIPT_EXTENSIONS, CatalogService
from task_center.errors import ConflictError, ValidationError


@dataclass
class ImportSummary:
    scripts: int = 0
    profiles: int = 0
    skipped: list[str] = field(default_factory=list)


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Import .js/.ts scripts and .json profiles from directories into the console."
    )
    parser.add_argument(
        "--scripts-dir",
        type=Path,
        default=None,
        help="Directory holding .js/.ts automation scripts.",
    )
    parser.add_argument(
        "--profiles-dir",
        type=Path,
        default=None,
        help="Directory holding .json browser profiles.",
    )
    parser.add_argument(
        "--database-url",
        type=str,
        default="",
        help="PostgreSQL connection URL (default: TASK_CENTER_DATABASE_URL).",
    )
    return parser.parse_args()


def _files(directory: Path, suffixes: tuple[str, ...]) -> list[Path]:
    if not directory.is_dir():
        raise FileNotFoundError(f"Directory not found: {directory}")
    return sorted(
        path for path in directory.iterdir() if path.is_file() and path.suffix.lower() in suffixes
    )


def import_directories(
    catalog: CatalogService,
    *,
    scripts_dir: Path | None = None,
    profiles_dir: Path | None = None,
) -> ImportSummary:
    """Create one record per file; names already taken are skipped, not overwritten."""
    summary = ImportSummary()
    if scripts_dir is not None:
        for path in _files(scripts_dir, SCRIPT_EXTENSIONS):
            try:
                catalog.create_script_from_upload(path.name, path.read_bytes())
            except (ConflictError, ValidationError) as exc:
                summary.skipped.append(f"{path.name}: {exc.message}")
                continue
            summary.scripts += 1
    if profiles_dir is not None:
        for path in _files(profiles_dir, (PROFILE_EXTENSION,)):
            try:
                catalog.create_profile_from_upload(path.name, path.read_bytes())
            except (ConflictError, ValidationError) as exc:
                summary.skipped.append(f"{path.name}: {exc.message}")
                continue
            summary.profiles += 1
    return summary


def main() -> None:
    args = _parse_args()
    settings = get_settings()
    database_url = args.database_url or settings.resolved_database_url()
    if not database_url:
        raise SystemExit("A database URL is required (--database-url or TASK_CENTER_DATABASE_URL).")

    from task_center.storage.postgres import PostgresConsoleStorage

    storage = PostgresConsoleStorage(database_url)
    storage.migrate()
    catalog = CatalogService(storage, max_upload_bytes=settings.max_upload_bytes)
    summary = import_directories(
        catalog,
        scripts_dir=args.scripts_dir,
        profiles_dir=args.profiles_dir,
    )
    print(f"Imported {summary.scripts} script(s) and {summary.profiles} profile(s).")
    for line in summary.skipped:
        print(f"Skipped {line}")


if __name__ == "__main__":
    main()
