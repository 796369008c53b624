"""
ARQ worker — scheduled backups and retention pruning.

Runs as a SEPARATE process from the FastAPI API server.

Start:  arq issuance.worker.WorkerSettings

Schedule:
  full backup        BACKUP_FREQUENCY (hourly at :00, daily at 02:00, weekly Monday 02:00 UTC)
  retention pruning  daily at 03:30 UTC, BACKUP_RETENTION_DAYS
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any
from urllib.parse import urlparse

from arq import cron
from arq.connections import RedisSettings

from issuance.config import Settings

logging.basicConfig(level=logging.INFO, format="%(levelname)s:%(name)s: %(message)s")
logger = logging.getLogger("issuance.worker")


# ── Startup / shutdown hooks ────────────────────────────────────────────────


async def startup(ctx: dict[str, Any]) -> None:
    """Called once when the worker process starts."""
    from issuance.database import init_db
    from issuance.storage import build_blob_store

    settings = Settings()
    ctx["settings"] = settings
    ctx["session_factory"] = init_db(settings.database_url)
    ctx["blob_store"] = build_blob_store(settings)
    logger.info("Worker started: DB pool initialized, blob backend=%s", settings.blob_backend)


async def shutdown(ctx: dict[str, Any]) -> None:
    """Called once when the worker process stops."""
    from issuance.database import dispose_db

    await dispose_db()
    logger.info("Worker shutting down")


# ── Jobs ────────────────────────────────────────────────────────────────────


async def run_full_backup(ctx: dict[str, Any]) -> str:
    from issuance.backups import service

    settings: Settings = ctx["settings"]
    try:
        op = await service.create_full_backup(
            ctx["session_factory"],
            ctx["blob_store"],
            service.BackupSettings.from_settings(settings),
        )
    except Exception:
        logger.exception("Scheduled full backup failed")
        raise
    return op.operation_id


async def run_incremental_backup(ctx: dict[str, Any], since: str | None = None) -> str:
    """Back up changes since ``since`` (ISO 8601) or since the last completed backup."""
    from issuance.backups import service

    settings: Settings = ctx["settings"]
    session_factory = ctx["session_factory"]
    if since is not None:
        since_at = datetime.fromisoformat(since)
    else:
        async with session_factory() as session:
            since_at = await service.last_completed_at(session)
    if since_at is None:
        logger.info("No completed backup yet; running a full backup instead")
        return await run_full_backup(ctx)

    op = await service.create_incremental_backup(
        session_factory,
        ctx["blob_store"],
        since_at,
        service.BackupSettings.from_settings(settings),
    )
    return op.operation_id


async def prune_backups(ctx: dict[str, Any]) -> int:
    from issuance.backups import service

    settings: Settings = ctx["settings"]
    result = await service.cleanup_old_backups(
        ctx["session_factory"], ctx["blob_store"], settings.backup_retention_days
    )
    for error in result.errors:
        logger.warning("Could not prune backup %s: %s", error.target, error.message)
    return result.deleted_count


# ── ARQ worker configuration ──────────────────────────────────────────────


def _redis_settings(settings: Settings) -> RedisSettings:
    """Parse redis_url into ARQ RedisSettings."""
    parsed = urlparse(settings.redis_url)
    return RedisSettings(
        host=parsed.hostname or "localhost",
        port=parsed.port or 6379,
        database=int(parsed.path.lstrip("/") or 0),
        password=parsed.password,
    )


def backup_cron_kwargs(frequency: str) -> dict[str, Any]:
    if frequency == "hourly":
        return {"minute": 0}
    if frequency == "weekly":
        return {"weekday": 0, "hour": 2, "minute": 0}
    return {"hour": 2, "minute": 0}


_settings = Settings()


class WorkerSettings:
    """ARQ reads this class to configure the worker process."""
    functions = [run_full_backup, run_incremental_backup, prune_backups]
    cron_jobs = [
        cron(
            run_full_backup,
            run_at_startup=False,
            unique=True,
            **backup_cron_kwargs(_settings.backup_frequency),
        ),
        cron(prune_backups, hour=3, minute=30, unique=True),
    ]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = _redis_settings(_settings)
    # Backups are sequential by nature; one at a time per worker
    max_jobs = 1
    max_tries = 1
    job_timeout = 3600
    keep_result = 3600
    queue_name = "issuance:tasks"
