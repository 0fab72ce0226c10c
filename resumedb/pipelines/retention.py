"""Retention sweep: permanently remove resumes soft-deleted long enough ago.

Each expired resume is handled on its own. The stored file is deleted
first; the record is deleted regardless of how that went, in its own
commit, so one bad item never blocks the rest of the sweep.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .. import models
from ..storage import BlobNotFoundError, BlobStore

logger = logging.getLogger(__name__)


@dataclass
class SweepItemResult:
    """Outcome for one expired resume."""
    resume_id: int
    name: str
    file_deleted: bool
    record_deleted: bool
    error: str | None = None


@dataclass
class RetentionSummary:
    """Totals for one sweep run."""
    deleted: int = 0
    failures: int = 0
    blob_failures: int = 0
    items: list[SweepItemResult] = field(default_factory=list)


async def purge_expired_resumes(
    session: AsyncSession,
    blob_store: BlobStore,
    *,
    retention_days: int = 30,
    now: datetime | None = None,
) -> RetentionSummary:
    """Hard delete inactive resumes whose ``deleted_at`` is past the retention window.

    Args:
        session: Database session; committed once per deleted record
        blob_store: Store holding the resume files
        retention_days: Days a soft-deleted resume is kept
        now: Reference time (naive UTC), defaults to the current time

    Returns:
        RetentionSummary with per-item outcomes
    """
    now = now or models.utcnow()
    cutoff = now - timedelta(days=retention_days)
    logger.info(f"[Retention] Starting cleanup run at {now.isoformat()} (cutoff {cutoff.isoformat()})")

    result = await session.execute(
        select(models.Resume.id, models.Resume.name, models.Resume.storage_key).where(
            models.Resume.is_active.is_(False),
            models.Resume.deleted_at.is_not(None),
            models.Resume.deleted_at <= cutoff,
        )
    )
    candidates = result.all()
    summary = RetentionSummary()
    if not candidates:
        logger.info("[Retention] No resumes eligible for hard delete.")
        return summary

    logger.info(f"[Retention] Found {len(candidates)} resumes eligible for hard delete.")

    for resume_id, name, storage_key in candidates:
        label = name or "Unnamed"
        file_deleted = False
        error = None

        if storage_key:
            try:
                await blob_store.delete(storage_key)
                file_deleted = True
            except BlobNotFoundError:
                logger.warning(f"[Retention] File for resume {resume_id} ({label}) already missing: {storage_key}")
            except Exception as e:
                summary.blob_failures += 1
                error = f"file: {e}"
                logger.error(f"[Retention] Failed to delete file for resume {resume_id} ({label}): {e}")

        record_deleted = False
        try:
            for link_table in (models.resume_companies, models.resume_keywords):
                await session.execute(delete(link_table).where(link_table.c.resume_id == resume_id))
            await session.execute(delete(models.Resume).where(models.Resume.id == resume_id))
            await session.commit()
            record_deleted = True
            summary.deleted += 1
            logger.info(
                f"[Retention] Permanently deleted resume {resume_id} ({label}). File deleted: {file_deleted}."
            )
        except Exception as e:
            await session.rollback()
            summary.failures += 1
            error = f"record: {e}"
            logger.error(f"[Retention] Failed to delete resume record {resume_id} ({label}): {e}")

        summary.items.append(
            SweepItemResult(
                resume_id=resume_id,
                name=label,
                file_deleted=file_deleted,
                record_deleted=record_deleted,
                error=error,
            )
        )

    logger.info(
        f"[Retention] Cleanup run complete. Permanently deleted {summary.deleted} resumes. "
        f"Failures: {summary.failures}. File failures: {summary.blob_failures}."
    )
    return summary


def seconds_until_next_run(now: datetime, run_hour: int = 0) -> float:
    """Seconds from ``now`` until the next occurrence of ``run_hour``:00."""
    next_run = now.replace(hour=run_hour, minute=0, second=0, microsecond=0)
    if next_run <= now:
        next_run += timedelta(days=1)
    return (next_run - now).total_seconds()


async def run_retention_schedule(
    session_maker: async_sessionmaker[AsyncSession],
    blob_store: BlobStore,
    *,
    run_hour: int = 0,
    retention_days: int = 30,
) -> None:
    """Run the sweep once a day until cancelled."""
    logger.info(f"[Retention] Scheduled daily resume cleanup at {run_hour:02d}:00 UTC.")
    while True:
        await asyncio.sleep(seconds_until_next_run(models.utcnow(), run_hour))
        try:
            async with session_maker() as session:
                await purge_expired_resumes(session, blob_store, retention_days=retention_days)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"[Retention] Error during cleanup run: {e}", exc_info=True)
