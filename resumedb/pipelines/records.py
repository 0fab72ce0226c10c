"""Single-resume operations: fetch, edit, and soft delete."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ai.extractor import UNSPECIFIED

from .. import models
from ..auth import Principal, Role
from .ingest import find_or_create_companies, find_or_create_keywords
from .normalization import is_valid_year, split_csv, truncate_field

logger = logging.getLogger(__name__)


class ResumeNotFoundError(Exception):
    """Raised when no active resume has the requested id."""

    def __init__(self, resume_id: int):
        super().__init__(f"Resume {resume_id} not found")
        self.resume_id = resume_id


class PermissionDeniedError(Exception):
    """Raised when the caller may not modify a resume."""
    pass


@dataclass
class ResumeChanges:
    """Fields to change; ``None`` and empty values leave the field as is."""
    name: str | None = None
    major: str | None = None
    graduation_year: str | None = None
    companies: str | None = None
    keywords: str | None = None


async def get_resume(session: AsyncSession, resume_id: int) -> models.Resume:
    """Fetch an active resume.

    Raises:
        ResumeNotFoundError: If the resume does not exist or was deleted
    """
    result = await session.execute(
        select(models.Resume).where(models.Resume.id == resume_id, models.Resume.is_active.is_(True))
    )
    resume = result.scalar_one_or_none()
    if resume is None:
        raise ResumeNotFoundError(resume_id)
    return resume


def _check_can_modify(resume: models.Resume, principal: Principal) -> None:
    if principal.role != Role.ADMIN and resume.uploaded_by != principal.identity:
        logger.warning(f"{principal.identity} denied access to resume {resume.id}")
        raise PermissionDeniedError("Permission denied.")


async def update_resume(
    session: AsyncSession,
    resume_id: int,
    changes: ResumeChanges,
    principal: Principal,
) -> models.Resume:
    """Apply ``changes`` to an active resume in one transaction.

    Company and keyword lists replace the existing links when given.

    Raises:
        ResumeNotFoundError: Unknown or deleted resume
        PermissionDeniedError: Caller is neither admin nor the uploader
    """
    try:
        resume = await get_resume(session, resume_id)
        _check_can_modify(resume, principal)

        if changes.name and changes.name.strip():
            resume.name = truncate_field(changes.name.strip())
        if changes.major and changes.major.strip():
            resume.major = truncate_field(changes.major.strip())
        if changes.graduation_year and changes.graduation_year.strip():
            graduation_year = changes.graduation_year.strip()
            if not is_valid_year(graduation_year):
                logger.warning(
                    f"Invalid graduation year {graduation_year!r} for resume {resume_id}, using '{UNSPECIFIED}'"
                )
                graduation_year = UNSPECIFIED
            resume.graduation_year = graduation_year
        if changes.companies:
            resume.companies = await find_or_create_companies(session, split_csv(changes.companies))
        if changes.keywords:
            resume.keywords = await find_or_create_keywords(session, split_csv(changes.keywords))

        await session.commit()
    except Exception:
        await session.rollback()
        raise

    await session.refresh(resume)
    logger.info(f"Resume {resume_id} updated by {principal.identity}")
    return resume


async def soft_delete_resume(
    session: AsyncSession,
    resume_id: int,
    principal: Principal,
    *,
    now: datetime | None = None,
) -> models.Resume:
    """Mark a resume inactive. Its file stays until the retention sweep.

    Raises:
        ResumeNotFoundError: Unknown or already deleted resume
        PermissionDeniedError: Caller is neither admin nor the uploader
    """
    try:
        resume = await get_resume(session, resume_id)
        _check_can_modify(resume, principal)
        resume.is_active = False
        resume.deleted_at = now or models.utcnow()
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    logger.info(f"Resume {resume_id} soft-deleted by {principal.identity}")
    return resume


async def soft_delete_all(session: AsyncSession, *, now: datetime | None = None) -> int:
    """Soft delete every active resume; returns how many were affected."""
    deleted_at = now or models.utcnow()
    try:
        result = await session.execute(
            update(models.Resume)
            .where(models.Resume.is_active.is_(True))
            .values(is_active=False, deleted_at=deleted_at)
            .execution_options(synchronize_session=False)
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    count = result.rowcount or 0
    logger.info(f"Soft-deleted {count} resumes")
    return count
