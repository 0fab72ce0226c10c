"""Resume search and filter options.

Only active resumes are ever returned. Filters combine with AND; values
inside one comma-separated filter combine with OR.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import distinct, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from .. import models
from ..config import settings
from ..storage import BlobStore
from .normalization import split_csv

logger = logging.getLogger(__name__)


@dataclass
class ResumeSearchFilters:
    """Search parameters; empty values are ignored."""
    query: str | None = None
    name: str | None = None
    major: str | None = None
    company: str | None = None
    graduation_year: str | None = None
    keyword: str | None = None


@dataclass
class ResumeView:
    """Resume as presented to members."""
    id: int
    name: str
    major: str
    graduation_year: str
    pdf_url: str
    storage_key: str
    uploaded_by: str
    signed_pdf_url: str | None = None
    companies: list[str] = field(default_factory=list)
    keywords: list[str] = field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_model(cls, resume: models.Resume, signed_pdf_url: str | None = None) -> "ResumeView":
        return cls(
            id=resume.id,
            name=resume.name,
            major=resume.major,
            graduation_year=resume.graduation_year,
            pdf_url=resume.pdf_url,
            storage_key=resume.storage_key,
            uploaded_by=resume.uploaded_by,
            signed_pdf_url=signed_pdf_url,
            companies=[company.name for company in resume.companies],
            keywords=[keyword.name for keyword in resume.keywords],
            created_at=resume.created_at,
            updated_at=resume.updated_at,
        )


@dataclass
class FilterOptions:
    """Distinct values available for filtering active resumes."""
    majors: list[str]
    graduation_years: list[str]
    companies: list[str]
    keywords: list[str]


def escape_like(value: str) -> str:
    """Escape LIKE wildcards so user input matches literally."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _contains(column, value: str):
    return column.ilike(f"%{escape_like(value)}%", escape="\\")


async def _matching_ids(session: AsyncSession, model, values: list[str]) -> list[int]:
    result = await session.execute(select(model.id).where(or_(*(_contains(model.name, v) for v in values))))
    return list(result.scalars().all())


async def signed_url_or_none(blob_store: BlobStore, key: str, ttl: int) -> str | None:
    """Signed read URL for ``key``; ``None`` when signing fails."""
    if not key:
        return None
    try:
        return await blob_store.get_signed_read_url(key, ttl)
    except Exception as e:
        logger.error(f"Error generating signed URL for key {key}: {e}")
        return None


async def search_resumes(
    session: AsyncSession,
    blob_store: BlobStore,
    filters: ResumeSearchFilters,
    *,
    signed_url_ttl: int | None = None,
) -> list[ResumeView]:
    """Find active resumes matching ``filters``, newest first.

    Args:
        session: Database session
        blob_store: Used to sign read URLs for each result
        filters: Search parameters
        signed_url_ttl: Lifetime of signed URLs in seconds (default from settings)

    Returns:
        Matching resumes; empty when a company or keyword filter matches nothing
    """
    ttl = signed_url_ttl or settings.storage.signed_url_ttl
    stmt = select(models.Resume).where(models.Resume.is_active.is_(True))

    if filters.query and filters.query.strip():
        query = filters.query.strip()
        stmt = stmt.where(
            or_(
                _contains(models.Resume.name, query),
                _contains(models.Resume.major, query),
                _contains(models.Resume.graduation_year, query),
                models.Resume.companies.any(_contains(models.Company.name, query)),
                models.Resume.keywords.any(_contains(models.Keyword.name, query)),
            )
        )

    if filters.name and filters.name.strip():
        stmt = stmt.where(_contains(models.Resume.name, filters.name.strip()))

    majors = split_csv(filters.major)
    if majors:
        stmt = stmt.where(or_(*(_contains(models.Resume.major, m) for m in majors)))

    years = split_csv(filters.graduation_year)
    if years:
        stmt = stmt.where(models.Resume.graduation_year.in_(years))

    companies = split_csv(filters.company)
    if companies:
        company_ids = await _matching_ids(session, models.Company, companies)
        if not company_ids:
            logger.info(f"No companies match {companies}, returning no resumes")
            return []
        stmt = stmt.where(models.Resume.companies.any(models.Company.id.in_(company_ids)))

    keywords = split_csv(filters.keyword)
    if keywords:
        keyword_ids = await _matching_ids(session, models.Keyword, keywords)
        if not keyword_ids:
            logger.info(f"No keywords match {keywords}, returning no resumes")
            return []
        stmt = stmt.where(models.Resume.keywords.any(models.Keyword.id.in_(keyword_ids)))

    stmt = stmt.order_by(models.Resume.created_at.desc(), models.Resume.id.desc())
    result = await session.execute(stmt)
    resumes = result.scalars().unique().all()

    views = []
    for resume in resumes:
        signed = await signed_url_or_none(blob_store, resume.storage_key, ttl)
        views.append(ResumeView.from_model(resume, signed))

    logger.info(f"Resume search returned {len(views)} results")
    return views


async def _distinct_values(session: AsyncSession, column) -> list[str]:
    result = await session.execute(
        select(distinct(column)).where(models.Resume.is_active.is_(True), column.is_not(None), column != "")
    )
    return sorted(value for value in result.scalars().all() if value)


async def _referenced_names(session: AsyncSession, model, link_column) -> list[str]:
    # link_column is the entity side of an association table
    association = link_column.table
    active_links = (
        select(link_column)
        .join(models.Resume, models.Resume.id == association.c.resume_id)
        .where(models.Resume.is_active.is_(True))
    )
    result = await session.execute(select(model.name).where(model.id.in_(active_links)))
    return sorted(name for name in result.scalars().all() if name)


async def list_filters(session: AsyncSession) -> FilterOptions:
    """Sorted distinct majors, years, companies, and keywords of active resumes."""
    return FilterOptions(
        majors=await _distinct_values(session, models.Resume.major),
        graduation_years=await _distinct_values(session, models.Resume.graduation_year),
        companies=await _referenced_names(session, models.Company, models.resume_companies.c.company_id),
        keywords=await _referenced_names(session, models.Keyword, models.resume_keywords.c.keyword_id),
    )
