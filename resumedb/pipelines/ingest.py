"""Find-or-create helpers for shared reference entities.

Companies and keywords are shared across resumes and unique by name. The
helpers are safe against a concurrent creator: the insert runs inside a
SAVEPOINT and a unique-constraint violation falls back to re-reading the
row the other writer created.
"""

from __future__ import annotations

import logging
from typing import Iterable, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from .. import models
from .normalization import dedupe, title_case

logger = logging.getLogger(__name__)

NamedEntity = TypeVar("NamedEntity", models.Company, models.Keyword)


async def _get_by_name(session: AsyncSession, model: type[NamedEntity], name: str) -> NamedEntity | None:
    result = await session.execute(select(model).where(model.name == name))
    return result.scalar_one_or_none()


async def find_or_create(session: AsyncSession, model: type[NamedEntity], name: str) -> NamedEntity:
    """Return the entity called ``name``, creating it if needed.

    Names are matched exactly; callers normalize them first.

    Raises:
        IntegrityError: If the insert fails and no row can be re-read.
    """
    existing = await _get_by_name(session, model, name)
    if existing is not None:
        return existing

    try:
        async with session.begin_nested():
            entity = model(name=name)
            session.add(entity)
        return entity
    except IntegrityError:
        # Another writer inserted the same name first
        logger.info(f"{model.__name__} '{name}' created concurrently, re-reading")
        existing = await _get_by_name(session, model, name)
        if existing is None:
            raise
        return existing


async def _find_or_create_all(
    session: AsyncSession,
    model: type[NamedEntity],
    names: Iterable[str],
) -> list[NamedEntity]:
    entities: list[NamedEntity] = []
    seen_ids: set[int] = set()
    for name in dedupe(names):
        entity = await find_or_create(session, model, name)
        if entity.id not in seen_ids:
            seen_ids.add(entity.id)
            entities.append(entity)
    return entities


async def find_or_create_companies(session: AsyncSession, names: Iterable[str]) -> list[models.Company]:
    """Resolve company names (title-cased) to Company rows."""
    return await _find_or_create_all(session, models.Company, (title_case(n.strip()) for n in names))


async def find_or_create_keywords(session: AsyncSession, names: Iterable[str]) -> list[models.Keyword]:
    """Resolve keyword names (trimmed) to Keyword rows."""
    return await _find_or_create_all(session, models.Keyword, (n.strip() for n in names))
