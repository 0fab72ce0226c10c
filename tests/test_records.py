from datetime import datetime

import pytest
from sqlalchemy import select

from ai.extractor import UNSPECIFIED
from resumedb import models
from resumedb.auth import Principal, Role
from resumedb.pipelines.records import (
    PermissionDeniedError,
    ResumeChanges,
    ResumeNotFoundError,
    get_resume,
    soft_delete_all,
    soft_delete_resume,
    update_resume,
)

ADMIN = Principal(identity="admin", role=Role.ADMIN)
MEMBER = Principal(identity="member", role=Role.MEMBER)


async def test_get_resume(session, make_resume):
    resume = await make_resume()
    assert (await get_resume(session, resume.id)).name == "Jane Doe"

    with pytest.raises(ResumeNotFoundError):
        await get_resume(session, resume.id + 100)


async def test_inactive_resume_is_not_found(session, make_resume):
    resume = await make_resume(is_active=False)
    with pytest.raises(ResumeNotFoundError):
        await get_resume(session, resume.id)


async def test_update_resume(session, make_resume):
    resume = await make_resume(companies=["Google"], keywords=["Python"])
    updated = await update_resume(
        session,
        resume.id,
        ResumeChanges(major="Mathematics", companies="ibm, delta air lines", keywords=""),
        ADMIN,
    )

    assert updated.name == "Jane Doe"
    assert updated.major == "Mathematics"
    assert sorted(c.name for c in updated.companies) == ["Delta Air Lines", "IBM"]
    assert [k.name for k in updated.keywords] == ["Python"]


async def test_member_cannot_edit_others_resume(session, make_resume):
    resume = await make_resume(uploaded_by="admin")
    resume_id = resume.id
    with pytest.raises(PermissionDeniedError):
        await update_resume(session, resume_id, ResumeChanges(name="Hacked"), MEMBER)

    assert (await get_resume(session, resume_id)).name == "Jane Doe"


async def test_members_are_told_apart_by_identity(session, make_resume):
    resume = await make_resume(uploaded_by="bob")
    resume_id = resume.id
    alice = Principal(identity="alice", role=Role.MEMBER)
    bob = Principal(identity="bob", role=Role.MEMBER)

    with pytest.raises(PermissionDeniedError):
        await soft_delete_resume(session, resume_id, alice)

    deleted = await soft_delete_resume(session, resume_id, bob)
    assert deleted.is_active is False


async def test_uploader_can_edit_own_resume(session, make_resume):
    resume = await make_resume(uploaded_by="member")
    updated = await update_resume(session, resume.id, ResumeChanges(graduation_year="2027"), MEMBER)
    assert updated.graduation_year == "2027"


@pytest.mark.parametrize("year", ["abc", "1850", "20255", "2031"])
async def test_invalid_graduation_year_becomes_unspecified(session, make_resume, year):
    resume = await make_resume(graduation_year="2025")
    updated = await update_resume(session, resume.id, ResumeChanges(graduation_year=year), ADMIN)
    assert updated.graduation_year == UNSPECIFIED


async def test_soft_delete_keeps_record_and_file(session, blob_store, make_resume):
    resume = await make_resume()
    blob_store.blobs[resume.storage_key] = (b"%PDF", "application/pdf")
    now = datetime(2026, 1, 1, 12, 0)

    deleted = await soft_delete_resume(session, resume.id, ADMIN, now=now)

    assert deleted.is_active is False
    assert deleted.deleted_at == now
    assert resume.storage_key in blob_store.blobs
    with pytest.raises(ResumeNotFoundError):
        await get_resume(session, resume.id)


async def test_soft_delete_twice_is_not_found(session, make_resume):
    resume = await make_resume()
    await soft_delete_resume(session, resume.id, ADMIN)
    with pytest.raises(ResumeNotFoundError):
        await soft_delete_resume(session, resume.id, ADMIN)


async def test_soft_delete_all(session, make_resume):
    await make_resume(name="A")
    await make_resume(name="B")
    await make_resume(name="C", is_active=False)

    assert await soft_delete_all(session) == 2
    assert await soft_delete_all(session) == 0

    result = await session.execute(select(models.Resume.deleted_at).where(models.Resume.name.in_(["A", "B"])))
    assert all(value is not None for value in result.scalars())
