"""Shared fixtures: per-test SQLite database, in-memory blob store, fake extractor."""
from __future__ import annotations

import os

# Configure settings before any resumedb module reads them
os.environ.setdefault("DB_URL", "sqlite+aiosqlite:///./resumedb-test.db")
os.environ.setdefault("STORAGE_BACKEND", "database")
os.environ.setdefault("AUTH_ADMIN_TOKEN", "admin-token")
os.environ.setdefault("AUTH_MEMBER_TOKEN", "member-token")
os.environ.setdefault("RETENTION_ENABLED", "false")
os.environ.setdefault("LOG_FORMAT", "text")

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from ai.extractor import ExtractedFields
from resumedb import models
from resumedb.storage import BlobNotFoundError, StorageError

ADMIN_HEADERS = {"Authorization": "Bearer admin-token"}
MEMBER_HEADERS = {"Authorization": "Bearer member-token"}


def make_pdf(text: str = "Jane Doe Computer Science 2025") -> bytes:
    """Build a one-page PDF showing ``text`` in Helvetica."""
    stream = f"BT /F1 12 Tf 72 720 Td ({text}) Tj ET".encode("latin-1")
    objects = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        b"<< /Type /Pages /Kids [3 0 R] /Count 1 >>",
        b"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] /Contents 4 0 R "
        b"/Resources << /Font << /F1 5 0 R >> >> >>",
        b"<< /Length %d >>\nstream\n" % len(stream) + stream + b"\nendstream",
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
    ]
    out = bytearray(b"%PDF-1.4\n")
    offsets = []
    for number, body in enumerate(objects, start=1):
        offsets.append(len(out))
        out += b"%d 0 obj\n" % number + body + b"\nendobj\n"
    xref_offset = len(out)
    out += b"xref\n0 %d\n" % (len(objects) + 1)
    out += b"0000000000 65535 f \n"
    for offset in offsets:
        out += b"%010d 00000 n \n" % offset
    out += b"trailer\n<< /Size %d /Root 1 0 R >>\nstartxref\n%d\n%%%%EOF\n" % (len(objects) + 1, xref_offset)
    return bytes(out)


class InMemoryBlobStore:
    """Blob store double with switchable failures."""

    def __init__(self):
        self.blobs: dict[str, tuple[bytes, str]] = {}
        self.deleted: list[str] = []
        self.fail_put = False
        self.fail_delete = False
        self.fail_sign = False

    async def put(self, content: bytes, key: str, content_type: str = "application/pdf") -> str:
        if self.fail_put:
            raise StorageError("upload refused")
        self.blobs[key] = (content, content_type)
        return f"memory://{key}"

    async def delete(self, key: str) -> None:
        if self.fail_delete:
            raise StorageError("delete refused")
        if key not in self.blobs:
            raise BlobNotFoundError(key)
        del self.blobs[key]
        self.deleted.append(key)

    async def get_signed_read_url(self, key: str, ttl: int) -> str:
        if self.fail_sign:
            raise StorageError("signing refused")
        return f"memory://{key}?ttl={ttl}"

    async def open(self, key: str) -> tuple[bytes, str]:
        if key not in self.blobs:
            raise BlobNotFoundError(key)
        return self.blobs[key]


class FakeExtractor:
    """Returns a fixed ExtractedFields and records the text it was given."""

    def __init__(self, fields: ExtractedFields | None = None, error: Exception | None = None):
        self.fields = fields or ExtractedFields(
            name="Jane Doe",
            major="Computer Science",
            graduation_year="2025",
            companies=["Google", "NVIDIA"],
            keywords=["Python", "C++"],
        )
        self.error = error
        self.calls: list[str] = []

    async def extract_fields(self, raw_text: str) -> ExtractedFields:
        self.calls.append(raw_text)
        if self.error is not None:
            raise self.error
        return self.fields


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=NullPool)

    # pysqlite's own transaction handling breaks SAVEPOINT; let SQLAlchemy emit BEGIN
    @event.listens_for(engine.sync_engine, "connect")
    def _connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(models.Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(bind=engine, expire_on_commit=False, class_=AsyncSession)


@pytest.fixture
async def session(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def blob_store():
    return InMemoryBlobStore()


@pytest.fixture
def extractor():
    return FakeExtractor()


@pytest.fixture
def pdf_bytes():
    return make_pdf()


@pytest.fixture
def make_resume(session):
    """Insert a resume directly, bypassing the upload pipeline."""

    async def _make(
        name: str = "Jane Doe",
        major: str = "Computer Science",
        graduation_year: str = "2025",
        companies: list[str] | None = None,
        keywords: list[str] | None = None,
        **extra,
    ) -> models.Resume:
        from resumedb.pipelines.ingest import find_or_create_companies, find_or_create_keywords

        key = extra.pop("storage_key", f"resumes/{name.lower().replace(' ', '_')}.pdf")
        resume = models.Resume(
            name=name,
            major=major,
            graduation_year=graduation_year,
            pdf_url=f"memory://{key}",
            storage_key=key,
            companies=await find_or_create_companies(session, companies or []),
            keywords=await find_or_create_keywords(session, keywords or []),
            **extra,
        )
        session.add(resume)
        await session.commit()
        return resume

    return _make
