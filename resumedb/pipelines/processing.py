"""Resume upload pipeline.

Validates the upload, extracts text and structured fields, resolves final
field values, stores the PDF, links companies and keywords, and creates the
resume record in one transaction. Failures after the PDF is stored roll the
transaction back and remove the stored PDF.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Protocol, Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ai.extractor import UNSPECIFIED, ExtractedFields
from resumedb import models
from resumedb.config import Settings, settings
from resumedb.parsers import extract_text, is_pdf
from resumedb.pipelines.ingest import find_or_create_companies, find_or_create_keywords
from resumedb.pipelines.normalization import (
    dedupe,
    is_valid_year,
    sanitize_key_component,
    split_csv,
    strip_extension,
    title_case,
    truncate_field,
)
from resumedb.storage import BlobNotFoundError, BlobStore, StorageError

logger = logging.getLogger(__name__)


class IngestionStep(str, Enum):
    """Named pipeline steps, in execution order."""
    VALIDATION = "validation"
    RESUME_PARSING = "resume_parsing"
    DATA_PROCESSING = "data_processing"
    FILE_UPLOAD = "file_upload"
    ASSOCIATE_COMPANIES = "associate_companies"
    ASSOCIATE_KEYWORDS = "associate_keywords"
    DATABASE_CREATE = "database_create"
    TRANSACTION_COMMIT = "transaction_commit"


class ClientInputError(Exception):
    """Raised when an upload is rejected before any side effect."""

    def __init__(self, message: str, filename: str | None = None):
        super().__init__(message)
        self.message = message
        self.filename = filename


class IngestionError(Exception):
    """Raised when the pipeline fails after validation."""

    def __init__(self, step: IngestionStep, filename: str, message: str, detail: str | None = None):
        super().__init__(message)
        self.step = step
        self.filename = filename
        self.message = message
        self.detail = detail


class StorageUploadError(IngestionError):
    """Raised when the PDF could not be stored."""
    pass


class PersistenceError(IngestionError):
    """Raised when the resume record could not be created or committed."""
    pass


class FieldExtractor(Protocol):
    async def extract_fields(self, raw_text: str) -> ExtractedFields: ...


@dataclass
class ResumeOverrides:
    """Values supplied with the upload form; they win over parsed values."""
    name: str | None = None
    major: str | None = None
    graduation_year: str | None = None
    companies: str | Sequence[str] | None = None
    keywords: str | Sequence[str] | None = None


@dataclass
class ResolvedFields:
    """Final field values after precedence, defaults, and limits."""
    name: str
    major: str
    graduation_year: str
    companies: list[str]
    keywords: list[str]


@dataclass
class AssociationOutcome:
    """Result of linking one kind of reference entity."""
    step: IngestionStep
    entities: list[str] = field(default_factory=list)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class IngestedResume:
    """Successful upload result; company and keyword names are the ones actually linked."""
    resume: models.Resume
    parsing_warning: str | None
    companies: list[str]
    keywords: list[str]
    associations: list[AssociationOutcome]


def describe_failure(step: IngestionStep, filename: str, exc: BaseException) -> str:
    """User-facing message for a failure at ``step``."""
    if step == IngestionStep.RESUME_PARSING:
        return (
            f'Failed to parse resume content for "{filename}". '
            "Please check if the PDF is valid and not password-protected."
        )
    if step == IngestionStep.DATABASE_CREATE and "null" in str(exc).lower():
        return (
            f'Failed to save resume "{filename}" due to missing required data '
            "(e.g., name, major, grad year) after parsing. Check PDF content."
        )
    if isinstance(exc, IntegrityError):
        return f'A resume similar to "{filename}" might already exist.'
    if step == IngestionStep.FILE_UPLOAD or isinstance(exc, StorageError):
        return f'Error storing the file for resume "{filename}". Please try again.'
    return f'An unexpected error occurred while processing "{filename}": {exc}'


def validate_upload(content: bytes | None, filename: str | None, *, max_bytes: int) -> None:
    """Reject missing, empty, oversized, or non-PDF uploads.

    Raises:
        ClientInputError: With the message shown to the uploader
    """
    if content is None:
        raise ClientInputError("No PDF file uploaded.", filename)
    if len(content) == 0:
        raise ClientInputError("Empty file content.", filename)
    if len(content) > max_bytes:
        limit_mb = max_bytes // (1024 * 1024)
        raise ClientInputError(f"File too large. Maximum file size is {limit_mb}MB.", filename)
    if not is_pdf(content):
        raise ClientInputError("Invalid PDF file format.", filename)


async def parse_resume(
    content: bytes,
    fallback_name: str,
    extractor: FieldExtractor,
    *,
    timeout: float,
    min_bytes: int,
) -> ExtractedFields:
    """Text extraction followed by structured extraction; never raises."""
    try:
        extraction = await extract_text(content, timeout=timeout, min_bytes=min_bytes)
        if not extraction.ok:
            return ExtractedFields.fallback(name=fallback_name, warning=extraction.failure)
        return await extractor.extract_fields(extraction.text)
    except Exception as e:
        logger.error(f"[{fallback_name}] Error during resume parsing: {e}. Using fallback data.", exc_info=True)
        return ExtractedFields.fallback(name=fallback_name, warning=str(e) or "Unknown parsing error")


def _as_list(value: str | Sequence[str] | None) -> list[str] | None:
    if value is None:
        return None
    if isinstance(value, str):
        return split_csv(value) or None
    items = [str(v).strip() for v in value if v and str(v).strip()]
    return items or None


def resolve_fields(
    parsed: ExtractedFields,
    overrides: ResumeOverrides,
    *,
    fallback_name: str,
    max_length: int = 255,
    max_items: int = 100,
    filename: str = "",
) -> ResolvedFields:
    """Apply form > parsed > default precedence and field limits."""
    name = (overrides.name or "").strip() or (parsed.name or "").strip() or fallback_name.strip()
    if not name:
        name = f"Unknown_Resume_{int(time.time() * 1000)}"
        logger.warning(f"[{filename}] Name was empty, defaulted to: {name}")
    if len(name) > max_length:
        logger.warning(f"[{filename}] Name too long ({len(name)} chars), truncating.")
        name = truncate_field(name, max_length)

    major = (overrides.major or "").strip() or (parsed.major or "").strip()
    if not major:
        logger.warning(f"[{filename}] Major was empty, defaulting to '{UNSPECIFIED}'")
        major = UNSPECIFIED
    major = truncate_field(major, max_length)

    graduation_year = (overrides.graduation_year or "").strip() or (parsed.graduation_year or "").strip()
    if not is_valid_year(graduation_year):
        if graduation_year and graduation_year != UNSPECIFIED:
            logger.warning(f"[{filename}] Invalid graduation year {graduation_year!r}, using '{UNSPECIFIED}'")
        graduation_year = UNSPECIFIED

    company_names = _as_list(overrides.companies)
    if company_names is None:
        company_names = list(parsed.companies)
    keyword_names = _as_list(overrides.keywords)
    if keyword_names is None:
        keyword_names = list(parsed.keywords)

    companies = dedupe(truncate_field(title_case(c.strip()), max_length) for c in company_names)
    keywords = dedupe(truncate_field(k.strip(), max_length) for k in keyword_names)
    if len(companies) > max_items:
        logger.warning(f"[{filename}] Truncating company list from {len(companies)} to {max_items} items")
        companies = companies[:max_items]
    if len(keywords) > max_items:
        logger.warning(f"[{filename}] Truncating keyword list from {len(keywords)} to {max_items} items")
        keywords = keywords[:max_items]

    return ResolvedFields(
        name=name,
        major=major,
        graduation_year=graduation_year,
        companies=companies,
        keywords=keywords,
    )


def build_storage_key(name: str, *, prefix: str = "resumes", timestamp_ms: int | None = None) -> str:
    """``<prefix>/<sanitized name>_<epoch ms>.pdf``"""
    timestamp_ms = timestamp_ms if timestamp_ms is not None else int(time.time() * 1000)
    sanitized = sanitize_key_component(name) or f"resume_{timestamp_ms}"
    return f"{prefix.strip('/')}/{sanitized}_{timestamp_ms}.pdf"


async def _associate(
    session: AsyncSession,
    step: IngestionStep,
    resolver: Callable[[AsyncSession, list[str]], Awaitable[list]],
    names: list[str],
    filename: str,
) -> tuple[list, AssociationOutcome]:
    if not names:
        logger.info(f"[{filename}] No {step.value.removeprefix('associate_')} to process.")
        return [], AssociationOutcome(step=step)
    try:
        async with session.begin_nested():
            entities = await resolver(session, names)
    except Exception as e:
        logger.error(f"[{filename}] Error at {step.value}: {e}. Continuing transaction.", exc_info=True)
        return [], AssociationOutcome(step=step, error=str(e))
    logger.info(f"[{filename}] {step.value} processed {len(entities)} entities.")
    return entities, AssociationOutcome(step=step, entities=[entity.name for entity in entities])


async def _discard_blob(blob_store: BlobStore, key: str, filename: str) -> None:
    try:
        await blob_store.delete(key)
        logger.info(f"[{filename}] Stored file cleanup successful ({key}).")
    except BlobNotFoundError:
        logger.warning(f"[{filename}] Stored file {key} already gone during cleanup.")
    except Exception as e:
        # Cleanup problems never replace the original failure
        logger.error(f"[{filename}] Error cleaning up stored file ({key}) after failed upload: {e}")


async def ingest_resume(
    session: AsyncSession,
    *,
    blob_store: BlobStore,
    extractor: FieldExtractor,
    content: bytes | None,
    filename: str | None,
    overrides: ResumeOverrides | None = None,
    uploaded_by: str = "admin",
    config: Settings | None = None,
) -> IngestedResume:
    """Upload a resume PDF and create its record.

    Args:
        session: Database session; committed on success, rolled back on failure
        blob_store: Where the PDF is stored
        extractor: Structured field extractor
        content: Raw upload bytes
        filename: Original file name
        overrides: Form values that take precedence over parsed data
        uploaded_by: Identity of the uploader
        config: Settings override (tests)

    Returns:
        IngestedResume with the committed record and any parsing warning

    Raises:
        ClientInputError: Upload rejected, nothing written
        StorageUploadError: PDF could not be stored, nothing written
        PersistenceError: Record could not be saved, stored PDF removed
    """
    config = config or settings
    overrides = overrides or ResumeOverrides()
    filename = filename or ""

    step = IngestionStep.VALIDATION
    logger.info(f"[{filename}] Starting resume upload")
    try:
        validate_upload(content, filename, max_bytes=config.upload.max_bytes)
    except ClientInputError as e:
        logger.error(f"[{filename}] Validation failed: {e.message}")
        raise

    step = IngestionStep.RESUME_PARSING
    fallback_name = strip_extension(filename)
    parsed = await parse_resume(
        content,
        fallback_name,
        extractor,
        timeout=config.upload.parse_timeout,
        min_bytes=config.upload.min_pdf_bytes,
    )
    parsing_warning = parsed.warning
    if parsing_warning:
        logger.warning(f"[{filename}] Parsing degraded: {parsing_warning}")

    step = IngestionStep.DATA_PROCESSING
    fields = resolve_fields(
        parsed,
        overrides,
        fallback_name=fallback_name,
        max_length=config.upload.max_field_length,
        max_items=config.upload.max_list_items,
        filename=filename,
    )
    logger.info(
        f'[{filename}] Data processed. Name: "{fields.name}", Major: "{fields.major}", '
        f'GradYear: "{fields.graduation_year}", Unique Companies: {len(fields.companies)}, '
        f"Unique Keywords: {len(fields.keywords)}"
    )

    step = IngestionStep.FILE_UPLOAD
    key = build_storage_key(fields.name, prefix=config.storage.key_prefix)
    try:
        pdf_url = await blob_store.put(content, key)
    except Exception as e:
        logger.error(f"[{filename}] Upload error for key {key}: {e}", exc_info=True)
        await session.rollback()
        raise StorageUploadError(step, filename, describe_failure(step, filename, e), detail=str(e)) from e

    try:
        step = IngestionStep.ASSOCIATE_COMPANIES
        companies, company_outcome = await _associate(
            session, step, find_or_create_companies, fields.companies, filename
        )
        step = IngestionStep.ASSOCIATE_KEYWORDS
        keywords, keyword_outcome = await _associate(
            session, step, find_or_create_keywords, fields.keywords, filename
        )

        step = IngestionStep.DATABASE_CREATE
        resume = models.Resume(
            name=fields.name,
            major=fields.major,
            graduation_year=fields.graduation_year,
            pdf_url=pdf_url,
            storage_key=key,
            uploaded_by=uploaded_by or "admin",
            companies=companies,
            keywords=keywords,
        )
        session.add(resume)
        await session.flush()
        logger.info(f"[{filename}] Database record created. ID: {resume.id}")

        step = IngestionStep.TRANSACTION_COMMIT
        await session.commit()
    except Exception as e:
        logger.error(f"[{filename}] Upload failed at step: {step.value}. Error: {e}", exc_info=True)
        await session.rollback()
        await _discard_blob(blob_store, key, filename)
        raise PersistenceError(step, filename, describe_failure(step, filename, e), detail=str(e)) from e

    logger.info(f"[{filename}] Transaction committed. Upload complete.")
    return IngestedResume(
        resume=resume,
        parsing_warning=parsing_warning,
        companies=company_outcome.entities,
        keywords=keyword_outcome.entities,
        associations=[company_outcome, keyword_outcome],
    )
