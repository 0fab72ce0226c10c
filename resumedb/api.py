"""FastAPI app: resume upload, search, record management, and file access.

Process-wide clients (blob store, AI extractor, retention task) are created
in the lifespan and reached through dependencies so tests can override them.
"""
from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import Depends, FastAPI, File, Form, HTTPException, Request, Response, UploadFile, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from ai.extractor import GeminiResumeExtractor

from .auth import Principal, require_admin, require_member
from .config import settings
from .db import AsyncSessionMaker, engine, get_session
from .logging_config import setup_logging
from .pipelines.processing import (
    ClientInputError,
    FieldExtractor,
    IngestionError,
    ResumeOverrides,
    ingest_resume,
)
from .pipelines.records import (
    PermissionDeniedError,
    ResumeChanges,
    ResumeNotFoundError,
    get_resume,
    soft_delete_all,
    soft_delete_resume,
    update_resume,
)
from .pipelines.retention import run_retention_schedule
from .pipelines.search import ResumeSearchFilters, ResumeView, list_filters, search_resumes, signed_url_or_none
from .storage import BlobNotFoundError, BlobStore, StorageError, build_blob_store

logger = logging.getLogger(__name__)


# Pydantic response models
class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str


class ErrorResponse(BaseModel):
    """Error response."""
    error: str
    message: str
    detail: str | None = None
    filename: str | None = None


class ResumeDTO(BaseModel):
    """Resume data transfer object."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    major: str
    graduation_year: str
    pdf_url: str
    signed_pdf_url: str | None = None
    uploaded_by: str
    companies: list[str] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None


class UploadedResumeDTO(BaseModel):
    """Resume created by an upload."""
    id: int
    name: str
    major: str
    graduation_year: str
    pdf_url: str
    parsing_warning: str | None = None
    companies: list[str] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)
    association_errors: dict[str, str] = Field(default_factory=dict)


class UploadResumeResponse(BaseModel):
    """Resume upload response."""
    message: str
    data: UploadedResumeDTO


class ResumeResponse(BaseModel):
    """Single resume response."""
    message: str | None = None
    data: ResumeDTO


class SearchResponse(BaseModel):
    """Resume search response."""
    count: int
    data: list[ResumeDTO]


class FiltersDTO(BaseModel):
    """Available filter values."""
    model_config = ConfigDict(from_attributes=True)

    majors: list[str]
    graduation_years: list[str]
    companies: list[str]
    keywords: list[str]


class FiltersResponse(BaseModel):
    data: FiltersDTO


class DeleteResponse(BaseModel):
    """Delete response."""
    message: str
    deleted: int = 1


class UpdateResumeRequest(BaseModel):
    """Update resume request; omitted fields are left unchanged."""
    name: str | None = Field(default=None, max_length=255)
    major: str | None = Field(default=None, max_length=255)
    graduation_year: str | None = Field(default=None, max_length=255)
    companies: str | None = Field(default=None, description="Comma-separated company names")
    keywords: str | None = Field(default=None, description="Comma-separated keywords")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown logic."""
    # Startup
    setup_logging()
    logger.info(f"{settings.app_name} v{settings.version} starting up")

    app.state.blob_store = build_blob_store(settings, AsyncSessionMaker)
    app.state.extractor = GeminiResumeExtractor(settings.gemini)

    retention_task = None
    if settings.retention.enabled:
        retention_task = asyncio.create_task(
            run_retention_schedule(
                AsyncSessionMaker,
                app.state.blob_store,
                run_hour=settings.retention.run_hour,
                retention_days=settings.retention.days,
            )
        )

    yield

    # Shutdown
    if retention_task is not None:
        retention_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await retention_task
    await engine.dispose()
    logger.info("Application shutting down")


app = FastAPI(
    title=settings.app_name,
    version=settings.version,
    description="Chapter resume upload, AI field extraction, and member search",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Dependencies
def get_blob_store(request: Request) -> BlobStore:
    return request.app.state.blob_store


def get_extractor(request: Request) -> FieldExtractor:
    return request.app.state.extractor


# Exception handlers
@app.exception_handler(ClientInputError)
async def client_input_error_handler(request, exc: ClientInputError):
    """Handle rejected uploads."""
    logger.warning(f"Client input error: {exc.message}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=ErrorResponse(error="client_input_error", message=exc.message, filename=exc.filename).model_dump(),
    )


@app.exception_handler(IngestionError)
async def ingestion_error_handler(request, exc: IngestionError):
    """Handle upload pipeline failures."""
    logger.error(f"Ingestion error at {exc.step.value}: {exc.detail}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(
            error=f"{exc.step.value}_error",
            message=exc.message,
            detail=exc.detail,
            filename=exc.filename,
        ).model_dump(),
    )


@app.exception_handler(ResumeNotFoundError)
async def not_found_handler(request, exc: ResumeNotFoundError):
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content=ErrorResponse(error="not_found", message="Resume not found.").model_dump(),
    )


@app.exception_handler(PermissionDeniedError)
async def permission_denied_handler(request, exc: PermissionDeniedError):
    return JSONResponse(
        status_code=status.HTTP_403_FORBIDDEN,
        content=ErrorResponse(error="permission_denied", message="Permission denied.").model_dump(),
    )


@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(status="ok", version=settings.version)


@app.post(
    "/api/resumes",
    response_model=UploadResumeResponse,
    status_code=status.HTTP_201_CREATED,
)
async def upload_resume(
    file: UploadFile | None = File(None, description="Resume PDF"),
    name: str | None = Form(None),
    major: str | None = Form(None),
    graduation_year: str | None = Form(None),
    companies: str | None = Form(None, description="Comma-separated company names"),
    keywords: str | None = Form(None, description="Comma-separated keywords"),
    principal: Principal = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
    blob_store: BlobStore = Depends(get_blob_store),
    extractor: FieldExtractor = Depends(get_extractor),
) -> UploadResumeResponse:
    """Upload a resume PDF, extract its fields, and create the record.

    Form values override whatever is parsed from the PDF.
    """
    filename = file.filename if file is not None else None
    content = None
    if file is not None:
        try:
            content = await file.read()
        finally:
            await file.close()

    logger.info(f"Received resume upload: {filename}")
    ingested = await ingest_resume(
        session,
        blob_store=blob_store,
        extractor=extractor,
        content=content,
        filename=filename,
        overrides=ResumeOverrides(
            name=name,
            major=major,
            graduation_year=graduation_year,
            companies=companies,
            keywords=keywords,
        ),
        uploaded_by=principal.identity,
    )

    resume = ingested.resume
    return UploadResumeResponse(
        message=f'Resume "{filename}" uploaded successfully.',
        data=UploadedResumeDTO(
            id=resume.id,
            name=resume.name,
            major=resume.major,
            graduation_year=resume.graduation_year,
            pdf_url=resume.pdf_url,
            parsing_warning=ingested.parsing_warning,
            companies=ingested.companies,
            keywords=ingested.keywords,
            association_errors={o.step.value: o.error for o in ingested.associations if o.error},
        ),
    )


@app.get("/api/resumes", response_model=SearchResponse)
async def search(
    query: str | None = None,
    name: str | None = None,
    major: str | None = None,
    company: str | None = None,
    graduation_year: str | None = None,
    keyword: str | None = None,
    principal: Principal = Depends(require_member),
    session: AsyncSession = Depends(get_session),
    blob_store: BlobStore = Depends(get_blob_store),
) -> SearchResponse:
    """Search active resumes. Comma-separated values within a filter are OR-ed."""
    views = await search_resumes(
        session,
        blob_store,
        ResumeSearchFilters(
            query=query,
            name=name,
            major=major,
            company=company,
            graduation_year=graduation_year,
            keyword=keyword,
        ),
    )
    return SearchResponse(count=len(views), data=[ResumeDTO.model_validate(v) for v in views])


@app.get("/api/resumes/filters", response_model=FiltersResponse)
async def filters(
    principal: Principal = Depends(require_member),
    session: AsyncSession = Depends(get_session),
) -> FiltersResponse:
    """Distinct majors, graduation years, companies, and keywords of active resumes."""
    options = await list_filters(session)
    return FiltersResponse(data=FiltersDTO.model_validate(options))


@app.get("/api/resumes/{resume_id}", response_model=ResumeResponse)
async def read_resume(
    resume_id: int,
    principal: Principal = Depends(require_member),
    session: AsyncSession = Depends(get_session),
    blob_store: BlobStore = Depends(get_blob_store),
) -> ResumeResponse:
    resume = await get_resume(session, resume_id)
    signed = await signed_url_or_none(blob_store, resume.storage_key, settings.storage.signed_url_ttl)
    return ResumeResponse(data=ResumeDTO.model_validate(ResumeView.from_model(resume, signed)))


@app.put("/api/resumes/{resume_id}", response_model=ResumeResponse)
async def edit_resume(
    resume_id: int,
    payload: UpdateResumeRequest,
    principal: Principal = Depends(require_member),
    session: AsyncSession = Depends(get_session),
) -> ResumeResponse:
    """Edit a resume (admin or uploader)."""
    resume = await update_resume(session, resume_id, ResumeChanges(**payload.model_dump()), principal)
    return ResumeResponse(
        message="Resume updated successfully.",
        data=ResumeDTO.model_validate(ResumeView.from_model(resume)),
    )


@app.delete("/api/resumes/{resume_id}", response_model=DeleteResponse)
async def delete_resume(
    resume_id: int,
    principal: Principal = Depends(require_member),
    session: AsyncSession = Depends(get_session),
) -> DeleteResponse:
    """Soft delete a resume (admin or uploader)."""
    await soft_delete_resume(session, resume_id, principal)
    return DeleteResponse(message="Resume deleted successfully.")


@app.delete("/api/resumes", response_model=DeleteResponse)
async def delete_all_resumes(
    principal: Principal = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> DeleteResponse:
    """Soft delete every active resume."""
    count = await soft_delete_all(session)
    if count == 0:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No active resumes found to delete.",
        )
    return DeleteResponse(message=f"Successfully deleted {count} resumes.", deleted=count)


@app.get("/api/files/{key:path}")
async def read_file(
    key: str,
    principal: Principal = Depends(require_member),
    blob_store: BlobStore = Depends(get_blob_store),
) -> Response:
    """Stream a stored resume PDF."""
    try:
        content, content_type = await blob_store.open(key)
    except BlobNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found.")
    except StorageError as e:
        logger.error(f"Failed to read stored file {key}: {e}")
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Error reading file.")
    return Response(
        content=content,
        media_type=content_type,
        headers={"Content-Disposition": f'inline; filename="{key.rsplit("/", 1)[-1]}"'},
    )
