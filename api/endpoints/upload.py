import logging
import os
import uuid
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, File, UploadFile

from api.deps import get_container
from app.container import Container
from domain.errors import DocumentValidationError
from domain.models import DocumentType
from domain.schemas import UploadResponse

router = APIRouter()
logger = logging.getLogger(__name__)


def validate_pdf(content: bytes, name: str, max_size: int) -> None:
    if not content:
        raise DocumentValidationError(f"{name} is empty")
    if len(content) > max_size:
        raise DocumentValidationError(
            f"{name} exceeds maximum allowed size of {max_size / 1024 / 1024:g}MB")
    if not content.startswith(b"%PDF"):
        raise DocumentValidationError(f"{name} is not a PDF document")


@router.post("/upload", response_model=UploadResponse, status_code=201)
async def upload(
    cv: UploadFile = File(...),
    project_report: UploadFile = File(...),
    container: Container = Depends(get_container),
) -> UploadResponse:
    settings = container.settings
    os.makedirs(settings.STORAGE_DIR, exist_ok=True)

    files = []
    for f, ftype in ((cv, DocumentType.CV), (project_report, DocumentType.PROJECT_REPORT)):
        name = f.filename or f"{ftype.value}.pdf"
        content = await f.read()
        validate_pdf(content, name, settings.MAX_FILE_SIZE)
        files.append((ftype, name, content, f.content_type or "application/pdf"))

    ids = {}
    for ftype, name, content, mime_type in files:
        path = os.path.join(settings.STORAGE_DIR, f"{uuid.uuid4().hex}_{name.replace(' ', '_')}")
        with open(path, "wb") as out:
            out.write(content)
        ids[ftype] = container.documents.save(
            ftype=ftype.value, path=path, name=name, size=len(content), mime_type=mime_type)
        logger.info(f"Stored {ftype.value} {ids[ftype]} ({len(content)} bytes)")

    return UploadResponse(
        cv_id=ids[DocumentType.CV],
        project_report_id=ids[DocumentType.PROJECT_REPORT],
        uploaded_at=datetime.now(timezone.utc),
    )
