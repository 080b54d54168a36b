import shutil
import time
import uuid
from pathlib import Path
from typing import Callable, Optional

from fastapi import APIRouter, Depends, File, UploadFile
from pydantic import BaseModel
from sqlalchemy.orm import Session

from certprep.api.deps import admin_only, get_diagram_enqueuer, get_llm
from certprep.core.config import settings
from certprep.core.database import get_db
from certprep.core.errors import ValidationError
from certprep.jobs.diagram_job import diagram_job_status
from certprep.services.ingestion import IngestionService
from certprep.services.llm import LLMService

router = APIRouter(dependencies=[Depends(admin_only)])


class JobStatus(BaseModel):
    job_id: str
    state: str
    question_id: Optional[int] = None
    filename: Optional[str] = None


@router.post("")
def upload_pdf(pdf: UploadFile = File(...), db: Session = Depends(get_db), llm: LLMService = Depends(get_llm),
               enqueue: Optional[Callable[[int], Optional[str]]] = Depends(get_diagram_enqueuer)):
    original = pdf.filename or "upload.pdf"
    if pdf.content_type != "application/pdf" and not original.lower().endswith(".pdf"):
        raise ValidationError("Only PDF files are allowed")

    upload_dir = Path(settings.UPLOAD_DIR)
    upload_dir.mkdir(parents=True, exist_ok=True)
    dest = upload_dir / f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}.pdf"
    with dest.open("wb") as out:
        shutil.copyfileobj(pdf.file, out)
    if dest.stat().st_size > settings.MAX_UPLOAD_SIZE:
        dest.unlink()
        raise ValidationError("PDF exceeds the upload size limit")
    if dest.stat().st_size == 0:
        dest.unlink()
        raise ValidationError("No PDF file uploaded")

    result = IngestionService(db, llm, enqueue_diagram=enqueue).process_pdf(dest, original)
    return {
        "success": True,
        "message": "PDF processed successfully",
        "filename": result.filename,
        "pages": result.pages,
        "questions_extracted": result.questions_extracted,
        "skipped": result.skipped,
        "question_ids": result.question_ids,
        "diagram_jobs": result.diagram_jobs,
    }


@router.get("/status/{job_id}", response_model=JobStatus)
def job_status(job_id: str):
    return diagram_job_status(job_id)
