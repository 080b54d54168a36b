from typing import List, Optional, Union

from fastapi import APIRouter, Depends, File, Query, UploadFile
from pydantic import AliasChoices, BaseModel, Field
from sqlalchemy.orm import Session

from certprep.api.deps import admin_only, get_llm
from certprep.api.schemas import QuestionCreated, QuestionOut, QuestionPage, QuestionStatsOut
from certprep.core.config import settings
from certprep.core.database import get_db
from certprep.core.errors import ValidationError
from certprep.services.catalog import CatalogService
from certprep.services.diagrams import DiagramService
from certprep.services.enrichment import EnrichmentService
from certprep.services.llm import LLMService
from certprep.services.questions import AnswerInput, QuestionService

router = APIRouter()


class AnswerIn(BaseModel):
    text: str
    is_correct: bool = Field(False, validation_alias=AliasChoices("is_correct", "isCorrect"))


class QuestionIn(BaseModel):
    text: str = ""
    answers: Optional[List[AnswerIn]] = None
    explanation: Optional[str] = None
    is_multiple_choice: bool = Field(False, validation_alias=AliasChoices("is_multiple_choice", "isMultipleChoice"))
    category_id: Optional[int] = Field(None, validation_alias=AliasChoices("category_id", "categoryId"))
    tags: Optional[List[Union[int, str]]] = None

    def answer_inputs(self) -> Optional[List[AnswerInput]]:
        if self.answers is None:
            return None
        return [AnswerInput(a.text, a.is_correct) for a in self.answers]


class BulkIds(BaseModel):
    question_ids: List[int] = Field(validation_alias=AliasChoices("question_ids", "questionIds"))


@router.get("/categories")
def categories(db: Session = Depends(get_db)):
    return [{"id": c.id, "certification_id": c.certification_id, "name": c.name, "color": c.color,
             "description": c.description} for c in CatalogService(db).list_categories()]


@router.get("/tags")
def tags(db: Session = Depends(get_db)):
    return CatalogService(db).list_tags()


@router.post("/bulk-tag", dependencies=[Depends(admin_only)])
def bulk_tag(payload: BulkIds, db: Session = Depends(get_db), llm: LLMService = Depends(get_llm)):
    return {"results": EnrichmentService(db, llm).bulk_tag(payload.question_ids)}


@router.post("/bulk-classify", dependencies=[Depends(admin_only)])
def bulk_classify(payload: BulkIds, db: Session = Depends(get_db), llm: LLMService = Depends(get_llm)):
    return {"results": EnrichmentService(db, llm).bulk_classify(payload.question_ids)}


@router.get("", response_model=QuestionPage)
def list_questions(page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=200),
                   category_id: Optional[int] = None, category: Optional[int] = None,
                   tag: Optional[str] = None, search: Optional[str] = None, unclassified: bool = False,
                   db: Session = Depends(get_db)):
    result = QuestionService(db).list_questions(page, limit, category_id or category, tag, search, unclassified)
    return QuestionPage(
        questions=[QuestionOut.model_validate(q) for q in result["questions"]], pagination=result["pagination"]
    )


@router.post("", response_model=QuestionCreated, status_code=201, dependencies=[Depends(admin_only)])
def create_question(payload: QuestionIn, db: Session = Depends(get_db)):
    q = QuestionService(db).create_question(
        payload.text, payload.answer_inputs() or [], payload.explanation, payload.is_multiple_choice,
        payload.category_id, payload.tags or [],
    )
    return QuestionCreated(question_id=q.id)


@router.get("/{question_id}", response_model=QuestionOut)
def get_question(question_id: int, db: Session = Depends(get_db)):
    return QuestionOut.model_validate(QuestionService(db).get_question(question_id))


@router.put("/{question_id}", response_model=QuestionOut, dependencies=[Depends(admin_only)])
def update_question(question_id: int, payload: QuestionIn, db: Session = Depends(get_db)):
    q = QuestionService(db).update_question(
        question_id, payload.text, payload.answer_inputs(), payload.explanation, payload.is_multiple_choice,
        payload.category_id, payload.tags,
    )
    return QuestionOut.model_validate(q)


@router.delete("/{question_id}", dependencies=[Depends(admin_only)])
def delete_question(question_id: int, db: Session = Depends(get_db)):
    QuestionService(db).delete_question(question_id)
    return {"success": True, "message": "Question deleted"}


@router.get("/{question_id}/stats", response_model=QuestionStatsOut)
def question_stats(question_id: int, db: Session = Depends(get_db)):
    return QuestionService(db).question_stats(question_id)


@router.post("/{question_id}/auto-tag", dependencies=[Depends(admin_only)])
def auto_tag(question_id: int, db: Session = Depends(get_db), llm: LLMService = Depends(get_llm)):
    return EnrichmentService(db, llm).auto_tag(question_id)


@router.post("/{question_id}/auto-classify", dependencies=[Depends(admin_only)])
def auto_classify(question_id: int, db: Session = Depends(get_db), llm: LLMService = Depends(get_llm)):
    return EnrichmentService(db, llm).auto_classify(question_id)


@router.post("/{question_id}/diagram/generate", dependencies=[Depends(admin_only)])
def generate_diagram(question_id: int, db: Session = Depends(get_db), llm: LLMService = Depends(get_llm)):
    filename = DiagramService(db, llm).generate(question_id)
    return {"success": True, "diagram_path": filename, "message": "Diagram generated successfully"}


@router.post("/{question_id}/diagram/upload", dependencies=[Depends(admin_only)])
def upload_diagram(question_id: int, diagram: UploadFile = File(...), db: Session = Depends(get_db),
                   llm: LLMService = Depends(get_llm)):
    data = diagram.file.read()
    if not data:
        raise ValidationError("No diagram file uploaded")
    if len(data) > settings.MAX_UPLOAD_SIZE:
        raise ValidationError("Diagram file too large")
    filename = DiagramService(db, llm).store_upload(question_id, diagram.filename or "", data)
    return {"success": True, "diagram_path": filename, "message": "Diagram uploaded successfully"}
