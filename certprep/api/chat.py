from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import AliasChoices, BaseModel, Field
from sqlalchemy.orm import Session

from certprep.api.deps import get_llm
from certprep.core.database import get_db
from certprep.core.errors import NotFoundError
from certprep.services.llm import LLMService
from certprep.services.questions import QuestionService

router = APIRouter()


class ChatIn(BaseModel):
    message: str = Field(min_length=1)
    question_id: Optional[int] = Field(None, validation_alias=AliasChoices("question_id", "questionId"))


def question_context(db: Session, question_id: Optional[int]) -> str:
    if not question_id:
        return "No specific question context"
    try:
        q = QuestionService(db).get_question(question_id)
    except NotFoundError:
        return "No specific question context"
    options = "\n".join(f"{chr(65 + i)}. {a.text}" for i, a in enumerate(q.answers)) or "No answers available"
    context = f"Question: {q.text}\n\nAnswer options:\n{options}"
    if q.explanation:
        context += f"\n\nExplanation: {q.explanation}"
    return context


@router.post("")
def chat(payload: ChatIn, db: Session = Depends(get_db), llm: LLMService = Depends(get_llm)):
    reply = llm.chat(question_context(db, payload.question_id), payload.message)
    return {"response": reply, "question_id": payload.question_id}


@router.get("/status")
def chat_status(llm: LLMService = Depends(get_llm)):
    return llm.status("LLM3")
