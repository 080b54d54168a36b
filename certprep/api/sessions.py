from typing import List

from fastapi import APIRouter, Depends, Query
from pydantic import AliasChoices, BaseModel, Field
from sqlalchemy.orm import Session

from certprep.api.schemas import (
    ActiveSession, AnswerResult, FlagResult, HistorySession, QuestionOut, SessionHistory, SessionResultOut,
    SessionStartOut, SessionStateOut, session_detail,
)
from certprep.core.database import get_db
from certprep.services.sessions import SessionEngine

router = APIRouter()


class SessionCreate(BaseModel):
    test_id: int = Field(validation_alias=AliasChoices("test_id", "testId"))
    mode: str


class AnswerSubmit(BaseModel):
    question_id: int = Field(validation_alias=AliasChoices("question_id", "questionId"))
    selected_answers: List[int] = Field(
        default_factory=list,
        validation_alias=AliasChoices("selected_answers", "selected_answer_ids", "selectedAnswers"),
    )


class FlagToggle(BaseModel):
    question_id: int = Field(validation_alias=AliasChoices("question_id", "questionId"))
    flagged: bool


@router.get("/active", response_model=List[ActiveSession])
def active_sessions(db: Session = Depends(get_db)):
    return [
        session_detail(row["session"], ActiveSession, test_name=row["test_name"],
                       duration_minutes=row["duration_minutes"], answered_count=row["answered_count"])
        for row in SessionEngine(db).active_sessions()
    ]


@router.get("/history", response_model=SessionHistory)
def session_history(limit: int = Query(10, ge=1, le=100), offset: int = Query(0, ge=0), db: Session = Depends(get_db)):
    history = SessionEngine(db).session_history(limit, offset)
    return SessionHistory(
        sessions=[
            session_detail(row["session"], HistorySession, test_name=row["test_name"],
                           duration_minutes=row["duration_minutes"], questions_answered=row["questions_answered"],
                           flagged_count=row["flagged_count"])
            for row in history["sessions"]
        ],
        pagination=history["pagination"],
    )


@router.post("", response_model=SessionStartOut, status_code=201)
def start_session(payload: SessionCreate, db: Session = Depends(get_db)):
    return SessionStartOut.model_validate(SessionEngine(db).start_session(payload.test_id, payload.mode))


@router.get("/{session_id}", response_model=SessionStateOut)
def get_session(session_id: int, db: Session = Depends(get_db)):
    state = SessionEngine(db).get_session(session_id)
    return SessionStateOut(
        session=session_detail(state.session, test_name=state.test_name, duration_minutes=state.duration_minutes),
        questions=[QuestionOut.model_validate(q) for q in state.questions],
        answers_given=state.answers_given,
    )


@router.put("/{session_id}/answer", response_model=AnswerResult)
def submit_answer(session_id: int, payload: AnswerSubmit, db: Session = Depends(get_db)):
    return SessionEngine(db).submit_answer(session_id, payload.question_id, payload.selected_answers)


@router.put("/{session_id}/flag", response_model=FlagResult)
def toggle_flag(session_id: int, payload: FlagToggle, db: Session = Depends(get_db)):
    return SessionEngine(db).toggle_flag(session_id, payload.question_id, payload.flagged)


@router.post("/{session_id}/complete", response_model=SessionResultOut)
def complete_session(session_id: int, db: Session = Depends(get_db)):
    return SessionResultOut.model_validate(SessionEngine(db).complete_session(session_id))
