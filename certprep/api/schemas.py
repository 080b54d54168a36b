"""
Response models shared by the routers.

Request models live next to the endpoints that accept them.
"""
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, field_validator


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# --- questions ---
class AnswerOut(ORMModel):
    id: int
    question_id: int
    text: str
    is_correct: bool
    order_index: int


class TagOut(ORMModel):
    id: int
    name: str
    color: Optional[str] = None


class QuestionBase(ORMModel):
    id: int
    text: str
    explanation: Optional[str] = None
    is_multiple_choice: bool
    category_id: Optional[int] = None
    category_name: Optional[str] = None
    category_color: Optional[str] = None
    diagram_path: Optional[str] = None
    source_file: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class QuestionOut(QuestionBase):
    tags: List[TagOut] = []
    answers: List[AnswerOut] = []


class QuestionSummaryOut(QuestionBase):
    """Question without answers; tags flattened to names."""
    tags: List[str] = []

    @field_validator("tags", mode="before")
    @classmethod
    def tag_names(cls, v):
        return [getattr(t, "name", t) for t in v or []]


class PagePagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class QuestionPage(BaseModel):
    questions: List[QuestionOut]
    pagination: PagePagination


class QuestionCreated(BaseModel):
    success: bool = True
    question_id: int
    message: str = "Question created successfully"


class QuestionStatsOut(BaseModel):
    question_id: int
    question_text: str
    total_attempts: int
    correct_count: int
    success_rate: float
    flagged_count: int


# --- tests ---
class TestOut(ORMModel):
    id: int
    name: str
    duration_minutes: int
    is_confirmed: bool
    created_at: Optional[datetime] = None


class TestListItem(TestOut):
    question_count: int


class TestDetail(TestOut):
    questions: List[QuestionOut]


class TestQuestions(BaseModel):
    test: TestOut
    questions: List[QuestionSummaryOut]


class Created(BaseModel):
    success: bool = True
    id: int


class TestCreated(BaseModel):
    success: bool = True
    test_id: int
    name: str
    duration_minutes: Optional[int] = None
    question_count: int


class CategoryCount(BaseModel):
    id: int
    name: str
    count: int


class PoolStatsOut(ORMModel):
    total: int
    by_category: List[CategoryCount]
    new_count: int
    wrong_count: int
    flagged_count: int


class PreviewRow(BaseModel):
    id: int
    text: str
    category_name: Optional[str] = None


class PreviewOut(BaseModel):
    count: int
    questions: List[PreviewRow]


# --- sessions ---
class SessionOut(ORMModel):
    id: int
    test_id: Optional[int] = None
    mode: str
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    score: Optional[int] = None
    total_questions: int
    correct_count: Optional[int] = None


class SessionDetail(SessionOut):
    test_name: Optional[str] = None
    duration_minutes: Optional[int] = None


class ActiveSession(SessionDetail):
    answered_count: int


class HistorySession(SessionDetail):
    questions_answered: int
    flagged_count: int


class OffsetPagination(BaseModel):
    limit: int
    offset: int
    total: int


class SessionHistory(BaseModel):
    sessions: List[HistorySession]
    pagination: OffsetPagination


class SessionStartOut(ORMModel):
    session_id: int
    test_name: str
    mode: str
    duration_minutes: int
    questions: List[QuestionOut]


class AnswerGiven(BaseModel):
    selected_answer_ids: List[int]
    is_correct: bool
    flagged: bool


class SessionStateOut(BaseModel):
    session: SessionDetail
    questions: List[QuestionOut]
    answers_given: Dict[int, AnswerGiven]


class AnswerResult(BaseModel):
    question_id: int
    is_correct: bool


class FlagResult(BaseModel):
    question_id: int
    flagged: bool


class BreakdownItemOut(ORMModel):
    question_id: int
    question_text: str
    is_correct: bool
    flagged: bool


class SessionResultOut(ORMModel):
    score: int
    total: int
    correct_count: int
    time_taken_seconds: int
    time_taken_minutes: int
    breakdown: List[BreakdownItemOut]


def session_detail(session, model=SessionDetail, **extra):
    """Flatten a PracticeSession plus listing columns into one response row."""
    return model(**SessionOut.model_validate(session).model_dump(), **extra)
