from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import AliasChoices, BaseModel, Field
from sqlalchemy.orm import Session

from certprep.api.schemas import (
    Created, PoolStatsOut, PreviewOut, PreviewRow, QuestionOut, QuestionSummaryOut, TestCreated, TestDetail,
    TestListItem, TestOut, TestQuestions,
)
from certprep.core.database import get_db
from certprep.models.orm import Test
from certprep.services.assembly import TestAssembly
from certprep.services.selector import CategoryWeight, QuestionSelector

router = APIRouter()


class WeightIn(BaseModel):
    category_id: int = Field(validation_alias=AliasChoices("category_id", "categoryId"))
    weight: float


class SelectionIn(BaseModel):
    count: int = Field(10, ge=1, le=500)
    selection_mode: str = Field("random", validation_alias=AliasChoices("selection_mode", "selectionMode", "mode"))
    category_ids: List[int] = Field(default_factory=list, validation_alias=AliasChoices("category_ids", "categoryIds"))
    tag_ids: List[int] = Field(default_factory=list, validation_alias=AliasChoices("tag_ids", "tagIds"))
    weights: List[WeightIn] = Field(default_factory=list)

    def category_weights(self) -> List[CategoryWeight]:
        return [CategoryWeight(w.category_id, w.weight) for w in self.weights]


class SelectionTestCreate(SelectionIn):
    name: str
    duration_minutes: Optional[int] = Field(
        None, validation_alias=AliasChoices("duration_minutes", "durationMinutes")
    )


class TestCreate(BaseModel):
    name: str
    duration_minutes: Optional[int] = Field(
        None, validation_alias=AliasChoices("duration_minutes", "durationMinutes")
    )
    question_ids: List[int] = Field(validation_alias=AliasChoices("question_ids", "questionIds"))


class TestGenerate(BaseModel):
    count: int = Field(20, ge=1, le=500)
    category_id: Optional[int] = Field(None, validation_alias=AliasChoices("category_id", "categoryId"))
    tag_ids: List[int] = Field(default_factory=list, validation_alias=AliasChoices("tag_ids", "tagIds"))
    name: Optional[str] = None


def _short(text: str, length: int = 100) -> str:
    return text[:length] + ("..." if len(text) > length else "")


def _created(assembly: TestAssembly, test: Test) -> TestCreated:
    return TestCreated(test_id=test.id, name=test.name, duration_minutes=test.duration_minutes,
                       question_count=len(assembly.ordered_questions(test.id)))


@router.get("/stats", response_model=PoolStatsOut)
def pool_stats(category_ids: List[int] = Query(default=[]), tag_ids: List[int] = Query(default=[]),
               db: Session = Depends(get_db)):
    return PoolStatsOut.model_validate(QuestionSelector(db).pool_stats(category_ids or None, tag_ids or None))


@router.post("/preview", response_model=PreviewOut)
def preview(payload: SelectionIn, db: Session = Depends(get_db)):
    questions = TestAssembly(db).preview(
        payload.count, payload.selection_mode, payload.category_ids, payload.tag_ids, payload.category_weights()
    )
    return PreviewOut(
        count=len(questions),
        questions=[PreviewRow(id=q.id, text=_short(q.text), category_name=q.category_name) for q in questions],
    )


@router.post("/create-with-selection", response_model=TestCreated, status_code=201)
def create_with_selection(payload: SelectionTestCreate, db: Session = Depends(get_db)):
    assembly = TestAssembly(db)
    test = assembly.create_from_selection(
        payload.name, payload.duration_minutes, payload.count, payload.selection_mode,
        payload.category_ids, payload.tag_ids, payload.category_weights(),
    )
    return _created(assembly, test)


@router.get("", response_model=List[TestListItem])
def list_tests(db: Session = Depends(get_db)):
    return [
        TestListItem(**TestOut.model_validate(row["test"]).model_dump(), question_count=row["question_count"])
        for row in TestAssembly(db).list_tests()
    ]


@router.post("", response_model=Created, status_code=201)
def create_test(payload: TestCreate, db: Session = Depends(get_db)):
    test = TestAssembly(db).create_test(payload.name, payload.duration_minutes, payload.question_ids)
    return Created(id=test.id)


@router.post("/generate", response_model=TestCreated, status_code=201)
def generate_test(payload: TestGenerate, db: Session = Depends(get_db)):
    assembly = TestAssembly(db)
    test = assembly.generate_test(payload.count, payload.category_id, payload.tag_ids, payload.name)
    return _created(assembly, test)


@router.get("/{test_id}", response_model=TestDetail)
def get_test(test_id: int, db: Session = Depends(get_db)):
    test, questions = TestAssembly(db).get_test(test_id)
    return TestDetail(**TestOut.model_validate(test).model_dump(),
                      questions=[QuestionOut.model_validate(q) for q in questions])


@router.put("/{test_id}", response_model=TestListItem)
def update_test(test_id: int, payload: TestCreate, db: Session = Depends(get_db)):
    assembly = TestAssembly(db)
    test = assembly.update_test(test_id, payload.name, payload.duration_minutes, payload.question_ids)
    return TestListItem(**TestOut.model_validate(test).model_dump(),
                        question_count=len(assembly.ordered_questions(test_id)))


@router.get("/{test_id}/questions", response_model=TestQuestions)
def test_questions(test_id: int, db: Session = Depends(get_db)):
    questions = TestAssembly(db).test_questions(test_id)
    return TestQuestions(
        test=TestOut.model_validate(db.get(Test, test_id)),
        questions=[QuestionSummaryOut.model_validate(q) for q in questions],
    )


@router.delete("/{test_id}")
def delete_test(test_id: int, db: Session = Depends(get_db)):
    TestAssembly(db).delete_test(test_id)
    return {"success": True, "message": "Test deleted"}
