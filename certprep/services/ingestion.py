import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

from sqlalchemy.orm import Session

from certprep.core.config import settings
from certprep.core.errors import ValidationError
from certprep.models.orm import Question
from certprep.services.llm import LLMService
from certprep.services.pdf import ExtractedText, extract_text
from certprep.services.questions import AnswerInput, add_answers, link_tags, validate_answers

logger = logging.getLogger(__name__)

MAX_EXTRACTED_TAGS = 5


@dataclass
class IngestionResult:
    filename: str
    pages: int
    questions_extracted: int
    skipped: int = 0
    question_ids: List[int] = field(default_factory=list)
    diagram_jobs: List[str] = field(default_factory=list)


def _answers_from(raw: Dict) -> List[AnswerInput]:
    answers = []
    for a in raw.get("answers") or []:
        if not isinstance(a, dict) or not a.get("text"):
            continue
        answers.append(AnswerInput(text=str(a["text"]), is_correct=bool(a.get("isCorrect", a.get("is_correct")))))
    return answers


class IngestionService:
    """PDF -> text -> LLM1 extraction -> stored questions, then one diagram job per question."""

    def __init__(self, db: Session, llm: LLMService,
                 extractor: Callable[[Union[str, Path]], ExtractedText] = extract_text,
                 enqueue_diagram: Optional[Callable[[int], Optional[str]]] = None):
        self.db = db
        self.llm = llm
        self.extractor = extractor
        self.enqueue_diagram = enqueue_diagram

    def process_pdf(self, path: Union[str, Path], original_name: str) -> IngestionResult:
        logger.info("Processing: %s", original_name)
        pdf = self.extractor(path)
        logger.info("%s: %d pages, %d chars", original_name, pdf.page_count, len(pdf.text))

        extracted = self.llm.extract_questions(pdf.text)
        logger.info("%s: extracted %d questions", original_name, len(extracted))

        question_ids: List[int] = []
        skipped = 0
        try:
            for index, raw in enumerate(extracted):
                text = raw.get("text")
                answers = _answers_from(raw)
                try:
                    if not text:
                        raise ValidationError("no question text")
                    validate_answers(answers)
                except ValidationError as e:
                    logger.warning("%s: skipping extracted item %d: %s", original_name, index, e.message)
                    skipped += 1
                    continue
                q = Question(
                    text=str(text),
                    explanation=raw.get("explanation") or None,
                    is_multiple_choice=bool(raw.get("isMultipleChoice", raw.get("is_multiple_choice", False))),
                    source_file=original_name,
                )
                self.db.add(q)
                self.db.flush()
                add_answers(self.db, q, answers)
                tags = [t for t in raw.get("tags") or [] if isinstance(t, str)]
                if tags:
                    link_tags(self.db, q.id, tags, limit=MAX_EXTRACTED_TAGS)
                question_ids.append(q.id)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        jobs: List[str] = []
        if self.enqueue_diagram and settings.DIAGRAM_JOBS_ENABLED:
            for qid in question_ids:
                job_id = self.enqueue_diagram(qid)
                if job_id:
                    jobs.append(job_id)

        return IngestionResult(
            filename=original_name,
            pages=pdf.page_count,
            questions_extracted=len(extracted),
            skipped=skipped,
            question_ids=question_ids,
            diagram_jobs=jobs,
        )
