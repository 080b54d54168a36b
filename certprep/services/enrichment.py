import logging
from typing import Dict, List, Sequence

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from certprep.core.errors import CertPrepError, NotFoundError
from certprep.models.orm import Category, Question
from certprep.services.llm import LLMService
from certprep.services.questions import link_tags

logger = logging.getLogger(__name__)


class EnrichmentService:
    """LLM1-driven tagging and domain classification. Bulk runs commit per question."""

    def __init__(self, db: Session, llm: LLMService):
        self.db = db
        self.llm = llm

    def _question(self, question_id: int) -> Question:
        q = self.db.scalar(
            select(Question)
            .where(Question.id == question_id)
            .options(selectinload(Question.answers), selectinload(Question.tags))
        )
        if q is None:
            raise NotFoundError("Question not found")
        return q

    def auto_tag(self, question_id: int) -> Dict:
        q = self._question(question_id)
        tags = self.llm.tag_question(q)
        if not tags:
            return {"question_id": question_id, "success": True, "tags": [], "tag_ids": [],
                    "message": "No tags identified"}
        tag_ids = link_tags(self.db, question_id, tags)
        self.db.commit()
        logger.info("Tagged question %s with %s", question_id, tags)
        return {"question_id": question_id, "success": True, "tags": tags, "tag_ids": tag_ids}

    def auto_classify(self, question_id: int) -> Dict:
        q = self._question(question_id)
        categories = list(self.db.scalars(select(Category).order_by(Category.id)).all())
        category_id = self.llm.classify_question(q, categories)
        if category_id is None:
            return {"question_id": question_id, "success": False, "message": "Could not determine category"}
        q.category_id = category_id
        self.db.commit()
        name = next(c.name for c in categories if c.id == category_id)
        logger.info("Classified question %s into %r", question_id, name)
        return {"question_id": question_id, "success": True, "category_id": category_id, "category_name": name}

    def _bulk(self, question_ids: Sequence[int], fn) -> List[Dict]:
        results = []
        for qid in question_ids:
            try:
                results.append(fn(qid))
            except (CertPrepError, SQLAlchemyError) as e:
                self.db.rollback()
                message = e.message if isinstance(e, CertPrepError) else str(e)
                logger.warning("Enrichment of question %s failed: %s", qid, message)
                results.append({"question_id": qid, "success": False, "error": message})
        return results

    def bulk_tag(self, question_ids: Sequence[int]) -> List[Dict]:
        return self._bulk(question_ids, self.auto_tag)

    def bulk_classify(self, question_ids: Sequence[int]) -> List[Dict]:
        return self._bulk(question_ids, self.auto_classify)
