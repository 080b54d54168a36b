"""
Whole-database JSON export and import.

Import replaces questions, answers, tags, tests and all practice history in
one transaction; certifications, categories and LLM configs are left alone.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, insert, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from certprep.core.errors import ValidationError
from certprep.models.orm import (
    Answer, Category, LLMConfig, PracticeSession, Question, SessionAnswer, Tag, Test, TestQuestion, question_tags,
)

logger = logging.getLogger(__name__)

EXPORTED_LLM_FIELDS = ("id", "role", "provider", "model", "system_prompt", "max_tokens", "temperature")


def _rows(db: Session, table) -> List[Dict[str, Any]]:
    return [dict(r._mapping) for r in db.execute(select(table)).all()]


def _ts(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def _stamped(row: Dict, now: datetime, *fields: str) -> Dict:
    out = dict(row)
    for f in fields:
        out[f] = _ts(out.get(f)) or now
    return out


class TransferService:
    def __init__(self, db: Session):
        self.db = db

    def export_all(self) -> Dict[str, List[Dict]]:
        return {
            "questions": _rows(self.db, Question.__table__),
            "answers": _rows(self.db, Answer.__table__),
            "categories": _rows(self.db, Category.__table__),
            "tags": _rows(self.db, Tag.__table__),
            "question_tags": _rows(self.db, question_tags),
            "tests": _rows(self.db, Test.__table__),
            "test_questions": _rows(self.db, TestQuestion.__table__),
            # API keys never leave the server
            "llm_configs": [
                dict(r._mapping)
                for r in self.db.execute(select(*(LLMConfig.__table__.c[f] for f in EXPORTED_LLM_FIELDS))).all()
            ],
        }

    def import_all(self, data: Dict[str, Any]) -> Dict[str, int]:
        tags = data.get("tags") or []
        questions = data.get("questions") or []
        answers = data.get("answers") or []
        links = data.get("question_tags") or []
        tests = data.get("tests") or []
        memberships = data.get("test_questions") or []
        known_categories = set(self.db.scalars(select(Category.id)).all())
        now = datetime.now(timezone.utc)

        try:
            for table in (question_tags, TestQuestion.__table__, SessionAnswer.__table__,
                          PracticeSession.__table__, Answer.__table__, Question.__table__,
                          Test.__table__, Tag.__table__):
                self.db.execute(delete(table))

            if tags:
                self.db.execute(insert(Tag.__table__), [
                    {"id": t["id"], "name": t["name"], "color": t.get("color") or "#232F3E"} for t in tags
                ])
            if questions:
                self.db.execute(insert(Question.__table__), [
                    _stamped({
                        "id": q["id"],
                        "text": q["text"],
                        "explanation": q.get("explanation"),
                        "is_multiple_choice": bool(q.get("is_multiple_choice")),
                        "category_id": q.get("category_id") if q.get("category_id") in known_categories else None,
                        "diagram_path": q.get("diagram_path"),
                        "source_file": q.get("source_file"),
                        "created_at": q.get("created_at"),
                        "updated_at": q.get("updated_at"),
                    }, now, "created_at", "updated_at")
                    for q in questions
                ])
            if answers:
                self.db.execute(insert(Answer.__table__), [
                    {"id": a["id"], "question_id": a["question_id"], "text": a["text"],
                     "is_correct": bool(a.get("is_correct")), "order_index": a.get("order_index") or 0}
                    for a in answers
                ])
            if links:
                unique_links = {(qt["question_id"], qt["tag_id"]) for qt in links}
                self.db.execute(insert(question_tags), [
                    {"question_id": qid, "tag_id": tid} for qid, tid in sorted(unique_links)
                ])
            if tests:
                self.db.execute(insert(Test.__table__), [
                    _stamped({"id": t["id"], "name": t["name"], "duration_minutes": t.get("duration_minutes") or 65,
                              "is_confirmed": bool(t.get("is_confirmed")), "created_at": t.get("created_at")},
                             now, "created_at")
                    for t in tests
                ])
            if memberships:
                seen = {}
                for tq in memberships:
                    seen.setdefault((tq["test_id"], tq["question_id"]), tq.get("order_index") or 0)
                self.db.execute(insert(TestQuestion.__table__), [
                    {"test_id": tid, "question_id": qid, "order_index": idx} for (tid, qid), idx in seen.items()
                ])
            self.db.commit()
        except (KeyError, TypeError, ValueError, SQLAlchemyError) as e:
            self.db.rollback()
            logger.error("Import failed, nothing changed: %s", e)
            raise ValidationError(f"Import failed: {e}") from e

        counts = {
            "questions_imported": len(questions),
            "tags_imported": len(tags),
            "tests_imported": len(tests),
        }
        logger.info("Data imported: %s", counts)
        return counts
