import logging
from typing import Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from certprep.core.errors import NotFoundError, ValidationError
from certprep.models.orm import Category, Certification, LLMConfig, Question, Tag, question_tags

logger = logging.getLogger(__name__)

DEFAULT_CERTIFICATIONS = [
    ("SAA-C03", "AWS Solutions Architect - Associate", "Associate"),
    ("SAP-C02", "AWS Solutions Architect - Professional", "Professional"),
    ("DVA-C02", "AWS Developer - Associate", "Associate"),
]

DEFAULT_SAA_CATEGORIES = [
    ("Design Secure Architectures", "#FF9900"),
    ("Design Resilient Architectures", "#1E88E5"),
    ("Design High-Performing Architectures", "#43A047"),
    ("Design Cost-Optimized Architectures", "#FDD835"),
]

DEFAULT_LLM_CONFIGS = [
    ("LLM1", "openai", "gpt-4o",
     "You are an AWS certification exam expert. Extract questions and answers from the provided PDF text."),
    ("LLM2", "openai", "gpt-4o",
     "You are an AWS Solutions Architect. Generate DrawIO XML diagrams that illustrate AWS architecture concepts."),
    ("LLM3", "openai", "gpt-4o-mini",
     "You are a friendly AWS certification tutor. Help students understand exam concepts."),
]


def seed_defaults(db: Session) -> None:
    """Insert default certifications, SAA-C03 domains and LLM roles. Safe to run repeatedly."""
    existing = set(db.scalars(select(Certification.code)).all())
    for code, name, level in DEFAULT_CERTIFICATIONS:
        if code not in existing:
            db.add(Certification(code=code, name=name, level=level))
    db.flush()

    saa = db.scalar(select(Certification).where(Certification.code == "SAA-C03"))
    if saa and not db.scalar(select(func.count(Category.id)).where(Category.certification_id == saa.id)):
        for name, color in DEFAULT_SAA_CATEGORIES:
            db.add(Category(certification_id=saa.id, name=name, color=color))
        logger.info("Categories seeded")

    roles = set(db.scalars(select(LLMConfig.role)).all())
    for role, provider, model, prompt in DEFAULT_LLM_CONFIGS:
        if role not in roles:
            db.add(LLMConfig(role=role, provider=provider, model=model, system_prompt=prompt))
    db.commit()


def get_or_create_tag(db: Session, name: str) -> Tag:
    name = name.strip()
    tag = db.scalar(select(Tag).where(Tag.name == name))
    if tag is None:
        tag = Tag(name=name)
        db.add(tag)
        db.flush()
    return tag


class CatalogService:
    def __init__(self, db: Session):
        self.db = db

    # --- certifications ---
    def list_certifications(self) -> List[Certification]:
        return list(self.db.scalars(select(Certification).options(selectinload(Certification.categories))).all())

    def create_certification(self, code: str, name: str, level: str,
                             categories: Optional[List[Dict]] = None) -> Certification:
        if not code or not name:
            raise ValidationError("Certification code and name are required")
        if self.db.scalar(select(Certification).where(Certification.code == code)):
            raise ValidationError(f"Certification {code} already exists")
        cert = Certification(code=code, name=name, level=level)
        self.db.add(cert)
        self.db.flush()
        seen: set[str] = set()
        for cat in categories or []:
            if cat["name"] in seen:
                continue
            seen.add(cat["name"])
            self.db.add(Category(certification_id=cert.id, name=cat["name"], color=cat.get("color") or "#FF9900"))
        self.db.commit()
        self.db.refresh(cert)
        return cert

    # --- categories ---
    def list_categories(self) -> List[Category]:
        return list(self.db.scalars(
            select(Category).options(selectinload(Category.certification)).order_by(Category.id)
        ).all())

    def get_category(self, category_id: int) -> tuple[Category, int]:
        category = self.db.get(Category, category_id)
        if category is None:
            raise NotFoundError("Category not found")
        count = self.db.scalar(select(func.count(Question.id)).where(Question.category_id == category_id)) or 0
        return category, count

    def category_overview(self) -> Dict:
        rows = self.db.execute(
            select(Category.id, Category.name, Category.color, func.count(Question.id))
            .outerjoin(Question, Question.category_id == Category.id)
            .group_by(Category.id, Category.name, Category.color)
            .order_by(Category.id)
        ).all()
        unclassified = self.db.scalar(select(func.count(Question.id)).where(Question.category_id.is_(None))) or 0
        categories = [{"id": r[0], "name": r[1], "color": r[2], "question_count": r[3]} for r in rows]
        return {
            "categories": categories,
            "unclassified_count": unclassified,
            "total_questions": sum(c["question_count"] for c in categories) + unclassified,
        }

    # --- tags ---
    def list_tags(self) -> List[Dict]:
        usage = (
            select(question_tags.c.tag_id, func.count().label("n"))
            .group_by(question_tags.c.tag_id)
            .subquery()
        )
        rows = self.db.execute(
            select(Tag, func.coalesce(usage.c.n, 0)).outerjoin(usage, usage.c.tag_id == Tag.id).order_by(Tag.name)
        ).all()
        return [{"id": t.id, "name": t.name, "color": t.color, "question_count": n} for t, n in rows]

    def create_tag(self, name: str, color: Optional[str] = None) -> Tag:
        if not name or not name.strip():
            raise ValidationError("Tag name is required")
        if self.db.scalar(select(Tag).where(Tag.name == name.strip())):
            raise ValidationError(f"Tag {name!r} already exists")
        tag = Tag(name=name.strip(), color=color or "#232F3E")
        self.db.add(tag)
        self.db.commit()
        return tag
