from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from certprep.core.database import get_db
from certprep.models.orm import Category
from certprep.services.catalog import CatalogService

router = APIRouter()


def category_out(c: Category) -> dict:
    return {
        "id": c.id,
        "certification_id": c.certification_id,
        "certification_code": c.certification.code if c.certification else None,
        "certification_name": c.certification.name if c.certification else None,
        "name": c.name,
        "description": c.description,
        "color": c.color,
    }


@router.get("")
def list_categories(db: Session = Depends(get_db)):
    return [category_out(c) for c in CatalogService(db).list_categories()]


@router.get("/stats/overview")
def overview(db: Session = Depends(get_db)):
    return CatalogService(db).category_overview()


@router.get("/{category_id}")
def get_category(category_id: int, db: Session = Depends(get_db)):
    category, count = CatalogService(db).get_category(category_id)
    return {**category_out(category), "question_count": count}
