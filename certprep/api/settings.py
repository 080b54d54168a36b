from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from certprep.api.deps import admin_only, get_llm
from certprep.core.database import get_db
from certprep.models.orm import LLMConfig
from certprep.services.catalog import CatalogService
from certprep.services.llm import LLMService, mask_key

router = APIRouter()


class LLMConfigUpdate(BaseModel):
    provider: Optional[str] = None
    model: Optional[str] = None
    api_key: Optional[str] = None
    system_prompt: Optional[str] = None
    max_tokens: Optional[int] = Field(None, ge=1)
    temperature: Optional[float] = Field(None, ge=0, le=2)


class CategoryIn(BaseModel):
    name: str
    color: Optional[str] = None


class CertificationCreate(BaseModel):
    code: str
    name: str
    level: str = "Associate"
    categories: List[CategoryIn] = Field(default_factory=list)


class TagCreate(BaseModel):
    name: str
    color: Optional[str] = None


def config_out(c: LLMConfig) -> dict:
    return {
        "id": c.id,
        "role": c.role,
        "provider": c.provider,
        "model": c.model,
        "api_key": mask_key(c.api_key),
        "system_prompt": c.system_prompt,
        "max_tokens": c.max_tokens,
        "temperature": c.temperature,
        "updated_at": c.updated_at,
    }


@router.get("/llm", dependencies=[Depends(admin_only)])
def list_llm_configs(llm: LLMService = Depends(get_llm)):
    return [config_out(c) for c in llm.list_configs()]


@router.put("/llm/{role}", dependencies=[Depends(admin_only)])
def update_llm_config(role: str, payload: LLMConfigUpdate, llm: LLMService = Depends(get_llm)):
    config = llm.update_config(role, **payload.model_dump())
    return {"success": True, "config": config_out(config)}


@router.post("/llm/{role}/test", dependencies=[Depends(admin_only)])
def test_llm_connection(role: str, llm: LLMService = Depends(get_llm)):
    return llm.test_connection(role)


@router.get("/certifications")
def list_certifications(db: Session = Depends(get_db)):
    return [
        {"id": c.id, "code": c.code, "name": c.name, "level": c.level,
         "categories": [{"id": cat.id, "name": cat.name, "color": cat.color} for cat in c.categories]}
        for c in CatalogService(db).list_certifications()
    ]


@router.post("/certifications", status_code=201, dependencies=[Depends(admin_only)])
def create_certification(payload: CertificationCreate, db: Session = Depends(get_db)):
    cert = CatalogService(db).create_certification(
        payload.code, payload.name, payload.level, [c.model_dump() for c in payload.categories]
    )
    return {"success": True, "id": cert.id}


@router.get("/tags")
def list_tags(db: Session = Depends(get_db)):
    return CatalogService(db).list_tags()


@router.post("/tags", status_code=201, dependencies=[Depends(admin_only)])
def create_tag(payload: TagCreate, db: Session = Depends(get_db)):
    tag = CatalogService(db).create_tag(payload.name, payload.color)
    return {"success": True, "id": tag.id}
