from typing import Callable, Optional

from fastapi import Depends
from sqlalchemy.orm import Session

from certprep.core.auth import require_roles
from certprep.core.database import get_db
from certprep.jobs.diagram_job import enqueue_diagram
from certprep.services.llm import LLMService

admin_only = require_roles("admin")


def get_llm(db: Session = Depends(get_db)) -> LLMService:
    return LLMService(db)


def get_diagram_enqueuer() -> Optional[Callable[[int], Optional[str]]]:
    return enqueue_diagram
