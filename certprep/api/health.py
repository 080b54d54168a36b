from fastapi import APIRouter, Request
from sqlalchemy import text

from certprep.core.config import settings

router = APIRouter()


@router.get("/health")
def health(request: Request):
    with request.app.state.database.engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    return {"status": "ok", "version": settings.APP_VERSION}
