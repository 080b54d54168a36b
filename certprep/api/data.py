from typing import Any, Dict

from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session

from certprep.api.deps import admin_only
from certprep.core.database import get_db
from certprep.services.transfer import TransferService

router = APIRouter(dependencies=[Depends(admin_only)])


@router.get("/export")
def export_data(db: Session = Depends(get_db)):
    return TransferService(db).export_all()


@router.post("/import")
def import_data(data: Dict[str, Any] = Body(...), db: Session = Depends(get_db)):
    counts = TransferService(db).import_all(data)
    return {"success": True, "message": "Data imported successfully", **counts}
