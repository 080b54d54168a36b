from typing import List, Literal

from fastapi import APIRouter
from pydantic import BaseModel, Field

from certprep.core.auth import create_token
from certprep.core.config import settings

router = APIRouter()

Role = Literal["admin", "student"]


class MockLogin(BaseModel):
    """Role picker login. There are no accounts; the token just carries the chosen roles."""
    user_id: str = "local"
    roles: List[Role] = Field(default_factory=lambda: ["student"], min_length=1)


@router.post("/mock-login")
def mock_login(payload: MockLogin):
    token = create_token(payload.user_id, list(payload.roles))
    return {
        "access_token": token,
        "token_type": "bearer",
        "roles": payload.roles,
        "expires_in": settings.TOKEN_TTL_MINUTES * 60,
    }
