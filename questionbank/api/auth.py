from typing import List

from fastapi import APIRouter
from pydantic import BaseModel

from questionbank.core.auth import create_token

router = APIRouter()


class MockLogin(BaseModel):
    user_id: int
    roles: List[str] = []


@router.post("/mock-login")
def mock_login(payload: MockLogin):
    token = create_token(str(payload.user_id), payload.roles)
    return {"access_token": token, "token_type": "bearer", "roles": payload.roles}
