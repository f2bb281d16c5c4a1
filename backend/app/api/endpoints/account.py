from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.security import CurrentUser, get_current_user
from app.services.ledger import get_account


router = APIRouter()


class MeResponse(BaseModel):
    id: str
    email: str
    role: str
    is_admin: bool
    non_exclusive_credits: int
    exclusive_credits: int
    credits: int


@router.get("/me", response_model=MeResponse)
def me(db: Session = Depends(get_db), current_user: CurrentUser = Depends(get_current_user)) -> MeResponse:
    acct = get_account(db, current_user.id)
    return MeResponse(
        id=current_user.id,
        email=current_user.email,
        role=current_user.role,
        is_admin=current_user.is_admin,
        non_exclusive_credits=int(acct.non_exclusive_credits or 0) if acct else 0,
        exclusive_credits=int(acct.exclusive_credits or 0) if acct else 0,
        credits=int(acct.credits or 0) if acct else 0,
    )
