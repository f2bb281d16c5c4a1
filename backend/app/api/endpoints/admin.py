from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field, StrictInt
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.security import CurrentUser, require_admin
from app.models.admin_action import AdminAction
from app.services import rate_limit
from app.services.credits_engine import adjust_credits
from app.services.ledger import CreditPool


router = APIRouter(dependencies=[Depends(require_admin)])


class CreditAdjustRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    target_uid: str | None = Field(default=None, alias="targetUid")
    delta: StrictInt | None = None
    pool: CreditPool = CreditPool.NON_EXCLUSIVE


class CreditAdjustResponse(BaseModel):
    ok: bool = True
    credits: int


@router.post("/admin/credits/adjust", response_model=CreditAdjustResponse)
def admin_adjust_credits(
    body: CreditAdjustRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
) -> CreditAdjustResponse:
    rate_limit.enforce(db, current_user.id, rate_limit.GRANT_LEAD_CREDITS_LIMIT)
    result = adjust_credits(
        db,
        admin_id=current_user.id,
        admin_email=current_user.email,
        target_uid=body.target_uid,
        delta=body.delta,
        pool=body.pool,
    )
    return CreditAdjustResponse(ok=result["ok"], credits=result["credits"])


@router.get("/admin/actions")
def admin_list_actions(limit: int = 50, offset: int = 0, db: Session = Depends(get_db)) -> list[dict]:
    limit = max(1, min(int(limit), 200))
    offset = max(0, int(offset))
    rows = (
        db.query(AdminAction)
        .order_by(AdminAction.created_at.desc(), AdminAction.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return [
        {
            "id": a.id,
            "type": a.type,
            "admin_id": a.admin_id,
            "target_uid": a.target_uid,
            "pool": a.pool,
            "delta": int(a.delta),
            "created_at": a.created_at.isoformat() if a.created_at else None,
        }
        for a in rows
    ]
