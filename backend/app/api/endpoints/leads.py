from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.security import CurrentUser, get_current_user
from app.schemas.lead import UnlockLeadRequest, UnlockLeadResponse
from app.services import rate_limit
from app.services.lead_unlock import claim_job, unlock_lead


router = APIRouter()


@router.post("/leads/unlock", response_model=UnlockLeadResponse)
def unlock_lead_endpoint(
    body: UnlockLeadRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> UnlockLeadResponse:
    rate_limit.enforce(db, current_user.id, rate_limit.UNLOCK_LEAD_LIMIT)
    result = unlock_lead(db, uid=current_user.id, job_id=body.job_id, exclusive=body.exclusive)
    return UnlockLeadResponse(ok=result.ok, credits=result.credits)


@router.post("/leads/unlock-exclusive", response_model=UnlockLeadResponse)
def unlock_exclusive_lead_endpoint(
    body: UnlockLeadRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> UnlockLeadResponse:
    rate_limit.enforce(db, current_user.id, rate_limit.UNLOCK_EXCLUSIVE_LEAD_LIMIT)
    result = unlock_lead(db, uid=current_user.id, job_id=body.job_id, exclusive=True)
    return UnlockLeadResponse(ok=result.ok, credits=result.credits)


@router.post("/jobs/{job_id}/claim")
def claim_job_endpoint(
    job_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> dict:
    rate_limit.enforce(db, current_user.id, rate_limit.CLAIM_JOB_LIMIT)
    return claim_job(db, uid=current_user.id, job_id=job_id)
