from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from app.core.database import get_db
from app.core.security import CurrentUser, get_current_user
from app.schemas.billing import (
    FulfillPaymentIntentRequest,
    FulfillSessionRequest,
    LeadPackCheckoutRequest,
    LeadPackCheckoutResponse,
)
from app.services import payments, rate_limit


router = APIRouter()


@router.post("/billing/lead-packs/checkout", response_model=LeadPackCheckoutResponse)
def create_lead_pack_checkout_session(
    body: LeadPackCheckoutRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> LeadPackCheckoutResponse:
    rate_limit.enforce(db, current_user.id, rate_limit.LEAD_PACK_CHECKOUT_LIMIT)
    result = payments.create_lead_pack_checkout(db, uid=current_user.id, pack_id=body.pack_id)
    return LeadPackCheckoutResponse(url=result["url"], session_id=result["session_id"])


@router.post("/billing/webhook")
async def stripe_webhook(request: Request, db: Session = Depends(get_db)) -> dict:
    raw_body = await request.body()
    event = payments.construct_webhook_event(raw_body, request.headers.get("stripe-signature"))
    return await run_in_threadpool(payments.handle_webhook_event, db, event)


@router.post("/billing/fulfill")
def fulfill_checkout_session(body: FulfillSessionRequest, db: Session = Depends(get_db)) -> dict:
    return payments.fulfill_checkout_session(db, body.session_id)


@router.post("/billing/fulfill-payment-intent")
def fulfill_payment_intent(body: FulfillPaymentIntentRequest, db: Session = Depends(get_db)) -> dict:
    return payments.fulfill_payment_intent(db, body.payment_intent_id)
