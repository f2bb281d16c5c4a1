from __future__ import annotations

import logging
from typing import Any

import stripe
from sqlalchemy.orm import Session

from app.core.errors import (
    FailedPrecondition,
    Internal,
    InvalidArgument,
    NotFound,
    ServiceError,
    TransientStoreError,
    Unauthenticated,
)
from app.core.settings import settings
from app.models.payment import Payment
from app.schemas.billing import PaymentCompletionEvent
from app.services.credits_engine import LEAD_PACK_PAYMENT_TYPE, fulfill_credits, get_lead_pack
from app.services.lead_unlock import assert_contractor
from app.services.ledger import run_transaction


logger = logging.getLogger(__name__)


def _require_stripe() -> None:
    if not settings.stripe_secret_key:
        raise FailedPrecondition("Stripe secret is not configured on the server.", reason="stripe_not_configured")
    stripe.api_key = settings.stripe_secret_key


def _as_dict(obj: Any) -> dict:
    if obj is None:
        return {}
    if isinstance(obj, dict):
        return obj
    to_dict = getattr(obj, "to_dict", None) or getattr(obj, "to_dict_recursive", None)
    if callable(to_dict):
        return to_dict()
    return dict(obj)


def _with_checkout_session_id(url: str) -> str:
    sep = "&" if "?" in url else "?"
    return f"{url}{sep}session_id={{CHECKOUT_SESSION_ID}}"


def to_service_error(err: Exception, fallback: str) -> ServiceError:
    code = str(getattr(err, "code", "") or "")
    logger.warning(
        "stripe.error type=%s code=%s status=%s request_id=%s",
        type(err).__name__,
        code or None,
        getattr(err, "http_status", None),
        getattr(err, "request_id", None),
    )
    if isinstance(err, stripe.AuthenticationError):
        return FailedPrecondition("Stripe secret key is invalid or missing on the server.", reason="stripe_auth")
    if isinstance(err, stripe.InvalidRequestError):
        if code == "resource_missing":
            return NotFound(fallback)
        return InvalidArgument(fallback)
    if isinstance(err, (stripe.APIConnectionError, stripe.RateLimitError)):
        return TransientStoreError("Stripe is temporarily unavailable. Please try again in a moment.")
    logger.exception("stripe.unexpected_error type=%s", type(err).__name__)
    return Internal(fallback)


def create_lead_pack_checkout(db: Session, *, uid: str | None, pack_id: str | None) -> dict:
    uid = str(uid or "").strip()
    if not uid:
        raise Unauthenticated("Sign in required")
    pack = get_lead_pack(pack_id)
    if pack is None:
        raise InvalidArgument("Invalid packId")

    assert_contractor(db, uid)
    _require_stripe()

    metadata = {
        "type": LEAD_PACK_PAYMENT_TYPE,
        "packId": pack.id,
        "contractorId": uid,
        "creditType": pack.credit_type.value,
    }
    try:
        session = stripe.checkout.Session.create(
            payment_method_types=["card"],
            mode="payment",
            client_reference_id=uid,
            line_items=[
                {
                    "price_data": {
                        "currency": "usd",
                        "product_data": {
                            "name": pack.name,
                            "metadata": {**metadata, "leads": str(pack.leads)},
                        },
                        "unit_amount": pack.amount_cents,
                    },
                    "quantity": 1,
                }
            ],
            metadata=metadata,
            success_url=_with_checkout_session_id(settings.stripe_success_url),
            cancel_url=settings.stripe_cancel_url,
        )
    except stripe.StripeError as err:
        raise to_service_error(err, "Unable to create lead pack checkout session") from err

    session_data = _as_dict(session)
    session_id = str(session_data.get("id") or "")
    url = str(session_data.get("url") or "")
    if not session_id or not url:
        raise Internal("Unable to create lead pack checkout session")

    def _body(tx: Session) -> None:
        if tx.get(Payment, session_id) is not None:
            return
        tx.add(
            Payment(
                session_id=session_id,
                type=LEAD_PACK_PAYMENT_TYPE,
                status="pending",
                contractor_id=uid,
                pack_id=pack.id,
                credit_type=pack.credit_type.value,
                leads_granted=0,
                amount_cents=pack.amount_cents,
                currency="usd",
            )
        )

    run_transaction(db, _body, name="lead_pack_checkout")
    logger.info("lead_pack_checkout.created session_id=%s contractor_id=%s pack_id=%s", session_id, uid, pack.id)
    return {"url": url, "session_id": session_id}


def construct_webhook_event(payload: bytes, signature: str | None) -> dict:
    if not settings.stripe_webhook_secret:
        raise Internal("Missing STRIPE_WEBHOOK_SECRET")
    sig = (signature or "").strip()
    if not sig:
        raise InvalidArgument("Missing Stripe-Signature")
    try:
        event = stripe.Webhook.construct_event(payload, sig, settings.stripe_webhook_secret)
    except ValueError as err:
        raise InvalidArgument("Invalid webhook payload") from err
    except stripe.SignatureVerificationError as err:
        raise InvalidArgument("Invalid signature") from err
    return _as_dict(event)


def handle_webhook_event(db: Session, event: dict) -> dict:
    event_type = str(event.get("type") or "").strip()
    if event_type != "checkout.session.completed":
        return {"received": True, "ignored": True}

    session = _as_dict((event.get("data") or {}).get("object"))
    completion = PaymentCompletionEvent.from_checkout_session(session)
    if completion.payment_type != LEAD_PACK_PAYMENT_TYPE:
        logger.info("stripe_webhook.ignore session_id=%s type=%s", completion.session_id, completion.payment_type)
        return {"received": True, "ignored": True}

    granted = fulfill_credits(db, completion)
    return {"received": True, "fulfilled": granted}


def fulfill_checkout_session(db: Session, session_id: str | None) -> dict:
    session_id = str(session_id or "").strip()
    if not session_id:
        raise InvalidArgument("sessionId required")
    _require_stripe()
    try:
        session = stripe.checkout.Session.retrieve(session_id)
    except stripe.StripeError as err:
        raise to_service_error(err, "Unable to load checkout session") from err

    completion = PaymentCompletionEvent.from_checkout_session(_as_dict(session))
    if completion.payment_type != LEAD_PACK_PAYMENT_TYPE:
        return {"ok": True, "ignored": True, "type": completion.payment_type}

    granted = fulfill_credits(db, completion)
    return {"ok": True, "fulfilled": granted}


# Upper bound on sessions scanned when Stripe cannot filter by payment intent.
_SESSION_SCAN_PAGES = 5
_SESSION_PAGE_SIZE = 100


def _sessions_for_payment_intent(payment_intent_id: str) -> list[dict]:
    try:
        resp = _as_dict(stripe.checkout.Session.list(limit=_SESSION_PAGE_SIZE, payment_intent=payment_intent_id))
        sessions = [_as_dict(s) for s in resp.get("data") or []]
    except stripe.InvalidRequestError:
        logger.info("fulfill_payment_intent.filter_unsupported payment_intent=%s", payment_intent_id)
        sessions = []
    if sessions:
        return sessions

    starting_after = None
    for _ in range(_SESSION_SCAN_PAGES):
        params: dict[str, Any] = {"limit": _SESSION_PAGE_SIZE}
        if starting_after:
            params["starting_after"] = starting_after
        resp = _as_dict(stripe.checkout.Session.list(**params))
        page = [_as_dict(s) for s in resp.get("data") or []]
        sessions.extend(s for s in page if str(s.get("payment_intent") or "") == payment_intent_id)
        if not resp.get("has_more") or not page:
            break
        starting_after = page[-1].get("id")
    return sessions


def fulfill_payment_intent(db: Session, payment_intent_id: str | None) -> dict:
    """Fulfill every lead-pack checkout session paid by ``payment_intent_id``.

    Recovery path for payments whose webhook never arrived and whose session
    id the client lost. Each session goes through :func:`fulfill_credits`, so
    repeated calls grant nothing new.
    """
    payment_intent_id = str(payment_intent_id or "").strip()
    if not payment_intent_id:
        raise InvalidArgument("paymentIntentId required")
    _require_stripe()
    try:
        sessions = _sessions_for_payment_intent(payment_intent_id)
    except stripe.StripeError as err:
        raise to_service_error(err, "Unable to load checkout sessions") from err

    if not sessions:
        raise NotFound("No Checkout Session found for that paymentIntentId")

    fulfilled = 0
    ignored = 0
    for session in sessions:
        completion = PaymentCompletionEvent.from_checkout_session(session)
        if completion.payment_type != LEAD_PACK_PAYMENT_TYPE:
            ignored += 1
            continue
        fulfill_credits(db, completion)
        fulfilled += 1

    logger.info(
        "fulfill_payment_intent.done payment_intent=%s sessions=%s fulfilled=%s ignored=%s",
        payment_intent_id,
        len(sessions),
        fulfilled,
        ignored,
    )
    return {"ok": True, "sessions": len(sessions), "fulfilled": fulfilled, "ignored": ignored}
