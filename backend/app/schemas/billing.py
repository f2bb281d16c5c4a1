from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class PaymentCompletionEvent(BaseModel):
    session_id: str | None = None
    payment_type: str | None = None
    contractor_id: str | None = None
    client_reference_id: str | None = None
    pack_id: str | None = None
    payment_status: str | None = None
    status: str | None = None
    amount_total: int | None = None
    currency: str | None = None

    def resolved_contractor_id(self) -> str:
        return str(self.contractor_id or "").strip() or str(self.client_reference_id or "").strip()

    @classmethod
    def from_checkout_session(cls, session: Any) -> "PaymentCompletionEvent":
        data = session if isinstance(session, dict) else dict(session or {})
        metadata = data.get("metadata") or {}
        if not isinstance(metadata, dict):
            metadata = dict(metadata)

        def _s(value: Any) -> str | None:
            v = str(value or "").strip()
            return v or None

        amount = data.get("amount_total")
        try:
            amount_total = int(amount) if amount is not None else None
        except (TypeError, ValueError):
            amount_total = None

        return cls(
            session_id=_s(data.get("id")),
            payment_type=_s(metadata.get("type")),
            contractor_id=_s(metadata.get("contractorId")),
            client_reference_id=_s(data.get("client_reference_id")),
            pack_id=_s(metadata.get("packId")),
            payment_status=_s(data.get("payment_status")),
            status=_s(data.get("status")),
            amount_total=amount_total,
            currency=_s(data.get("currency")),
        )


class LeadPackCheckoutRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    pack_id: str = Field(alias="packId")


class LeadPackCheckoutResponse(BaseModel):
    url: str
    session_id: str


class FulfillSessionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId")


class FulfillPaymentIntentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    payment_intent_id: str = Field(alias="paymentIntentId")
