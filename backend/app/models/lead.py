import enum

from sqlalchemy import Column, DateTime, Enum, ForeignKey, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.core.database import Base


class LeadState(str, enum.Enum):
    OPEN = "open"
    SHARED = "shared"
    EXCLUSIVE = "exclusive"
    CLAIMED = "claimed"


LEAD_TRANSITIONS: dict[LeadState, frozenset[LeadState]] = {
    LeadState.OPEN: frozenset({LeadState.SHARED, LeadState.EXCLUSIVE, LeadState.CLAIMED}),
    LeadState.SHARED: frozenset({LeadState.SHARED, LeadState.EXCLUSIVE, LeadState.CLAIMED}),
    LeadState.EXCLUSIVE: frozenset({LeadState.EXCLUSIVE, LeadState.CLAIMED}),
    LeadState.CLAIMED: frozenset(),
}


class Lead(Base):
    __tablename__ = "leads"

    job_id = Column(String, primary_key=True, index=True)
    customer_id = Column(String, index=True, nullable=True)
    title = Column(String, nullable=True)
    state = Column(Enum(LeadState), nullable=False, default=LeadState.OPEN)
    exclusive_owner = Column(String, index=True, nullable=True)
    exclusive_unlocked_at = Column(DateTime(timezone=True), nullable=True)
    non_exclusive_unlocked_at = Column(DateTime(timezone=True), nullable=True)
    accepted_bid_id = Column(String, nullable=True)
    accepted_quote_id = Column(String, nullable=True)
    claimed_by = Column(String, index=True, nullable=True)
    claimed_at = Column(DateTime(timezone=True), nullable=True)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    buyers = relationship("LeadBuyer", back_populates="lead", lazy="selectin")

    __mapper_args__ = {"version_id_col": version}

    @property
    def buyer_ids(self) -> set[str]:
        return {b.contractor_id for b in self.buyers}

    @property
    def claimed(self) -> bool:
        return self.state == LeadState.CLAIMED

    @property
    def has_accepted_offer(self) -> bool:
        return bool(str(self.accepted_quote_id or "").strip() or str(self.accepted_bid_id or "").strip())

    def can_transition(self, target: LeadState) -> bool:
        return target in LEAD_TRANSITIONS[LeadState(self.state)]


class LeadBuyer(Base):
    __tablename__ = "lead_buyers"

    job_id = Column(String, ForeignKey("leads.job_id"), primary_key=True)
    contractor_id = Column(String, primary_key=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    lead = relationship("Lead", back_populates="buyers")
