"""PurchasedCreditLot model for non-expiring credit packs."""

import uuid

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


PURCHASED_FEATURE_KEY = "ai_credits_purchased"


class PurchasedCreditLot(Base):
    """Append-only purchased credit lot."""

    __tablename__ = "purchased_credit_lots"
    __table_args__ = (
        CheckConstraint("usage_count > 0", name="ck_purchased_credit_lots_positive"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    feature_key = Column(String, nullable=False, default=PURCHASED_FEATURE_KEY)
    usage_count = Column(Integer, nullable=False)
    billing_provider = Column(String, nullable=True)
    billing_reference = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    user = relationship("User", back_populates="purchased_credit_lots")
