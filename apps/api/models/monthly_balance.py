"""MonthlyBalance model for per-period AI credit allowances."""

import uuid

from sqlalchemy import CheckConstraint, Column, Date, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


MONTHLY_FEATURE_KEY = "ai_credits"


class MonthlyBalance(Base):
    """Remaining monthly credits for one user and one calendar month."""

    __tablename__ = "monthly_balances"
    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "feature_key",
            "period_start",
            "period_end",
            name="uq_monthly_balances_user_period",
        ),
        CheckConstraint("usage_count >= 0", name="ck_monthly_balances_non_negative"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    feature_key = Column(String, nullable=False, default=MONTHLY_FEATURE_KEY)
    usage_count = Column(Integer, nullable=False, default=0)
    period_start = Column(Date, nullable=False)
    period_end = Column(Date, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    user = relationship("User", back_populates="monthly_balances")
