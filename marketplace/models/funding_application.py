import uuid

from sqlalchemy import CheckConstraint, Column, DateTime, Integer, Numeric, String, func
from sqlalchemy.dialects.postgresql import JSONB, UUID

from marketplace.db.base import Base


class FundingApplication(Base):
    __tablename__ = "funding_applications"
    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_funding_app_amount_nonneg"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    company_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    user_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    amount = Column(Numeric(18, 2), nullable=False)
    term_months = Column(Integer, nullable=True)
    funding_type = Column(String(50), nullable=False)
    # Written as "disbursed" by reconciliation; the commission rules engine watches this column.
    status = Column(String(30), nullable=False, default="draft", index=True)
    financing_needs_details = Column(JSONB, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
