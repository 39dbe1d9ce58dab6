import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import JSONB, UUID

from marketplace.db.base import Base


class FinancingOffer(Base):
    __tablename__ = "financing_offers"
    __table_args__ = (
        UniqueConstraint(
            "lender_application_id",
            "lender_offer_reference",
            name="uq_financing_offer_reference",
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    lender_application_id = Column(
        UUID(as_uuid=True),
        ForeignKey("lender_applications.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    funding_application_id = Column(
        UUID(as_uuid=True),
        ForeignKey("funding_applications.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    lender_offer_reference = Column(String(255), nullable=False)
    product = Column(String(50), nullable=True)
    term_months = Column(Integer, nullable=True)
    amount = Column(Numeric(18, 2), nullable=True)
    monthly_fee = Column(Numeric(10, 4), nullable=True)
    status = Column(String(20), nullable=False, default="offered")
    raw_data = Column(JSONB, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
