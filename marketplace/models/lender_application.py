import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Index, String, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import JSONB, UUID

from marketplace.db.base import Base


class LenderApplication(Base):
    __tablename__ = "lender_applications"
    __table_args__ = (
        UniqueConstraint("lender_id", "lender_reference", name="uq_lender_app_reference"),
        Index("ix_lender_app_pair", "funding_application_id", "lender_id"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    funding_application_id = Column(
        UUID(as_uuid=True),
        ForeignKey("funding_applications.id", ondelete="RESTRICT"),
        nullable=False,
    )
    lender_id = Column(
        UUID(as_uuid=True),
        ForeignKey("lenders.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    lender_reference = Column(String(255), nullable=True, index=True)
    status = Column(String(40), nullable=False, default="pending", index=True)
    next_poll_at = Column(DateTime(timezone=True), nullable=True, index=True)
    last_polled_at = Column(DateTime(timezone=True), nullable=True)
    error_details = Column(JSONB, nullable=True)
    raw_response_data = Column(JSONB, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
