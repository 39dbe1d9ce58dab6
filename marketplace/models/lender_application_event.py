import uuid

from sqlalchemy import Column, DateTime, ForeignKey, String, func
from sqlalchemy.dialects.postgresql import JSONB, UUID

from marketplace.db.base import Base


class LenderApplicationEvent(Base):
    """Append-only trail of every lifecycle observation, webhook or poll."""

    __tablename__ = "lender_application_events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    lender_application_id = Column(
        UUID(as_uuid=True),
        ForeignKey("lender_applications.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    lender_reference = Column(String(255), nullable=True, index=True)
    source = Column(String(20), nullable=False)
    event = Column(String(100), nullable=False)
    outcome = Column(String(30), nullable=False)
    payload = Column(JSONB, nullable=False, default=dict)
    received_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
