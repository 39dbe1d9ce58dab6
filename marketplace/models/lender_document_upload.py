import uuid

from sqlalchemy import Column, DateTime, ForeignKey, String, Text, func
from sqlalchemy.dialects.postgresql import UUID

from marketplace.db.base import Base


class LenderDocumentUpload(Base):
    __tablename__ = "lender_document_uploads"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    lender_application_id = Column(
        UUID(as_uuid=True),
        ForeignKey("lender_applications.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    document_id = Column(UUID(as_uuid=True), nullable=False)
    document_name = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False)
    error = Column(Text, nullable=True)
    uploaded_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
