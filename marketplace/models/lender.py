import uuid

from sqlalchemy import Boolean, Column, DateTime, Integer, String, func
from sqlalchemy.dialects.postgresql import ARRAY, UUID

from marketplace.db.base import Base


class Lender(Base):
    __tablename__ = "lenders"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    type = Column(String(50), nullable=False, index=True)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    funding_categories = Column(ARRAY(String(50)), nullable=False, default=list)
    priority = Column(Integer, nullable=False, default=100)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
