# backend/app/models/bundle.py
"""Prepaid session bundle model."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.sql import func
import ulid

from ..constants.payment_status import BundleStatus
from ..database import Base


class Bundle(Base):
    """A bundle of sessions a client purchases from a coach up front."""

    __tablename__ = "bundles"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    coach_id = Column(String(26), ForeignKey("users.id"), nullable=False, index=True)
    client_id = Column(String(26), ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String(200), nullable=False, default="")
    session_count = Column(Integer, nullable=False, default=1)
    status = Column(String(20), nullable=False, default=BundleStatus.PENDING.value)
    activated_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    def __repr__(self) -> str:
        return f"<Bundle {self.id} {self.status}>"
