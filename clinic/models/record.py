from sqlalchemy import Column, String, DateTime, JSON
from clinic.database import Base


class StoredRecord(Base):
    """One document of the directory, addressed by its full slash path."""

    __tablename__ = "records"

    path = Column(String(500), primary_key=True)
    collection = Column(String(500), nullable=False, index=True)
    record_id = Column(String(200), nullable=False)
    data = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)
