from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.sql import func
from clinic.database import Base


class Blob(Base):
    __tablename__ = "blobs"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(500), nullable=False, unique=True)
    file_path = Column(String(1000), nullable=False)
    url = Column(String(1000), nullable=False)
    file_size = Column(Integer)
    uploaded_at = Column(DateTime(timezone=True), server_default=func.now())
