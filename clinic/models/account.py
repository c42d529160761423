from sqlalchemy import Column, String, DateTime
from sqlalchemy.sql import func
from clinic.database import Base


class Account(Base):
    __tablename__ = "accounts"

    id = Column(String(32), primary_key=True)
    identifier = Column(String(200), unique=True, nullable=False, index=True)
    auth_method = Column(String(10), nullable=False)  # "email" | "mobile"
    password_hash = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
