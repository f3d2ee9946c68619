"""User model definitions."""

from sqlalchemy import Column, DateTime, String, func
from medibook.database import Base


class User(Base):
    """Represents a signed-in patient or administrator, keyed by email."""
    __tablename__ = "users"

    id = Column(String, primary_key=True, index=True)
    role = Column(String, nullable=False, default="user")  # user/admin
    created_at = Column(DateTime, server_default=func.now())
