from sqlalchemy import Column, String, Boolean, DateTime
from sqlalchemy.orm import relationship

from volaticus.db.base import BaseModel, utcnow


class User(BaseModel):
    __tablename__ = "users"

    email = Column(String, unique=True, index=True, nullable=False)
    username = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # uploads survive their owner with user_id set to NULL
    uploads = relationship("UploadedItem", back_populates="owner")
    urls = relationship("ShortenedURL", back_populates="owner", cascade="all, delete-orphan")
    tokens = relationship("APIToken", back_populates="owner", cascade="all, delete-orphan")
