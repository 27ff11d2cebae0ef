from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import relationship

from volaticus.db.base import BaseModel


class UploadedItem(BaseModel):
    __tablename__ = "uploaded_items"
    __table_args__ = (
        CheckConstraint("file_size > 0", name="ck_uploaded_items_size_positive"),
        CheckConstraint("expires_at > created_at", name="ck_uploaded_items_expiry_after_creation"),
        CheckConstraint("access_count >= 0", name="ck_uploaded_items_access_nonnegative"),
    )

    user_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    original_name = Column(Text, nullable=False)
    blob_key = Column(String(255), unique=True, nullable=False)
    mime_type = Column(String(255), nullable=False, default="application/octet-stream")
    file_size = Column(BigInteger, nullable=False)
    last_accessed_at = Column(DateTime, nullable=True)
    access_count = Column(Integer, default=0, nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)
    reference = Column(String(512), unique=True, nullable=False, index=True)
    url_style = Column(String(32), nullable=False)

    owner = relationship("User", back_populates="uploads")
