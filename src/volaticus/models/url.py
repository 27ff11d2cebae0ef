from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    text,
)
from sqlalchemy.orm import relationship

from volaticus.db.base import BaseModel, utcnow


class ShortenedURL(BaseModel):
    __tablename__ = "shortened_urls"
    __table_args__ = (
        # a code may be reused once the previous holder was deactivated
        Index(
            "uq_shortened_urls_active_code",
            "short_code",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active"),
        ),
        CheckConstraint("access_count >= 0", name="ck_shortened_urls_access_nonnegative"),
    )

    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    original_url = Column(Text, nullable=False)
    short_code = Column(String(30), nullable=False, index=True)
    expires_at = Column(DateTime, nullable=True)
    last_accessed_at = Column(DateTime, nullable=True)
    access_count = Column(Integer, default=0, nullable=False)
    is_vanity = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    owner = relationship("User", back_populates="urls")
    clicks = relationship(
        "ClickEvent",
        back_populates="url",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class ClickEvent(BaseModel):
    __tablename__ = "click_events"

    url_id = Column(Uuid, ForeignKey("shortened_urls.id", ondelete="CASCADE"), nullable=False, index=True)
    clicked_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    referrer = Column(Text, nullable=False, default="")
    user_agent = Column(Text, nullable=False, default="")
    ip_address = Column(String(45), nullable=False, default="")
    country_code = Column(String(2), nullable=False, default="XX")
    city = Column(String(255), nullable=False, default="")
    region = Column(String(255), nullable=False, default="")

    url = relationship("ShortenedURL", back_populates="clicks")
