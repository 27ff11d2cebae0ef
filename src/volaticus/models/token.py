from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String, Text, Uuid
from sqlalchemy.orm import relationship

from volaticus.db.base import BaseModel, utcnow


class APIToken(BaseModel):
    __tablename__ = "api_tokens"

    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    token = Column(Text, unique=True, nullable=False)
    last_used_at = Column(DateTime, nullable=True)
    expires_at = Column(DateTime, nullable=True)
    revoked_at = Column(DateTime, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    owner = relationship("User", back_populates="tokens")

    def is_valid(self, now=None) -> bool:
        now = now or utcnow()
        return (
            self.is_active
            and self.revoked_at is None
            and (self.expires_at is None or self.expires_at > now)
        )
