# --- START OF FILE: src/rolemailer/infrastructure/db/models/history.py ---
"""
Append-only audit log of what the mailer did for each user.
"""

from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, func
from .base import Base, UserId

class HistoryEntry(Base):
    __tablename__ = "mailer_history"

    id = Column(Integer, primary_key=True)
    user_id = Column(UserId, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    # e.g. 'MAILER'
    category = Column(String(32), nullable=False, index=True)
    message = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<HistoryEntry(id={self.id}, user_id={self.user_id}, category='{self.category}')>"
# --- END OF FILE ---
