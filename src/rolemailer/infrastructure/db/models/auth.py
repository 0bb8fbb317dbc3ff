# src/rolemailer/infrastructure/db/models/auth.py
"""
The user table the mailer reads identity fields from. Ledger tables reference
it with ON DELETE CASCADE so removing a user removes their mailer state.
"""

from sqlalchemy import Column, String, DateTime, func
from .base import Base, UserId

class User(Base):
    __tablename__ = 'users'

    id = Column(UserId, primary_key=True, autoincrement=True)
    email = Column(String(255), nullable=False, index=True)
    display_name = Column(String(255), nullable=False, default="", server_default="")
    login = Column(String(60), nullable=False, default="", server_default="")
    role = Column(String(48), nullable=False, default="", server_default="")

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<User(id={self.id}, login='{self.login}', role='{self.role}')>"
