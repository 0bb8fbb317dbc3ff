# --- START OF FILE: src/rolemailer/infrastructure/db/models/base.py ---
from sqlalchemy import BigInteger, Integer
from sqlalchemy.orm import DeclarativeBase

# BIGINT user ids; SQLite only autoincrements an INTEGER PRIMARY KEY.
UserId = BigInteger().with_variant(Integer(), "sqlite")

class Base(DeclarativeBase):
    """The base class for all SQLAlchemy ORM models."""
    pass
# --- END OF FILE ---
