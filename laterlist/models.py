from sqlalchemy import Column, String, Text, DateTime
from datetime import datetime
from .db import Base


class StoreEntry(Base):
    """One key of the local key/value store; the whole document lives in a single row."""

    __tablename__ = "store_entries"

    key = Column(String(64), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
