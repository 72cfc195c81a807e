"""
Key/Value Entry Model - durable snapshot storage
"""
from datetime import datetime
from sqlalchemy import Column, String, Text, DateTime

from app.db.database import Base


class KeyValueEntry(Base):
    """Opaque JSON blobs keyed by name (queue snapshot, counters, templates, app state)"""

    __tablename__ = "kv_entries"

    key = Column(String(255), primary_key=True)
    value = Column(Text, nullable=False)

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    # NULL = לא פג תוקף
    expires_at = Column(DateTime, nullable=True, index=True)
