"""
Database Models
"""
from app.db.models.kv_entry import KeyValueEntry

__all__ = [
    "KeyValueEntry",
]
