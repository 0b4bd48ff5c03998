"""Local snapshot database model.

Each row is one durable storage slot holding a full JSON snapshot of the
gradebook document.
"""

from sqlalchemy import Column, String, Text
from .base import Base


class SnapshotModel(Base):
    """Key-value slot for a serialized gradebook document."""

    __tablename__ = "local_snapshots"

    slot_key = Column(String, primary_key=True, index=True)  # e.g. 'gj_v6_pro'
    payload = Column(Text, nullable=False)  # JSON text
    saved_at = Column(String, nullable=False)  # ISO format string
