from .base import Base
from .snapshot import SnapshotModel

__all__ = ["Base", "SnapshotModel"]
