"""Local persistence of the gradebook document.

Snapshots are written to two redundant slots (primary and backup) in the local
SQLite database. Persistence is best effort: failures are logged and never
propagate to the caller.
"""

import logging
from typing import Callable, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from config import LOCAL_BACKUP_KEY, LOCAL_LAST_USER_KEY, LOCAL_STORAGE_KEY
from core.exceptions import StorageError
from models.snapshot import SnapshotModel
from schemas.gradebook import GradebookDocument, now_iso

logger = logging.getLogger(__name__)


class LocalPersistence:
    """Reads and writes document snapshots to durable local slots."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        primary_key: str = LOCAL_STORAGE_KEY,
        backup_key: str = LOCAL_BACKUP_KEY,
        last_user_key: str = LOCAL_LAST_USER_KEY,
    ):
        """Initialize LocalPersistence.

        Args:
            session_factory: Callable returning a new SQLAlchemy Session.
            primary_key: Slot key of the primary snapshot.
            backup_key: Slot key of the backup snapshot.
            last_user_key: Slot key of the sign-out snapshot.
        """
        self.session_factory = session_factory
        self.primary_key = primary_key
        self.backup_key = backup_key
        self.last_user_key = last_user_key

    def _write_slots(self, payload: str, *slot_keys: str) -> None:
        db = self.session_factory()
        try:
            saved_at = now_iso()
            for slot_key in slot_keys:
                existing = db.get(SnapshotModel, slot_key)
                if existing:
                    existing.payload = payload
                    existing.saved_at = saved_at
                else:
                    db.add(SnapshotModel(slot_key=slot_key, payload=payload, saved_at=saved_at))
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            raise StorageError(str(exc)) from exc
        finally:
            db.close()

    def _read_slot(self, slot_key: str) -> Optional[str]:
        db = self.session_factory()
        try:
            row = db.get(SnapshotModel, slot_key)
            return row.payload if row else None
        except SQLAlchemyError as exc:
            raise StorageError(str(exc)) from exc
        finally:
            db.close()

    def _parse(self, slot_key: str) -> Optional[GradebookDocument]:
        try:
            payload = self._read_slot(slot_key)
            if payload is None:
                return None
            return GradebookDocument.from_json(payload)
        except (StorageError, PydanticValidationError, ValueError) as exc:
            logger.error("Error loading snapshot slot %s: %s", slot_key, exc)
            return None

    def save(self, document: GradebookDocument) -> bool:
        """Write identical snapshots to the primary and backup slots.

        Returns:
            True if the write succeeded, False if it failed (the error is logged).
        """
        try:
            payload = document.to_json()
            self._write_slots(payload, self.primary_key, self.backup_key)
            logger.debug("Saved local snapshot (%d bytes)", len(payload))
            return True
        except Exception as exc:
            logger.error("Failed to save local snapshot: %s", exc)
            return False

    def load(self) -> Optional[GradebookDocument]:
        """Read the primary slot, falling back to the backup slot.

        Returns:
            The stored document, or None when neither slot holds usable data.
        """
        document = self._parse(self.primary_key)
        if document is not None:
            return document
        document = self._parse(self.backup_key)
        if document is not None:
            logger.warning("Primary snapshot unusable, loaded backup slot")
        return document

    def load_backup_only(self) -> Optional[GradebookDocument]:
        """Explicit recovery path: read only the backup slot."""
        return self._parse(self.backup_key)

    def save_last_user(self, document: GradebookDocument) -> bool:
        """Keep a copy of the document taken at sign-out time."""
        try:
            self._write_slots(document.to_json(), self.last_user_key)
            return True
        except Exception as exc:
            logger.error("Failed to save sign-out snapshot: %s", exc)
            return False

    def load_last_user(self) -> Optional[GradebookDocument]:
        return self._parse(self.last_user_key)


def create_local_persistence(session_factory: Optional[sessionmaker] = None) -> LocalPersistence:
    """Build a LocalPersistence bound to the configured local database."""
    if session_factory is None:
        from core.database import get_session_factory

        session_factory = get_session_factory()
    return LocalPersistence(session_factory)
