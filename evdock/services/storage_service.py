import json
import logging
from datetime import datetime
from typing import Any, List, Tuple
from sqlalchemy import delete, insert, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from evdock.core.exceptions import ConcurrencyConflictError, StorageError
from evdock.models.database import StorageEntry

logger = logging.getLogger(__name__)


class StorageService:
    """
    Key/value store of JSON documents backed by a single SQL table.

    Every key carries a version number. Plain get/set behave like a device
    key/value store; get_versioned/set_versioned give callers an optimistic
    concurrency token so two read-modify-write cycles on the same key cannot
    silently overwrite each other.
    """

    def __init__(self, db: Session):
        self.db = db

    async def get_item(self, key: str) -> Any:
        value, _ = await self.get_versioned(key)
        return value

    async def get_versioned(self, key: str) -> Tuple[Any, int]:
        """Return (value, version); a missing key reads as (None, 0)"""
        try:
            row = self.db.execute(
                select(StorageEntry.value, StorageEntry.version).where(StorageEntry.key == key)
            ).first()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error reading key {key}: {str(e)}")
            raise StorageError(f"Unable to read {key}") from e

        if row is None:
            return None, 0
        try:
            return json.loads(row.value), row.version
        except ValueError as e:
            logger.error(f"Corrupt JSON stored under {key}: {str(e)}")
            raise StorageError(f"Unable to decode {key}") from e

    async def set_item(self, key: str, value: Any) -> bool:
        """Write value unconditionally; None removes the key"""
        if value is None:
            return await self.remove_item(key)
        _, version = await self.get_versioned(key)
        await self.set_versioned(key, value, expected_version=version)
        return True

    async def set_versioned(self, key: str, value: Any, expected_version: int) -> int:
        """
        Write value only if the stored version still equals expected_version.

        Returns the new version. Raises ConcurrencyConflictError when another
        writer got there first.
        """
        payload = json.dumps(value, ensure_ascii=False)
        now = datetime.utcnow()
        new_version = expected_version + 1

        try:
            if expected_version == 0:
                self.db.execute(
                    insert(StorageEntry).values(
                        key=key, value=payload, version=new_version, created_at=now, updated_at=now
                    )
                )
            else:
                update_count = self.db.execute(
                    update(StorageEntry)
                    .where(StorageEntry.key == key, StorageEntry.version == expected_version)
                    .values(value=payload, version=new_version, updated_at=now)
                    .execution_options(synchronize_session=False)
                ).rowcount

                if update_count == 0:
                    # Version changed - another writer updated this key
                    self.db.rollback()
                    raise ConcurrencyConflictError(f"Key {key} was modified by another writer")

            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise ConcurrencyConflictError(f"Key {key} was created by another writer")
        except ConcurrencyConflictError:
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error saving key {key}: {str(e)}")
            raise StorageError(f"Unable to save {key}") from e

        return new_version

    async def remove_item(self, key: str) -> bool:
        try:
            self.db.execute(
                delete(StorageEntry).where(StorageEntry.key == key).execution_options(synchronize_session=False)
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error removing key {key}: {str(e)}")
            raise StorageError(f"Unable to remove {key}") from e
        return True

    async def clear(self) -> bool:
        try:
            self.db.execute(delete(StorageEntry).execution_options(synchronize_session=False))
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error clearing storage: {str(e)}")
            raise StorageError("Unable to clear storage") from e
        return True

    async def keys(self) -> List[str]:
        try:
            return list(self.db.execute(select(StorageEntry.key).order_by(StorageEntry.key)).scalars())
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error listing keys: {str(e)}")
            raise StorageError("Unable to list keys") from e
