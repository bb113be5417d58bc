"""
DualStore - read/write primitives over the authoritative database and the
per-device local cache.

Precedence is fixed in one place (read_through): remote first, cache on
failure, write-through to cache on success. Remote failures are classified
into DataUnavailable / TransientIOFailure and never retried here.
"""

import json
import logging
from typing import Callable, Dict, Optional, Tuple, Type

from pydantic import BaseModel, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import READ_SOURCE_CACHE, READ_SOURCE_NONE, READ_SOURCE_REMOTE
from crud.subscription import SubscriptionRepository
from crud.trial import TrialRepository
from models.entitlement import SubscriptionRecord, TrialRecord
from utils.errors import DataUnavailable, InconsistentCache, RemoteStoreError, TransientIOFailure
from utils.local_cache import LocalCache

logger = logging.getLogger(__name__)

# Remote tables
TRIALS = "trials"
SUBSCRIPTIONS = "subscriptions"

# Cache slots
TRIAL_STATUS = "trial_status"
SUBSCRIPTION_ACTIVE = "subscription_active"
SUBSCRIPTION_META = "subscription_meta"

REMOTE_TABLES: Dict[str, Tuple[type, Type[BaseModel]]] = {
    TRIALS: (TrialRepository, TrialRecord),
    SUBSCRIPTIONS: (SubscriptionRepository, SubscriptionRecord),
}

# Driver messages meaning the table/schema is not provisioned (SQLite, Postgres)
_MISSING_TABLE_MARKERS = (
    "no such table",
    "undefinedtable",
    "does not exist",
    "doesn't exist",
)



def cache_key(user_id: str, slot: str) -> str:
    return f"entitlement:{user_id}:{slot}"


def classify_remote_error(exc: Exception) -> RemoteStoreError:
    """Map a driver/ORM exception onto the remote failure taxonomy."""
    if isinstance(exc, RemoteStoreError):
        return exc
    text = f"{type(exc).__name__} {exc}".lower()
    orig = getattr(exc, "orig", None)
    if orig is not None:
        text += f" {type(orig).__name__} {orig}".lower()
    if any(marker in text for marker in _MISSING_TABLE_MARKERS):
        return DataUnavailable(str(exc))
    return TransientIOFailure(str(exc))


def parse_cached_record(raw: Optional[str], model: Type[BaseModel]) -> Optional[BaseModel]:
    """
    Parse a cached JSON blob into model.

    Raises:
        InconsistentCache: payload is not valid JSON of the expected shape
    """
    if raw is None:
        return None
    try:
        return model.model_validate_json(raw)
    except (ValidationError, ValueError) as e:
        raise InconsistentCache(f"Cached {model.__name__} is malformed: {e}")


def parse_cached_flag(raw: Optional[str]) -> Optional[bool]:
    """Parse a cached "true"/"false" flag; anything else is InconsistentCache."""
    if raw is None:
        return None
    normalized = raw.strip().lower()
    if normalized == "true":
        return True
    if normalized == "false":
        return False
    raise InconsistentCache(f"Cached flag has unexpected value: {raw!r}")


class DualStore:
    """
    Remote store (SQLAlchemy session + repositories) paired with a LocalCache.
    """

    def __init__(self, db: AsyncSession, cache: LocalCache):
        self.db = db
        self.cache = cache

    def _repository(self, table: str):
        try:
            repo_cls, model = REMOTE_TABLES[table]
        except KeyError:
            raise ValueError(f"Unknown remote table: {table}")
        return repo_cls(self.db), model

    async def _rollback(self) -> None:
        try:
            await self.db.rollback()
        except Exception as e:
            logger.warning(f"Rollback after remote failure also failed: {e}")

    async def read_remote(self, table: str, user_id: str) -> Optional[BaseModel]:
        """
        Read the most recent row of table for user_id.

        Returns:
            Typed record, or None when the table has no row for the user

        Raises:
            DataUnavailable: table not provisioned
            TransientIOFailure: any other remote failure
        """
        repo, model = self._repository(table)
        try:
            row = await repo.get_latest(user_id)
        except Exception as e:
            await self._rollback()
            raise classify_remote_error(e) from e
        if row is None:
            return None
        return model.model_validate(row)

    async def write_remote_best_effort(self, table: str, user_id: str, values: dict) -> Optional[BaseModel]:
        """
        Upsert values into the user's latest row of table and commit.

        Returns:
            The written record, or None when the write did not land
        """
        repo, model = self._repository(table)
        try:
            row = await repo.upsert(user_id, values)
            await self.db.commit()
            return model.model_validate(row)
        except Exception as e:
            await self._rollback()
            error = classify_remote_error(e)
            logger.warning(
                f"Remote write to {table} for user {user_id} skipped "
                f"({type(error).__name__}): {error.message}"
            )
            return None

    def read_cache(self, key: str) -> Optional[str]:
        return self.cache.get(key)

    def write_cache(self, key: str, value: str) -> None:
        self.cache.set(key, value)

    def clear_cache(self, key: str) -> None:
        self.cache.delete(key)

    async def read_through(
        self,
        table: str,
        user_id: str,
        slot: str,
        from_cache: Callable[[Optional[str]], Optional[BaseModel]],
        to_cache: Callable[[BaseModel], str],
        empty_is_authoritative: bool = False,
    ) -> Tuple[Optional[BaseModel], str]:
        """
        Remote-first read with cache fallback and write-through.

        Args:
            table: Remote table to read
            user_id: Owner of the record
            slot: Cache slot mirroring the record
            from_cache: Parses the cached string (may raise InconsistentCache)
            to_cache: Serializes a remote record for the cache
            empty_is_authoritative: When True, a successful remote read that
                finds no row clears the cache slot and is returned as-is.
                When False, the cache is consulted for a record whose remote
                write never landed.

        Returns:
            (record or None, source) where source is remote, cache or none
        """
        key = cache_key(user_id, slot)
        try:
            record = await self.read_remote(table, user_id)
        except DataUnavailable as e:
            logger.info(f"Remote {table} not provisioned, using cache for user {user_id}: {e.message}")
        except TransientIOFailure as e:
            logger.warning(f"Remote {table} read failed for user {user_id}, using cache: {e.message}")
        else:
            if record is not None:
                self.write_cache(key, to_cache(record))
                return record, READ_SOURCE_REMOTE
            if empty_is_authoritative:
                self.clear_cache(key)
                return None, READ_SOURCE_REMOTE

        try:
            cached = from_cache(self.read_cache(key))
        except InconsistentCache as e:
            logger.warning(f"Discarding cache entry {key}: {e.message}")
            self.clear_cache(key)
            return None, READ_SOURCE_NONE
        if cached is None:
            return None, READ_SOURCE_NONE
        return cached, READ_SOURCE_CACHE


def record_to_json(record: BaseModel) -> str:
    return record.model_dump_json()


def flag_to_str(value: bool) -> str:
    return json.dumps(bool(value))
