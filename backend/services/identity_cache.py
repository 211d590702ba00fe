"""
Persistent cache of resolved social identities.

Resolved identities live in an in-process CacheStore (day-long TTL) for the
hot path and are written through to SQL so a restart does not re-query every
address. Only real profiles are cached; fallback placeholders are not, so
unresolved addresses are looked up again on the next request.
"""

import time
from datetime import timedelta
from typing import Callable, Iterable, Optional

from sqlalchemy import Column, DateTime, Index, String, Text, delete, func, select
from sqlalchemy.dialects.sqlite import insert as sqlite_upsert

from config import settings
from models.database import AsyncSessionLocal, Base
from models.leaderboard import IdentityRecord
from services.cache_store import CacheStore
from utils.logger import identity_logger as logger
from utils.utcnow import utcnow


# ==================== SQLAlchemy Models ====================


class CachedIdentity(Base):
    """Persisted identity keyed by lowercase wallet address."""

    __tablename__ = "cached_identities"

    address = Column(String, primary_key=True)  # Lowercase wallet address
    display_name = Column(String, nullable=False)
    avatar_url = Column(Text, nullable=True)
    external_id = Column(String, nullable=True)
    cached_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (Index("idx_ci_updated_at", "updated_at"),)


# ==================== Cache Service ====================


class IdentityCacheService:
    def __init__(
        self,
        ttl_seconds: float = 86400,
        *,
        clock: Callable[[], float] = time.monotonic,
        persist: bool = True,
        session_factory: Optional[Callable] = None,
    ):
        self.ttl_seconds = ttl_seconds
        self.persist = persist
        self._session_factory = session_factory
        self._store = CacheStore(default_ttl=ttl_seconds, clock=clock, name="identities")
        self._loaded = False

    def _session(self):
        return (self._session_factory or AsyncSessionLocal)()

    # -------------------- Startup --------------------

    async def load_from_db(self) -> int:
        """Warm the in-memory cache from SQL, skipping rows older than the TTL."""
        if not self.persist:
            self._loaded = True
            return 0

        loaded = 0
        try:
            now = utcnow()
            cutoff = now - timedelta(seconds=self.ttl_seconds)
            async with self._session() as session:
                result = await session.execute(
                    select(CachedIdentity).where(CachedIdentity.updated_at >= cutoff)
                )
                for row in result.scalars().all():
                    age = (now - row.updated_at).total_seconds()
                    self._store.set(
                        row.address,
                        IdentityRecord(
                            address=row.address,
                            display_name=row.display_name,
                            avatar_url=row.avatar_url,
                            external_id=row.external_id or "nil",
                        ),
                        ttl=max(0.0, self.ttl_seconds - age),
                    )
                    loaded += 1
            logger.info("Identity cache loaded from database", identities=loaded)
        except Exception as e:
            logger.error("Failed to load identity cache from database", error=str(e))
        self._loaded = True
        return loaded

    # -------------------- Lookups --------------------

    def get(self, address: str) -> Optional[IdentityRecord]:
        return self._store.get(address.lower())

    def get_many(self, addresses: Iterable[str]) -> dict[str, IdentityRecord]:
        found = {}
        for address in addresses:
            identity = self.get(address)
            if identity is not None:
                found[identity.address] = identity
        return found

    def missing(self, addresses: Iterable[str]) -> list[str]:
        """Addresses (deduplicated, order kept) with no fresh cached identity."""
        result: list[str] = []
        seen: set[str] = set()
        for address in addresses:
            key = address.lower()
            if key in seen:
                continue
            seen.add(key)
            if self._store.get(key) is None:
                result.append(key)
        return result

    # -------------------- Writes --------------------

    async def bulk_set(self, identities: dict[str, IdentityRecord]) -> None:
        """Cache resolved identities (write-through: memory + DB)."""
        resolved = {
            identity.address: identity
            for identity in identities.values()
            if identity.resolved
        }
        if not resolved:
            return

        for address, identity in resolved.items():
            self._store.set(address, identity)

        if not self.persist:
            return

        try:
            async with self._session() as session:
                now = utcnow()
                for address, identity in resolved.items():
                    stmt = sqlite_upsert(CachedIdentity).values(
                        address=address,
                        display_name=identity.display_name,
                        avatar_url=identity.avatar_url,
                        external_id=identity.external_id,
                        cached_at=now,
                        updated_at=now,
                    )
                    stmt = stmt.on_conflict_do_update(
                        index_elements=["address"],
                        set_={
                            "display_name": stmt.excluded.display_name,
                            "avatar_url": stmt.excluded.avatar_url,
                            "external_id": stmt.excluded.external_id,
                            "updated_at": now,
                        },
                    )
                    await session.execute(stmt)
                await session.commit()
            logger.debug("Persisted identities", count=len(resolved))
        except Exception as e:
            logger.error("Failed to persist identity cache", count=len(resolved), error=str(e))

    async def flush(self) -> int:
        """Forget every cached identity, in memory and in SQL."""
        removed = self._store.clear()
        if self.persist:
            try:
                async with self._session() as session:
                    await session.execute(delete(CachedIdentity))
                    await session.commit()
            except Exception as e:
                logger.error("Failed to flush persisted identities", error=str(e))
        logger.info("Identity cache flushed", identities=removed)
        return removed

    async def get_stats(self) -> dict:
        stats = self._store.stats()
        stats["loaded"] = self._loaded
        if not self.persist:
            return stats
        try:
            async with self._session() as session:
                result = await session.execute(
                    select(func.count(CachedIdentity.address), func.max(CachedIdentity.updated_at))
                )
                count, newest = result.one()
                stats["db_count"] = count
                stats["db_newest_update"] = newest.isoformat() if newest else None
        except Exception as e:
            stats["db_error"] = str(e)
        return stats


# Global instance
identity_cache = IdentityCacheService(
    ttl_seconds=settings.IDENTITY_CACHE_TTL_SECONDS,
    persist=settings.IDENTITY_PERSISTENCE_ENABLED,
)
