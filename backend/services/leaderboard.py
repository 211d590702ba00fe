"""
Leaderboard aggregation service.

Request flow:
1. Look up the ranked snapshot for ``(type, timeframe)`` in the CacheStore.
2. On a miss, read both ledgers, merge, rank and cache the result. Concurrent
   misses for the same key share one computation.
3. If the computation fails, serve the last snapshot for the key whatever its
   age; without one, raise LeaderboardUnavailableError.
4. Page the snapshot and attach identities. A fresh computation already
   resolved the whole list, so its identities are reused; cached and stale
   snapshots look up only the page.
"""

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from config import Settings, settings as default_settings
from models.leaderboard import (
    IdentityRecord,
    LeaderboardEntryResponse,
    LeaderboardType,
    PageResult,
    RankedEntry,
    TimeFrame,
)
from services.cache_store import CacheStore
from services.chain_rpc import ChainRpcClient
from services.identity import IdentityEnricher, NeynarClient
from services.identity_cache import IdentityCacheService, identity_cache as default_identity_cache
from services.ledger_reader import ChainLedgerReader
from services.pagination import find_rank, paginate
from services.ranking import rank
from services.reconciliation import merge
from utils.logger import leaderboard_logger as logger
from utils.rate_limiter import rate_limiter
from utils.retry import RetryConfig
from utils.utcnow import utcnow


class LeaderboardConfigError(Exception):
    """A setting required to compute the leaderboard is missing."""

    def __init__(self, setting: str):
        super().__init__(f"Missing {setting}")
        self.setting = setting


class LeaderboardUnavailableError(Exception):
    """Fresh computation failed and there is no snapshot to fall back to."""


@dataclass
class LeaderboardSnapshot:
    entries: list[RankedEntry]
    computed_at: datetime
    decimals: int = 18
    v1_records: int = 0
    v2_records: int = 0
    v2_degraded: bool = False

    def ranks(self) -> dict[str, int]:
        return {entry.address: entry.rank for entry in self.entries}


@dataclass
class LeaderboardPage:
    data: list[LeaderboardEntryResponse]
    pagination: PageResult
    source: str  # "fresh", "cache" or "stale"
    computed_at: Optional[datetime] = None

    def to_response(self) -> dict:
        return {
            "data": [entry.model_dump(mode="json") for entry in self.data],
            "pagination": {
                "page": self.pagination.page,
                "pageSize": self.pagination.page_size,
                "total": self.pagination.total,
                "totalPages": self.pagination.total_pages,
            },
            "userRank": self.pagination.requester_rank,
        }


@dataclass
class LoadedSnapshot:
    snapshot: LeaderboardSnapshot
    source: str
    key: str
    # Set only for a fresh computation
    identities: Optional[dict[str, IdentityRecord]] = None


def build_cache_key(
    lb_type: LeaderboardType,
    timeframe: TimeFrame,
    *,
    namespace: str = "leaderboard",
    version: str = "v12",
) -> str:
    return f"{namespace}_{version}_{LeaderboardType(lb_type).value}_{TimeFrame(timeframe).value}"


class LeaderboardService:
    def __init__(
        self,
        config: Optional[Settings] = None,
        *,
        cache: Optional[CacheStore] = None,
        identity_cache: Optional[IdentityCacheService] = None,
        reader: Optional[ChainLedgerReader] = None,
        enricher: Optional[IdentityEnricher] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = config or default_settings
        self.cache = cache or CacheStore(
            default_ttl=self.settings.LEADERBOARD_CACHE_TTL_SECONDS,
            clock=clock,
            name="leaderboard",
        )
        self.identity_cache = identity_cache or default_identity_cache
        self._reader = reader
        self._enricher = enricher
        self._rpc: Optional[ChainRpcClient] = None
        self._neynar: Optional[NeynarClient] = None
        self._inflight: dict[str, asyncio.Future] = {}

    def cache_key(self, lb_type: LeaderboardType, timeframe: TimeFrame) -> str:
        return build_cache_key(
            lb_type,
            timeframe,
            namespace=self.settings.LEADERBOARD_CACHE_NAMESPACE,
            version=self.settings.LEADERBOARD_CACHE_VERSION,
        )

    # -------------------- Collaborators --------------------

    def ensure_configured(self) -> None:
        missing = self.settings.missing_upstream_settings()
        if missing:
            logger.error("Server configuration error", missing=missing)
            raise LeaderboardConfigError(missing[0])

    def _get_reader(self) -> ChainLedgerReader:
        if self._reader is None:
            self._rpc = ChainRpcClient(
                self.settings.RPC_URL, timeout=self.settings.API_TIMEOUT_SECONDS
            )
            self._reader = ChainLedgerReader.from_settings(self.settings, self._rpc)
        return self._reader

    def _get_enricher(self) -> Optional[IdentityEnricher]:
        if self._enricher is None and self.settings.NEYNAR_API_KEY:
            self._neynar = NeynarClient(
                self.settings.NEYNAR_API_KEY,
                self.settings.NEYNAR_API_URL,
                timeout=self.settings.API_TIMEOUT_SECONDS,
            )
            self._enricher = IdentityEnricher(
                self._neynar,
                self.identity_cache,
                batch_size=self.settings.IDENTITY_BATCH_SIZE,
                retry_config=RetryConfig.from_settings(self.settings),
            )
        return self._enricher

    async def close(self):
        if self._rpc is not None:
            await self._rpc.close()
        if self._neynar is not None:
            await self._neynar.close()

    # -------------------- Snapshot --------------------

    async def load_snapshot(
        self,
        lb_type: LeaderboardType,
        timeframe: TimeFrame,
        *,
        refresh: bool = False,
    ) -> LoadedSnapshot:
        key = self.cache_key(lb_type, timeframe)

        if refresh:
            logger.info("Forced leaderboard refresh", key=key)
            self.cache.invalidate_all()

        cached = self.cache.get(key)
        if cached is not None:
            logger.info("Leaderboard cache hit", key=key)
            return LoadedSnapshot(cached, "cache", key)

        logger.info("Leaderboard cache miss", key=key)
        self.ensure_configured()

        try:
            snapshot, identities = await self._compute_shared(key)
            return LoadedSnapshot(snapshot, "fresh", key, identities)
        except Exception as e:
            logger.error(
                "Leaderboard computation failed",
                key=key,
                error=str(e),
                error_type=type(e).__name__,
            )
            stale = self.cache.get_stale(key)
            if stale is None:
                raise LeaderboardUnavailableError("Failed to fetch leaderboard") from e
            logger.warning(
                "Serving stale leaderboard",
                key=key,
                computed_at=stale.computed_at.isoformat(),
                entries=len(stale.entries),
            )
            return LoadedSnapshot(stale, "stale", key)

    async def _compute_shared(
        self, key: str
    ) -> tuple[LeaderboardSnapshot, dict[str, IdentityRecord]]:
        """One computation per key; concurrent callers await the same result."""
        inflight = self._inflight.get(key)
        if inflight is not None:
            logger.info("Joining in-flight leaderboard computation", key=key)
            return await asyncio.shield(inflight)

        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._inflight[key] = future
        try:
            computed = await self._compute(key)
        except asyncio.CancelledError:
            # Joiners get an ordinary failure so they can still fall back to stale
            future.set_exception(
                LeaderboardUnavailableError("Leaderboard computation was cancelled")
            )
            future.exception()
            raise
        except Exception as e:
            future.set_exception(e)
            # Mark retrieved so an unjoined failure is not reported as unhandled
            future.exception()
            raise
        else:
            future.set_result(computed)
            return computed
        finally:
            self._inflight.pop(key, None)

    async def _compute(
        self, key: str
    ) -> tuple[LeaderboardSnapshot, dict[str, IdentityRecord]]:
        started = time.monotonic()
        ledgers = await self._get_reader().read_all()

        combined = merge(ledgers.v1, ledgers.v2)
        previous = self.cache.get_stale(key)
        ranked = rank(
            combined,
            decimals=ledgers.decimals,
            max_entries=self.settings.LEADERBOARD_MAX_ENTRIES,
            previous_ranks=previous.ranks() if previous is not None else None,
        )
        snapshot = LeaderboardSnapshot(
            entries=ranked,
            computed_at=utcnow(),
            decimals=ledgers.decimals,
            v1_records=len(ledgers.v1),
            v2_records=len(ledgers.v2),
            v2_degraded=ledgers.v2_error is not None,
        )
        self.cache.set(key, snapshot, self.settings.LEADERBOARD_CACHE_TTL_SECONDS)

        logger.info(
            "Leaderboard computed",
            key=key,
            participants=len(combined),
            ranked=len(ranked),
            v2_degraded=snapshot.v2_degraded,
            elapsed_seconds=round(time.monotonic() - started, 3),
        )

        identities = await self.resolve_identities([entry.address for entry in ranked])
        return snapshot, identities

    # -------------------- Identities --------------------

    async def resolve_identities(self, addresses: list[str]) -> dict[str, IdentityRecord]:
        """Identities for ``addresses``; lookups only for uncached ones."""
        if not addresses:
            return {}
        enricher = self._get_enricher()
        if enricher is None:
            return self.identity_cache.get_many(addresses)
        try:
            return await enricher.resolve(addresses)
        except Exception as e:
            logger.warning("Identity enrichment failed", count=len(addresses), error=str(e))
            return self.identity_cache.get_many(addresses)

    async def _identities_for(
        self, loaded: LoadedSnapshot, addresses: list[str]
    ) -> dict[str, IdentityRecord]:
        if loaded.identities is not None:
            return loaded.identities
        return await self.resolve_identities(addresses)

    # -------------------- Queries --------------------

    async def get_page(
        self,
        lb_type: LeaderboardType = LeaderboardType.ACCURACY,
        timeframe: TimeFrame = TimeFrame.ALL,
        *,
        page: int = 1,
        page_size: int = 10,
        user_address: Optional[str] = None,
        refresh: bool = False,
    ) -> LeaderboardPage:
        loaded = await self.load_snapshot(lb_type, timeframe, refresh=refresh)
        result = paginate(loaded.snapshot.entries, page, page_size, user_address)
        identities = await self._identities_for(
            loaded, [entry.address for entry in result.items]
        )
        return LeaderboardPage(
            data=[
                LeaderboardEntryResponse.build(entry, identities.get(entry.address))
                for entry in result.items
            ],
            pagination=result,
            source=loaded.source,
            computed_at=loaded.snapshot.computed_at,
        )

    async def get_user_entry(
        self,
        address: str,
        lb_type: LeaderboardType = LeaderboardType.ACCURACY,
        timeframe: TimeFrame = TimeFrame.ALL,
    ) -> Optional[LeaderboardEntryResponse]:
        loaded = await self.load_snapshot(lb_type, timeframe)
        position = find_rank(loaded.snapshot.entries, address)
        if position is None:
            return None
        entry = loaded.snapshot.entries[position - 1]
        identities = await self._identities_for(loaded, [entry.address])
        return LeaderboardEntryResponse.build(entry, identities.get(entry.address))

    # -------------------- Maintenance --------------------

    async def flush(self, include_identities: bool = False) -> dict:
        result = {"leaderboard_entries_invalidated": self.cache.invalidate_all()}
        if include_identities:
            result["identities_removed"] = await self.identity_cache.flush()
        logger.info("Leaderboard caches flushed", **result)
        return result

    async def get_stats(self) -> dict:
        return {
            "configured": not self.settings.missing_upstream_settings(),
            "missing_settings": self.settings.missing_upstream_settings(),
            "leaderboard_cache": self.cache.stats(),
            "identity_cache": await self.identity_cache.get_stats(),
            "inflight": sorted(self._inflight),
            "rate_limits": rate_limiter.get_status(),
        }


# Global instance
leaderboard_service = LeaderboardService()
