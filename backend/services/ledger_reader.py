"""
Reads participant financial histories from both prediction ledgers.

V1 exposes a paged ``getLeaderboard(start, count)`` view. V2 only exposes an
indexed ``allParticipants(i)`` array plus a ``userPortfolios(address)``
mapping, so it is walked in multi-call batches until a short batch signals the
end of the list or the participant cap is reached.
"""

import asyncio
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Awaitable, Callable, Iterable, Optional

from pydantic import ValidationError

from models.leaderboard import LedgerSource, ParticipantRecord
from services.chain_rpc import CallResult, ChainRpcClient, ContractCall
from utils.logger import ledger_logger as logger
from utils.retry import RetryConfig, retry_async

ZERO_ADDRESS = "0x" + "0" * 40

TOKEN_DECIMALS_CALL = "decimals()"
V1_COUNT_CALL = "getAllParticipantsCount()"
V1_PAGE_CALL = "getLeaderboard(uint256,uint256)"
V1_PAGE_OUTPUT = ("(address,uint256,uint256)[]",)
V2_PARTICIPANT_CALL = "allParticipants(uint256)"
V2_PORTFOLIO_CALL = "userPortfolios(address)"
# (totalInvested, totalWinnings, _, _, tradeCount)
V2_PORTFOLIO_OUTPUT = ("uint256", "uint256", "uint256", "uint256", "uint256")


def batch_is_exhausted(requested: int, returned: int) -> bool:
    """True when a discovery batch marks the end of the participant list."""
    return returned == 0 or returned < requested


def _chunks(items: list, size: int) -> Iterable[list]:
    for i in range(0, len(items), size):
        yield items[i : i + size]


@dataclass
class LedgerSnapshot:
    v1: list[ParticipantRecord] = field(default_factory=list)
    v2: list[ParticipantRecord] = field(default_factory=list)
    decimals: int = 18
    v2_error: Optional[str] = None


class ChainLedgerReader:
    def __init__(
        self,
        rpc: ChainRpcClient,
        v1_address: str,
        v2_address: Optional[str] = None,
        token_address: Optional[str] = None,
        *,
        default_decimals: int = 18,
        v1_page_size: int = 100,
        v2_batch_size: int = 50,
        v2_max_participants: int = 500,
        retry_config: Optional[RetryConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.rpc = rpc
        self.v1_address = v1_address
        self.v2_address = v2_address
        self.token_address = token_address
        self.default_decimals = default_decimals
        self.v1_page_size = max(1, v1_page_size)
        self.v2_batch_size = max(1, v2_batch_size)
        self.v2_max_participants = max(0, v2_max_participants)
        self.retry_config = retry_config or RetryConfig()
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings, rpc: ChainRpcClient, **kwargs) -> "ChainLedgerReader":
        return cls(
            rpc,
            settings.V1_CONTRACT_ADDRESS,
            settings.V2_CONTRACT_ADDRESS,
            settings.TOKEN_ADDRESS,
            default_decimals=settings.TOKEN_DECIMALS,
            v1_page_size=settings.LEADERBOARD_V1_PAGE_SIZE,
            v2_batch_size=settings.LEADERBOARD_V2_BATCH_SIZE,
            v2_max_participants=settings.LEADERBOARD_V2_MAX_PARTICIPANTS,
            retry_config=RetryConfig.from_settings(settings),
            **kwargs,
        )

    async def _retried(self, operation: Callable[[], Awaitable[Any]], description: str):
        return await retry_async(
            operation, self.retry_config, description=description, sleep=self._sleep
        )

    # -------------------- Token --------------------

    async def read_token_decimals(self) -> int:
        if not self.token_address:
            return self.default_decimals
        call = ContractCall(self.token_address, TOKEN_DECIMALS_CALL, (), ("uint8",))
        (decimals,) = await self._retried(partial(self.rpc.call, call), "token decimals")
        logger.info("Token decimals read", decimals=int(decimals))
        return int(decimals)

    # -------------------- V1 --------------------

    async def read_v1(self) -> list[ParticipantRecord]:
        count_call = ContractCall(self.v1_address, V1_COUNT_CALL, (), ("uint256",))
        (total,) = await self._retried(partial(self.rpc.call, count_call), "v1 participant count")
        total = int(total)
        logger.info("V1 participant count", total=total)

        records: list[ParticipantRecord] = []
        pages = 0
        for start in range(0, total, self.v1_page_size):
            size = min(self.v1_page_size, total - start)
            page_call = ContractCall(self.v1_address, V1_PAGE_CALL, (start, size), V1_PAGE_OUTPUT)
            (rows,) = await self._retried(
                partial(self.rpc.call, page_call), f"v1 leaderboard page {start}"
            )
            pages += 1
            for row in rows:
                record = self._v1_record(row)
                if record is not None:
                    records.append(record)

        logger.info("V1 pages read", pages=pages, records=len(records))
        return records

    @staticmethod
    def _v1_record(row: Any) -> Optional[ParticipantRecord]:
        try:
            user, total_winnings, vote_count = row
            return ParticipantRecord(
                address=user,
                total_winnings=int(total_winnings),
                vote_count=int(vote_count),
                total_invested=0,
                source=LedgerSource.V1,
            )
        except (TypeError, ValueError, ValidationError) as e:
            logger.warning("Dropping malformed V1 row", row=repr(row), error=str(e))
            return None

    # -------------------- V2 --------------------

    async def discover_v2_participants(self) -> list[str]:
        """Walk ``allParticipants`` in batches until exhausted or capped."""
        addresses: list[str] = []
        seen: set[str] = set()
        cursor = 0

        while cursor < self.v2_max_participants:
            window = min(self.v2_batch_size, self.v2_max_participants - cursor)
            calls = [
                ContractCall(self.v2_address, V2_PARTICIPANT_CALL, (index,), ("address",))
                for index in range(cursor, cursor + window)
            ]
            results: list[CallResult] = await self._retried(
                partial(self.rpc.batch_call, calls), f"v2 participants from {cursor}"
            )
            found = [r.value[0] for r in results if r.success and r.value]
            for raw in found:
                address = str(raw).lower()
                if address == ZERO_ADDRESS or address in seen:
                    continue
                seen.add(address)
                addresses.append(address)

            cursor += window
            if batch_is_exhausted(window, len(found)):
                break

        logger.info(
            "V2 participant addresses discovered",
            count=len(addresses),
            capped=cursor >= self.v2_max_participants,
        )
        return addresses

    async def read_v2(self) -> list[ParticipantRecord]:
        addresses = await self.discover_v2_participants()
        records: list[ParticipantRecord] = []
        failed = 0

        for batch_index, batch in enumerate(_chunks(addresses, self.v2_batch_size)):
            calls = [
                ContractCall(self.v2_address, V2_PORTFOLIO_CALL, (address,), V2_PORTFOLIO_OUTPUT)
                for address in batch
            ]
            results: list[CallResult] = await self._retried(
                partial(self.rpc.batch_call, calls), f"v2 portfolios batch {batch_index + 1}"
            )
            for address, result in zip(batch, results):
                if not result.success:
                    failed += 1
                    continue
                record = self._v2_record(address, result.value)
                if record is not None and record.total_winnings > 0:
                    records.append(record)

        logger.info("V2 records read", records=len(records), failed=failed)
        return records

    @staticmethod
    def _v2_record(address: str, portfolio: tuple) -> Optional[ParticipantRecord]:
        try:
            total_invested, total_winnings, _, _, trade_count = portfolio
            return ParticipantRecord(
                address=address,
                total_winnings=int(total_winnings),
                vote_count=int(trade_count),
                total_invested=int(total_invested),
                source=LedgerSource.V2,
            )
        except (TypeError, ValueError, ValidationError) as e:
            logger.warning("Dropping malformed V2 portfolio", address=address, error=str(e))
            return None

    # -------------------- Both --------------------

    async def read_all(self) -> LedgerSnapshot:
        """Read both ledgers. V2 failure degrades to V1-only data."""
        decimals = await self.read_token_decimals()
        v1 = await self.read_v1()

        if not self.v2_address:
            logger.warning("V2 contract not configured, continuing with V1 only")
            return LedgerSnapshot(v1=v1, decimals=decimals, v2_error="not configured")

        try:
            v2 = await self.read_v2()
        except Exception as e:
            logger.error(
                "V2 fetch failed, continuing with V1 only",
                error=str(e),
                error_type=type(e).__name__,
            )
            return LedgerSnapshot(v1=v1, decimals=decimals, v2_error=str(e))

        return LedgerSnapshot(v1=v1, v2=v2, decimals=decimals)
