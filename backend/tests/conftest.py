"""Shared fixtures for leaderboard tests."""

import sys
from pathlib import Path

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

import pytest

from config import Settings
from models.leaderboard import LedgerSource, ParticipantRecord
from services.identity_cache import IdentityCacheService
from services.ledger_reader import LedgerSnapshot
from utils.retry import RetryConfig


ADDRESS_A = "0x" + "a" * 40
ADDRESS_B = "0x" + "b" * 40
ADDRESS_C = "0x" + "c" * 40
V1_CONTRACT = "0x" + "1" * 40
V2_CONTRACT = "0x" + "2" * 40
TOKEN_CONTRACT = "0x" + "3" * 40


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Stand-in for asyncio.sleep that records requested delays."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FakeReader:
    """Ledger reader returning canned snapshots, or raising, per call."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls = 0

    async def read_all(self) -> LedgerSnapshot:
        self.calls += 1
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, Exception):
            raise result
        return result


# ---------------------------------------------------------------------------
# Ledger fixtures (the A/B/C scenario)
# ---------------------------------------------------------------------------


@pytest.fixture
def v1_records():
    return [
        ParticipantRecord(
            address=ADDRESS_A, total_winnings=200, vote_count=3, source=LedgerSource.V1
        ),
        ParticipantRecord(
            address=ADDRESS_B, total_winnings=50, vote_count=1, source=LedgerSource.V1
        ),
    ]


@pytest.fixture
def v2_records():
    return [
        ParticipantRecord(
            address=ADDRESS_A,
            total_winnings=30,
            vote_count=1,
            total_invested=10,
            source=LedgerSource.V2,
        ),
        ParticipantRecord(
            address=ADDRESS_C,
            total_winnings=300,
            vote_count=5,
            total_invested=20,
            source=LedgerSource.V2,
        ),
    ]


@pytest.fixture
def ledger_snapshot(v1_records, v2_records):
    return LedgerSnapshot(v1=v1_records, v2=v2_records, decimals=0)


# ---------------------------------------------------------------------------
# Service fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def test_settings():
    return Settings(
        _env_file=None,
        NEYNAR_API_KEY="test-key",
        RPC_URL="http://rpc.test",
        V1_CONTRACT_ADDRESS=V1_CONTRACT,
        V2_CONTRACT_ADDRESS=V2_CONTRACT,
        IDENTITY_PERSISTENCE_ENABLED=False,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def fast_retry():
    return RetryConfig(max_attempts=3, base_delay=2.0, rate_limit_floor=10.0)


@pytest.fixture
def memory_identity_cache(clock):
    return IdentityCacheService(ttl_seconds=86400, clock=clock, persist=False)
