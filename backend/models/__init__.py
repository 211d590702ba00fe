from .leaderboard import (
    CombinedEntry,
    IdentityRecord,
    LeaderboardEntryResponse,
    LeaderboardType,
    LedgerSource,
    PageResult,
    ParticipantRecord,
    RankedEntry,
    TimeFrame,
    Trend,
)

__all__ = [
    "CombinedEntry",
    "IdentityRecord",
    "LeaderboardEntryResponse",
    "LeaderboardType",
    "LedgerSource",
    "PageResult",
    "ParticipantRecord",
    "RankedEntry",
    "TimeFrame",
    "Trend",
]
