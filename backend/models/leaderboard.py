from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from utils.validation import normalize_address, shorten_address


class LedgerSource(str, Enum):
    V1 = "v1"
    V2 = "v2"


class LeaderboardType(str, Enum):
    ACCURACY = "accuracy"
    VOLUME = "volume"


class TimeFrame(str, Enum):
    ALL = "all"
    MONTHLY = "monthly"
    WEEKLY = "weekly"


class Trend(str, Enum):
    UP = "up"
    DOWN = "down"
    NONE = "none"


def _address_field(value: object) -> str:
    address = normalize_address(str(value) if value is not None else None)
    if address is None:
        raise ValueError("address is required")
    return address


class ParticipantRecord(BaseModel):
    """One participant's financial history as read from a single ledger.

    Amounts are raw token units (unscaled uint256 values).
    """

    address: str
    total_winnings: int = Field(ge=0)
    vote_count: int = Field(ge=0)
    total_invested: int = Field(default=0, ge=0)
    source: LedgerSource

    @field_validator("address", mode="before")
    @classmethod
    def _normalize_address(cls, value: object) -> str:
        return _address_field(value)


class CombinedEntry(BaseModel):
    """Per-address sum of every ParticipantRecord across both ledgers."""

    address: str
    total_winnings: int = 0
    vote_count: int = 0
    total_invested: int = 0

    @field_validator("address", mode="before")
    @classmethod
    def _normalize_address(cls, value: object) -> str:
        return _address_field(value)

    def absorb(self, record: ParticipantRecord) -> None:
        self.total_winnings += record.total_winnings
        self.vote_count += record.vote_count
        self.total_invested += record.total_invested


def normalize_amount(raw: int, decimals: int) -> float:
    """Scale a raw token amount into display units."""
    if decimals <= 0:
        return float(raw)
    whole, frac = divmod(int(raw), 10**decimals)
    return whole + frac / 10**decimals


class RankedEntry(BaseModel):
    address: str
    rank: int = Field(ge=1)
    trend: Trend = Trend.NONE
    total_winnings: int
    vote_count: int
    total_invested: int = 0
    winnings: float
    invested: float = 0.0


class IdentityRecord(BaseModel):
    """Social profile resolved for a wallet address."""

    address: str
    display_name: str
    avatar_url: Optional[str] = None
    external_id: str = "nil"
    resolved: bool = True

    @field_validator("address", mode="before")
    @classmethod
    def _normalize_address(cls, value: object) -> str:
        return _address_field(value)

    @classmethod
    def fallback(cls, address: str) -> "IdentityRecord":
        """Placeholder shown when no profile is known for ``address``."""
        return cls(
            address=address,
            display_name=shorten_address(address),
            avatar_url=None,
            external_id="nil",
            resolved=False,
        )

    @classmethod
    def from_neynar_user(cls, address: str, user: dict[str, Any]) -> Optional["IdentityRecord"]:
        """Build from a Neynar user object; None when the payload is unusable."""
        if not isinstance(user, dict):
            return None
        username = user.get("username")
        if not isinstance(username, str) or not username.strip():
            return None
        fid = user.get("fid")
        pfp_url = user.get("pfp_url")
        return cls(
            address=address,
            display_name=username.strip(),
            avatar_url=pfp_url if isinstance(pfp_url, str) and pfp_url else None,
            external_id=str(fid) if fid is not None else "nil",
        )


class PageResult(BaseModel):
    items: list[RankedEntry] = []
    page: int
    page_size: int
    total: int
    total_pages: int
    requester_rank: Optional[int] = None


class LeaderboardEntryResponse(BaseModel):
    """Enriched entry as rendered by the leaderboard API."""

    rank: int
    username: str
    fid: str
    pfp_url: Optional[str] = None
    winnings: float
    voteCount: int
    invested: float
    trend: Trend
    address: str

    @classmethod
    def build(cls, entry: RankedEntry, identity: Optional[IdentityRecord]) -> "LeaderboardEntryResponse":
        if identity is None:
            identity = IdentityRecord.fallback(entry.address)
        return cls(
            rank=entry.rank,
            username=identity.display_name,
            fid=identity.external_id,
            pfp_url=identity.avatar_url,
            winnings=entry.winnings,
            voteCount=entry.vote_count,
            invested=entry.invested,
            trend=entry.trend,
            address=entry.address,
        )
