import math
from typing import Optional, Sequence

from models.leaderboard import PageResult, RankedEntry


def find_rank(ranked: Sequence[RankedEntry], address: Optional[str]) -> Optional[int]:
    """Rank of ``address`` in the full list, or None when absent."""
    if not address:
        return None
    target = address.lower()
    for entry in ranked:
        if entry.address == target:
            return entry.rank
    return None


def paginate(
    ranked: Sequence[RankedEntry],
    page: int,
    page_size: int,
    requester: Optional[str] = None,
) -> PageResult:
    """Slice one page out of ``ranked``. Out-of-range pages are empty."""
    if page < 1 or page_size < 1:
        raise ValueError("page and page_size must be >= 1")

    total = len(ranked)
    start = (page - 1) * page_size
    return PageResult(
        items=list(ranked[start : start + page_size]),
        page=page,
        page_size=page_size,
        total=total,
        total_pages=math.ceil(total / page_size),
        requester_rank=find_rank(ranked, requester),
    )
