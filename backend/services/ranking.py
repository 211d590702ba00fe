from typing import Mapping, Optional, Sequence

from models.leaderboard import CombinedEntry, RankedEntry, Trend, normalize_amount


def calculate_trend(current_rank: int, previous_rank: Optional[int]) -> Trend:
    """Rank movement since the previous snapshot; lower rank numbers are better."""
    if previous_rank is None or previous_rank == current_rank:
        return Trend.NONE
    return Trend.UP if current_rank < previous_rank else Trend.DOWN


def rank(
    entries: Sequence[CombinedEntry],
    *,
    decimals: int = 18,
    max_entries: Optional[int] = 100,
    previous_ranks: Optional[Mapping[str, int]] = None,
) -> list[RankedEntry]:
    """Sort by winnings (stable, descending), truncate, assign ranks 1..N."""
    ordered = sorted(entries, key=lambda e: e.total_winnings, reverse=True)
    if max_entries is not None:
        ordered = ordered[:max_entries]

    previous_ranks = previous_ranks or {}
    ranked: list[RankedEntry] = []
    for position, entry in enumerate(ordered, start=1):
        ranked.append(
            RankedEntry(
                address=entry.address,
                rank=position,
                trend=calculate_trend(position, previous_ranks.get(entry.address)),
                total_winnings=entry.total_winnings,
                vote_count=entry.vote_count,
                total_invested=entry.total_invested,
                winnings=normalize_amount(entry.total_winnings, decimals),
                invested=normalize_amount(entry.total_invested, decimals),
            )
        )
    return ranked
