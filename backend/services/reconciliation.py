from typing import Iterable

from models.leaderboard import CombinedEntry, ParticipantRecord


def merge(
    v1: Iterable[ParticipantRecord], v2: Iterable[ParticipantRecord]
) -> list[CombinedEntry]:
    """Union both ledgers into one entry per lower-cased address.

    Amounts add component-wise; V1 records carry no invested amount. Order
    follows first appearance (V1 first), and only entries with positive
    combined winnings are returned. Inputs are never mutated, so merging the
    same records twice yields identical entries.
    """
    combined: dict[str, CombinedEntry] = {}
    for record in list(v1) + list(v2):
        entry = combined.get(record.address)
        if entry is None:
            entry = CombinedEntry(address=record.address)
            combined[record.address] = entry
        entry.absorb(record)

    return [entry for entry in combined.values() if entry.total_winnings > 0]
