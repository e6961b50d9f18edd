# matchsync/ranking.py
from dataclasses import dataclass, asdict
from typing import Dict, List, Sequence

from .config import MATCH_LIMIT
from .normalize import BuyerView, ListingView
from .scoring import calc_match_score, is_strict_match


@dataclass(frozen=True)
class MatchEntry:
    id: str
    score: int
    strict: bool

    def to_dict(self) -> Dict[str, object]:
        return asdict(self)


def _rank(entries: List[MatchEntry], limit: int) -> List[MatchEntry]:
    # sorted() is stable: equal scores keep input order
    kept = [e for e in entries if e.score > 0]
    return sorted(kept, key=lambda e: e.score, reverse=True)[:limit]


def match_listings_for_buyer(buyer: BuyerView, listings: Sequence[ListingView],
                             limit: int = MATCH_LIMIT) -> List[MatchEntry]:
    entries = [
        MatchEntry(listing.id, calc_match_score(buyer, listing), is_strict_match(buyer, listing))
        for listing in listings
    ]
    return _rank(entries, limit)


def match_buyers_for_listing(listing: ListingView, buyers: Sequence[BuyerView],
                             limit: int = MATCH_LIMIT) -> List[MatchEntry]:
    entries = [
        MatchEntry(buyer.id, calc_match_score(buyer, listing), is_strict_match(buyer, listing))
        for buyer in buyers
    ]
    return _rank(entries, limit)
