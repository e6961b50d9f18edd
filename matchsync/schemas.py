# matchsync/schemas.py
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional


class MatchEntryOut(BaseModel):
    id: str
    score: int
    strict: bool = False


class ListingSnapshotOut(BaseModel):
    listing_id: str
    matched_buyer_ids: List[str] = Field(default_factory=list, alias="matchedBuyerIds")
    matched_buyers: List[MatchEntryOut] = Field(default_factory=list, alias="matchedBuyers")
    matches_updated_at: Optional[int] = Field(None, alias="matchesUpdatedAt")

    model_config = {"populate_by_name": True}


class BuyerSnapshotOut(BaseModel):
    buyer_id: str = Field(..., alias="buyerId")
    listing_ids: List[str] = Field(default_factory=list, alias="listingIds")
    matches: List[MatchEntryOut] = Field(default_factory=list)
    updated_at: Optional[int] = Field(None, alias="updatedAt")

    model_config = {"populate_by_name": True}


class TriggerEvent(BaseModel):
    before: Optional[Dict[str, Any]] = None
    after: Optional[Dict[str, Any]] = None


class ReindexOut(BaseModel):
    ok: bool = True
    writes: int = 0
    deletes: int = 0
    propagated: List[str] = Field(default_factory=list)


class RebuildOut(BaseModel):
    ok: bool
    total: int
    skipped: int


class PruneOut(BaseModel):
    ok: bool = True
    deleted: int


class SessionStatsOut(BaseModel):
    ok: bool = True
    counted: bool
