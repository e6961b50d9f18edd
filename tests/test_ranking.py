# tests/test_ranking.py
from hypothesis import given, strategies as st

from matchsync.normalize import BuyerView, ListingView
from matchsync.ranking import match_buyers_for_listing, match_listings_for_buyer
from matchsync.scoring import calc_match_score

listing_specs = st.lists(
    st.tuples(
        st.sampled_from(["매매", "전세", "기타", None]),
        st.one_of(st.none(), st.integers(min_value=10, max_value=40)),
        st.one_of(st.none(), st.integers(min_value=1000, max_value=20000)),
    ),
    max_size=40,
)


@given(listing_specs)
def test_ranked_by_score_and_stable(specs):
    buyer = BuyerView(id="b", budget_max=15000)
    listings = [ListingView(id=f"l{i:02d}", type=t, area_py=a, price=p, deposit=p)
                for i, (t, a, p) in enumerate(specs)]
    ranked = match_listings_for_buyer(buyer, listings, limit=100)
    scores = [m.score for m in ranked]
    assert scores == sorted(scores, reverse=True)
    assert all(m.score > 0 for m in ranked)
    position = {listing.id: i for i, listing in enumerate(listings)}
    for a, b in zip(ranked, ranked[1:]):
        if a.score == b.score:
            assert position[a.id] < position[b.id]
    expected = [listing.id for listing in listings if calc_match_score(buyer, listing) > 0]
    assert sorted(m.id for m in ranked) == sorted(expected)


def test_truncates_to_limit():
    buyer = BuyerView(id="b")
    listings = [ListingView(id=f"l{i:02d}", type="매매", price=100, area_py=20) for i in range(30)]
    ranked = match_listings_for_buyer(buyer, listings)
    assert len(ranked) == 20
    assert [m.id for m in ranked] == [f"l{i:02d}" for i in range(20)]


def test_buyers_for_listing_mirror():
    listing = ListingView(id="l", type="전세", deposit=8000, area_py=25)
    buyers = [
        BuyerView(id="loose"),
        BuyerView(id="sale-only", type_prefs=["매매"]),
        BuyerView(id="strict", type_prefs=["전세"], budget_max=9000, area_prefs_py=[25]),
    ]
    ranked = match_buyers_for_listing(listing, buyers)
    assert [(m.id, m.score, m.strict) for m in ranked] == [("loose", 3, False), ("strict", 3, True)]
    assert ranked[0].to_dict() == {"id": "loose", "score": 3, "strict": False}
