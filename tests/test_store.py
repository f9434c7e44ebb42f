import pytest

from predictionjack.chain.models import ClaimableListing, ClaimableMarket, OwnedNfts
from predictionjack.engine.store import (
    ClearClaimable,
    Freshness,
    RemoveOwnedTokens,
    SnapshotStore,
    SwapOwnedTokens,
    claimables_key,
    nfts_key,
)

OWNER = "0x1111111111111111111111111111111111111111"
KEY = nfts_key(OWNER)


def nfts(*ids, block=None) -> OwnedNfts:
    return OwnedNfts(owner=OWNER, token_ids=frozenset(ids), block_number=block)


def test_commit_and_view():
    store = SnapshotStore()
    assert store.freshness(KEY) == Freshness.LOADING
    assert store.commit(KEY, nfts(1, 2, block=10))
    assert store.view(KEY).token_ids == {1, 2}
    assert store.freshness(KEY) == Freshness.FRESH


def test_older_block_is_ignored():
    store = SnapshotStore()
    store.commit(KEY, nfts(1, 2, block=10))
    assert not store.commit(KEY, nfts(1, block=9))
    assert store.authoritative(KEY).token_ids == {1, 2}
    assert store.commit(KEY, nfts(1, block=10))


def test_overlay_is_idempotent():
    store = SnapshotStore()
    store.commit(KEY, nfts(1, 2, 3, block=10))
    patch = RemoveOwnedTokens(frozenset({2}))
    store.overlays.apply(KEY, "intent-a", patch, min_block=20)
    store.overlays.apply(KEY, "intent-a", patch, min_block=20)
    assert store.view(KEY).token_ids == {1, 3}
    assert len(store.overlays.active(KEY)) == 1
    # Authoritative copy is untouched.
    assert store.authoritative(KEY).token_ids == {1, 2, 3}


def test_overlay_dropped_when_reflected():
    store = SnapshotStore()
    store.commit(KEY, nfts(1, 2, block=10))
    store.overlays.apply(KEY, "intent-a", RemoveOwnedTokens(frozenset({2})), min_block=20)
    store.commit(KEY, nfts(1, block=11))
    assert store.overlays.active(KEY) == []
    assert store.view(KEY).token_ids == {1}


def test_overlay_dropped_at_confirming_block():
    store = SnapshotStore()
    store.commit(KEY, nfts(1, 2, block=10))
    store.overlays.apply(KEY, "intent-a", SwapOwnedTokens(given=2, received=9), min_block=12)

    store.commit(KEY, nfts(1, 2, block=11))
    assert store.view(KEY).token_ids == {1, 9}

    store.commit(KEY, nfts(1, 2, block=12))
    assert store.overlays.active(KEY) == []
    assert store.view(KEY).token_ids == {1, 2}


def test_overlay_skipped_when_already_newer():
    store = SnapshotStore()
    store.commit(KEY, nfts(1, 2, block=30))
    assert not store.overlays.apply(KEY, "intent-a", RemoveOwnedTokens(frozenset({2})), min_block=25)
    assert store.view(KEY).token_ids == {1, 2}


def test_discard_overlay():
    store = SnapshotStore()
    store.commit(KEY, nfts(1, 2, block=10))
    store.overlays.apply(KEY, "intent-a", RemoveOwnedTokens(frozenset({1})))
    assert store.overlays.discard(KEY, "intent-a")
    assert not store.overlays.discard(KEY, "intent-a")
    assert store.view(KEY).token_ids == {1, 2}


def test_clear_claimable_patch():
    key = claimables_key(OWNER)
    listing = ClaimableListing(
        markets=(
            ClaimableMarket(game_id=1, claimable_amount=100),
            ClaimableMarket(game_id=2, claimable_amount=50),
        ),
        total_claimable=150,
        block_number=5,
    )
    store = SnapshotStore()
    store.commit(key, listing)
    store.overlays.apply(key, "claim-1", ClearClaimable(1), min_block=8)
    view = store.view(key)
    assert [m.game_id for m in view.markets] == [2]
    assert view.total_claimable == 50


def test_single_failure_then_success_never_disconnects():
    store = SnapshotStore(stale_after=1, disconnect_after=5)
    store.commit(KEY, nfts(1, block=1))
    seen = []
    store.subscribe(lambda key, entry: seen.append(store.freshness(key)))

    store.record_failure(KEY, "timeout")
    store.commit(KEY, nfts(1, block=2))

    assert Freshness.DISCONNECTED not in seen
    assert seen == [Freshness.STALE, Freshness.FRESH]


def test_disconnect_after_consecutive_failures():
    store = SnapshotStore(stale_after=1, disconnect_after=5)
    store.commit(KEY, nfts(1, block=1))
    states = [store.record_failure(KEY, "boom") for _ in range(5)]
    assert states[:4] == [Freshness.STALE] * 4
    assert states[4] == Freshness.DISCONNECTED
    # Stale data is still served.
    assert store.view(KEY).token_ids == {1}

    store.commit(KEY, nfts(1, block=2))
    assert store.freshness(KEY) == Freshness.FRESH


def test_unsubscribe():
    store = SnapshotStore()
    seen = []
    unsubscribe = store.subscribe(lambda key, entry: seen.append(key))
    store.commit(KEY, nfts(1))
    unsubscribe()
    store.commit(KEY, nfts(2))
    assert seen == [KEY]


def test_thresholds_validated():
    with pytest.raises(ValueError):
        SnapshotStore(stale_after=3, disconnect_after=2)


def test_drop_forgets_value_and_overlays():
    store = SnapshotStore()
    store.commit("k", 1, block_number=3)
    assert store.drop("k")
    assert store.view("k") is None
    assert "k" not in store.keys()
    assert not store.drop("k")
