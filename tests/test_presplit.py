import pytest
from pymongo.errors import OperationFailure # type: ignore

from errors import PreSplitError, TopologyError, WorkloadError
from presplit import KeyRange, chunk_ranges, split_boundaries, split_collection, validate_shard_key

NS = "test.customID_500"


@pytest.mark.parametrize("shard_count", range(1, 9))
@pytest.mark.parametrize("min_key, max_key", [(0, 1), (0, 1_000_000_000), (-50, 50), (0.25, 0.75)])
def test_boundaries_are_strictly_increasing_and_inside_the_range(shard_count, min_key, max_key):
    boundaries = split_boundaries(min_key, max_key, shard_count)

    assert len(boundaries) == shard_count - 1
    assert all(min_key < b < max_key for b in boundaries)
    assert all(a < b for a, b in zip(boundaries, boundaries[1:]))


@pytest.mark.parametrize("shard_count", range(1, 9))
def test_chunk_ranges_tile_the_key_space(shard_count):
    min_key, max_key = 0, 1_000_000_000
    ranges = chunk_ranges(min_key, max_key, shard_count)

    assert len(ranges) == shard_count
    assert ranges[0].low == min_key
    assert ranges[-1].high == max_key
    assert ranges[-1].closed
    assert not any(r.closed for r in ranges[:-1])
    for left, right in zip(ranges, ranges[1:]):
        assert left.high == right.low
        assert not left.contains(left.high)
        assert right.contains(right.low)
    assert ranges[-1].contains(max_key)
    for key_range in ranges:
        assert key_range.low < key_range.midpoint < key_range.high
        assert key_range.contains(key_range.midpoint)


def test_three_shards_over_a_billion():
    assert split_boundaries(0, 1_000_000_000, 3) == pytest.approx([333333333.33, 666666666.67])
    midpoints = [r.midpoint for r in chunk_ranges(0, 1_000_000_000, 3)]
    assert midpoints == pytest.approx([166666666.67, 500000000, 833333333.33])


def test_single_shard_has_no_boundaries():
    assert split_boundaries(0, 1, 1) == []
    assert chunk_ranges(0, 1, 1) == [KeyRange(0, 1, True)]


@pytest.mark.parametrize("args", [(0, 1, 0), (1, 1, 3), (2, 1, 3)])
def test_invalid_partition_arguments(args):
    with pytest.raises(PreSplitError):
        split_boundaries(*args)


def test_invalid_partition_is_a_fatal_workload_error():
    # The entry point turns WorkloadError into a logged fatal exit
    with pytest.raises(WorkloadError, match="shard_count must be at least 1"):
        chunk_ranges(0, 1, 0)


def test_validate_rejects_bad_namespace(client):
    with pytest.raises(PreSplitError, match="Invalid namespace"):
        validate_shard_key(client, "nodot", "_id")


def test_validate_rejects_unsharded_collection(client):
    with pytest.raises(PreSplitError, match="not sharded"):
        validate_shard_key(client, NS, "_id")


@pytest.mark.parametrize("key, message", [
    ({"_id": 1, "a": 1}, "single field"),
    ({"a": 1}, "single field"),
    ({"_id": "hashed"}, "hashed"),
    ({"_id": -1}, "unknown value"),
])
def test_validate_rejects_unsupported_keys(client, key, message):
    client.shard(NS, key)
    with pytest.raises(PreSplitError, match=message):
        validate_shard_key(client, NS, "_id")


def test_split_collection_splits_and_moves_one_chunk_per_shard(client):
    client.shard(NS, {"_id": 1})

    summary = split_collection(client, NS, "_id", 0, 1)

    assert summary == {"splits": 2, "moves": 3}
    splits = client.admin.calls_named("split")
    assert [value for value, _ in splits] == [NS, NS]
    assert [kwargs["middle"]["_id"] for _, kwargs in splits] == pytest.approx([1 / 3, 2 / 3])

    moves = client.admin.calls_named("moveChunk")
    assert [kwargs["to"] for _, kwargs in moves] == ["shA", "shB", "shC"]
    assert [kwargs["find"]["_id"] for _, kwargs in moves] == pytest.approx([1 / 6, 1 / 2, 5 / 6])
    for _, kwargs in moves:
        assert kwargs["_waitForDelete"] is True
        assert kwargs["_secondaryThrottle"] is True
        assert kwargs["writeConcern"] == {"w": "majority", "j": True}


def test_split_and_move_failures_do_not_stop_the_operation(client):
    client.shard(NS, {"_id": 1})

    def fail_first_split(value, kwargs):
        if kwargs["middle"]["_id"] < 0.5:
            return OperationFailure("split failed")
        return None

    def fail_move_to_shb(value, kwargs):
        if kwargs["to"] == "shB":
            return OperationFailure("move failed")
        return None

    client.failures["split"] = fail_first_split
    client.failures["moveChunk"] = fail_move_to_shb

    summary = split_collection(client, NS, "_id", 0, 1)

    assert summary == {"splits": 1, "moves": 2}
    assert len(client.admin.calls_named("split")) == 2
    assert len(client.admin.calls_named("moveChunk")) == 3


def test_rerunning_is_harmless(client):
    client.shard(NS, {"_id": 1})
    first = split_collection(client, NS, "_id", 0, 1)
    second = split_collection(client, NS, "_id", 0, 1)
    assert first == second


def test_zero_shards_is_fatal(client):
    client.shards = []
    client.shard(NS, {"_id": 1})
    with pytest.raises(TopologyError):
        split_collection(client, NS, "_id", 0, 1)
    assert client.admin.calls_named("split") == []


def test_invalid_key_fails_before_any_split(client):
    client.shard(NS, {"_id": "hashed"})
    with pytest.raises(PreSplitError):
        split_collection(client, NS, "_id", 0, 1)
    assert client.admin.calls == []
