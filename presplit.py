#!/usr/bin/env python3
import logging
from collections import namedtuple
import pymongo # type: ignore

from errors import PreSplitError
from topology import get_shard_names

# Range of the shard key owned by one chunk. Half-open, except the last
# range of a partition which also contains `high`.
class KeyRange(namedtuple("KeyRange", ["low", "high", "closed"])):
    __slots__ = ()

    @property
    def midpoint(self):
        return (self.low + self.high) / 2.0

    def contains(self, value):
        if self.closed:
            return self.low <= value <= self.high
        return self.low <= value < self.high

MOVE_CHUNK_WRITE_CONCERN = {"w": "majority", "j": True}

####################################################
# Boundary math. Pure functions, no cluster involved
####################################################
def split_boundaries(min_key, max_key, shard_count):
    """
    Returns the shard_count - 1 evenly spaced split points strictly inside
    (min_key, max_key): min + (max - min) * i / N for i = 1..N-1.
    """
    if shard_count < 1:
        raise PreSplitError(f"shard_count must be at least 1, got {shard_count}")
    if max_key <= min_key:
        raise PreSplitError(f"Empty key range: min={min_key}, max={max_key}")

    return [min_key + (max_key - min_key) * (i / shard_count) for i in range(1, shard_count)]

def chunk_ranges(min_key, max_key, shard_count):
    """
    Returns one KeyRange per shard. Consecutive ranges share their boundary,
    so together they cover [min_key, max_key] without gaps or overlaps.
    """
    edges = [min_key] + split_boundaries(min_key, max_key, shard_count) + [max_key]
    return [
        KeyRange(edges[i], edges[i + 1], i == shard_count - 1)
        for i in range(shard_count)
    ]

##########################################################
# Make sure the collection is range-sharded on a single key
##########################################################
def validate_shard_key(client, ns, shard_key_field):
    db_name, _, coll_name = ns.partition(".")
    if not db_name or not coll_name:
        raise PreSplitError(f"Invalid namespace: {ns}")

    coll_info = client["config"]["collections"].find_one({"_id": ns})
    if not coll_info:
        raise PreSplitError(f"Collection {ns} is not sharded (no entry in config.collections).")

    key = coll_info.get("key", {})
    key_fields = list(key.keys())
    if len(key_fields) != 1 or key_fields[0] != shard_key_field:
        raise PreSplitError(f"Pre-splitting requires a shard key on the single field '{shard_key_field}'. Given key: {key}")

    if key[shard_key_field] == "hashed":
        raise PreSplitError(f"{ns} has a hashed shard key; hashed collections are split automatically, even with the balancer off.")
    if key[shard_key_field] != 1:
        raise PreSplitError(f"Shard key has unknown value. Given key: {key}")

    return coll_info

#######################################################
# Split a range-sharded collection into one chunk per
# shard and move each chunk to its shard. The balancer
# is expected to be off, so nothing moves them back
#######################################################
def split_collection(client, ns, shard_key_field, min_key, max_key):
    """
    Pre-splits ns into one chunk per shard over [min_key, max_key].

    Split and moveChunk failures are logged and skipped; running the whole
    operation again is safe because splitting at an existing boundary and
    moving a chunk to the shard that already owns it are both no-ops.

    Raises PreSplitError or TopologyError when the collection or the
    cluster is not in a state where pre-splitting makes sense.
    """
    validate_shard_key(client, ns, shard_key_field)

    shard_names = get_shard_names(client)
    shard_count = len(shard_names)
    admin = client.admin

    logging.info(f"Using namespace {ns} with {shard_count} shards. (range: {min_key} - {max_key})")

    splits_done = 0
    for boundary in split_boundaries(min_key, max_key, shard_count):
        logging.info(f"Splitting at {shard_key_field} = {boundary} ...")
        try:
            admin.command("split", ns, middle={shard_key_field: boundary})
            splits_done += 1
            logging.info(f"Split at {boundary} succeeded.")
        except pymongo.errors.PyMongoError as e:
            logging.warning(f"Split at {boundary} failed: {e}")

    moves_done = 0
    for shard_name, key_range in zip(shard_names, chunk_ranges(min_key, max_key, shard_count)):
        mid = key_range.midpoint
        logging.info(f"Moving chunk containing {shard_key_field} ~ {mid} (range [{key_range.low}, {key_range.high}]) to shard {shard_name} ...")
        try:
            admin.command(
                "moveChunk", ns,
                find={shard_key_field: mid},
                to=shard_name,
                _waitForDelete=True,
                _secondaryThrottle=True,
                writeConcern=MOVE_CHUNK_WRITE_CONCERN,
            )
            moves_done += 1
            logging.info(f"moveChunk to {shard_name} succeeded.")
        except pymongo.errors.PyMongoError as e:
            logging.warning(f"moveChunk to {shard_name} failed: {e}")

    logging.info(f"Done with {ns}: {splits_done}/{shard_count - 1} splits and {moves_done}/{shard_count} chunk moves succeeded.")
    return {"splits": splits_done, "moves": moves_done}
