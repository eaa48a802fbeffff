#!/usr/bin/env python3
import logging
import pymongo # type: ignore

from errors import TopologyError

##############################################################
# Reads shard membership fresh from the cluster on every call.
# Nothing is cached: a pre-split uses one snapshot and drops it
##############################################################

def _list_shards(client):
    return client.admin.command("listShards")

def cluster_is_sharded(client):
    """
    Returns True if the deployment answers shard status queries.

    Any failure (a replica set, a standalone, missing privileges) means
    "not a sharded deployment" and is only logged.
    """
    try:
        _list_shards(client)
    except pymongo.errors.PyMongoError as e:
        logging.warning(f"Sharding commands failed, this does not look like a sharded cluster ({e})")
        return False

    logging.info("Cluster is sharded.")
    return True

def get_shard_names(client):
    """
    Returns the shard ids in the order listShards reports them.

    Raises TopologyError when the cluster has no shards, since every
    per-shard size computation downstream would be meaningless.
    """
    status = _list_shards(client)

    shard_names = []
    for shard in status.get("shards", []):
        if shard["_id"] not in shard_names:
            shard_names.append(shard["_id"])

    if not shard_names:
        raise TopologyError("The cluster reports 0 shards.")

    return shard_names

def shards_with_chunks(client, ns):
    """
    Returns the set of shards that own at least one chunk of the namespace.

    From 5.0 on config.chunks is keyed by the collection uuid instead of ns,
    so both are looked up.
    """
    config_db = client["config"]
    coll_info = config_db["collections"].find_one({"_id": ns})
    if not coll_info:
        return set()

    query = {"ns": ns}
    if coll_info.get("uuid") is not None:
        query = {"$or": [{"ns": ns}, {"uuid": coll_info["uuid"]}]}

    chunks = config_db["chunks"].find(query, {"shard": 1, "min": 1, "max": 1})
    return {chunk["shard"] for chunk in chunks}
