#!/usr/bin/env python3
import logging
import pymongo # type: ignore
from pymongo.errors import PyMongoError # type: ignore
from pymongo.write_concern import WriteConcern # type: ignore

from app import CUSTOM_ID_MODES, DOC_SIZES, NEW_DOCS_COUNT, CollectionDescriptor, fake
from errors import PreSplitError, TopologyError
from presplit import split_collection
from topology import cluster_is_sharded, get_shard_names, shards_with_chunks

ONE_TIB = 2 ** 40
# Custom ids are uniform floats in [0, 1). Sequential ids are driver-assigned ObjectIds,
# so those collections are hash-sharded and never pre-split
CUSTOM_ID_KEY_RANGE = (0, 1)
NAMESPACE_EXISTS = 48
FIRE_AND_FORGET = WriteConcern(w=0)

def plan_collections():
    """Every (id mode, document size) combination, id mode first, as the initial load visits them."""
    return [CollectionDescriptor(size, mode) for mode in CUSTOM_ID_MODES for size in DOC_SIZES]

def target_docs_count(shard_count, doc_size, data_per_shard=ONE_TIB):
    """
    Number of documents a collection needs so that all the collections
    together hold data_per_shard bytes per shard.
    """
    total_data_size = data_per_shard * shard_count
    if total_data_size <= 0:
        raise TopologyError(f"Cannot size collections for {shard_count} shards.")

    collection_size = total_data_size / len(DOC_SIZES) / len(CUSTOM_ID_MODES)
    return int(collection_size // doc_size)

##########################################
# Create, shard and pre-split collections
##########################################
def create_collection(db, name):
    if name in db.list_collection_names():
        logging.info(f"Collection '{name}' already exists.")
        return False

    try:
        db.create_collection(name)
    except pymongo.errors.OperationFailure as e:
        # Another instance may have won the race
        if e.code != NAMESPACE_EXISTS:
            raise
        logging.info(f"Collection '{name}' already existed.")
        return False

    logging.info(f"Collection '{name}' created in DB '{db.name}'")
    return True

def shard_collection(client, db, descriptor):
    ns = f"{db.name}.{descriptor.name}"
    client.admin.command("enableSharding", db.name)

    if descriptor.use_custom_id:
        shard_key = {"_id": 1}
    else:
        db[descriptor.name].create_index([("_id", pymongo.HASHED)])
        shard_key = {"_id": "hashed"}

    logging.info(f"Sharding collection {ns} with key {shard_key} ...")
    client.admin.command("shardCollection", ns, key=shard_key)

    shard_names = get_shard_names(client)
    if descriptor.use_custom_id:
        logging.info(f"Pre-splitting {ns} ...")
        min_key, max_key = CUSTOM_ID_KEY_RANGE
        split_collection(client, ns, "_id", min_key, max_key)
    else:
        owners = shards_with_chunks(client, ns)
        if len(owners) != len(shard_names):
            raise PreSplitError(f"{ns} is not spread over all shards. Shards: {shard_names}; shards with chunks: {sorted(owners)}")
        logging.info(f"Forgoing split of {ns}; already split.")

def setup_collections(client, db, descriptors=None):
    """
    Creates every workload collection that does not exist yet. On a sharded
    cluster the balancer is stopped first and each new collection is sharded
    and spread with one chunk per shard.

    Existing collections are left untouched. Returns the names created.
    """
    if descriptors is None:
        descriptors = plan_collections()

    sharded = cluster_is_sharded(client)
    if sharded:
        client.admin.command("balancerStop")
        logging.info("Balancer stopped.")

    created = []
    for descriptor in descriptors:
        if not create_collection(db, descriptor.name):
            continue
        if sharded:
            shard_collection(client, db, descriptor)
        created.append(descriptor.name)

    return created

################################################
# Fill the collections up to their target size
################################################
def load_collection(db, descriptor, target, stop_event, batch_size=NEW_DOCS_COUNT):
    collection = db.get_collection(descriptor.name, write_concern=FIRE_AND_FORGET)
    padding = fake.padding(descriptor.doc_size)
    batches = 0

    while not stop_event.is_set():
        try:
            current = collection.estimated_document_count()
        except PyMongoError as e:
            logging.warning(f"{descriptor.name}: Failed to estimate document count: {e}")
            break
        if current >= target:
            break

        docs = [
            fake.workload_document(padding, fake.custom_id() if descriptor.use_custom_id else None, from_updates=False)
            for _ in range(min(batch_size, target - current))
        ]
        logging.debug(f"{descriptor.name}: Inserting {len(docs):,} documents ({current:,} of {target:,}) ...")
        try:
            # Unacknowledged, so the count catches up only as the shards apply the writes
            collection.insert_many(docs, ordered=False)
        except PyMongoError as e:
            logging.warning(f"{descriptor.name}: Failed to insert: {e}")
            break
        batches += 1

    return batches

def initial_load(client, db, stop_event, batch_size=NEW_DOCS_COUNT, data_per_shard=ONE_TIB, descriptors=None):
    """Loads every collection in turn until it reaches its target document count."""
    if descriptors is None:
        descriptors = plan_collections()

    shard_count = len(get_shard_names(client)) if cluster_is_sharded(client) else 1

    for descriptor in descriptors:
        if stop_event.is_set():
            break
        target = target_docs_count(shard_count, descriptor.doc_size, data_per_shard)
        logging.info(f"Loading {descriptor.name} (approx docs count: {target:,}) ...")
        batches = load_collection(db, descriptor, target, stop_event, batch_size)
        logging.info(f"{descriptor.name}: {batches} batches of up to {batch_size:,} documents sent.")
