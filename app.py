#!/usr/bin/env python3
from pymongo import UpdateOne # type: ignore
from pymongo.errors import BulkWriteError, PyMongoError # type: ignore
from pymongo.write_concern import WriteConcern # type: ignore
from dataclasses import dataclass
from typing import Optional
from faker import Faker # type: ignore
from customProvider import CustomProvider # Custom providers
import json
import logging
import os
import signal
import threading
import time

import mongo_client
from capabilities import server_capabilities
from logger import configure_logging
from mongodbMutations import build_update_pipeline, create_random_update

# Global stop event for clean shutdown. Checked between phases, never mid-batch
stop_event = threading.Event()

fake = Faker()
fake.add_provider(CustomProvider)

# The collections are the cross product of these two, visited in this order
DOC_SIZES = [500, 1000, 2000]
CUSTOM_ID_MODES = [True, False]

NEW_DOCS_COUNT = 50_000
FAILURE_PAUSE = 3 # seconds
PIPELINE_SAMPLE_RATE = 0.01
DELETE_SAMPLE_RATE = 0.0001
MAJORITY_JOURNALED = WriteConcern(w="majority", j=True)


@dataclass(frozen=True)
class CollectionDescriptor:
    doc_size: int
    use_custom_id: bool

    @property
    def name(self):
        return f"{'customID' if self.use_custom_id else 'sequentialID'}_{self.doc_size}"


@dataclass
class CollectionState:
    descriptor: CollectionDescriptor
    baseline: Optional[int] = None # Set on the first successful count only
    cycles: int = 0


@dataclass
class WriteStats:
    plain_inserts: int = 0
    plain_deletes: int = 0

    def as_dict(self):
        return {"plainInserts": self.plain_inserts, "plainDeletes": self.plain_deletes}


@dataclass
class BatchResult:
    accepted: int = 0
    rejected: int = 0
    cause: object = None # The exception (or reason) when the batch did not fully succeed

    @property
    def ok(self):
        return self.cause is None


def collection_descriptors(doc_sizes=DOC_SIZES, id_modes=CUSTOM_ID_MODES):
    return [CollectionDescriptor(size, mode) for size in doc_sizes for mode in id_modes]


def _bulk_error_result(e, count_field):
    details = e.details or {}
    return BatchResult(
        accepted=details.get(count_field, 0),
        rejected=len(details.get("writeErrors", [])),
        cause=e,
    )


def sample_ids(collection, count):
    """Returns the _id of up to `count` random documents. Ids may repeat across calls."""
    cursor = collection.aggregate([
        {"$sample": {"size": count}},
        {"$project": {"_id": 1}},
    ])
    return [doc["_id"] for doc in cursor]

#####################################################################
# Mutation / deletion strategies. One of them is chosen at startup from
# the server capabilities and used for every collection and cycle
#####################################################################
class PipelineStrategy:
    """Server-side sampling with $sampleRate; needs pipeline updates (4.4, 5.0+)."""
    name = "pipeline"

    def __init__(self, sample_rate=PIPELINE_SAMPLE_RATE, delete_sample_rate=DELETE_SAMPLE_RATE, pid=None):
        self.sample_rate = sample_rate
        self.delete_sample_rate = delete_sample_rate
        self.update_pipeline = build_update_pipeline(pid)

    def mutate(self, collection, count):
        logging.info(f"{collection.name}: Updating up to {count:,} random documents via pipeline ...")
        # $merge replaces matched documents and inserts the ones that vanished in between
        pipeline = [
            {"$match": {"$sampleRate": self.sample_rate}},
            {"$limit": count},
            *self.update_pipeline,
            {"$merge": {
                "into": collection.name,
                "on": "_id",
                "whenMatched": "replace",
                "whenNotMatched": "insert",
            }},
        ]
        try:
            collection.aggregate(pipeline)
        except PyMongoError as e:
            return BatchResult(cause=e)
        # $merge does not report how many documents it wrote
        return BatchResult()

    def delete_batch(self, collection, count):
        try:
            result = collection.delete_many({"$sampleRate": self.delete_sample_rate})
        except PyMongoError as e:
            return BatchResult(cause=e)
        return BatchResult(accepted=result.deleted_count)


class DocumentStrategy:
    """Client-side sampling with $sample and one update per document; any server version."""
    name = "document"

    def __init__(self, pid=None):
        self.pid = pid if pid is not None else os.getpid()

    def mutate(self, collection, count):
        logging.info(f"{collection.name}: Fetching {count:,} random document IDs ...")
        try:
            ids = sample_ids(collection, count)
        except PyMongoError as e:
            return BatchResult(cause=e)
        if not ids:
            return BatchResult()

        logging.info(f"{collection.name}: Updating {len(ids):,} random documents ...")
        requests = [UpdateOne({"_id": _id}, create_random_update(pid=self.pid)) for _id in ids]
        try:
            result = collection.with_options(write_concern=MAJORITY_JOURNALED).bulk_write(requests, ordered=False)
        except BulkWriteError as e:
            return _bulk_error_result(e, "nMatched")
        except PyMongoError as e:
            return BatchResult(rejected=len(requests), cause=e)
        return BatchResult(accepted=result.matched_count)

    def delete_batch(self, collection, count):
        # Sampled ids are not de-duplicated against earlier batches; a stale id simply deletes nothing
        try:
            ids = sample_ids(collection, count)
        except PyMongoError as e:
            return BatchResult(cause=e)
        if not ids:
            return BatchResult(cause="sample returned no documents")

        logging.info(f"{collection.name}: Deleting those {len(ids):,} documents ...")
        try:
            result = collection.delete_many({"_id": {"$in": ids}})
        except PyMongoError as e:
            return BatchResult(rejected=len(ids), cause=e)
        return BatchResult(accepted=result.deleted_count)


def select_strategy(capabilities):
    if capabilities.supports_pipeline_update:
        return PipelineStrategy()
    return DocumentStrategy()

################
# Cycle phases
################
def establish_baseline(state, collection):
    """
    Records the collection size the first time it can be counted. Once set,
    later calls leave it alone.

    Returns None while no count has succeeded; the caller must not delete
    anything against a missing baseline.
    """
    if state.baseline is not None:
        return state.baseline

    try:
        count = collection.estimated_document_count()
    except PyMongoError as e:
        logging.warning(f"{collection.name}: Failed to estimate document count, baseline not set yet: {e}")
        return None

    state.baseline = max(0, count)
    logging.info(f"{collection.name}: Baseline document count is {state.baseline:,}")
    return state.baseline


def insert_batch(collection, descriptor, count):
    # One padding string per batch; building 50k random strings would dominate the cycle
    padding = fake.padding(descriptor.doc_size)
    docs = [
        fake.workload_document(padding, fake.custom_id() if descriptor.use_custom_id else None)
        for _ in range(count)
    ]

    try:
        result = collection.insert_many(docs, ordered=False)
    except BulkWriteError as e:
        return _bulk_error_result(e, "nInserted")
    except PyMongoError as e:
        return BatchResult(rejected=count, cause=e)
    return BatchResult(accepted=len(result.inserted_ids))


def insert_phase(collection, descriptor, count, stats):
    logging.info(f"{collection.name}: Inserting {count:,} documents ...")
    result = insert_batch(collection, descriptor, count)
    stats.plain_inserts += result.accepted

    if not result.ok:
        if result.accepted == 0:
            logging.warning(f"{collection.name}: Failed to insert: {result.cause}")
            time.sleep(FAILURE_PAUSE)
        else:
            logging.warning(f"{collection.name}: {result.rejected:,} of {count:,} inserts rejected: {result.cause}")
    return result


def mutate_phase(strategy, collection, count):
    result = strategy.mutate(collection, count)
    if not result.ok:
        logging.warning(f"{collection.name}: Failed to update: {result.cause}")
        time.sleep(FAILURE_PAUSE)
    return result


def delete_excess(strategy, state, collection, count, stats, stop_event=None):
    """
    Deletes random documents until the collection is back at its baseline.

    Returns True when the loop ended because the excess dropped below 1 and
    False when a failure or a stop request ended it early. Failures are not
    retried here; the next cycle's delete phase picks up the remainder.
    """
    while True:
        try:
            excess = collection.estimated_document_count() - state.baseline
        except PyMongoError as e:
            logging.warning(f"{collection.name}: Failed to estimate count before delete: {e}")
            return False

        if excess < 1:
            return True

        logging.info(f"{collection.name}: Deleting about {count:,} random documents (excess {excess:,}) ...")
        result = strategy.delete_batch(collection, count)
        stats.plain_deletes += result.accepted

        if not result.ok:
            logging.warning(f"{collection.name}: Failed to delete: {result.cause}")
            return False

        if stop_event is not None and stop_event.is_set():
            return False


def run_cycle(state, db, strategy, stop_event=stop_event, new_docs_count=NEW_DOCS_COUNT):
    """
    One INSERT -> MUTATE -> DELETE_EXCESS pass over a single collection.

    The baseline is established first if no earlier visit managed to count
    the collection; without one the delete phase is skipped. Returns the
    WriteStats of the cycle.
    """
    collection = db[state.descriptor.name]
    start_time = time.time()
    stats = WriteStats()

    establish_baseline(state, collection)

    insert_phase(collection, state.descriptor, new_docs_count, stats)

    if not stop_event.is_set():
        mutate_phase(strategy, collection, new_docs_count)

    if state.baseline is None:
        logging.warning(f"{collection.name}: No baseline yet, skipping delete phase")
    elif not stop_event.is_set():
        delete_excess(strategy, state, collection, new_docs_count, stats, stop_event)

    state.cycles += 1
    elapsed_secs = round(time.time() - start_time, 2)
    logging.info(f"{collection.name}: Writes sent over {elapsed_secs} secs: {json.dumps(stats.as_dict())}")
    return stats


def run_workload(db, strategy, stop_event=stop_event, descriptors=None, new_docs_count=NEW_DOCS_COUNT, max_rounds=None):
    """
    Visits every collection round-robin until the stop event is set.

    max_rounds bounds the number of full passes; None runs until stopped.
    Returns the per-collection states.
    """
    if descriptors is None:
        descriptors = collection_descriptors()
    states = [CollectionState(descriptor) for descriptor in descriptors]

    rounds = 0
    while not stop_event.is_set() and (max_rounds is None or rounds < max_rounds):
        for state in states:
            if stop_event.is_set():
                break
            run_cycle(state, db, strategy, stop_event, new_docs_count)
        rounds += 1

    if stop_event.is_set():
        logging.info("Stop requested, exiting main loop.")
    return {state.descriptor.name: state for state in states}

####################
# Start the workload
####################
STOP_SIGNALS = [signal.SIGINT] + ([signal.SIGUSR2] if hasattr(signal, "SIGUSR2") else [])


def install_signal_handlers(event=None):
    """
    Makes SIGINT and SIGUSR2 set `event` (the module stop_event by default).
    The current phase finishes, then the loop is left.
    """
    event = stop_event if event is None else event

    def handle_stop(signum, frame):
        logging.info(f"Received signal {signum}, will stop after the current phase ...")
        event.set()

    for signum in STOP_SIGNALS:
        signal.signal(signum, handle_stop)
    return handle_stop


def start_workload(args, process_id=0, shared_stop=None):
    """
    Runs one engine until stopped. With --cpu > 1 this is a joblib worker and
    `shared_stop` is the manager Event the parent sets on SIGUSR2 or SIGINT.
    """
    # Runs in its own process when --cpu > 1, so logging has to be set up again here
    configure_logging(log_file=args.log, level=logging.DEBUG if args.debug else logging.INFO)
    event = stop_event if shared_stop is None else shared_stop
    install_signal_handlers(event)

    db = mongo_client.get_db()
    version, capabilities = server_capabilities(db)
    strategy = select_strategy(capabilities)
    logging.info(f"Workload {process_id} (pid {os.getpid()}): server {version}, using the {strategy.name} strategy")

    states = run_workload(db, strategy, event, new_docs_count=args.batch_size)
    return {name: state.cycles for name, state in states.items()}
