#!/usr/bin/env python3
# To stop the workload cleanly send SIGUSR2 (or Ctrl+C) to the main process; every worker finishes its current phase first.
from args import parser
import args as args_module  # so we can save the parsed args globally
from joblib import Parallel, delayed # type: ignore
from multiprocessing.managers import SyncManager
import logging
import os
import signal
import sys
import time

import app
import initial_load
import mongo_client
from errors import WorkloadError
from logger import configure_logging

GIB = 2 ** 30

def run_setup(args):
    client = mongo_client.get_client()
    db = mongo_client.get_db()
    created = initial_load.setup_collections(client, db)
    logging.info(f"Setup finished. Collections created: {created if created else 'none'}")

def run_load(args):
    client = mongo_client.get_client()
    db = mongo_client.get_db()
    app.install_signal_handlers()
    initial_load.initial_load(client, db, app.stop_event, args.batch_size, args.data_per_shard * GIB)
    logging.info("Initial load finished.")

#####################################
# Make the call to start the workload
# Each process starts slightly later than the previous one so their first log lines do not interleave
#####################################
def delayed_start(args, process_id, shared_stop=None):
    time.sleep(0.2 * process_id)
    return app.start_workload(args, process_id, shared_stop)

def ignore_stop_signals():
    # The manager process must outlive a Ctrl+C so the workers can still read the event
    for signum in app.STOP_SIGNALS:
        signal.signal(signum, signal.SIG_IGN)

def start_stop_manager():
    manager = SyncManager()
    manager.start(ignore_stop_signals)
    return manager

def run_workload(args):
    # SIGUSR2 to the parent only reaches the parent, so it sets a manager Event every worker polls
    with start_stop_manager() as manager:
        shared_stop = manager.Event()
        app.install_signal_handlers(shared_stop)
        parallel_executor = Parallel(n_jobs=args.cpu)
        results = parallel_executor(
            delayed(delayed_start)(args, process_id, shared_stop)
            for process_id in range(args.cpu)
        )
    for process_id, cycles in enumerate(results):
        logging.info(f"Workload {process_id} finished. Cycles per collection: {cycles}")


###############################
# Main section to start the app
###############################
def main(argv=None):
    args = parser.parse_args(argv)
    args_module.args = args

    log_level = logging.DEBUG if args.debug else logging.INFO
    configure_logging(log_file=args.log if args.log is not True else None, level=log_level)

    # Validate --log argument
    if args.log is True:
        logging.error("Error: The --log option requires a filename and path (e.g., /tmp/report.log).")
        sys.exit(1)

    available_cpus = os.cpu_count() or 1
    if args.cpu > available_cpus:
        logging.info(f"Cannot set CPU to {args.cpu} as there are only {available_cpus} available. Workload will be configured to use {available_cpus} CPUs.")
        args.cpu = available_cpus
    if args.cpu < 1 or args.batch_size < 1:
        logging.error("Error: --cpu and --batch_size must be at least 1.")
        sys.exit(1)

    mongo_client.init()

    try:
        if args.mode == "setup":
            run_setup(args)
        elif args.mode == "load":
            run_load(args)
        else:
            run_workload(args)
    except WorkloadError as e:
        logging.fatal(f"{type(e).__name__}: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
