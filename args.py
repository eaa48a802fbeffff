import argparse

parser = argparse.ArgumentParser(description="Steady-state MongoDB workload generator for sharded clusters")
parser.add_argument('--mode', choices=['setup', 'load', 'workload'], default='workload',
    help="setup: create, shard and pre-split the collections. "
         "load: fill the collections up to their target size. "
         "workload: insert, update and delete forever while keeping every collection at its size (default)."
)
parser.add_argument('--batch_size', type=int, default=50_000, help="Documents inserted per collection per cycle (default 50000).")
parser.add_argument('--data_per_shard', type=int, default=1024, help="Target data size per shard in GiB for --mode load (default 1024).")
parser.add_argument('--cpu', type=int, default=1, help="Number of independent workload processes to run in parallel (default 1).")
parser.add_argument("--log", nargs="?", const=True, help="Log filename and path (e.g., /tmp/report.log).")
parser.add_argument('--debug', action='store_true', help="Enable debug logging.")


args = None
