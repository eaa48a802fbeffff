# logger.py
import logging
import sys

def configure_logging(log_file=None, level=logging.INFO):
    """
    Configures logging to stream to stdout and optionally to a file.

    Several workload processes can share one log file, so every line carries
    the process id.

    Args:
        log_file (str, optional): Path to the log file. Defaults to None.
        level (int, optional): The logging level to set. Defaults to logging.INFO.
    """
    handlers = [logging.StreamHandler(sys.stdout)]

    if log_file:
        handlers.append(logging.FileHandler(log_file, mode="a"))

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(process)d - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=handlers,
        force=True
    )

    # pymongo is chatty at DEBUG, only show its warnings and errors
    logging.getLogger("pymongo").setLevel(logging.WARNING)
