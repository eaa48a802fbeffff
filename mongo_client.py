#!/usr/bin/env python3
import pymongo # type: ignore
import logging
import sys
from urllib.parse import urlencode
import threading
import os
import importlib.util

# Every workload process builds its own client; the driver must not be shared across a fork.
local_data = threading.local()

def _load_creds_explicitly():
    """
    Loads dbconfig from the mongodbCreds.py that sits next to this file,
    whatever the current working directory of the process is.
    """
    current_dir = os.path.dirname(os.path.abspath(__file__))
    creds_path = os.path.join(current_dir, 'mongodbCreds.py')

    if not os.path.exists(creds_path):
        logging.fatal(f"FATAL: Could not find credentials file at {creds_path}")
        sys.exit(1)

    spec = importlib.util.spec_from_file_location("mongodbCreds", creds_path)
    mongodb_creds = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(mongodb_creds)

    return mongodb_creds.dbconfig

def build_connection_uri(dbconfig):
    """
    Builds a mongodb:// URI from a dbconfig dict. Keys other than hosts,
    credentials, port and database become URI options.
    """
    port = dbconfig.get("port")
    # Port may already be embedded in each host string
    if port:
        hosts = ",".join([f"{host}:{port}" for host in dbconfig["hosts"]])
    else:
        hosts = ",".join(dbconfig["hosts"])

    if dbconfig.get("username") and dbconfig.get("password"):
        connection_uri = f"mongodb://{dbconfig['username']}:{dbconfig['password']}@{hosts}"
    else:
        connection_uri = f"mongodb://{hosts}"

    conn_params = {
        key: str(value)
        for key, value in dbconfig.items()
        if key not in {"hosts", "username", "password", "port", "database"} and value is not None
    }
    if conn_params:
        connection_uri += "/?" + urlencode(conn_params)

    return connection_uri

def _create_new_client():
    uri = os.environ.get("MONGODB_URI")
    if not uri:
        uri = build_connection_uri(_load_creds_explicitly())
    return pymongo.MongoClient(uri)

def init():
    """
    Performs a one-time connection check from the main process.
    """
    try:
        client = _create_new_client()
        client.admin.command('ping')
        logging.debug("MongoDB connection settings appear to be valid.")
    except Exception as e:
        logging.fatal(f"Unable to connect to MongoDB. Please check mongodbCreds.py or MONGODB_URI.\nError: {e}")
        sys.exit(1)

def get_client():
    """
    Returns the MongoClient of the current process, creating it on first use.
    """
    if not hasattr(local_data, "client"):
        pid = os.getpid()
        logging.debug(f"Process {pid} is creating a new MongoClient.")
        local_data.client = _create_new_client()

    return local_data.client

def get_db():
    """
    Returns the handle of the database the workload collections live in.
    """
    database = _load_creds_explicitly().get("database") or "test"
    return get_client()[database]
