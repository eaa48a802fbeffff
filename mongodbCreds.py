# Configuration for the MongoDB connection. Point "hosts" at the mongos routers of the cluster under test.
# If the MONGODB_URI environment variable is set it is used as-is and the entries below are ignored.
dbconfig = {
    "username": "",
    "password": "",
    # Standard port and host configuration
    # "port": "27017",
    # "hosts": [
    #     "da-cl01-mongodb-mongos00",
    #     "da-cl01-mongodb-mongos01"
    # ],
    # Several mongos on one host with different ports: leave port empty and put it after each hostname
    "port": "",
    "hosts": [
        "localhost:27017",
    ],
    # Database that holds the customID_* and sequentialID_* collections
    "database": "test",
    "serverSelectionTimeoutMS": 15000, # Fail faster than the 30 second default
    "connectTimeoutMS": 10000,
    "maxPoolSize": 10, # One engine per process only ever has one request in flight
    # Leave replicaSet: None when connecting to mongos
    "replicaSet": None,
    "authSource": "admin",
    "tls": "false",
}
