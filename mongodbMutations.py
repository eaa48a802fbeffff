import os
import random
from datetime import datetime, timezone
# This file generates the random updates for the workload. There are two flavours:
# - create_random_update() builds one classic update document per targeted document (any server version)
# - build_update_pipeline() builds one aggregation pipeline that does the same draw per document on the server (4.4+)
# Both pick one of five update shapes with equal probability.

# Shapes in the order of their interval in [0, 1): each one is 0.2 wide
MUTATION_SHAPES = ("touch", "flag", "score", "visit", "now")
SHAPE_WIDTH = 1.0 / len(MUTATION_SHAPES)

def mutation_shape(r):
    """
    Maps a draw r in [0, 1) to its update shape.

    [0, 0.2) touch, [0.2, 0.4) flag, [0.4, 0.6) score, [0.6, 0.8) visit, [0.8, 1) now
    """
    if not 0.0 <= r < 1.0:
        raise ValueError(f"Random draw must be in [0, 1), got {r}")
    if r < 0.2:
        return "touch"
    if r < 0.4:
        return "flag"
    if r < 0.6:
        return "score"
    if r < 0.8:
        return "visit"
    return "now"

def create_random_update(r=None, pid=None):
    """
    Returns one update document for a single targeted document.

    Each call draws its own r unless one is passed in.
    """
    if r is None:
        r = random.random()
    if pid is None:
        pid = os.getpid()

    shape = mutation_shape(r)

    if shape == "touch":
        return {"$set": {"touchedByProcess": pid, "updatedAt": datetime.now(timezone.utc)}}
    if shape == "flag":
        # Independent coin flip, not derived from r
        return {"$set": {"flag": random.random() < 0.5}}
    if shape == "score":
        return {"$set": {"score": 1000 * random.random()}}
    if shape == "visit":
        # $inc on a missing field starts it at 0
        return {"$inc": {"visitCount": 1}}
    return {"$currentDate": {"now": True}}

def _between(low, high):
    return {"$and": [{"$gte": ["$randVal", low]}, {"$lt": ["$randVal", high]}]}

def build_update_pipeline(pid=None):
    """
    Returns the server-side version of create_random_update().

    Every document draws its own randVal and keeps all the fields its branch
    does not touch. A field that is missing stays missing. Documents in the
    top interval additionally move oldField
    into archivedField. randVal is scratch and is removed in the same stage.
    """
    if pid is None:
        pid = os.getpid()

    return [
        {"$addFields": {"randVal": {"$rand": {}}}},
        {"$addFields": {
            "touchedByProcess": {"$cond": [{"$lt": ["$randVal", 0.2]}, pid, "$touchedByProcess"]},
            "updatedAt": {"$cond": [{"$lt": ["$randVal", 0.2]}, "$$NOW", "$updatedAt"]},
            "flag": {"$cond": [_between(0.2, 0.4), {"$lt": [{"$rand": {}}, 0.5]}, "$flag"]},
            "score": {"$cond": [
                _between(0.4, 0.6),
                {"$floor": {"$multiply": [{"$rand": {}}, 1000]}},
                "$score",
            ]},
            "visitCount": {"$cond": [
                _between(0.6, 0.8),
                {"$cond": [
                    {"$eq": [{"$type": "$visitCount"}, "missing"]},
                    1,
                    {"$add": ["$visitCount", 1]},
                ]},
                "$visitCount",
            ]},
            "now": {"$cond": [{"$gte": ["$randVal", 0.8]}, "$$NOW", "$now"]},
            "archivedField": {"$cond": [{"$gte": ["$randVal", 0.8]}, "$oldField", "$archivedField"]},
            "oldField": {"$cond": [{"$gte": ["$randVal", 0.8]}, "$$REMOVE", "$oldField"]},
            "randVal": "$$REMOVE",
        }},
    ]
