#!/usr/bin/env python3
import re
from collections import namedtuple

from errors import VersionError

# Feature flags derived once from the server version
Capabilities = namedtuple("Capabilities", [
    "supports_pipeline_update",
    "supports_delete_on_timeseries_without_meta",
    "supports_timeseries",
])

_VERSION_RE = re.compile(r"^\s*(\d+)\.(\d+)")

def parse_version(version):
    match = _VERSION_RE.match(version or "")
    if not match:
        raise VersionError(f"Cannot parse server version '{version}'")
    return int(match.group(1)), int(match.group(2))

def resolve(version):
    """
    Maps a dotted server version ("6.0.1", "4.4.5-ent") to Capabilities.

    Pipeline-style updates ($merge back into the collection, $rand) need
    4.4 or 5.0+. Deleting from a time series collection without a
    metaField filter needs 7.0+.
    """
    major, minor = parse_version(version)
    return Capabilities(
        supports_pipeline_update=major >= 5 or (major == 4 and minor == 4),
        supports_delete_on_timeseries_without_meta=major >= 7,
        supports_timeseries=major >= 5,
    )

def server_capabilities(db):
    """Reads buildInfo from the server and resolves its capabilities."""
    version = db.command("buildInfo").get("version")
    return version, resolve(version)
