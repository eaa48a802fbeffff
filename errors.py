# Setup errors. These are fatal: the entry point logs them and exits instead of retrying.

class WorkloadError(Exception):
    """Base class for errors that stop cluster setup."""


class TopologyError(WorkloadError):
    """The cluster reports a topology the workload cannot size itself against (e.g. zero shards)."""


class PreSplitError(WorkloadError):
    """The collection is not sharded the way the pre-splitter requires."""


class VersionError(WorkloadError):
    """The server version string could not be parsed."""
