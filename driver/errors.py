"""
Driver error taxonomy.

Timeouts (shared.backoff.WaitTimeoutError) and host command failures
(shared.command.CommandError) are raised by their helpers and are not
wrapped here.
"""


class DriverError(Exception):
    """Base class for all driver failures"""


class ConfigurationError(DriverError):
    """Startup configuration is unusable (bad URL, unreachable metadata)"""


class MetadataError(DriverError):
    """The topology/metadata service could not be queried"""


class OrchestrationError(DriverError):
    """The orchestration backend rejected or failed a request"""


class ReconciliationError(DriverError):
    """Topology snapshot or local cache could not be read"""


class StackConsistencyError(DriverError):
    """More than one resource matched a key that must be unique"""


class VolumeNotFoundError(DriverError):
    """Volume exists neither in topology nor in the local cache"""


class VolumeMovedError(DriverError):
    """Volume is owned by another host now"""


class VolumeCreateError(DriverError):
    """Volume creation failed; the partially created stack was removed"""
