"""Error taxonomy for systemosc."""


class SystemOscError(Exception):
    """Base class for systemosc errors."""


class CollectionError(SystemOscError):
    """The host CPU query failed or returned malformed data."""


class SinkTransmissionError(SystemOscError):
    """A sink could not deliver or publish a snapshot."""


class ConfigurationError(SystemOscError):
    """Startup configuration is invalid. Fatal."""
