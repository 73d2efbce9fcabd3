class IndexerError(Exception):
    """Base class for every failure raised by the indexer."""


class EventDecodeError(IndexerError, ValueError):
    """A log could not be turned into a typed event."""


class StorageError(IndexerError):
    pass


class ConfigError(IndexerError, ValueError):
    pass
