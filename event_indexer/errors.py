"""Exception types raised by the indexer.

Startup errors (ConfigError, StorageError) stop the process. ChainError and
DecodeError are transient and are caught by the scheduler or dispatcher.
"""


class IndexerError(Exception):
    pass


class ConfigError(IndexerError):
    pass


class StorageError(IndexerError):
    pass


class ChainError(IndexerError):
    pass


class DecodeError(IndexerError):
    def __init__(self, message: str, log_identity: str = ""):
        super().__init__(message)
        self.log_identity = log_identity
