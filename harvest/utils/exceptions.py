"""Custom exceptions for the system."""

class ConfigError(Exception):
    """Raised when there is a configuration error."""
    pass


class StorageError(Exception):
    """Raised when a session store operation fails."""
    pass


class MetadataError(Exception):
    """Raised when the metadata for a file path can't be resolved.

    This happens for paths that no longer exist or that live outside
    of any git repository.
    """
    def __init__(self, message: str, path: str = None):
        super().__init__(message)
        self.path = path


class SessionOrderError(Exception):
    """Raised when an editor ends a session it doesn't own.

    Events are expected to arrive in order for every editor instance. An
    end event from a client that isn't the active one means that guarantee
    has been broken upstream, and the engine state can no longer be trusted.
    """
    def __init__(self, message: str, active_client_id: str = None, client_id: str = None):
        super().__init__(message)
        self.active_client_id = active_client_id
        self.client_id = client_id
