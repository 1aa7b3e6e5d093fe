# blockersync/errors.py


class BlockerSyncError(Exception):
    """Base class for every error raised by blockersync."""


class NotFoundError(BlockerSyncError):
    """A remote calendar or event does not exist (or is not reachable)."""


class AuthRequired(BlockerSyncError):
    """No usable credentials exist for an account."""


class AuthExpired(BlockerSyncError):
    """Stored credentials can no longer be refreshed."""


class ConfigInvalid(BlockerSyncError):
    """Configuration is malformed, or a calendar references a backend that is gone."""


class RemoteWriteFailed(BlockerSyncError):
    """A create, update or delete was rejected by the backend."""


class ProviderError(BlockerSyncError):
    """A read against a backend failed for a reason other than not-found."""


class RegistryError(BlockerSyncError):
    """Calendar registry bookkeeping failed (duplicate or unknown calendar)."""
