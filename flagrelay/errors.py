"""Error taxonomy shared by services and boundary layers."""


class FlagRelayError(RuntimeError):
    """Base class for all service-level failures."""


class InvalidInputError(FlagRelayError):
    """Raised for bad ids or malformed input; never retried."""


class ConflictError(FlagRelayError):
    """Raised when a request is rejected because of current state."""


class UpstreamUnavailableError(FlagRelayError):
    """Raised when the primary store or the remote store cannot be used."""


class NotFoundError(FlagRelayError):
    """Raised when the targeted record does not exist."""


class SyncCancelledError(FlagRelayError):
    """Raised when a sync run is aborted before every batch was written."""
