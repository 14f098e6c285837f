class TransportError(Exception):
    """Raised when the completion backend cannot deliver an answer.

    Covers network errors, non-success HTTP statuses, malformed payloads,
    replies with ``success`` missing or false, and push-channel failures.
    """

    pass


class CatalogError(Exception):
    """Raised when the feature catalog cannot be read."""

    pass
